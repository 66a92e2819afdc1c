"""Authenticated HTTP access to the DiaX API using httpx."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import structlog

from diax_core.exceptions import FetchError, FetchErrorKind
from diax_core.interfaces.auth import TokenProvider
from diax_core.keys import DEFAULT_API_BASE_URL

logger = structlog.get_logger()

_SNIPPET_CHARS = 100


def parse_envelope(text: str, *, strict: bool = False, url: str | None = None) -> Any:
    """Decode a response body and unwrap the ``data`` envelope.

    Lenient mode returns the raw text when the body is not JSON. Strict
    mode raises ``FetchError(PARSE)`` instead, and also turns an
    ``{"error": true}`` envelope into ``FetchError(API)``.
    """
    if not text.strip():
        return None
    try:
        payload = json.loads(text)
    except ValueError as exc:
        if strict:
            logger.error("response_not_json", url=url, body=text[:_SNIPPET_CHARS])
            raise FetchError(
                f"Invalid JSON response: {text[:_SNIPPET_CHARS]}...",
                kind=FetchErrorKind.PARSE,
                url=url,
            ) from exc
        return text

    if isinstance(payload, dict):
        if strict and payload.get("error") is True:
            raise FetchError(
                str(payload.get("message") or "API returned an error"),
                kind=FetchErrorKind.API,
                url=url,
                info=payload,
            )
        if "data" in payload:
            return payload["data"]
    return payload


def _error_info(response: httpx.Response) -> Any:
    """Best-effort decode of an error body: JSON if possible, else text."""
    try:
        return response.json()
    except ValueError:
        return response.text


class FetchExecutor:
    """Performs authenticated calls and normalizes their failures.

    Every call carries ``Authorization: Bearer <token>`` when the token
    provider returns one, and is bounded by a hard wall-clock timeout.
    """

    def __init__(
        self,
        get_token: TokenProvider,
        *,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize with a token provider and an optional shared client."""
        self._get_token = get_token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def base_url(self) -> str:
        return self._base_url

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._base_url)
        return self._client

    def _headers(self, has_body: bool) -> dict[str, str]:
        headers: dict[str, str] = {"Accept": "application/json"}
        token = self._get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if has_body:
            headers["Content-Type"] = "application/json"
        return headers

    async def fetch(self, key: str) -> Any:
        """Lenient GET of a cache key; usable directly as a Fetcher."""
        return await self.request("GET", key)

    async def request(
        self,
        method: str,
        url: str,
        *,
        json_body: Any = None,
        timeout: float | None = None,
        strict: bool = False,
    ) -> Any:
        """Send a request and return the unwrapped payload.

        Raises ``FetchError`` with kind TIMEOUT, NETWORK or HTTP_STATUS (and
        PARSE/API in strict mode).
        """
        seconds = self._timeout if timeout is None else timeout
        has_body = json_body is not None
        try:
            async with asyncio.timeout(seconds):
                response = await self._http().request(
                    method,
                    url,
                    headers=self._headers(has_body),
                    json=json_body if has_body else None,
                )
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise FetchError(
                f"Request timeout after {int(seconds * 1000)}ms",
                kind=FetchErrorKind.TIMEOUT,
                url=url,
            ) from exc
        except httpx.TransportError as exc:
            raise FetchError(
                f"Network request failed: {exc}",
                kind=FetchErrorKind.NETWORK,
                url=url,
            ) from exc

        if not response.is_success:
            info = _error_info(response)
            message = f"Request failed with status {response.status_code}"
            if isinstance(info, dict) and info.get("message"):
                message = str(info["message"])
            logger.debug(
                "http_error_status",
                method=method,
                url=url,
                status=response.status_code,
            )
            raise FetchError(
                message,
                kind=FetchErrorKind.HTTP_STATUS,
                url=url,
                status=response.status_code,
                info=info,
            )

        return parse_envelope(response.text, strict=strict, url=url)

    async def aclose(self) -> None:
        """Close the underlying client if this executor created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
