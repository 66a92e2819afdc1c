"""Custom exception hierarchy for the DiaX cache runtime."""

from __future__ import annotations

from enum import StrEnum

import httpx


class DiaxError(Exception):
    """Base exception for all DiaX client errors."""


class ConfigurationError(DiaxError):
    """Raised when the runtime is wired with inconsistent collaborators."""


class FetchErrorKind(StrEnum):
    """Failure classes produced by the fetch executor."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    PARSE = "parse"
    API = "api"


TRANSIENT_KINDS = frozenset({FetchErrorKind.NETWORK, FetchErrorKind.TIMEOUT})


class FetchError(DiaxError):
    """Raised when a backend call fails.

    ``status`` and ``info`` are populated for non-2xx responses so callers
    can classify and display the failure without re-parsing the body.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: FetchErrorKind,
        url: str | None = None,
        status: int | None = None,
        info: object = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.url = url
        self.status = status
        self.info = info

    @property
    def is_transient(self) -> bool:
        """Network and timeout failures are safe to retry."""
        return self.kind in TRANSIENT_KINDS

    def __repr__(self) -> str:
        return (
            f"FetchError({str(self)!r}, kind={self.kind.value}, "
            f"status={self.status}, url={self.url!r})"
        )


def is_transient(exc: BaseException) -> bool:
    """Return True when ``exc`` belongs to a retryable failure class."""
    if isinstance(exc, FetchError):
        return exc.is_transient
    return isinstance(exc, TimeoutError | ConnectionError | httpx.TransportError)
