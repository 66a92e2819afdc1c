"""Session boundary consumed by the fetch executor."""

from __future__ import annotations

from collections.abc import Callable

TokenProvider = Callable[[], str | None]
"""Returns the current bearer token, or None when signed out."""


def static_token(token: str | None) -> TokenProvider:
    """Build a provider that always returns ``token``."""

    def _provider() -> str | None:
        return token

    return _provider
