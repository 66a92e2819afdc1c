"""Cache key builders for DiaX API resources.

Keys are the absolute request URLs, so a key can be handed straight to the
fetch executor. Query strings must be built with ``canonical_query`` so that
equivalent requests produce identical keys.
"""

from __future__ import annotations

from collections.abc import Mapping
from urllib.parse import urlencode

DEFAULT_API_BASE_URL = "https://diax.fileish.com/api"


def canonical_query(params: Mapping[str, object] | None) -> str:
    """Encode ``params`` sorted by name, skipping ``None`` values."""
    if not params:
        return ""
    pairs = sorted((name, str(value)) for name, value in params.items() if value is not None)
    return urlencode(pairs)


def _with_query(url: str, params: str) -> str:
    return f"{url}?{params}" if params else url


class CacheKeys:
    """Key factory bound to one API base URL."""

    def __init__(self, base_url: str = DEFAULT_API_BASE_URL) -> None:
        """Initialize with the API base URL (trailing slash ignored)."""
        self.base_url = base_url.rstrip("/")

    def profile(self) -> str:
        return f"{self.base_url}/users/profile"

    def medical_info(self) -> str:
        return f"{self.base_url}/users/medical-info"

    def chat_sessions(self) -> str:
        return f"{self.base_url}/chat/sessions"

    def chat_session(self, session_id: int | str) -> str:
        return f"{self.base_url}/chat/sessions/{session_id}"

    def health_stats(self, days: int) -> str:
        return f"{self.base_url}/health/stats?days={days}"

    def health_metrics(self, params: str = "") -> str:
        return _with_query(f"{self.base_url}/health/metrics", params)

    def health_charts(self, params: str = "") -> str:
        return _with_query(f"{self.base_url}/health/charts", params)

    def health_distribution(self, params: str = "") -> str:
        return _with_query(f"{self.base_url}/health/distribution", params)

    def resources(self, category: str | None = None) -> str:
        if category:
            return f"{self.base_url}/resources/{category}"
        return f"{self.base_url}/resources"
