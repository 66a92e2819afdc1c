"""Page-level data warming driven by navigation and link hovers."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import structlog

from diax_client.cache.prefetcher import Prefetcher
from diax_core.keys import CacheKeys

logger = structlog.get_logger()


def build_page_prefetch_map(keys: CacheKeys) -> dict[str, list[str]]:
    """Page path -> API keys that page reads on mount."""
    return {
        "/dashboard": [keys.profile()],
        "/dashboard/health": [keys.health_stats(30), keys.medical_info()],
        "/dashboard/health/history": [keys.health_metrics("days=30")],
        "/dashboard/resources": [keys.resources()],
        "/dashboard/chat": [keys.chat_sessions()],
        "/dashboard/profile": [keys.profile(), keys.medical_info()],
        "/dashboard/profile/medical": [keys.medical_info()],
    }


class NavigationManager:
    """Warms the cache for pages the user is about to open."""

    def __init__(
        self,
        prefetcher: Prefetcher,
        keys: CacheKeys,
        *,
        hover_delay: float = 0.1,
        current_path: str | None = None,
    ) -> None:
        """Initialize with the prefetcher and the hover debounce delay."""
        self._prefetcher = prefetcher
        self.page_prefetch_map = build_page_prefetch_map(keys)
        self._hover_delay = hover_delay
        self.current_path = current_path
        self._hover_timers: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def endpoints_for(self, path: str) -> list[str]:
        return list(self.page_prefetch_map.get(path, []))

    async def prefetch_page_data(self, path: str) -> None:
        """Prefetch the keys of ``path`` that have no fresh entry. Never raises."""
        endpoints = [
            key for key in self.endpoints_for(path) if not self._prefetcher.has_fresh(key)
        ]
        if not endpoints:
            return
        try:
            await self._prefetcher.prefetch_many(endpoints)
        except Exception as exc:
            logger.warning("page_prefetch_failed", path=path, error=str(exc))

    def _spawn(self, path: str) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(self.prefetch_page_data(path))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def handle_link_hover(self, path: str) -> None:
        """Debounced warm-up for a hovered link; the current page is ignored."""
        if path == self.current_path:
            return
        existing = self._hover_timers.pop(path, None)
        if existing is not None:
            existing.cancel()

        def _fire() -> None:
            self._hover_timers.pop(path, None)
            self._spawn(path)

        self._hover_timers[path] = asyncio.get_running_loop().call_later(
            self._hover_delay, _fire
        )

    def preload_route(self, path: str) -> asyncio.Task[None]:
        """Start warming ``path`` immediately."""
        return self._spawn(path)

    def navigate_to(self, path: str) -> None:
        """Record the page the user is now on."""
        self.current_path = path

    async def prefetch_multiple_pages(self, paths: Sequence[str]) -> None:
        """Warm several pages concurrently."""
        await asyncio.gather(*(self.prefetch_page_data(path) for path in paths))

    async def drain(self) -> None:
        """Wait for warm-ups already started."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """Cancel hover timers that have not fired yet."""
        for handle in self._hover_timers.values():
            handle.cancel()
        self._hover_timers.clear()
