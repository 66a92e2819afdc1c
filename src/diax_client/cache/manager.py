"""Cache invalidation helpers keyed by resource group."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

import structlog

from diax_core.interfaces.cache import EntryStore
from diax_core.keys import CacheKeys
from diax_infra.cache.request_cache import RequestCache

logger = structlog.get_logger()


class CacheManager:
    """Invalidates or overwrites cached resources after mutations."""

    def __init__(
        self,
        store: EntryStore,
        requests: RequestCache,
        keys: CacheKeys,
    ) -> None:
        """Initialize with the shared caches and the key factory."""
        self._store = store
        self._requests = requests
        self.keys = keys

    async def invalidate(self, key: str) -> Any:
        """Drop the stored entry for key and refetch it for live bindings."""
        self._store.delete(key)
        return await self._requests.mutate(key)

    async def update_cache(self, key: str, data: Any, should_revalidate: bool = False) -> Any:
        """Overwrite key in both caches, optionally refetching afterwards."""
        self._store.set(key, data)
        return await self._requests.mutate(key, data, revalidate=should_revalidate)

    async def invalidate_multiple(self, keys: Sequence[str]) -> list[Any]:
        """Invalidate several keys concurrently."""
        return list(await asyncio.gather(*(self.invalidate(key) for key in keys)))

    async def invalidate_health_caches(self) -> list[Any]:
        """Invalidate every health-related resource."""
        return await self.invalidate_multiple(
            [
                self.keys.health_stats(7),
                self.keys.health_stats(30),
                self.keys.health_stats(90),
                self.keys.health_metrics(""),
                self.keys.health_charts(""),
                self.keys.health_distribution(""),
                self.keys.medical_info(),
            ]
        )

    async def invalidate_chat_caches(self) -> list[Any]:
        """Invalidate the chat session list."""
        return await self.invalidate_multiple([self.keys.chat_sessions()])

    async def invalidate_profile_caches(self) -> list[Any]:
        """Invalidate profile and medical information."""
        return await self.invalidate_multiple(
            [self.keys.profile(), self.keys.medical_info()]
        )

    def clear_all(self) -> None:
        """Forget everything without refetching (used on logout)."""
        dropped = len(self._store.keys())
        self._store.clear()
        self._requests.clear()
        logger.info("cache_cleared", entries=dropped)
