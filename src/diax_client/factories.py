"""Composition root: builds one cache runtime from settings."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from diax_client.cache.manager import CacheManager
from diax_client.cache.prefetcher import Prefetcher
from diax_client.cache.read_through import ReadThroughCache
from diax_client.navigation import NavigationManager
from diax_client.services.health import HealthService
from diax_core.exceptions import ConfigurationError
from diax_core.interfaces.auth import TokenProvider
from diax_core.interfaces.cache import Clock
from diax_core.keys import CacheKeys
from diax_infra.cache.entry_store import MemoryEntryStore
from diax_infra.cache.inflight import InFlightTracker
from diax_infra.cache.request_cache import RequestCache
from diax_infra.http.fetch_executor import FetchExecutor

if TYPE_CHECKING:
    from diax_core.config.settings import Settings


@dataclass
class CacheRuntime:
    """Process-wide cache collaborators, created once per session."""

    keys: CacheKeys
    store: MemoryEntryStore
    tracker: InFlightTracker
    requests: RequestCache
    executor: FetchExecutor
    prefetcher: Prefetcher
    read_through: ReadThroughCache
    cache_manager: CacheManager
    health: HealthService
    navigation: NavigationManager

    async def aclose(self) -> None:
        """Cancel pending hover timers and release the HTTP client."""
        self.navigation.close()
        await self.executor.aclose()


def create_cache_runtime(
    settings: Settings,
    get_token: TokenProvider,
    *,
    client: httpx.AsyncClient | None = None,
    clock: Clock = time.monotonic,
) -> CacheRuntime:
    """Wire the entry store, prefetcher, bindings and services together.

    Raises ConfigurationError when the API base URL is not an http(s) URL.
    """
    if not settings.api_base_url.startswith(("http://", "https://")):
        msg = f"api_base_url must be an http(s) URL, got {settings.api_base_url!r}"
        raise ConfigurationError(msg)
    keys = CacheKeys(settings.api_base_url)
    store = MemoryEntryStore(clock=clock)
    tracker = InFlightTracker()
    requests = RequestCache(clock=clock, deduping_interval=settings.deduping_interval_seconds)
    executor = FetchExecutor(
        get_token,
        base_url=settings.api_base_url,
        timeout=settings.request_timeout_seconds,
        client=client,
    )
    prefetcher = Prefetcher(
        store,
        tracker,
        executor.fetch,
        max_age=settings.prefetch_max_age_seconds,
        single_flight=settings.prefetch_single_flight,
    )
    read_through = ReadThroughCache(
        store,
        requests,
        executor.fetch,
        prefetch_max_age=settings.prefetch_max_age_seconds,
        deduping_interval=settings.deduping_interval_seconds,
    )
    cache_manager = CacheManager(store, requests, keys)
    health = HealthService(
        executor,
        cache_manager,
        timeout=settings.request_timeout_seconds,
        metrics_timeout=settings.metrics_timeout_seconds,
        retry_budget=settings.retry_budget,
        retry_wait=settings.retry_wait_seconds,
    )
    navigation = NavigationManager(
        prefetcher,
        keys,
        hover_delay=settings.hover_prefetch_delay_seconds,
    )
    return CacheRuntime(
        keys=keys,
        store=store,
        tracker=tracker,
        requests=requests,
        executor=executor,
        prefetcher=prefetcher,
        read_through=read_through,
        cache_manager=cache_manager,
        health=health,
        navigation=navigation,
    )
