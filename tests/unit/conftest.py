"""Shared pytest fixtures for unit tests."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from diax_client.cache.prefetcher import Prefetcher
from diax_client.cache.read_through import ReadThroughCache
from diax_core.keys import CacheKeys
from diax_infra.cache.entry_store import MemoryEntryStore
from diax_infra.cache.inflight import InFlightTracker
from diax_infra.cache.request_cache import RequestCache
from tests.mocks.mock_clock import FakeClock
from tests.mocks.mock_fetchers import ScriptedFetcher
from tests.mocks.mock_settings import make_settings


@pytest.fixture
def mock_settings() -> MagicMock:
    """Return a MagicMock Settings with production defaults."""
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    """Return a manually advanced clock."""
    return FakeClock()


@pytest.fixture
def keys() -> CacheKeys:
    """Return a key factory bound to a fake API origin."""
    return CacheKeys("https://api.test/api")


@pytest.fixture
def store(clock: FakeClock) -> MemoryEntryStore:
    """Return an empty entry store on the fake clock."""
    return MemoryEntryStore(clock=clock)


@pytest.fixture
def tracker() -> InFlightTracker:
    """Return an empty in-flight tracker."""
    return InFlightTracker()


@pytest.fixture
def requests(clock: FakeClock) -> RequestCache:
    """Return an empty request cache on the fake clock."""
    return RequestCache(clock=clock, deduping_interval=5.0)


@pytest.fixture
def default_fetcher() -> ScriptedFetcher:
    """Fetcher used when a call does not pass its own."""
    return ScriptedFetcher({"default": True})


@pytest.fixture
def prefetcher(
    store: MemoryEntryStore,
    tracker: InFlightTracker,
    default_fetcher: ScriptedFetcher,
) -> Prefetcher:
    """Return a single-flight prefetcher over the shared fixtures."""
    return Prefetcher(store, tracker, default_fetcher, max_age=30.0)


@pytest.fixture
def read_through(
    store: MemoryEntryStore,
    requests: RequestCache,
    default_fetcher: ScriptedFetcher,
) -> ReadThroughCache:
    """Return a binding factory over the shared fixtures."""
    return ReadThroughCache(store, requests, default_fetcher)
