"""Tests for read-through bindings over prefetched and shared data."""

from __future__ import annotations

import asyncio

import pytest

from diax_client.cache.prefetcher import Prefetcher
from diax_client.cache.read_through import ReadThroughCache
from diax_core.exceptions import FetchError, FetchErrorKind
from diax_core.models.cache import BindingState
from diax_infra.cache.entry_store import MemoryEntryStore
from diax_infra.cache.request_cache import RequestCache
from tests.mocks.mock_clock import FakeClock
from tests.mocks.mock_fetchers import ScriptedFetcher

KEY = "health-stats-7"


@pytest.mark.unit
class TestPrefetchedPath:
    """Bindings created while a fresh entry exists."""

    @pytest.mark.asyncio
    async def test_fresh_prefetch_served_immediately(
        self,
        prefetcher: Prefetcher,
        read_through: ReadThroughCache,
        clock: FakeClock,
    ) -> None:
        """Prefetched 5s earlier: first read is the entry, not loading, no network."""
        await prefetcher.prefetch(KEY, ScriptedFetcher({"glucose": 110}))
        clock.advance(5)
        network = ScriptedFetcher({"glucose": 110})

        binding = read_through.bind(KEY, fetcher=network)

        assert binding.value == {"glucose": 110}
        assert binding.is_loading is False
        assert binding.is_validating is False
        assert binding.using_prefetched is True
        assert network.call_count == 0

    @pytest.mark.asyncio
    async def test_background_update_runs_after_first_read(
        self, store: MemoryEntryStore, read_through: ReadThroughCache
    ) -> None:
        """The silent refresh is deferred to the next loop iteration."""
        store.set(KEY, {"glucose": 110})
        network = ScriptedFetcher({"glucose": 110})

        binding = read_through.bind(KEY, fetcher=network)
        assert network.call_count == 0

        state = await binding.settled()
        assert network.calls == [KEY]
        assert state.value == {"glucose": 110}
        assert state.using_prefetched is False

    @pytest.mark.asyncio
    async def test_background_update_swaps_changed_value(
        self,
        store: MemoryEntryStore,
        requests: RequestCache,
        read_through: ReadThroughCache,
        clock: FakeClock,
    ) -> None:
        """A structurally different fresh value replaces the snapshot."""
        store.set(KEY, {"glucose": 110})
        clock.advance(2)
        binding = read_through.bind(KEY, fetcher=ScriptedFetcher({"glucose": 125}))
        seen: list[BindingState] = []
        binding.subscribe(seen.append)

        await binding.settled()

        assert binding.value == {"glucose": 125}
        assert requests.state(KEY).data == {"glucose": 125}
        assert store.get(KEY).value == {"glucose": 125}  # type: ignore[union-attr]
        assert store.get(KEY).stored_at == clock.now  # type: ignore[union-attr]
        assert any(s.value == {"glucose": 125} for s in seen)
        assert all(s.is_validating is False for s in seen)

    @pytest.mark.asyncio
    async def test_background_failure_keeps_value(
        self, store: MemoryEntryStore, read_through: ReadThroughCache
    ) -> None:
        """Stale-while-erroring: value stays, only error is set."""
        store.set(KEY, {"glucose": 110})
        boom = FetchError("offline", kind=FetchErrorKind.NETWORK)
        binding = read_through.bind(KEY, fetcher=ScriptedFetcher(boom))

        state = await binding.settled()

        assert state.value == {"glucose": 110}
        assert state.error is boom
        assert state.is_loading is False
        assert store.get(KEY).value == {"glucose": 110}  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_background_update_disabled(
        self, store: MemoryEntryStore, read_through: ReadThroughCache
    ) -> None:
        """Without background update the snapshot is kept and nothing is fetched."""
        store.set(KEY, "snapshot")
        network = ScriptedFetcher("fresh")
        binding = read_through.bind(KEY, fetcher=network, background_update=False)

        state = await binding.settled()

        assert network.call_count == 0
        assert state.value == "snapshot"
        assert state.using_prefetched is False

    @pytest.mark.asyncio
    async def test_newer_prefetch_replaces_older_shared_data(
        self,
        prefetcher: Prefetcher,
        requests: RequestCache,
        read_through: ReadThroughCache,
        clock: FakeClock,
    ) -> None:
        """A fresh prefetch wins over shared data left by an earlier binding."""
        first = read_through.bind(KEY, fetcher=ScriptedFetcher({"v": "old"}))
        await first.settled()
        first.close()
        clock.advance(60)
        await prefetcher.prefetch(KEY, ScriptedFetcher({"v": "new"}))

        second = read_through.bind(KEY, fetcher=ScriptedFetcher({"v": "new"}))
        assert second.using_prefetched is True
        assert requests.state(KEY).data == {"v": "new"}

        state = await second.settled()

        assert state.using_prefetched is False
        assert state.value == {"v": "new"}
        assert second.value == {"v": "new"}

    @pytest.mark.asyncio
    async def test_newer_prefetch_kept_without_background_update(
        self,
        prefetcher: Prefetcher,
        read_through: ReadThroughCache,
        clock: FakeClock,
    ) -> None:
        """With background update off the prefetched value outlives the snapshot phase."""
        first = read_through.bind(KEY, fetcher=ScriptedFetcher({"v": "old"}))
        await first.settled()
        first.close()
        clock.advance(60)
        await prefetcher.prefetch(KEY, ScriptedFetcher({"v": "new"}))
        network = ScriptedFetcher({"v": "ignored"})

        second = read_through.bind(KEY, fetcher=network, background_update=False)
        state = await second.settled()

        assert network.call_count == 0
        assert state.value == {"v": "new"}

    @pytest.mark.asyncio
    async def test_unchanged_refresh_clears_earlier_error(
        self,
        store: MemoryEntryStore,
        requests: RequestCache,
        read_through: ReadThroughCache,
    ) -> None:
        """A background refresh equal to the snapshot still clears a recorded failure."""
        store.set(KEY, "v")
        binding = read_through.bind(KEY, fetcher=ScriptedFetcher("v"))
        requests.set_error(KEY, RuntimeError("down"))

        state = await binding.settled()

        assert state.value == "v"
        assert state.error is None
        assert requests.state(KEY).error is None

    @pytest.mark.asyncio
    async def test_snapshot_not_recaptured(
        self, store: MemoryEntryStore, read_through: ReadThroughCache
    ) -> None:
        """Later entry store writes do not change the captured snapshot."""
        store.set(KEY, "first")
        binding = read_through.bind(KEY, fetcher=ScriptedFetcher("first"))
        store.set(KEY, "second")
        assert binding.value == "first"
        await binding.settled()

    @pytest.mark.asyncio
    async def test_prioritize_disabled_fetches(
        self, store: MemoryEntryStore, read_through: ReadThroughCache
    ) -> None:
        """prioritize_prefetched_data=False ignores the entry store."""
        store.set(KEY, "cached")
        network = ScriptedFetcher("fresh")
        binding = read_through.bind(KEY, fetcher=network, prioritize_prefetched_data=False)

        assert binding.using_prefetched is False
        assert binding.is_validating is True
        await binding.settled()
        assert binding.value == "fresh"
        assert network.call_count == 1


@pytest.mark.unit
class TestFetchPath:
    """Bindings without a fresh entry."""

    @pytest.mark.asyncio
    async def test_stale_entry_is_bypassed(
        self,
        prefetcher: Prefetcher,
        read_through: ReadThroughCache,
        clock: FakeClock,
    ) -> None:
        """Prefetched 35s earlier: loading until a real fetch completes."""
        await prefetcher.prefetch(KEY, ScriptedFetcher({"glucose": 110}))
        clock.advance(35)
        network = ScriptedFetcher({"glucose": 98})

        binding = read_through.bind(KEY, fetcher=network)
        assert binding.using_prefetched is False
        assert binding.is_validating is True
        assert binding.is_loading is True
        assert network.call_count == 0

        await binding.settled()
        assert network.call_count == 1
        assert binding.value == {"glucose": 98}
        assert binding.is_loading is False

    @pytest.mark.asyncio
    async def test_cold_key_loads_and_writes_through(
        self,
        store: MemoryEntryStore,
        read_through: ReadThroughCache,
        clock: FakeClock,
    ) -> None:
        """A miss shows loading, then the value, and stores the entry."""
        binding = read_through.bind(KEY, fetcher=ScriptedFetcher([1, 2]))
        assert binding.is_loading is True
        assert binding.value is None

        await binding.settled()

        assert binding.value == [1, 2]
        assert binding.is_loading is False
        assert store.get(KEY).stored_at == clock.now  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_fetch_failure_surfaces_error(self, read_through: ReadThroughCache) -> None:
        """With nothing cached, a failure shows up as error and no value."""
        boom = FetchError("Not found", kind=FetchErrorKind.HTTP_STATUS, status=404)
        binding = read_through.bind(KEY, fetcher=ScriptedFetcher(boom))
        state = await binding.settled()
        assert state.error is boom
        assert state.has_value is False
        assert state.is_loading is False

    @pytest.mark.asyncio
    async def test_simultaneous_bindings_dedupe(self, read_through: ReadThroughCache) -> None:
        """Two consumers mounting together share one request."""
        network = ScriptedFetcher("v")
        first = read_through.bind(KEY, fetcher=network)
        second = read_through.bind(KEY, fetcher=network)
        await asyncio.gather(first.settled(), second.settled())
        assert network.call_count == 1
        assert first.value == second.value == "v"

    @pytest.mark.asyncio
    async def test_revalidate_failure_keeps_shared_value(
        self,
        requests: RequestCache,
        read_through: ReadThroughCache,
        clock: FakeClock,
    ) -> None:
        """A later failing revalidation keeps the last good value."""
        network = ScriptedFetcher("good", RuntimeError("down"))
        first = read_through.bind(KEY, fetcher=network)
        await first.settled()
        clock.advance(6)

        second = read_through.bind(KEY, fetcher=network, prioritize_prefetched_data=False)
        assert second.is_loading is False
        assert second.is_validating is True
        state = await second.settled()

        assert state.value == "good"
        assert isinstance(state.error, RuntimeError)
        assert first.value == "good"

    @pytest.mark.asyncio
    async def test_revalidate_if_stale_disabled(
        self, requests: RequestCache, read_through: ReadThroughCache
    ) -> None:
        """Existing shared data is used as-is when stale revalidation is off."""
        requests.set_data(KEY, "shared")
        network = ScriptedFetcher("fresh")
        binding = read_through.bind(KEY, fetcher=network, revalidate_if_stale=False)
        await binding.settled()
        assert network.call_count == 0
        assert binding.value == "shared"

    @pytest.mark.asyncio
    async def test_none_key_is_inert(self, read_through: ReadThroughCache) -> None:
        """Binding to None does nothing."""
        network = ScriptedFetcher("v")
        binding = read_through.bind(None, fetcher=network)
        state = await binding.settled()
        assert state == BindingState(key=None)
        assert await binding.invalidate() is None
        assert await binding.update_cache("x") is None
        assert network.call_count == 0


@pytest.mark.unit
class TestEscapeHatches:
    """invalidate, update_cache and close."""

    @pytest.mark.asyncio
    async def test_update_cache_reads_back(
        self,
        store: MemoryEntryStore,
        read_through: ReadThroughCache,
        clock: FakeClock,
    ) -> None:
        """update_cache(V) is visible immediately with a new timestamp."""
        network = ScriptedFetcher("remote")
        binding = read_through.bind(KEY, fetcher=network)
        await binding.settled()
        clock.advance(12)

        result = await binding.update_cache({"glucose": 101})

        assert result == {"glucose": 101}
        assert binding.value == {"glucose": 101}
        entry = store.get(KEY)
        assert entry is not None
        assert entry.value == {"glucose": 101}
        assert entry.stored_at == clock.now
        assert network.call_count == 1

    @pytest.mark.asyncio
    async def test_update_cache_with_revalidate(self, read_through: ReadThroughCache) -> None:
        """should_revalidate=True refetches after the local write."""
        network = ScriptedFetcher("remote-1", "remote-2")
        binding = read_through.bind(KEY, fetcher=network)
        await binding.settled()
        await binding.update_cache("local", should_revalidate=True)
        assert binding.value == "remote-2"
        assert network.call_count == 2

    @pytest.mark.asyncio
    async def test_update_cache_supersedes_background_refresh(
        self, store: MemoryEntryStore, read_through: ReadThroughCache
    ) -> None:
        """A local write during the snapshot phase is not overwritten."""
        store.set(KEY, "snapshot")
        gate = asyncio.Event()
        binding = read_through.bind(KEY, fetcher=ScriptedFetcher("background", gate=gate))
        await asyncio.sleep(0)

        await binding.update_cache("local")
        gate.set()
        await binding.settled()

        assert binding.value == "local"
        assert store.get(KEY).value == "local"  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_invalidate_drops_entry_and_refetches(
        self,
        store: MemoryEntryStore,
        read_through: ReadThroughCache,
    ) -> None:
        """invalidate() deletes the entry and forces a new fetch."""
        store.set(KEY, "snapshot")
        network = ScriptedFetcher("fresh-1", "fresh-2")
        binding = read_through.bind(KEY, fetcher=network)
        await binding.settled()

        result = await binding.invalidate()

        assert result == "fresh-2"
        assert network.call_count == 2
        assert store.get(KEY).value == "fresh-2"  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_close_before_tick_skips_background_fetch(
        self, store: MemoryEntryStore, read_through: ReadThroughCache
    ) -> None:
        """Closing before the deferred tick cancels the refresh."""
        store.set(KEY, "snapshot")
        network = ScriptedFetcher("fresh")
        binding = read_through.bind(KEY, fetcher=network)
        binding.close()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert network.call_count == 0

    @pytest.mark.asyncio
    async def test_close_mid_flight_still_writes(
        self, store: MemoryEntryStore, read_through: ReadThroughCache
    ) -> None:
        """A request already on the wire completes and stores its result."""
        gate = asyncio.Event()
        with read_through.bind(KEY, fetcher=ScriptedFetcher("late", gate=gate)) as binding:
            seen: list[BindingState] = []
            binding.subscribe(seen.append)
            await asyncio.sleep(0)
        gate.set()
        await binding.settled()

        assert store.get(KEY).value == "late"  # type: ignore[union-attr]
        assert seen == []
