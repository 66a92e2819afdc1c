"""Read-through cache bindings that prefer fresh prefetched data.

A binding decides once, when it is created, whether the entry store holds a
fresh value for its key. If so, consumers see that snapshot immediately and
a silent refresh is scheduled for the next loop iteration; otherwise the
binding defers to the shared request cache, which deduplicates fetches.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from diax_core.interfaces.cache import EntryStore, Fetcher
from diax_core.models.cache import BindingState
from diax_infra.cache.request_cache import MISSING, RequestCache

logger = structlog.get_logger()

StateListener = Callable[[BindingState], None]


@dataclass(frozen=True)
class BindOptions:
    """Per-binding behavior switches."""

    prioritize_prefetched_data: bool = True
    background_update: bool = True
    prefetch_max_age: float = 30.0
    deduping_interval: float = 5.0
    revalidate_if_stale: bool = True


class Binding:
    """One consumer's live view of one cache key.

    Use ``ReadThroughCache.bind`` to create one. Must be created inside a
    running event loop when ``key`` is not None.
    """

    def __init__(
        self,
        key: str | None,
        *,
        store: EntryStore,
        requests: RequestCache,
        fetcher: Fetcher,
        options: BindOptions,
    ) -> None:
        self.key = key
        self.options = options
        self._store = store
        self._requests = requests
        self._fetcher = fetcher
        self._snapshot: Any = MISSING
        self._using_prefetched = False
        self._generation = 0
        self._listeners: list[StateListener] = []
        self._tasks: set[asyncio.Task[None]] = set()
        self._deferred: asyncio.Handle | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._closed = False

        if key is None:
            return

        if options.prioritize_prefetched_data:
            entry = store.get(key)
            if entry is not None and entry.is_fresh(store.now(), options.prefetch_max_age):
                self._snapshot = entry.value
                self._using_prefetched = True

        self._unsubscribe = requests.subscribe(key, self._on_shared_change)
        requests.register(key, fetcher, on_success=self._write_through)

        if self._using_prefetched:
            # The entry is fresh, so it supersedes older shared data.
            requests.set_data(key, self._snapshot)
            self._deferred = asyncio.get_running_loop().call_soon(self._end_snapshot_phase)
            logger.debug("binding_serving_prefetched", key=key)
            return

        if options.revalidate_if_stale or not requests.state(key).has_data:
            self._revalidate(dedupe=True)

    # --- observed state ---

    @property
    def using_prefetched(self) -> bool:
        return self._using_prefetched

    @property
    def value(self) -> Any:
        """Snapshot while serving prefetched data, else the shared value."""
        if self._using_prefetched:
            return self._snapshot
        if self.key is None:
            return None
        data = self._requests.state(self.key).data
        return None if data is MISSING else data

    @property
    def error(self) -> BaseException | None:
        if self.key is None:
            return None
        return self._requests.state(self.key).error

    @property
    def is_validating(self) -> bool:
        if self.key is None or self._using_prefetched:
            return False
        return self._requests.state(self.key).is_validating

    @property
    def is_loading(self) -> bool:
        if self.key is None or self._using_prefetched:
            return False
        shared = self._requests.state(self.key)
        return shared.is_validating and not shared.has_data

    def state(self) -> BindingState:
        """Immutable view of everything a consumer renders from."""
        has_value = self._using_prefetched or (
            self.key is not None and self._requests.state(self.key).has_data
        )
        return BindingState(
            key=self.key,
            value=self.value,
            has_value=has_value,
            error=self.error,
            is_loading=self.is_loading,
            is_validating=self.is_validating,
            using_prefetched=self._using_prefetched,
        )

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Call listener with the new state on every change."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        current = self.state()
        for listener in list(self._listeners):
            listener(current)

    def _on_shared_change(self, _key: str) -> None:
        self._notify()

    # --- fetch paths ---

    def _write_through(self, key: str, value: Any) -> None:
        self._store.set(key, value)

    def _revalidate(self, *, dedupe: bool) -> asyncio.Task[None]:
        assert self.key is not None
        return self._requests.revalidate(
            self.key,
            self._fetcher,
            dedupe=dedupe,
            deduping_interval=self.options.deduping_interval,
            on_success=self._write_through,
        )

    def _end_snapshot_phase(self) -> None:
        self._deferred = None
        if not self._using_prefetched:
            return
        if not self.options.background_update:
            self._using_prefetched = False
            self._notify()
            return
        task = asyncio.get_running_loop().create_task(
            self._background_refresh(self._generation)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _background_refresh(self, generation: int) -> None:
        """Fetch a fresh copy; swap it in only if it differs from the shown value."""
        assert self.key is not None
        key = self.key
        try:
            fresh = await self._fetcher(key)
        except Exception as exc:
            logger.error("background_update_failed", key=key, error=str(exc))
            if generation == self._generation:
                self._requests.set_error(key, exc)
        else:
            if generation == self._generation:
                self._store.set(key, fresh)
                if fresh != self._requests.state(key).data:
                    logger.debug("background_update_changed", key=key)
                    self._requests.set_data(key, fresh)
                else:
                    self._requests.clear_error(key)
        finally:
            if generation == self._generation and self._using_prefetched:
                self._using_prefetched = False
                self._notify()

    def _leave_snapshot_phase(self) -> None:
        self._generation += 1
        self._using_prefetched = False
        if self._deferred is not None:
            self._deferred.cancel()
            self._deferred = None

    # --- imperative escape hatches ---

    async def invalidate(self) -> Any:
        """Drop the entry and the shared data for key, then refetch it."""
        if self.key is None:
            return None
        self._leave_snapshot_phase()
        self._store.delete(self.key)
        self._requests.delete(self.key)
        await self._revalidate(dedupe=False)
        return self.value

    async def update_cache(self, value: Any, should_revalidate: bool = False) -> Any:
        """Write value locally (entry store and shared data), optionally refetch."""
        if self.key is None:
            return None
        self._leave_snapshot_phase()
        self._store.set(self.key, value)
        await self._requests.mutate(self.key, value, revalidate=False)
        if should_revalidate:
            await self._revalidate(dedupe=False)
        return self.value

    async def settled(self) -> BindingState:
        """Wait until the deferred refresh and any fetch for key have finished."""
        while True:
            await asyncio.sleep(0)
            pending: list[asyncio.Task[None]] = [t for t in self._tasks if not t.done()]
            if self.key is not None:
                shared = self._requests.pending_task(self.key)
                if shared is not None:
                    pending.append(shared)
            if not pending and self._deferred is None:
                return self.state()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    def close(self) -> None:
        """Stop observing key. Requests already on the wire still complete."""
        if self._closed:
            return
        self._closed = True
        if self._deferred is not None:
            self._deferred.cancel()
            self._deferred = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._listeners.clear()

    def __enter__(self) -> Binding:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ReadThroughCache:
    """Factory for bindings sharing one entry store and request cache."""

    def __init__(
        self,
        store: EntryStore,
        requests: RequestCache,
        default_fetcher: Fetcher,
        *,
        prefetch_max_age: float = 30.0,
        deduping_interval: float = 5.0,
    ) -> None:
        """Initialize with the shared caches and configured defaults."""
        self._store = store
        self._requests = requests
        self._default_fetcher = default_fetcher
        self._prefetch_max_age = prefetch_max_age
        self._deduping_interval = deduping_interval

    def bind(
        self,
        key: str | None,
        *,
        prioritize_prefetched_data: bool = True,
        background_update: bool = True,
        prefetch_max_age: float | None = None,
        deduping_interval: float | None = None,
        revalidate_if_stale: bool = True,
        fetcher: Fetcher | None = None,
    ) -> Binding:
        """Bind a consumer to key. A None key yields an inert binding."""
        options = BindOptions(
            prioritize_prefetched_data=prioritize_prefetched_data,
            background_update=background_update,
            prefetch_max_age=(
                self._prefetch_max_age if prefetch_max_age is None else prefetch_max_age
            ),
            deduping_interval=(
                self._deduping_interval if deduping_interval is None else deduping_interval
            ),
            revalidate_if_stale=revalidate_if_stale,
        )
        return Binding(
            key,
            store=self._store,
            requests=self._requests,
            fetcher=fetcher or self._default_fetcher,
            options=options,
        )
