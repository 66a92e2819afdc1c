"""Background cache warming ahead of navigation."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

import structlog

from diax_core.interfaces.cache import EntryStore, Fetcher, InFlightRegistry

logger = structlog.get_logger()


class Prefetcher:
    """Warms the entry store for keys a consumer is likely to read next.

    A successful prefetch writes ``{value, now}`` to the entry store; a
    failed one leaves it untouched. Bindings pick entries up when they are
    created, so the shared request cache is not written here.

    With ``single_flight`` enabled, concurrent callers for the same key
    share one pending fetch instead of each issuing a request.
    """

    def __init__(
        self,
        store: EntryStore,
        tracker: InFlightRegistry,
        default_fetcher: Fetcher,
        *,
        max_age: float = 30.0,
        single_flight: bool = True,
    ) -> None:
        """Initialize with the entry store, tracker and fallback fetch function."""
        self._store = store
        self._tracker = tracker
        self._default_fetcher = default_fetcher
        self._max_age = max_age
        self._single_flight = single_flight
        self._pending: dict[str, asyncio.Task[Any]] = {}

    async def prefetch(self, key: str, fetcher: Fetcher | None = None) -> Any:
        """Fetch key in the background and store the result.

        Failures are logged and re-raised to the caller.
        """
        if not self._single_flight:
            return await self._prefetch(key, fetcher or self._default_fetcher)

        task = self._pending.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._prefetch(key, fetcher or self._default_fetcher)
            )
            self._pending[key] = task
            task.add_done_callback(lambda done: self._release(key, done))
        else:
            logger.debug("prefetch_joined", key=key)
        return await asyncio.shield(task)

    def _release(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        if not task.cancelled():
            # Mark the exception retrieved; awaiting callers still receive it.
            task.exception()

    async def _prefetch(self, key: str, fetcher: Fetcher) -> Any:
        self._tracker.mark(key)
        try:
            value = await fetcher(key)
        except Exception as exc:
            logger.warning("prefetch_failed", key=key, error=str(exc))
            raise
        finally:
            self._tracker.unmark(key)

        self._store.set(key, value)
        logger.debug("prefetch_stored", key=key)
        return value

    async def prefetch_many(
        self, keys: Sequence[str], fetcher: Fetcher | None = None
    ) -> list[Any]:
        """Prefetch all keys concurrently and wait for every one to settle.

        Individual failures are logged, never raised. Returns the values of
        the successful prefetches in key order.
        """
        results = await asyncio.gather(
            *(self.prefetch(key, fetcher) for key in keys),
            return_exceptions=True,
        )
        values: list[Any] = []
        for key, result in zip(keys, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("prefetch_many_item_failed", key=key, error=str(result))
            else:
                values.append(result)
        return values

    def is_preloading(self, key: str) -> bool:
        """True while a prefetch for key has not settled."""
        return self._tracker.is_in_flight(key)

    def get_prefetched(self, key: str) -> Any:
        """The stored value for key regardless of age, or None."""
        entry = self._store.get(key)
        return None if entry is None else entry.value

    def has_fresh(self, key: str, max_age: float | None = None) -> bool:
        """True if the stored entry for key is younger than ``max_age``."""
        entry = self._store.get(key)
        if entry is None:
            return False
        window = self._max_age if max_age is None else max_age
        return entry.is_fresh(self._store.now(), window)
