"""Shared fetch-and-subscribe cache with request deduplication.

Every binding to a key reads the same ``data``/``error`` pair from here and is
notified when it changes. Fetches for a key that started less than the
deduping interval ago are shared instead of repeated. A failed fetch records
the error but keeps the last good data.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Final

import structlog

from diax_core.interfaces.cache import Clock, Fetcher

logger = structlog.get_logger()

Listener = Callable[[str], None]
SuccessHook = Callable[[str, Any], None]


class _Missing:
    """Marker for 'no data yet' (None is a legitimate payload)."""

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Final = _Missing()


@dataclass(frozen=True)
class RequestState:
    """Read-only view of one key's shared state."""

    data: Any = MISSING
    error: BaseException | None = None
    is_validating: bool = False

    @property
    def has_data(self) -> bool:
        return self.data is not MISSING


@dataclass
class _KeyState:
    data: Any = MISSING
    error: BaseException | None = None
    pending: int = 0
    started_at: float | None = None
    task: asyncio.Task[None] | None = None
    fetcher: Fetcher | None = None
    on_success: SuccessHook | None = None
    listeners: list[Listener] = field(default_factory=list)


class RequestCache:
    """Per-key shared data, error and in-progress fetch bookkeeping."""

    def __init__(self, clock: Clock = time.monotonic, deduping_interval: float = 5.0) -> None:
        """Initialize with a clock and the default deduping interval (seconds)."""
        self._clock = clock
        self._deduping_interval = deduping_interval
        self._states: dict[str, _KeyState] = {}

    def _state_for(self, key: str) -> _KeyState:
        state = self._states.get(key)
        if state is None:
            state = _KeyState()
            self._states[key] = state
        return state

    def state(self, key: str) -> RequestState:
        """Return the current shared state for key."""
        state = self._states.get(key)
        if state is None:
            return RequestState()
        return RequestState(
            data=state.data,
            error=state.error,
            is_validating=state.pending > 0,
        )

    def keys(self) -> list[str]:
        """Keys that currently hold data."""
        return [key for key, state in self._states.items() if state.data is not MISSING]

    def pending_task(self, key: str) -> asyncio.Task[None] | None:
        """The most recent fetch task for key if it has not finished."""
        state = self._states.get(key)
        if state is None or state.task is None or state.task.done():
            return None
        return state.task

    def subscribe(self, key: str, listener: Listener) -> Callable[[], None]:
        """Register listener for changes to key; returns an unsubscribe callable."""
        state = self._state_for(key)
        state.listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in state.listeners:
                state.listeners.remove(listener)

        return _unsubscribe

    def _notify(self, key: str) -> None:
        state = self._states.get(key)
        if state is None:
            return
        for listener in list(state.listeners):
            listener(key)

    def register(
        self, key: str, fetcher: Fetcher, on_success: SuccessHook | None = None
    ) -> None:
        """Record the fetcher (and write-through hook) later refetches of key use."""
        state = self._state_for(key)
        state.fetcher = fetcher
        if on_success is not None:
            state.on_success = on_success

    def set_data(self, key: str, data: Any) -> None:
        """Replace data for key and clear its error."""
        state = self._state_for(key)
        state.data = data
        state.error = None
        self._notify(key)

    def clear_error(self, key: str) -> None:
        """Forget the last failure for key, if any."""
        state = self._states.get(key)
        if state is None or state.error is None:
            return
        state.error = None
        self._notify(key)

    def set_error(self, key: str, error: BaseException) -> None:
        """Record a failure for key without touching its data."""
        state = self._state_for(key)
        state.error = error
        self._notify(key)

    def revalidate(
        self,
        key: str,
        fetcher: Fetcher,
        *,
        dedupe: bool = True,
        deduping_interval: float | None = None,
        on_success: SuccessHook | None = None,
    ) -> asyncio.Task[None]:
        """Start (or join) a fetch for key and return its task.

        With ``dedupe`` a fetch started less than ``deduping_interval``
        seconds ago is returned instead of issuing a new one. The task never
        raises; failures land in the key's ``error``.
        """
        self.register(key, fetcher, on_success)
        state = self._state_for(key)

        interval = self._deduping_interval if deduping_interval is None else deduping_interval
        now = self._clock()
        if (
            dedupe
            and state.task is not None
            and state.started_at is not None
            and now - state.started_at < interval
        ):
            logger.debug("request_deduplicated", key=key)
            return state.task

        state.started_at = now
        state.pending += 1
        task = asyncio.get_running_loop().create_task(self._run(key, state, fetcher))
        state.task = task
        self._notify(key)
        return task

    async def _run(self, key: str, state: _KeyState, fetcher: Fetcher) -> None:
        try:
            data = await fetcher(key)
        except Exception as exc:
            state.error = exc
            logger.warning("request_failed", key=key, error=str(exc))
        else:
            state.data = data
            state.error = None
            if state.on_success is not None:
                state.on_success(key, data)
        finally:
            state.pending -= 1
            self._notify(key)

    async def mutate(self, key: str, data: Any = MISSING, *, revalidate: bool = True) -> Any:
        """Optionally replace data for key, then optionally force a refetch.

        The refetch uses the last fetcher registered for key; without one it
        is skipped. Returns the data held afterwards (None if none).
        """
        if data is not MISSING:
            self.set_data(key, data)
        state = self._state_for(key)

        if revalidate and state.fetcher is not None:
            await self.revalidate(key, state.fetcher, dedupe=False)

        return None if state.data is MISSING else state.data

    def delete(self, key: str) -> None:
        """Forget data, error and dedupe window for key; keep subscribers.

        A fetch already on the wire is not cancelled and will still write
        its result when it completes.
        """
        state = self._states.get(key)
        if state is None:
            return
        state.data = MISSING
        state.error = None
        state.started_at = None
        state.task = None
        self._notify(key)

    def clear(self) -> None:
        """Drop data for every key without refetching."""
        for key in list(self._states):
            self.delete(key)
