"""Abstract cache interfaces."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from diax_core.models.cache import CacheEntry

Fetcher = Callable[[str], Awaitable[Any]]
"""Resource fetch function: cache key in, parsed payload out."""

Clock = Callable[[], float]


@runtime_checkable
class EntryStore(Protocol):
    """Key -> timestamped value mapping shared by prefetch and read-through."""

    def get(self, key: str) -> CacheEntry | None:
        """Return the entry for key, or None if absent."""
        ...

    def set(self, key: str, value: Any) -> CacheEntry:
        """Overwrite the entry for key, stamped with the current time."""
        ...

    def delete(self, key: str) -> None:
        """Drop the entry for key if present."""
        ...

    def clear(self) -> None:
        """Drop every entry."""
        ...

    def keys(self) -> list[str]:
        """Snapshot of the stored keys."""
        ...

    def now(self) -> float:
        """Current reading of the clock used to stamp entries."""
        ...


@runtime_checkable
class InFlightRegistry(Protocol):
    """Advisory set of keys currently being prefetched."""

    def mark(self, key: str) -> None:
        """Record that a prefetch for key has started."""
        ...

    def unmark(self, key: str) -> None:
        """Record that the prefetch for key has settled."""
        ...

    def is_in_flight(self, key: str) -> bool:
        """Return True while a prefetch for key has not settled."""
        ...
