"""In-memory implementation of EntryStore."""

from __future__ import annotations

import time
from collections.abc import Iterator
from typing import Any

from diax_core.interfaces.cache import Clock
from diax_core.models.cache import CacheEntry


class MemoryEntryStore:
    """Process-wide key -> CacheEntry map with no eviction.

    Entries live until deleted or overwritten. Writes are last-write-wins:
    an out-of-order write replaces a newer entry rather than being rejected.
    """

    def __init__(self, clock: Clock = time.monotonic) -> None:
        """Initialize with the clock used to stamp entries."""
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def now(self) -> float:
        """Current clock reading."""
        return self._clock()

    def get(self, key: str) -> CacheEntry | None:
        """Retrieve the entry for key, or None if absent."""
        return self._entries.get(key)

    def set(self, key: str, value: Any) -> CacheEntry:
        """Store value under key, stamped with the current time."""
        entry = CacheEntry(value=value, stored_at=self._clock())
        self._entries[key] = entry
        return entry

    def delete(self, key: str) -> None:
        """Delete a key from the store."""
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()

    def keys(self) -> list[str]:
        """Snapshot of stored keys in insertion order."""
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))
