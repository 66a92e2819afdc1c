"""Advisory tracker of keys with a prefetch in progress."""

from __future__ import annotations


class InFlightTracker:
    """Set of cache keys currently being prefetched.

    Membership is informational (e.g. a "still loading" indicator); it does
    not by itself stop a second request for the same key.
    """

    def __init__(self) -> None:
        """Initialize with an empty set."""
        self._keys: set[str] = set()

    def mark(self, key: str) -> None:
        """Add key to the in-flight set."""
        self._keys.add(key)

    def unmark(self, key: str) -> None:
        """Remove key from the in-flight set; missing keys are ignored."""
        self._keys.discard(key)

    def is_in_flight(self, key: str) -> bool:
        """Check whether key is being prefetched right now."""
        return key in self._keys

    def snapshot(self) -> frozenset[str]:
        """Immutable copy of the current membership."""
        return frozenset(self._keys)

    def __len__(self) -> int:
        return len(self._keys)
