"""Cache entry and binding state models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CacheEntry(BaseModel):
    """A stored value and the time it was written.

    Entries are replaced wholesale; nothing mutates one in place.
    """

    model_config = ConfigDict(frozen=True)

    value: Any = Field(description="JSON-like payload returned by the backend")
    stored_at: float = Field(description="Clock reading (seconds) when the value was stored")

    def age(self, now: float) -> float:
        """Seconds elapsed since the entry was stored."""
        return now - self.stored_at

    def is_fresh(self, now: float, max_age: float) -> bool:
        """Fresh iff strictly younger than ``max_age`` seconds."""
        return self.age(now) < max_age


class BindingState(BaseModel):
    """Point-in-time view of a read-through binding."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    key: str | None = Field(description="Bound cache key, None for an inert binding")
    value: Any = Field(default=None, description="Current value, None when nothing is known")
    has_value: bool = Field(default=False, description="Whether value holds real data")
    error: BaseException | None = Field(default=None, description="Last fetch failure")
    is_loading: bool = Field(default=False, description="Fetching with nothing to show yet")
    is_validating: bool = Field(default=False, description="Any fetch in progress")
    using_prefetched: bool = Field(
        default=False, description="Serving the snapshot captured at bind time"
    )
