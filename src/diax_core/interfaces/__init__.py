"""Public interface re-exports for diax_core."""

from diax_core.interfaces.auth import TokenProvider, static_token
from diax_core.interfaces.cache import Clock, EntryStore, Fetcher, InFlightRegistry

__all__ = [
    "Clock",
    "EntryStore",
    "Fetcher",
    "InFlightRegistry",
    "TokenProvider",
    "static_token",
]
