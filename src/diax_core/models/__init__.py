"""Domain models for the DiaX cache runtime."""

from diax_core.models.cache import BindingState, CacheEntry

__all__ = [
    "BindingState",
    "CacheEntry",
]
