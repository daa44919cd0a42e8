"""Persistence layer for per-dependency state."""

from .state_cache import MemoryStateCache, SQLiteStateCache, StateCache, StateEntry

__all__ = ["MemoryStateCache", "SQLiteStateCache", "StateCache", "StateEntry"]
