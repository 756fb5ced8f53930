"""
Persistent cache implementations.
"""

from focusup.cache.base import MemoryCache, PersistentCache
from focusup.cache.sqlite import SQLiteCache

__all__ = ["PersistentCache", "MemoryCache", "SQLiteCache"]
