"""
Persistent cache contract.

Values are opaque bytes keyed by ``"<collection>-<ownerId>"``. Writers
always store a full serialized snapshot of a collection, so the last
write wins and no record-level locking is needed.
"""

from __future__ import annotations

import abc
from typing import Mapping


class PersistentCache(abc.ABC):
    """Durable key-value storage."""

    @abc.abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Return the stored value, or None when the key is absent."""

    @abc.abstractmethod
    async def set(self, key: str, value: bytes) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abc.abstractmethod
    async def remove(self, key: str) -> None:
        """Delete ``key``; absent keys are ignored."""

    @abc.abstractmethod
    async def set_many(self, items: Mapping[str, bytes]) -> None:
        """Store several keys in one all-or-nothing write."""

    async def close(self) -> None:
        """Release resources held by the cache."""


class MemoryCache(PersistentCache):
    """Process-local cache, used for tests and cache-only sessions."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    async def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def set_many(self, items: Mapping[str, bytes]) -> None:
        self._data.update({k: bytes(v) for k, v in items.items()})

    def keys(self) -> list[str]:
        return sorted(self._data)
