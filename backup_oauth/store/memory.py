"""In-memory key-value store.

Default backend for single-process deployments, development and tests.
"""

from __future__ import annotations

import asyncio
import time

from typing import TYPE_CHECKING

from .base import KeyValueStore


if TYPE_CHECKING:
    from collections.abc import Callable


class MemoryKeyValueStore(KeyValueStore):
    """In-memory store with lazy TTL eviction.

    Thread-safe implementation using asyncio locks.

    Parameters
    ----------
    clock : callable, optional
        Returns the current unix time. Injected by tests to simulate
        the passage of time.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        """Initialize the memory store."""
        self._data: dict[str, tuple[str, float | None]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock or time.time

    def _is_live(self, expires_at: float | None, now: float) -> bool:
        return expires_at is None or now < expires_at

    def _evict_expired(self) -> int:
        """Remove all expired entries (caller must hold lock)."""
        now = self._clock()
        expired = [k for k, (_, exp) in self._data.items() if not self._is_live(exp, now)]
        for k in expired:
            del self._data[k]
        return len(expired)

    async def get(self, key: str) -> str | None:
        """Get a value if present and not expired."""
        async with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if not self._is_live(expires_at, self._clock()):
                del self._data[key]
                return None
            return value

    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        """Store a value with an optional TTL."""
        async with self._lock:
            expires_at = self._clock() + ttl if ttl is not None else None
            self._data[key] = (value, expires_at)

    async def pop(self, key: str) -> str | None:
        """Get and remove a value in one locked step."""
        async with self._lock:
            entry = self._data.pop(key, None)
            if entry is None:
                return None
            value, expires_at = entry
            if not self._is_live(expires_at, self._clock()):
                return None
            return value

    async def delete(self, key: str) -> bool:
        """Delete a key."""
        async with self._lock:
            return self._data.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        """List live keys with the given prefix."""
        async with self._lock:
            self._evict_expired()
            return [k for k in self._data if k.startswith(prefix)]

    async def cleanup(self) -> int:
        """Explicitly evict expired entries."""
        async with self._lock:
            return self._evict_expired()

    async def size(self) -> int:
        """Return the number of stored entries, expired ones included."""
        async with self._lock:
            return len(self._data)
