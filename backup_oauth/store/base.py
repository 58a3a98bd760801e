"""Abstract base class for pluggable key-value storage.

StateManager and TokenVault only depend on this interface, so pending
authorization states and encrypted token records can live in process
memory, Redis, or any other store with get/set/delete and expiry.
"""

# pylint: disable=unnecessary-ellipsis

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum


class StoreBackend(str, Enum):
    """Available store backends."""

    MEMORY = "memory"
    REDIS = "redis"


class KeyValueStore(ABC):
    """Async string key-value store with optional per-key TTL.

    Implementations must be safe for concurrent use from one event loop.
    Values are opaque strings (callers serialize to JSON).
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Get the value for ``key``.

        Parameters
        ----------
        key : str
            The key to look up.

        Returns
        -------
        str or None
            The stored value, or None if missing or expired.
        """
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        """Store ``value`` under ``key``, replacing any previous value.

        Parameters
        ----------
        key : str
            The key.
        value : str
            The value.
        ttl : float or None
            Seconds until the key expires. None keeps it until deleted.
        """
        ...

    @abstractmethod
    async def pop(self, key: str) -> str | None:
        """Atomically get and delete ``key``.

        Two concurrent pops of the same key must never both return the
        value; this is what makes authorization states single-use.

        Parameters
        ----------
        key : str
            The key.

        Returns
        -------
        str or None
            The value that was stored, or None.
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete ``key``.

        Returns
        -------
        bool
            True if a value was removed.
        """
        ...

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """List live keys starting with ``prefix``."""
        ...

    @abstractmethod
    async def cleanup(self) -> int:
        """Remove expired entries.

        Returns
        -------
        int
            Number of entries removed (0 for stores that expire natively).
        """
        ...

    async def close(self) -> None:  # noqa: B027
        """Release connections held by the store."""
