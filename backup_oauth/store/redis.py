"""Redis key-value store.

Production backend for multi-worker deployments: pending states and
token records are visible to every worker, and expiry is handled by
Redis itself.

Requires the `redis` package: pip install backup-oauth[redis]
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .base import KeyValueStore


if TYPE_CHECKING:
    from redis.asyncio import Redis


# Check for redis package
try:
    from redis.asyncio import Redis as RedisClient

    HAS_REDIS = True
except ImportError:
    HAS_REDIS = False
    RedisClient = None  # type: ignore[assignment,misc]


def _check_redis() -> None:
    """Check if redis package is available."""
    if not HAS_REDIS:
        msg = "Redis backend requires the 'redis' package. Install with: pip install redis"
        raise ImportError(msg)


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store.

    Keys are namespaced as ``{prefix}:{key}``. ``pop`` uses ``GETDEL`` so
    consuming a state is atomic across workers.

    Parameters
    ----------
    redis_url : str
        Redis connection URL.
    prefix : str
        Namespace prefix for every key.
    pool_size : int
        Connection pool size.
    redis_client : Redis, optional
        Pre-configured client (for testing with fakeredis).
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "backup_oauth",
        pool_size: int = 10,
        *,
        redis_client: Redis | None = None,
    ) -> None:
        """Initialize the Redis store."""
        if redis_client is None:
            _check_redis()
            redis_client = RedisClient.from_url(
                redis_url,
                max_connections=pool_size,
                decode_responses=True,
            )
        self._prefix = prefix
        self._redis: Any = redis_client

    def _key(self, key: str) -> str:
        """Build a namespaced Redis key."""
        return f"{self._prefix}:{key}"

    @staticmethod
    def _text(value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    async def get(self, key: str) -> str | None:
        """Get a value from Redis."""
        return self._text(await self._redis.get(self._key(key)))

    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        """Store a value, using PX expiry when a TTL is given."""
        if ttl is not None:
            await self._redis.set(self._key(key), value, px=max(1, int(ttl * 1000)))
        else:
            await self._redis.set(self._key(key), value)

    async def pop(self, key: str) -> str | None:
        """Atomically get and delete a value."""
        return self._text(await self._redis.getdel(self._key(key)))

    async def delete(self, key: str) -> bool:
        """Delete a key."""
        return bool(await self._redis.delete(self._key(key)))

    async def keys(self, prefix: str = "") -> list[str]:
        """List keys via SCAN (never KEYS)."""
        pattern = f"{self._key(prefix)}*"
        strip = len(self._prefix) + 1
        keys = [self._text(k) async for k in self._redis.scan_iter(match=pattern)]
        return [k[strip:] for k in keys if k is not None]

    async def cleanup(self) -> int:
        """Redis expires keys natively."""
        return 0

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self._redis.aclose()
