"""Tests for the Redis key-value store.

These tests use fakeredis to simulate Redis without requiring a real server.
"""
# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from backup_oauth.auth.state import StateManager
from backup_oauth.auth.types import InvalidState, OAuthState, OAuthTokens
from backup_oauth.auth.vault import TokenVault


# Check if fakeredis is available
try:
    import fakeredis.aioredis

    HAS_FAKEREDIS = True
except ImportError:
    HAS_FAKEREDIS = False


pytestmark = pytest.mark.skipif(
    not HAS_FAKEREDIS,
    reason="fakeredis not installed (pip install fakeredis)",
)


@pytest.fixture
def fake_redis() -> fakeredis.aioredis.FakeRedis:
    """Create a fake Redis client for testing."""
    return fakeredis.aioredis.FakeRedis(decode_responses=True)


@pytest_asyncio.fixture
async def redis_store(fake_redis: fakeredis.aioredis.FakeRedis):
    """Create a RedisKeyValueStore with fake Redis."""
    from backup_oauth.store.redis import RedisKeyValueStore

    store = RedisKeyValueStore(redis_client=fake_redis, prefix="test")
    yield store
    await store.close()


# --- RedisKeyValueStore Tests ---


class TestRedisKeyValueStore:
    """Tests for RedisKeyValueStore."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, redis_store, fake_redis) -> None:
        """Test storing a value under the namespaced key."""
        await redis_store.set("oauth:state:abc", "payload")
        assert await redis_store.get("oauth:state:abc") == "payload"
        assert await fake_redis.get("test:oauth:state:abc") == "payload"

    @pytest.mark.asyncio
    async def test_get_nonexistent(self, redis_store) -> None:
        """Test getting a key that doesn't exist."""
        assert await redis_store.get("nonexistent") is None

    @pytest.mark.asyncio
    async def test_ttl_sets_expiry(self, redis_store, fake_redis) -> None:
        """Test that a TTL becomes a Redis expiry."""
        await redis_store.set("k", "v", ttl=600)
        ttl_ms = await fake_redis.pttl("test:k")
        assert 0 < ttl_ms <= 600_000

        await redis_store.set("forever", "v")
        assert await fake_redis.pttl("test:forever") == -1

    @pytest.mark.asyncio
    async def test_ttl_expiry(self, redis_store) -> None:
        """Test that Redis expires keys on its own."""
        await redis_store.set("k", "v", ttl=0.05)
        await asyncio.sleep(0.15)
        assert await redis_store.get("k") is None

    @pytest.mark.asyncio
    async def test_pop_is_single_use(self, redis_store) -> None:
        """Test that pop returns the value exactly once."""
        await redis_store.set("k", "v")
        results = await asyncio.gather(*(redis_store.pop("k") for _ in range(10)))
        assert results.count("v") == 1

    @pytest.mark.asyncio
    async def test_delete(self, redis_store) -> None:
        """Test deleting a key."""
        await redis_store.set("k", "v")
        assert await redis_store.delete("k") is True
        assert await redis_store.delete("k") is False

    @pytest.mark.asyncio
    async def test_keys_strip_prefix(self, redis_store, fake_redis) -> None:
        """Test that listed keys are returned without the namespace."""
        await redis_store.set("oauth:tokens:google:a", "1")
        await redis_store.set("oauth:tokens:google:b", "2")
        await redis_store.set("oauth:state:x", "3")
        await fake_redis.set("other:oauth:tokens:google:c", "4")

        keys = sorted(await redis_store.keys("oauth:tokens:"))
        assert keys == ["oauth:tokens:google:a", "oauth:tokens:google:b"]

    @pytest.mark.asyncio
    async def test_cleanup_is_noop(self, redis_store) -> None:
        """Test that cleanup reports nothing to evict."""
        assert await redis_store.cleanup() == 0


# --- Components on Redis ---


class TestComponentsOnRedis:
    """State and token storage against the Redis backend."""

    @pytest.mark.asyncio
    async def test_state_round_trip(self, redis_store) -> None:
        """Test creating and consuming a state through Redis."""
        states = StateManager(redis_store, ttl=600)
        created = await states.create("google", "/dashboard")
        assert isinstance(await states.validate_and_consume(created.state), OAuthState)
        assert await states.validate_and_consume(created.state) == InvalidState("not_found")

    @pytest.mark.asyncio
    async def test_vault_round_trip(self, redis_store, fake_redis, engine) -> None:
        """Test that tokens stored through Redis are encrypted at rest."""
        vault = TokenVault(redis_store, engine)
        await vault.store("dropbox", "s1", OAuthTokens(access_token="real-token-value"))

        raw = await fake_redis.get("test:oauth:tokens:dropbox:s1")
        assert raw is not None
        assert "real-token-value" not in raw

        tokens = await vault.get("dropbox", "s1")
        assert tokens is not None
        assert tokens.access_token == "real-token-value"
        assert await vault.list_sessions("dropbox") == ["s1"]
