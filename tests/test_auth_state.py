"""Unit tests for single-use authorization states."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio
import json

from typing import TYPE_CHECKING

import pytest

from backup_oauth.auth.state import STATE_KEY_PREFIX, StateManager
from backup_oauth.auth.types import InvalidState, OAuthState
from backup_oauth.exceptions import InvalidStateError


if TYPE_CHECKING:
    from conftest import FakeClock

    from backup_oauth.store import MemoryKeyValueStore


class TestCreate:
    """Tests for StateManager.create."""

    @pytest.mark.asyncio
    async def test_create_persists(self, states: StateManager, store: MemoryKeyValueStore) -> None:
        """A created state is stored under oauth:state:{state}."""
        record = await states.create("google", "/dashboard", session_key="sess-1")
        raw = await store.get(f"{STATE_KEY_PREFIX}{record.state}")
        assert raw is not None
        data = json.loads(raw)
        assert data["provider"] == "google"
        assert data["redirect_after_auth"] == "/dashboard"
        assert data["session_key"] == "sess-1"
        assert data["code_verifier"] == record.code_verifier

    @pytest.mark.asyncio
    async def test_values_are_random(self, states: StateManager) -> None:
        """States, verifiers and nonces are unique and long."""
        records = [await states.create("github") for _ in range(50)]
        assert len({r.state for r in records}) == 50
        assert len({r.code_verifier for r in records}) == 50
        assert len({r.nonce for r in records}) == 50
        assert all(len(r.state) >= 43 for r in records)
        assert all(len(r.code_verifier) >= 43 for r in records)

    @pytest.mark.asyncio
    async def test_created_at_uses_clock(self, states: StateManager, clock: FakeClock) -> None:
        """created_at comes from the injected clock."""
        record = await states.create("github")
        assert record.created_at == clock.now


class TestValidateAndConsume:
    """Tests for StateManager.validate_and_consume."""

    @pytest.mark.asyncio
    async def test_round_trip(self, states: StateManager) -> None:
        """A fresh state validates and returns the stored record."""
        created = await states.create("onedrive", "/settings", session_key="s")
        result = await states.validate_and_consume(created.state)
        assert isinstance(result, OAuthState)
        assert result == created

    @pytest.mark.asyncio
    async def test_single_use(self, states: StateManager) -> None:
        """A second validation of the same state is not_found."""
        created = await states.create("dropbox")
        assert isinstance(await states.validate_and_consume(created.state), OAuthState)
        assert await states.validate_and_consume(created.state) == InvalidState("not_found")

    @pytest.mark.asyncio
    async def test_unknown_state(self, states: StateManager) -> None:
        """A state never issued is not_found."""
        assert await states.validate_and_consume("never-issued") == InvalidState("not_found")
        assert await states.validate_and_consume("") == InvalidState("not_found")

    @pytest.mark.asyncio
    async def test_expired_state(self, states: StateManager, clock: FakeClock) -> None:
        """A state older than 10 minutes is rejected even if never consumed."""
        created = await states.create("google")
        clock.advance(601)
        assert await states.validate_and_consume(created.state) == InvalidState("expired")
        assert await states.validate_and_consume(created.state) == InvalidState("not_found")

    @pytest.mark.asyncio
    async def test_just_inside_ttl(self, states: StateManager, clock: FakeClock) -> None:
        """A state exactly at the TTL boundary is still valid."""
        created = await states.create("google")
        clock.advance(600)
        assert isinstance(await states.validate_and_consume(created.state), OAuthState)

    @pytest.mark.asyncio
    async def test_long_expired_state(self, states: StateManager, clock: FakeClock) -> None:
        """Once the store has evicted it, an old state is not_found."""
        created = await states.create("google")
        clock.advance(3600)
        assert await states.validate_and_consume(created.state) == InvalidState("not_found")

    @pytest.mark.asyncio
    async def test_concurrent_replay(self, states: StateManager) -> None:
        """Concurrent validations of one state succeed exactly once."""
        created = await states.create("github")
        results = await asyncio.gather(
            *(states.validate_and_consume(created.state) for _ in range(10))
        )
        assert sum(isinstance(r, OAuthState) for r in results) == 1

    @pytest.mark.asyncio
    async def test_corrupt_record(self, states: StateManager, store: MemoryKeyValueStore) -> None:
        """An unreadable record is treated as not_found."""
        await store.set(f"{STATE_KEY_PREFIX}bad", "{not json")
        assert await states.validate_and_consume("bad") == InvalidState("not_found")

    @pytest.mark.asyncio
    async def test_consume_raises(self, states: StateManager, clock: FakeClock) -> None:
        """consume() raises InvalidStateError with the reason."""
        created = await states.create("google")
        clock.advance(700)
        with pytest.raises(InvalidStateError) as exc_info:
            await states.consume(created.state)
        assert exc_info.value.reason == "expired"


class TestSweep:
    """Tests for StateManager.sweep."""

    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired(
        self, states: StateManager, store: MemoryKeyValueStore, clock: FakeClock
    ) -> None:
        """Expired states are removed; fresh ones remain."""
        old = await states.create("google")
        clock.advance(601)
        fresh = await states.create("google")

        removed = await states.sweep()

        assert removed == 1
        assert await store.get(f"{STATE_KEY_PREFIX}{old.state}") is None
        assert isinstance(await states.validate_and_consume(fresh.state), OAuthState)

    @pytest.mark.asyncio
    async def test_sweep_empty(self, states: StateManager) -> None:
        """Sweeping nothing removes nothing."""
        assert await states.sweep() == 0
