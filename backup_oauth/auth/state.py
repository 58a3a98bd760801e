"""Single-use authorization state records.

Each call to ``/auth/{provider}`` creates one :class:`OAuthState` holding
the CSRF token, the PKCE verifier and where to resume afterwards. The
callback consumes it exactly once.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import json
import logging
import secrets
import time

from dataclasses import asdict
from typing import TYPE_CHECKING

from ..exceptions import InvalidStateError
from .pkce import generate_verifier
from .types import InvalidState, OAuthState


if TYPE_CHECKING:
    from collections.abc import Callable

    from ..store.base import KeyValueStore


logger = logging.getLogger("backup_oauth.auth")

STATE_KEY_PREFIX = "oauth:state:"
DEFAULT_STATE_TTL = 600.0

# Records outlive the TTL in the store so validation can tell an expired
# state apart from one that never existed.
_STORE_GRACE_SECONDS = 60.0


def _state_key(state: str) -> str:
    return f"{STATE_KEY_PREFIX}{state}"


class StateManager:
    """Creates and single-use-validates authorization states.

    Parameters
    ----------
    store : KeyValueStore
        Where pending states are kept.
    ttl : float
        Seconds a state stays valid (default 600).
    clock : callable, optional
        Returns the current unix time.
    """

    def __init__(
        self,
        store: KeyValueStore,
        ttl: float = DEFAULT_STATE_TTL,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the state manager."""
        self._store = store
        self.ttl = ttl
        self._clock = clock or time.time

    async def create(
        self,
        provider: str,
        redirect_after_auth: str = "/",
        session_key: str = "",
    ) -> OAuthState:
        """Create and persist a new state.

        Parameters
        ----------
        provider : str
            Provider identifier.
        redirect_after_auth : str
            Path to resume after a successful callback.
        session_key : str
            Session the resulting tokens will be bound to.

        Returns
        -------
        OAuthState
            The persisted record.
        """
        record = OAuthState(
            state=secrets.token_urlsafe(32),
            code_verifier=generate_verifier(),
            provider=provider,
            redirect_after_auth=redirect_after_auth,
            nonce=secrets.token_urlsafe(16),
            session_key=session_key,
            created_at=self._clock(),
        )
        await self._store.set(
            _state_key(record.state),
            json.dumps(asdict(record)),
            ttl=self.ttl + _STORE_GRACE_SECONDS,
        )
        logger.debug("Created OAuth state for provider %s", provider)
        return record

    def _is_expired(self, record: OAuthState) -> bool:
        return self._clock() - record.created_at > self.ttl

    async def validate_and_consume(self, state: str) -> OAuthState | InvalidState:
        """Look up and delete a state.

        The record is removed on every path, success included, so a
        callback URL cannot be replayed.

        Parameters
        ----------
        state : str
            The ``state`` query parameter from the callback.

        Returns
        -------
        OAuthState or InvalidState
            The record, or ``InvalidState("not_found")`` /
            ``InvalidState("expired")``.
        """
        if not state:
            return InvalidState("not_found")

        raw = await self._store.pop(_state_key(state))
        if raw is None:
            logger.warning("OAuth state not found (unknown, consumed or evicted)")
            return InvalidState("not_found")

        try:
            record = OAuthState(**json.loads(raw))
        except (TypeError, ValueError):
            logger.warning("Discarding unreadable OAuth state record")
            return InvalidState("not_found")

        if self._is_expired(record):
            logger.warning("OAuth state expired for provider %s", record.provider)
            return InvalidState("expired")

        return record

    async def consume(self, state: str) -> OAuthState:
        """Like :meth:`validate_and_consume` but raise on failure.

        Raises
        ------
        InvalidStateError
            If the state is unknown, consumed or expired.
        """
        result = await self.validate_and_consume(state)
        if isinstance(result, InvalidState):
            msg = "Invalid OAuth state"
            raise InvalidStateError(msg, reason=result.reason)
        return result

    async def sweep(self) -> int:
        """Delete states older than the TTL.

        Returns
        -------
        int
            Number of records removed.
        """
        removed = await self._store.cleanup()
        for key in await self._store.keys(STATE_KEY_PREFIX):
            raw = await self._store.get(key)
            if raw is None:
                continue
            try:
                created_at = float(json.loads(raw)["created_at"])
            except (KeyError, TypeError, ValueError):
                created_at = 0.0
            if self._clock() - created_at > self.ttl and await self._store.delete(key):
                removed += 1
        if removed:
            logger.info("Swept %d expired OAuth state record(s)", removed)
        return removed
