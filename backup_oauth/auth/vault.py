"""Encrypted token persistence.

Token records are JSON documents under
``oauth:tokens:{provider}:{session_key}``. Access, refresh and ID tokens
are encrypted individually with the EncryptionEngine before anything is
written; type, scope and expiry stay readable for status checks.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import json
import logging
import time

from typing import TYPE_CHECKING

from ..exceptions import DecryptionError
from ..log import fingerprint
from .types import DecryptedTokens, TokenRecord


if TYPE_CHECKING:
    from collections.abc import Callable

    from ..store.base import KeyValueStore
    from .crypto import EncryptionEngine
    from .types import OAuthTokens


logger = logging.getLogger("backup_oauth.auth")

TOKEN_KEY_PREFIX = "oauth:tokens:"


def _token_key(provider: str, session_key: str) -> str:
    return f"{TOKEN_KEY_PREFIX}{provider}:{session_key}"


def _serialize_record(record: TokenRecord) -> str:
    """Serialize a TokenRecord to JSON."""
    return json.dumps(
        {
            "provider": record.provider,
            "session_key": record.session_key,
            "access_token_ciphertext": record.access_token_ciphertext,
            "refresh_token_ciphertext": record.refresh_token_ciphertext,
            "id_token_ciphertext": record.id_token_ciphertext,
            "token_type": record.token_type,
            "scope": record.scope,
            "expires_at": record.expires_at,
            "created_at": record.created_at,
            "updated_at": record.updated_at,
        }
    )


def _deserialize_record(data: str) -> TokenRecord:
    """Deserialize a TokenRecord from JSON."""
    obj = json.loads(data)
    return TokenRecord(
        provider=obj["provider"],
        session_key=obj["session_key"],
        access_token_ciphertext=obj["access_token_ciphertext"],
        refresh_token_ciphertext=obj.get("refresh_token_ciphertext"),
        id_token_ciphertext=obj.get("id_token_ciphertext"),
        token_type=obj.get("token_type", "Bearer"),
        scope=obj.get("scope", ""),
        expires_at=obj.get("expires_at"),
        created_at=obj.get("created_at", time.time()),
        updated_at=obj.get("updated_at", time.time()),
    )


class TokenVault:
    """Stores and retrieves encrypted token records.

    Parameters
    ----------
    store : KeyValueStore
        Backing key-value store.
    engine : EncryptionEngine
        Encrypts every credential field.
    clock : callable, optional
        Returns the current unix time.
    """

    def __init__(
        self,
        store: KeyValueStore,
        engine: EncryptionEngine,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the vault."""
        self._store = store
        self._engine = engine
        self._clock = clock or time.time

    async def store(
        self,
        provider: str,
        session_key: str,
        tokens: OAuthTokens,
        previous_refresh_token: str | None = None,
    ) -> TokenRecord:
        """Encrypt and persist a token set, replacing any previous record.

        If ``tokens`` carries no refresh token, ``previous_refresh_token``
        is kept instead, or failing that the refresh token already on
        record.

        Parameters
        ----------
        provider : str
            Provider identifier.
        session_key : str
            Session/account key.
        tokens : OAuthTokens
            Token set from the provider.
        previous_refresh_token : str, optional
            Refresh token to retain when the provider did not rotate it.

        Returns
        -------
        TokenRecord
            The record as written.
        """
        now = self._clock()
        existing = await self.get_record(provider, session_key)

        refresh_ciphertext: str | None = None
        if tokens.refresh_token:
            refresh_ciphertext = self._engine.encrypt(tokens.refresh_token)
        elif previous_refresh_token:
            refresh_ciphertext = self._engine.encrypt(previous_refresh_token)
        elif existing is not None:
            refresh_ciphertext = existing.refresh_token_ciphertext

        expires_at = now + tokens.expires_in if tokens.expires_in is not None else None
        record = TokenRecord(
            provider=provider,
            session_key=session_key,
            access_token_ciphertext=self._engine.encrypt(tokens.access_token),
            refresh_token_ciphertext=refresh_ciphertext,
            id_token_ciphertext=self._engine.encrypt(tokens.id_token) if tokens.id_token else None,
            token_type=tokens.token_type,
            scope=tokens.scope,
            expires_at=expires_at,
            created_at=existing.created_at if existing is not None else now,
            updated_at=now,
        )
        await self._store.set(_token_key(provider, session_key), _serialize_record(record))
        logger.debug(
            "Stored %s tokens for session %s (refresh_token=%s)",
            provider,
            fingerprint(session_key),
            refresh_ciphertext is not None,
        )
        return record

    async def get_record(self, provider: str, session_key: str) -> TokenRecord | None:
        """Get the encrypted record without decrypting it."""
        raw = await self._store.get(_token_key(provider, session_key))
        if raw is None:
            return None
        try:
            return _deserialize_record(raw)
        except (KeyError, TypeError, ValueError):
            logger.warning(
                "Discarding unreadable %s token record for session %s",
                provider,
                fingerprint(session_key),
            )
            await self._store.delete(_token_key(provider, session_key))
            return None

    async def get(self, provider: str, session_key: str) -> DecryptedTokens | None:
        """Load and decrypt the tokens for a session.

        Parameters
        ----------
        provider : str
            Provider identifier.
        session_key : str
            Session/account key.

        Returns
        -------
        DecryptedTokens or None
            Plaintext tokens, or None if nothing is stored.

        Raises
        ------
        DecryptionError
            If any field fails to decrypt. The record is deleted first,
            since it can never be used again.
        """
        record = await self.get_record(provider, session_key)
        if record is None:
            return None

        try:
            access_token = self._engine.decrypt(record.access_token_ciphertext)
            refresh_token = (
                self._engine.decrypt(record.refresh_token_ciphertext)
                if record.refresh_token_ciphertext
                else None
            )
            id_token = (
                self._engine.decrypt(record.id_token_ciphertext)
                if record.id_token_ciphertext
                else None
            )
        except DecryptionError as exc:
            logger.warning(
                "Deleting undecryptable %s token record for session %s (%s)",
                provider,
                fingerprint(session_key),
                exc.reason,
            )
            await self.delete(provider, session_key)
            raise

        return DecryptedTokens(
            provider=provider,
            session_key=session_key,
            access_token=access_token,
            refresh_token=refresh_token,
            id_token=id_token,
            token_type=record.token_type,
            scope=record.scope,
            expires_at=record.expires_at,
        )

    async def delete(self, provider: str, session_key: str) -> None:
        """Delete the record for a session (no-op if absent)."""
        if await self._store.delete(_token_key(provider, session_key)):
            logger.debug("Deleted %s tokens for session %s", provider, fingerprint(session_key))

    async def list_sessions(self, provider: str) -> list[str]:
        """List session keys holding tokens for ``provider``."""
        prefix = f"{TOKEN_KEY_PREFIX}{provider}:"
        return [key[len(prefix) :] for key in await self._store.keys(prefix)]
