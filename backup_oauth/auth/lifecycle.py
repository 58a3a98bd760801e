"""Token lifecycle: expiry checks, single-flight refresh and revocation.

Every protected call asks :meth:`TokenLifecycleManager.ensure_valid` for
an access token. Tokens close to expiry are refreshed first, and
concurrent callers for the same (provider, session) share one refresh
because most providers invalidate the previous refresh token on
rotation.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import time

from typing import TYPE_CHECKING

from ..exceptions import (
    AuthRequiredError,
    DecryptionError,
    PermanentExchangeError,
    TransientExchangeError,
)
from ..log import fingerprint
from .types import RevocationResult, TokenState


if TYPE_CHECKING:
    from collections.abc import Callable

    from .exchange import TokenExchanger
    from .providers import ProviderConfigRegistry
    from .types import DecryptedTokens
    from .vault import TokenVault


logger = logging.getLogger("backup_oauth.auth")

DEFAULT_REFRESH_BUFFER = 300.0
DEFAULT_ENSURE_VALID_TIMEOUT = 30.0


class TokenLifecycleManager:
    """Hands out valid access tokens, refreshing and revoking as needed.

    Parameters
    ----------
    vault : TokenVault
        Encrypted token storage.
    exchanger : TokenExchanger
        Provider token endpoint client.
    registry : ProviderConfigRegistry
        Provider configurations.
    refresh_buffer : float
        Refresh when fewer than this many seconds of validity remain.
    timeout : float
        Upper bound in seconds for one :meth:`ensure_valid` call.
    validate_on_use : bool
        Check valid tokens against the provider before returning them.
    clock : callable, optional
        Returns the current unix time.
    """

    def __init__(
        self,
        vault: TokenVault,
        exchanger: TokenExchanger,
        registry: ProviderConfigRegistry,
        refresh_buffer: float = DEFAULT_REFRESH_BUFFER,
        timeout: float = DEFAULT_ENSURE_VALID_TIMEOUT,
        validate_on_use: bool = False,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the lifecycle manager."""
        self._vault = vault
        self._exchanger = exchanger
        self._registry = registry
        self.refresh_buffer = refresh_buffer
        self.timeout = timeout
        self.validate_on_use = validate_on_use
        self._clock = clock or time.time

        self._inflight: dict[tuple[str, str], asyncio.Task[str]] = {}
        self._inflight_lock = asyncio.Lock()
        # Sessions with a revoke in progress; new refreshes are refused
        self._revoking: dict[tuple[str, str], int] = {}

    # ── State ─────────────────────────────────────────────────────────

    def _classify(self, expires_at: float | None, has_refresh_token: bool) -> TokenState:
        now = self._clock()
        if expires_at is None or now + self.refresh_buffer < expires_at:
            return TokenState.VALID
        if now < expires_at:
            return TokenState.EXPIRING_SOON
        if not has_refresh_token:
            return TokenState.DEAD
        return TokenState.EXPIRED

    async def token_state(self, provider: str, session_key: str) -> TokenState:
        """Report the lifecycle state without decrypting anything.

        Parameters
        ----------
        provider : str
            Provider identifier.
        session_key : str
            Session/account key.

        Returns
        -------
        TokenState
            ``ABSENT`` when nothing is stored, ``DEAD`` when the token
            has expired and there is no refresh token. A token inside
            the refresh buffer stays ``EXPIRING_SOON`` either way.
        """
        name = self._registry.get(provider).name
        record = await self._vault.get_record(name, session_key)
        if record is None:
            return TokenState.ABSENT
        return self._classify(record.expires_at, record.refresh_token_ciphertext is not None)

    async def _load(self, provider: str, session_key: str) -> DecryptedTokens:
        try:
            tokens = await self._vault.get(provider, session_key)
        except DecryptionError as exc:
            msg = "Stored credentials could not be read"
            raise AuthRequiredError(msg, provider=provider, reason="invalid") from exc
        if tokens is None:
            msg = "No credentials stored for provider"
            raise AuthRequiredError(msg, provider=provider, reason="required")
        return tokens

    # ── Access ────────────────────────────────────────────────────────

    async def ensure_valid(self, provider: str, session_key: str) -> str:
        """Return a usable access token, refreshing it first if needed.

        The returned plaintext is meant for the current call only.

        Parameters
        ----------
        provider : str
            Provider identifier.
        session_key : str
            Session/account key.

        Returns
        -------
        str
            The access token.

        Raises
        ------
        AuthRequiredError
            ``reason="required"`` when nothing is stored, ``"expired"``
            when the refresh token is missing or rejected, ``"invalid"``
            when the stored token is unreadable or rejected.
        TransientExchangeError
            When the provider is unreachable or the call timed out. The
            stored record is left in place.
        """
        name = self._registry.get(provider).name
        try:
            return await asyncio.wait_for(self._ensure_valid(name, session_key), self.timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(
                "ensure_valid for %s session %s timed out", name, fingerprint(session_key)
            )
            msg = "Timed out obtaining a valid access token"
            raise TransientExchangeError(msg, provider=name, error_code="timeout") from exc

    async def _ensure_valid(self, provider: str, session_key: str) -> str:
        tokens = await self._load(provider, session_key)
        state = self._classify(tokens.expires_at, tokens.refresh_token is not None)

        # Without a refresh token the current one is used until it expires
        usable = state is TokenState.EXPIRING_SOON and tokens.refresh_token is None
        if state is TokenState.VALID or usable:
            if self.validate_on_use and not await self._exchanger.validate_access_token(
                provider, tokens.access_token
            ):
                await self._vault.delete(provider, session_key)
                msg = "Stored access token was rejected by the provider"
                raise AuthRequiredError(msg, provider=provider, reason="invalid")
            return tokens.access_token

        logger.debug(
            "%s token for session %s is %s", provider, fingerprint(session_key), state.value
        )
        return await self._single_flight(provider, session_key, force=False)

    async def refresh(self, provider: str, session_key: str) -> str:
        """Refresh now, even if the current token is still valid.

        Joins a refresh already in flight for the same session.

        Returns
        -------
        str
            The new access token.
        """
        name = self._registry.get(provider).name
        return await self._single_flight(name, session_key, force=True)

    async def _single_flight(self, provider: str, session_key: str, *, force: bool) -> str:
        key = (provider, session_key)
        async with self._inflight_lock:
            if key in self._revoking:
                msg = "Session is being disconnected"
                raise AuthRequiredError(msg, provider=provider, reason="required")
            task = self._inflight.get(key)
            if task is None:
                task = asyncio.create_task(self._do_refresh(provider, session_key, force=force))
                self._inflight[key] = task
                task.add_done_callback(lambda t: self._forget(key, t))
            else:
                logger.debug(
                    "Joining in-flight %s refresh for session %s",
                    provider,
                    fingerprint(session_key),
                )
        # Shielded so a cancelled waiter does not cancel the shared refresh
        return await asyncio.shield(task)

    def _forget(self, key: tuple[str, str], task: asyncio.Task[str]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            task.exception()

    async def _do_refresh(self, provider: str, session_key: str, *, force: bool) -> str:
        tokens = await self._load(provider, session_key)

        if not force and self._classify(tokens.expires_at, True) is TokenState.VALID:
            return tokens.access_token

        if not tokens.refresh_token:
            await self._vault.delete(provider, session_key)
            logger.info(
                "%s session %s has no refresh token; re-authentication required",
                provider,
                fingerprint(session_key),
            )
            msg = "Access token expired and no refresh token is available"
            raise AuthRequiredError(msg, provider=provider, reason="expired")

        try:
            new_tokens = await self._exchanger.refresh(provider, tokens.refresh_token)
        except PermanentExchangeError as exc:
            await self._vault.delete(provider, session_key)
            logger.warning(
                "Refresh token for %s session %s rejected (error=%s); credentials removed",
                provider,
                fingerprint(session_key),
                exc.error_code,
            )
            msg = "Refresh token is no longer valid"
            raise AuthRequiredError(msg, provider=provider, reason="expired") from exc

        await self._vault.store(
            provider,
            session_key,
            new_tokens,
            previous_refresh_token=tokens.refresh_token,
        )
        return new_tokens.access_token

    # ── Revocation ────────────────────────────────────────────────────

    async def revoke(self, provider: str, session_key: str) -> RevocationResult:
        """Revoke remotely (best effort) and always delete local tokens.

        A refresh already running for the session is allowed to finish
        first, so the refresh token it rotates in is the one revoked.
        Refreshes requested while the revoke runs fail with
        :class:`AuthRequiredError`.

        Parameters
        ----------
        provider : str
            Provider identifier.
        session_key : str
            Session/account key.

        Returns
        -------
        RevocationResult
            ``partial`` is True when the provider may still honor the
            token.
        """
        name = self._registry.get(provider).name
        key = (name, session_key)
        async with self._inflight_lock:
            self._revoking[key] = self._revoking.get(key, 0) + 1
            task = self._inflight.get(key)
        try:
            if task is not None:
                # Outcome is delivered to the refresh's own callers
                await asyncio.wait({task})
            try:
                tokens = await self._vault.get(name, session_key)
            except DecryptionError:
                tokens = None
            if tokens is None:
                return RevocationResult(remote_ok=True, attempted=False)
            return await self._exchanger.revoke(name, tokens.access_token, tokens.refresh_token)
        finally:
            await self._vault.delete(name, session_key)
            self._revoking[key] -= 1
            if not self._revoking[key]:
                del self._revoking[key]
            logger.info("Disconnected %s for session %s", name, fingerprint(session_key))
