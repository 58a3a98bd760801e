"""Authorization flow entry points.

``initiate`` produces the provider redirect; ``handle_callback`` turns
the provider's answer into stored tokens or a machine-readable error
code. Nothing here raises for protocol failures: the HTTP layer only
has to follow ``CallbackResult.redirect_to``.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING
from urllib.parse import urlencode

from ..exceptions import TokenExchangeError
from ..log import fingerprint
from .types import CallbackError, CallbackResult, InvalidState


if TYPE_CHECKING:
    from .authorize import AuthorizationUrlBuilder
    from .exchange import TokenExchanger
    from .providers import ProviderConfigRegistry
    from .state import StateManager
    from .types import AuthorizationRequest
    from .vault import TokenVault


logger = logging.getLogger("backup_oauth.auth")

DEFAULT_ERROR_PATH = "/auth/error"


def safe_redirect_path(value: str | None) -> str:
    """Return ``value`` if it is a same-site relative path, else ``"/"``.

    Rejects absolute URLs, protocol-relative ``//host`` forms, backslash
    tricks and control characters.
    """
    if not value or not value.startswith("/"):
        return "/"
    if value.startswith(("//", "/\\")):
        return "/"
    if any(ord(ch) < 32 or ch == "\\" for ch in value):
        return "/"
    return value


class AuthFlowManager:
    """Coordinates the initiate and callback halves of the flow.

    Parameters
    ----------
    registry : ProviderConfigRegistry
        Provider configurations.
    builder : AuthorizationUrlBuilder
        Builds provider redirects.
    states : StateManager
        Validates callback states.
    exchanger : TokenExchanger
        Exchanges codes for tokens.
    vault : TokenVault
        Stores the tokens.
    error_path : str
        Application path that renders flow errors.
    """

    def __init__(
        self,
        registry: ProviderConfigRegistry,
        builder: AuthorizationUrlBuilder,
        states: StateManager,
        exchanger: TokenExchanger,
        vault: TokenVault,
        error_path: str = DEFAULT_ERROR_PATH,
    ) -> None:
        """Initialize the flow manager."""
        self._registry = registry
        self._builder = builder
        self._states = states
        self._exchanger = exchanger
        self._vault = vault
        self.error_path = error_path

    async def initiate(
        self,
        provider: str,
        redirect_after_auth: str | None = "/",
        session_key: str = "",
    ) -> AuthorizationRequest:
        """Start an authorization attempt.

        Raises
        ------
        UnknownProviderError
            If the provider is unknown.
        ProviderNotConfiguredError
            If the provider has no client credentials.
        """
        return await self._builder.build(
            provider,
            redirect_after_auth=safe_redirect_path(redirect_after_auth),
            session_key=session_key,
        )

    def _failure(self, provider: str | None, error: CallbackError) -> CallbackResult:
        return CallbackResult(
            success=False,
            redirect_to=f"{self.error_path}?{urlencode({'error': error.value})}",
            provider=provider,
            error=error,
        )

    async def handle_callback(
        self,
        provider: str,
        code: str | None,
        state: str | None,
        error: str | None = None,
    ) -> CallbackResult:
        """Complete an authorization attempt.

        Parameters
        ----------
        provider : str
            Provider named in the callback path.
        code : str or None
            Authorization code.
        state : str or None
            State token.
        error : str or None
            OAuth2 ``error`` parameter, when the provider reported one.

        Returns
        -------
        CallbackResult
            Success with the post-auth path, or failure with an error
            code and the error route.
        """
        name = provider.lower()

        if error:
            # Burn the state so the same attempt cannot be completed later
            if state:
                await self._states.validate_and_consume(state)
            logger.warning("Provider %s returned an authorization error: %s", name, error)
            return self._failure(name, CallbackError.PROVIDER_ERROR)

        if not code or not state:
            logger.warning("Callback for %s is missing code or state", name)
            return self._failure(name, CallbackError.MISSING_PARAMETERS)

        result = await self._states.validate_and_consume(state)
        if isinstance(result, InvalidState):
            if result.reason == "expired":
                return self._failure(name, CallbackError.EXPIRED_STATE)
            return self._failure(name, CallbackError.INVALID_STATE)

        if result.provider != name:
            logger.warning(
                "Callback for %s presented a state issued for %s", name, result.provider
            )
            return self._failure(name, CallbackError.INVALID_STATE)

        try:
            tokens = await self._exchanger.exchange(name, code, result.code_verifier)
        except TokenExchangeError as exc:
            logger.warning(
                "Code exchange for %s failed (%s, error=%s)",
                name,
                type(exc).__name__,
                exc.error_code,
            )
            return self._failure(name, CallbackError.EXCHANGE_FAILED)

        try:
            await self._vault.store(name, result.session_key, tokens)
        except Exception:
            logger.exception(
                "Storing %s tokens for session %s failed", name, fingerprint(result.session_key)
            )
            return self._failure(name, CallbackError.TOKEN_STORAGE_FAILED)

        logger.info("Connected %s for session %s", name, fingerprint(result.session_key))
        return CallbackResult(success=True, redirect_to=result.redirect_after_auth, provider=name)
