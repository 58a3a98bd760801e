"""Provider authorization URL construction."""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING
from urllib.parse import urlencode

from ..exceptions import ProviderNotConfiguredError
from ..log import strip_query
from .pkce import PKCEChallenge
from .types import AuthorizationRequest


if TYPE_CHECKING:
    from .providers import ProviderConfigRegistry
    from .state import StateManager


logger = logging.getLogger("backup_oauth.auth")


class AuthorizationUrlBuilder:
    """Builds the redirect to a provider's authorization endpoint.

    Parameters
    ----------
    registry : ProviderConfigRegistry
        Provider configurations.
    states : StateManager
        Creates the state record backing each redirect.
    """

    def __init__(self, registry: ProviderConfigRegistry, states: StateManager) -> None:
        """Initialize the builder."""
        self._registry = registry
        self._states = states

    async def build(
        self,
        provider: str,
        redirect_after_auth: str = "/",
        session_key: str = "",
    ) -> AuthorizationRequest:
        """Create a state and the authorization URL that carries it.

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
        AuthorizationRequest
            The URL and its state token.

        Raises
        ------
        UnknownProviderError
            If the provider is unknown.
        ProviderNotConfiguredError
            If the provider has no client credentials.
        """
        config = self._registry.get(provider)
        if not config.is_configured:
            msg = "OAuth provider is not configured"
            raise ProviderNotConfiguredError(msg, provider=config.name)

        record = await self._states.create(config.name, redirect_after_auth, session_key)
        quirks = config.quirks

        params: dict[str, str] = {
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "response_type": "code",
            "state": record.state,
        }
        if config.scopes:
            params["scope"] = " ".join(config.scopes)
        if quirks.use_pkce:
            pkce = PKCEChallenge.from_verifier(record.code_verifier)
            params["code_challenge"] = pkce.challenge
            params["code_challenge_method"] = pkce.method
        if quirks.send_nonce:
            params["nonce"] = record.nonce
        params.update(quirks.authorization_params)

        separator = "&" if "?" in config.authorization_url else "?"
        url = f"{config.authorization_url}{separator}{urlencode(params)}"
        logger.info("Redirecting to %s authorization endpoint %s", config.name, strip_query(url))
        return AuthorizationRequest(url=url, state=record.state)
