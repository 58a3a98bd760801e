"""Wiring of the OAuth core for an application process."""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .auth.authorize import AuthorizationUrlBuilder
from .auth.crypto import EncryptionEngine
from .auth.exchange import TokenExchanger
from .auth.flow import AuthFlowManager
from .auth.lifecycle import TokenLifecycleManager
from .auth.providers import ProviderConfigRegistry
from .auth.routes import create_auth_router, require_valid_token
from .auth.state import StateManager
from .auth.vault import TokenVault
from .config import get_settings
from .store import create_store


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    import httpx

    from fastapi import APIRouter, Request

    from .config import AppSettings
    from .store.base import KeyValueStore


logger = logging.getLogger("backup_oauth")


@dataclass
class OAuthCore:
    """All OAuth components for one process, built from settings."""

    settings: AppSettings
    store: KeyValueStore
    engine: EncryptionEngine
    registry: ProviderConfigRegistry
    exchanger: TokenExchanger
    states: StateManager
    builder: AuthorizationUrlBuilder
    vault: TokenVault
    lifecycle: TokenLifecycleManager
    flow: AuthFlowManager

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings | None = None,
        store: KeyValueStore | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> OAuthCore:
        """Build every component.

        Parameters
        ----------
        settings : AppSettings, optional
            Defaults to ``get_settings()``.
        store : KeyValueStore, optional
            Defaults to a new store for ``settings.auth.store_backend``.
        http_client : httpx.AsyncClient, optional
            Client for provider endpoints (tests pass a mock transport).

        Returns
        -------
        OAuthCore
            The wired components.

        Raises
        ------
        EncryptionKeyError
            If no encryption key is configured in a production-like
            environment.
        """
        settings = settings or get_settings()
        auth = settings.auth

        if store is None:
            store = create_store(
                auth.store_backend, redis_url=auth.redis_url, prefix=auth.key_prefix
            )

        engine = EncryptionEngine.from_settings(settings)
        registry = ProviderConfigRegistry.from_settings(settings)
        registry.validate_all()

        exchanger = TokenExchanger(
            registry, timeout=auth.http_timeout_seconds, http_client=http_client
        )
        states = StateManager(store, ttl=auth.state_ttl_seconds)
        builder = AuthorizationUrlBuilder(registry, states)
        vault = TokenVault(store, engine)
        lifecycle = TokenLifecycleManager(
            vault,
            exchanger,
            registry,
            refresh_buffer=auth.refresh_buffer_seconds,
            timeout=auth.ensure_valid_timeout_seconds,
            validate_on_use=auth.validate_on_use,
        )
        flow = AuthFlowManager(
            registry,
            builder,
            states,
            exchanger,
            vault,
            error_path=auth.error_redirect_path,
        )
        logger.info(
            "OAuth core ready (environment=%s, store=%s, providers=%s)",
            settings.environment,
            auth.store_backend,
            ",".join(registry.available()) or "none",
        )
        return cls(
            settings=settings,
            store=store,
            engine=engine,
            registry=registry,
            exchanger=exchanger,
            states=states,
            builder=builder,
            vault=vault,
            lifecycle=lifecycle,
            flow=flow,
        )

    def router(self) -> APIRouter:
        """Create the ``/auth`` router for these components."""
        return create_auth_router(self.flow, self.lifecycle, self.vault, self.settings.auth)

    def require_valid_token(self, provider: str) -> Callable[[Request], Awaitable[str]]:
        """Dependency yielding a valid access token for ``provider``."""
        return require_valid_token(self.lifecycle, provider, self.settings.auth.session_cookie)

    async def sweep_states(self) -> int:
        """Remove expired authorization states."""
        return await self.states.sweep()

    async def aclose(self) -> None:
        """Release HTTP and store connections."""
        await self.exchanger.aclose()
        await self.store.close()
