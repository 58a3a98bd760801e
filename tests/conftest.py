"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import json
import os

from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs

import httpx
import pytest

from backup_oauth.auth.authorize import AuthorizationUrlBuilder
from backup_oauth.auth.crypto import EncryptionEngine
from backup_oauth.auth.exchange import TokenExchanger
from backup_oauth.auth.flow import AuthFlowManager
from backup_oauth.auth.lifecycle import TokenLifecycleManager
from backup_oauth.auth.providers import ProviderConfigRegistry
from backup_oauth.auth.state import StateManager
from backup_oauth.auth.vault import TokenVault
from backup_oauth.config import (
    AppSettings,
    AuthSettings,
    DropboxCredentials,
    GitHubCredentials,
    GoogleCredentials,
    OneDriveCredentials,
    clear_settings_cache,
)
from backup_oauth.store import MemoryKeyValueStore, reset_store


if TYPE_CHECKING:
    from collections.abc import Iterator


TEST_KEY_HEX = "8f" * 32

_ENV_VARS = (
    "ENCRYPTION_KEY",
    "ENVIRONMENT",
    "BASE_URL",
    "BACKUP_OAUTH_CONFIG_FILE",
    *(
        f"{p}_CLIENT_{f}"
        for p in ("DROPBOX", "GOOGLE", "GITHUB", "ONEDRIVE")
        for f in ("ID", "SECRET")
    ),
)


# ── Environment isolation ───────────────────────────────────────────


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Strip configuration env vars and reset cached singletons."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("BACKUP_OAUTH__"):
            monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    reset_store()
    yield
    clear_settings_cache()
    reset_store()


# ── Simulated time ──────────────────────────────────────────────────


class FakeClock:
    """Manually advanced clock returning unix seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    """Create a simulated clock."""
    return FakeClock()


# ── Fake provider endpoints ─────────────────────────────────────────


class FakeProviderServer:
    """httpx MockTransport handler standing in for every provider.

    Token responses are served from ``token_responses`` in order; when the
    queue is empty a default successful response is returned.
    """

    DEFAULT_TOKEN_BODY: dict[str, Any] = {  # noqa: RUF012
        "access_token": "real-token-value",
        "refresh_token": "refresh-token-1",
        "expires_in": 3600,
        "token_type": "bearer",
    }

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_responses: list[httpx.Response | Exception] = []
        self.revoke_status = 200
        self.validate_status = 200

    @staticmethod
    def kind(request: httpx.Request) -> str:
        path = request.url.path
        if "revoke" in path or path.startswith("/applications/"):
            return "revoke"
        if path in ("/tokeninfo", "/2/check/user", "/user", "/v1.0/me"):
            return "validate"
        return "token"

    def queue_token(self, status_code: int = 200, **body: Any) -> None:
        self.token_responses.append(httpx.Response(status_code, json=body))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        kind = self.kind(request)
        if kind == "revoke":
            return httpx.Response(self.revoke_status)
        if kind == "validate":
            return httpx.Response(self.validate_status, json={})
        if self.token_responses:
            nxt = self.token_responses.pop(0)
            if isinstance(nxt, Exception):
                raise nxt
            return nxt
        return httpx.Response(200, json=self.DEFAULT_TOKEN_BODY)

    def calls(self, kind: str) -> list[httpx.Request]:
        return [r for r in self.requests if self.kind(r) == kind]

    @staticmethod
    def body(request: httpx.Request) -> dict[str, Any]:
        content_type = request.headers.get("content-type", "")
        raw = request.content.decode("utf-8")
        if content_type.startswith("application/json"):
            return json.loads(raw)  # type: ignore[no-any-return]
        return {k: v[0] for k, v in parse_qs(raw).items()}


@pytest.fixture()
def provider_server() -> FakeProviderServer:
    """Create a fake provider endpoint server."""
    return FakeProviderServer()


@pytest.fixture()
def http_client(provider_server: FakeProviderServer) -> httpx.AsyncClient:
    """Create an AsyncClient routed to the fake provider server."""
    return httpx.AsyncClient(transport=httpx.MockTransport(provider_server.handler))


# ── Core components ─────────────────────────────────────────────────


@pytest.fixture()
def settings() -> AppSettings:
    """Create settings with every provider configured."""
    return AppSettings(
        encryption_key=TEST_KEY_HEX,
        base_url="https://backup.example.com",
        environment="test",
        auth=AuthSettings(),
        dropbox=DropboxCredentials(client_id="dropbox-id", client_secret="dropbox-secret"),
        google=GoogleCredentials(client_id="google-id", client_secret="google-secret"),
        github=GitHubCredentials(client_id="github-id", client_secret="github-secret"),
        onedrive=OneDriveCredentials(client_id="onedrive-id", client_secret="onedrive-secret"),
    )


@pytest.fixture()
def engine() -> EncryptionEngine:
    """Create an EncryptionEngine with a fixed test key."""
    return EncryptionEngine.from_secret(TEST_KEY_HEX)


@pytest.fixture()
def registry(settings: AppSettings) -> ProviderConfigRegistry:
    """Create a registry with all providers configured."""
    return ProviderConfigRegistry.from_settings(settings)


@pytest.fixture()
def store(clock: FakeClock) -> MemoryKeyValueStore:
    """Create a MemoryKeyValueStore on the simulated clock."""
    return MemoryKeyValueStore(clock=clock)


@pytest.fixture()
def states(store: MemoryKeyValueStore, clock: FakeClock) -> StateManager:
    """Create a StateManager."""
    return StateManager(store, ttl=600, clock=clock)


@pytest.fixture()
def exchanger(registry: ProviderConfigRegistry, http_client: httpx.AsyncClient) -> TokenExchanger:
    """Create a TokenExchanger talking to the fake provider server."""
    return TokenExchanger(registry, timeout=5.0, http_client=http_client)


@pytest.fixture()
def vault(store: MemoryKeyValueStore, engine: EncryptionEngine, clock: FakeClock) -> TokenVault:
    """Create a TokenVault."""
    return TokenVault(store, engine, clock=clock)


@pytest.fixture()
def lifecycle(
    vault: TokenVault,
    exchanger: TokenExchanger,
    registry: ProviderConfigRegistry,
    clock: FakeClock,
) -> TokenLifecycleManager:
    """Create a TokenLifecycleManager with the default 300 s buffer."""
    return TokenLifecycleManager(
        vault, exchanger, registry, refresh_buffer=300, timeout=5.0, clock=clock
    )


@pytest.fixture()
def builder(registry: ProviderConfigRegistry, states: StateManager) -> AuthorizationUrlBuilder:
    """Create an AuthorizationUrlBuilder."""
    return AuthorizationUrlBuilder(registry, states)


@pytest.fixture()
def flow(
    registry: ProviderConfigRegistry,
    builder: AuthorizationUrlBuilder,
    states: StateManager,
    exchanger: TokenExchanger,
    vault: TokenVault,
) -> AuthFlowManager:
    """Create an AuthFlowManager."""
    return AuthFlowManager(registry, builder, states, exchanger, vault, error_path="/auth/error")
