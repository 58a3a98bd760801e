"""Integration tests for OAuthCore wiring."""

from __future__ import annotations

import asyncio
import logging

from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlparse

import pytest

from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from backup_oauth import OAuthCore, __version__
from backup_oauth.auth.routes import add_exception_handlers
from backup_oauth.config import AppSettings, AuthSettings
from backup_oauth.exceptions import EncryptionKeyError
from backup_oauth.store import MemoryKeyValueStore


if TYPE_CHECKING:
    import httpx

    from conftest import FakeProviderServer


def test_version() -> None:
    """The package exposes its version."""
    assert __version__ == "0.1.0"


class TestFromSettings:
    """Tests for OAuthCore.from_settings."""

    def test_wires_components(self, settings: AppSettings, http_client: httpx.AsyncClient) -> None:
        """Components share one store and pick up tuning from settings."""
        settings = settings.model_copy(
            update={"auth": AuthSettings(refresh_buffer_seconds=60, state_ttl_seconds=120)}
        )
        store = MemoryKeyValueStore()
        core = OAuthCore.from_settings(settings, store=store, http_client=http_client)

        assert core.lifecycle.refresh_buffer == 60
        assert core.states.ttl == 120
        assert core.registry.available() == ["dropbox", "google", "github", "onedrive"]

    def test_default_store_from_settings(self, settings: AppSettings) -> None:
        """Without an explicit store the configured backend is created."""
        core = OAuthCore.from_settings(settings)
        assert isinstance(core.store, MemoryKeyValueStore)

    def test_production_requires_key(self) -> None:
        """A production environment refuses to start without ENCRYPTION_KEY."""
        with pytest.raises(EncryptionKeyError):
            OAuthCore.from_settings(AppSettings(environment="production"))

    def test_development_ephemeral_key(self, caplog: pytest.LogCaptureFixture) -> None:
        """Development starts with an ephemeral key and a warning."""
        with caplog.at_level(logging.WARNING, logger="backup_oauth"):
            core = OAuthCore.from_settings(AppSettings())
        assert "ephemeral key" in caplog.text
        assert core.registry.available() == []

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """With no settings given, the environment is used."""
        monkeypatch.setenv("ENCRYPTION_KEY", "8f" * 32)
        monkeypatch.setenv("GITHUB_CLIENT_ID", "gh-id")
        monkeypatch.setenv("GITHUB_CLIENT_SECRET", "gh-secret")
        core = OAuthCore.from_settings()
        assert core.registry.available() == ["github"]


class TestMountedApp:
    """End-to-end tests through a FastAPI app built from OAuthCore."""

    @pytest.fixture()
    def core(self, settings: AppSettings, http_client: httpx.AsyncClient) -> OAuthCore:
        """Create an OAuthCore talking to the fake provider server."""
        store = MemoryKeyValueStore()
        return OAuthCore.from_settings(settings, store=store, http_client=http_client)

    @pytest.fixture()
    def client(self, core: OAuthCore) -> TestClient:
        """Create an app with the auth router and a protected backup route."""
        app = FastAPI()
        add_exception_handlers(app)
        app.include_router(core.router())

        @app.post("/backups/onedrive")
        async def run_backup(token: str = Depends(core.require_valid_token("onedrive"))) -> dict:
            return {"ok": bool(token)}

        return TestClient(app, follow_redirects=False)

    def test_connect_then_use(
        self, client: TestClient, provider_server: FakeProviderServer
    ) -> None:
        """A connected session can call protected routes; disconnect ends it."""
        assert client.post("/backups/onedrive").status_code == 401

        initiate = client.get("/auth/onedrive", params={"redirect": "/files"})
        location = urlparse(initiate.headers["location"])
        assert location.netloc == "login.microsoftonline.com"
        state = parse_qs(location.query)["state"][0]

        callback = client.get("/auth/onedrive/callback", params={"code": "c", "state": state})
        assert callback.headers["location"] == "/files"

        assert client.post("/backups/onedrive").json() == {"ok": True}

        body = client.post("/auth/onedrive/disconnect").json()
        assert body == {"success": True, "remote_revoked": False, "partial": False}
        assert provider_server.calls("revoke") == []

        resp = client.post("/backups/onedrive")
        assert resp.status_code == 401
        assert resp.json()["error"] == "authentication_required"

    def test_sweep_and_close(self, core: OAuthCore) -> None:
        """Sweeping states and closing the core are safe to call."""

        async def run() -> int:
            await core.builder.build("google")
            removed = await core.sweep_states()
            await core.aclose()
            return removed

        assert asyncio.run(run()) == 0
