"""Unit tests for the provider configuration registry."""

from __future__ import annotations

import logging

import pytest

from backup_oauth.auth.providers import (
    PROVIDER_TABLE,
    ProviderConfigRegistry,
    ProviderQuirks,
    redirect_uri_for,
)
from backup_oauth.config import AppSettings, DropboxCredentials
from backup_oauth.exceptions import ProviderNotConfiguredError, UnknownProviderError


# ── Table ───────────────────────────────────────────────────────────


class TestProviderTable:
    """Tests for the compiled-in provider metadata."""

    def test_known_providers(self) -> None:
        """All four storage providers are present."""
        assert set(PROVIDER_TABLE) == {"dropbox", "google", "github", "onedrive"}

    def test_dropbox_quirks(self) -> None:
        """Dropbox skips PKCE, posts forms and asks for offline access."""
        quirks = PROVIDER_TABLE["dropbox"].quirks
        assert quirks.use_pkce is False
        assert quirks.send_nonce is False
        assert quirks.token_request_encoding == "form"
        assert dict(quirks.authorization_params) == {"token_access_type": "offline"}

    def test_google_offline_consent(self) -> None:
        """Google requests offline access with a consent prompt."""
        params = dict(PROVIDER_TABLE["google"].quirks.authorization_params)
        assert params == {"access_type": "offline", "prompt": "consent"}

    def test_github_json(self) -> None:
        """GitHub token requests are JSON."""
        assert PROVIDER_TABLE["github"].quirks.token_request_encoding == "json"

    def test_onedrive_no_revocation(self) -> None:
        """OneDrive has no revocation endpoint and resends scope on refresh."""
        config = PROVIDER_TABLE["onedrive"]
        assert config.revocation_url is None
        assert config.quirks.revocation_style == "none"
        assert config.quirks.scope_on_refresh is True
        assert "offline_access" in config.scopes

    def test_authorization_params_immutable(self) -> None:
        """Quirk parameter mappings cannot be modified."""
        with pytest.raises(TypeError):
            PROVIDER_TABLE["dropbox"].quirks.authorization_params["x"] = "y"  # type: ignore[index]

    def test_default_quirks(self) -> None:
        """Default quirks describe a standard PKCE provider."""
        quirks = ProviderQuirks()
        assert quirks.use_pkce is True
        assert quirks.token_request_encoding == "form"
        assert dict(quirks.authorization_params) == {}


# ── Registry ────────────────────────────────────────────────────────


class TestProviderConfigRegistry:
    """Tests for ProviderConfigRegistry."""

    def test_credentials_and_redirect_uri(self, registry: ProviderConfigRegistry) -> None:
        """Settings supply credentials and the callback URL."""
        config = registry.get("dropbox")
        assert config.client_id == "dropbox-id"
        assert config.client_secret == "dropbox-secret"
        assert config.redirect_uri == "https://backup.example.com/auth/dropbox/callback"
        assert config.is_configured

    def test_get_case_insensitive(self, registry: ProviderConfigRegistry) -> None:
        """Lookups ignore case."""
        assert registry.get("GitHub").name == "github"

    @pytest.mark.parametrize("name", ["box", "", "icloud"])
    def test_unknown_provider(self, registry: ProviderConfigRegistry, name: str) -> None:
        """Unknown names raise UnknownProviderError."""
        with pytest.raises(UnknownProviderError) as exc_info:
            registry.get(name)
        assert not isinstance(exc_info.value, ProviderNotConfiguredError)

    def test_contains_and_names(self, registry: ProviderConfigRegistry) -> None:
        """Membership and listing."""
        assert "google" in registry
        assert "box" not in registry
        assert sorted(registry.names()) == ["dropbox", "github", "google", "onedrive"]

    def test_secret_not_in_repr(self, registry: ProviderConfigRegistry) -> None:
        """Client secrets are not shown in repr."""
        assert "dropbox-secret" not in repr(registry.get("dropbox"))

    def test_redirect_uri_strips_slash(self) -> None:
        """Trailing slashes on BASE_URL are ignored."""
        assert redirect_uri_for("http://localhost:5000/", "github") == (
            "http://localhost:5000/auth/github/callback"
        )

    def test_default_base_url(self) -> None:
        """BASE_URL defaults to localhost:5000."""
        registry = ProviderConfigRegistry.from_settings(AppSettings())
        assert registry.get("google").redirect_uri == "http://localhost:5000/auth/google/callback"

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """{PROVIDER}_CLIENT_ID/SECRET and BASE_URL come from the environment."""
        monkeypatch.setenv("GITHUB_CLIENT_ID", "env-id")
        monkeypatch.setenv("GITHUB_CLIENT_SECRET", "env-secret")
        monkeypatch.setenv("BASE_URL", "https://dash.example.org")
        registry = ProviderConfigRegistry.from_settings(AppSettings())
        config = registry.get("github")
        assert (config.client_id, config.client_secret) == ("env-id", "env-secret")
        assert config.redirect_uri == "https://dash.example.org/auth/github/callback"
        assert registry.available() == ["github"]


class TestValidateAll:
    """Tests for the advisory configuration check."""

    def test_partial_configuration(self, caplog: pytest.LogCaptureFixture) -> None:
        """Missing fields are reported and logged, never raised."""
        settings = AppSettings(dropbox=DropboxCredentials(client_id="only-id"))
        registry = ProviderConfigRegistry.from_settings(settings)
        with caplog.at_level(logging.INFO, logger="backup_oauth.auth"):
            report = dict(registry.validate_all())
        assert report["dropbox"] == ["client_secret"]
        assert report["google"] == ["client_id", "client_secret"]
        assert "dropbox is not fully configured" in caplog.text
        assert registry.available() == []

    def test_fully_configured(self, registry: ProviderConfigRegistry) -> None:
        """A complete configuration reports nothing missing."""
        assert all(missing == [] for _, missing in registry.validate_all())
        assert sorted(registry.available()) == ["dropbox", "github", "google", "onedrive"]
