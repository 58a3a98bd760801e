"""Configuration system for backup-oauth using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.backup_oauth] section (project-level)
3. ./backup_oauth.toml (project-level, explicit)
4. Environment variables (highest priority)

Provider credentials and the encryption key are read from the environment
only: ``{PROVIDER}_CLIENT_ID``, ``{PROVIDER}_CLIENT_SECRET`` and
``ENCRYPTION_KEY``. Flow tuning lives under the ``BACKUP_OAUTH__`` prefix,
e.g. ``BACKUP_OAUTH__STATE_TTL_SECONDS=600``.
"""

from __future__ import annotations

import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Literal

from pydantic import Field
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib  # type: ignore[import-not-found]
    except ImportError:
        tomllib = None


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    explicit = Path("backup_oauth.toml")
    if explicit.exists():
        files.append(explicit)

    env_config = os.environ.get("BACKUP_OAUTH_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    if tomllib is None:
        return {}

    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError):
            continue

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("backup_oauth", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class _TomlSettingsSource(PydanticBaseSettingsSource):
    """Settings source reading one section of the merged TOML config.

    Sits below environment variables in precedence. Nested tables are
    skipped; nested settings classes read their own section.
    """

    def __init__(self, settings_cls: type[BaseSettings], section: str | None) -> None:
        super().__init__(settings_cls)
        data = _load_toml_config()
        if section:
            data = data.get(section, {})
        self._data = {
            k: v
            for k, v in data.items()
            if k in settings_cls.model_fields and not isinstance(v, dict)
        }

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return self._data.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return dict(self._data)


class _LayeredSettings(BaseSettings):
    """BaseSettings with the TOML layer inserted under the environment."""

    _toml_section: ClassVar[str | None] = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            _TomlSettingsSource(settings_cls, cls._toml_section),
            file_secret_settings,
        )


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {
    "client_secret",
    "encryption_key",
    "redis_url",
}

_REDACTED = "********"

#: Environments in which a missing ENCRYPTION_KEY is fatal.
PRODUCTION_ENVIRONMENTS: frozenset[str] = frozenset({"production", "prod", "staging"})


class AuthSettings(_LayeredSettings):
    """OAuth flow and token lifecycle tuning.

    Environment prefix: BACKUP_OAUTH__
    Example: BACKUP_OAUTH__REFRESH_BUFFER_SECONDS=300

    TOML section: [tool.backup_oauth.auth]
    """

    model_config = SettingsConfigDict(
        env_prefix="BACKUP_OAUTH__",
        extra="ignore",
    )
    _toml_section: ClassVar[str | None] = "auth"

    state_ttl_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Maximum age of a pending authorization state",
    )
    refresh_buffer_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Refresh access tokens this many seconds before they expire",
    )
    http_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Timeout for every call to a provider endpoint",
    )
    ensure_valid_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound on a single ensure_valid call, refresh included",
    )
    validate_on_use: bool = Field(
        default=False,
        description="Check access tokens against the provider validation endpoint",
    )
    store_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Key-value store for states and token records",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (redis backend only)",
    )
    key_prefix: str = Field(
        default="backup_oauth",
        description="Namespace prefix for store keys",
    )
    session_cookie: str = Field(
        default="backup_oauth_session",
        description="Cookie holding the session key the tokens are bound to",
    )
    error_redirect_path: str = Field(
        default="/auth/error",
        description="Application route receiving ?error=<code> on callback failure",
    )
    login_rate_limit: int = Field(
        default=30,
        ge=1,
        description="Maximum authorization initiations per client IP per window",
    )
    login_rate_window_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Rate limit window in seconds",
    )


class ProviderCredentials(BaseSettings):
    """Client credentials for one provider, read from ``{PROVIDER}_*``."""

    model_config = SettingsConfigDict(extra="ignore")

    client_id: str = ""
    client_secret: str = ""


class DropboxCredentials(ProviderCredentials):
    """Environment: DROPBOX_CLIENT_ID, DROPBOX_CLIENT_SECRET."""

    model_config = SettingsConfigDict(env_prefix="DROPBOX_", extra="ignore")


class GoogleCredentials(ProviderCredentials):
    """Environment: GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET."""

    model_config = SettingsConfigDict(env_prefix="GOOGLE_", extra="ignore")


class GitHubCredentials(ProviderCredentials):
    """Environment: GITHUB_CLIENT_ID, GITHUB_CLIENT_SECRET."""

    model_config = SettingsConfigDict(env_prefix="GITHUB_", extra="ignore")


class OneDriveCredentials(ProviderCredentials):
    """Environment: ONEDRIVE_CLIENT_ID, ONEDRIVE_CLIENT_SECRET."""

    model_config = SettingsConfigDict(env_prefix="ONEDRIVE_", extra="ignore")


class AppSettings(_LayeredSettings):
    """Top-level settings aggregating all configuration sections.

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.backup_oauth] section
    3. ./backup_oauth.toml
    4. Environment variables (highest priority)
    """

    model_config = SettingsConfigDict(extra="ignore")

    encryption_key: str = Field(
        default="",
        description="Secret used to encrypt tokens at rest (ENCRYPTION_KEY)",
    )
    base_url: str = Field(
        default="http://localhost:5000",
        description="Public base URL used to build provider redirect URIs (BASE_URL)",
    )
    environment: str = Field(
        default="development",
        description="Deployment environment name (ENVIRONMENT)",
    )

    auth: AuthSettings = Field(default_factory=AuthSettings)
    dropbox: DropboxCredentials = Field(default_factory=DropboxCredentials)
    google: GoogleCredentials = Field(default_factory=GoogleCredentials)
    github: GitHubCredentials = Field(default_factory=GitHubCredentials)
    onedrive: OneDriveCredentials = Field(default_factory=OneDriveCredentials)

    @property
    def is_production(self) -> bool:
        """Whether this is a production-like environment."""
        return self.environment.strip().lower() in PRODUCTION_ENVIRONMENTS

    def credentials_for(self, provider: str) -> ProviderCredentials:
        """Return the credentials section for ``provider``.

        Unknown names return empty credentials.
        """
        section = getattr(self, provider.lower(), None)
        if isinstance(section, ProviderCredentials):
            return section
        return ProviderCredentials.model_construct()

    def show(self) -> str:
        """Format settings as a readable table with secrets redacted."""
        lines = ["backup-oauth Configuration", "=" * 60, ""]

        lines.append("General:")
        lines.append(f"  {'environment':<32} {self.environment}")
        lines.append(f"  {'base_url':<32} {self.base_url}")
        key_state = _REDACTED if self.encryption_key else "(not set)"
        lines.append(f"  {'encryption_key':<32} {key_state}")
        lines.append("")

        lines.append("Auth:")
        for field_name, value in self.auth.model_dump().items():
            shown = _REDACTED if field_name in _SENSITIVE_FIELDS else value
            lines.append(f"  {field_name:<32} {shown}")
        lines.append("")

        lines.append("Providers:")
        for name in ("dropbox", "google", "github", "onedrive"):
            creds = self.credentials_for(name)
            client_id = creds.client_id or "(not set)"
            secret = _REDACTED if creds.client_secret else "(not set)"
            lines.append(f"  {name:<10} client_id={client_id} client_secret={secret}")

        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Get the cached application settings.

    Returns
    -------
    AppSettings
        Settings loaded from TOML files and the environment.
    """
    return AppSettings()


def clear_settings_cache() -> None:
    """Forget cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()
