"""Storage provider OAuth2 metadata.

Every per-provider difference the flow has to honor lives in a
:class:`ProviderQuirks` value. The authorization URL builder and the
token exchanger read those fields uniformly, so supporting another
provider means adding a row to ``PROVIDER_TABLE``.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Literal

from ..exceptions import UnknownProviderError


if TYPE_CHECKING:
    from ..config import AppSettings


logger = logging.getLogger("backup_oauth.auth")

TokenRequestEncoding = Literal["form", "json"]
RevocationStyle = Literal["rfc7009", "bearer", "github_app", "none"]
ValidationStyle = Literal["bearer_get", "bearer_post", "query_param", "none"]


def _frozen(params: Mapping[str, str] | None = None) -> Mapping[str, str]:
    return MappingProxyType(dict(params or {}))


@dataclass(frozen=True)
class ProviderQuirks:
    """Provider-specific protocol variations.

    Attributes
    ----------
    use_pkce : bool
        Send ``code_challenge`` on authorize and ``code_verifier`` on exchange.
    send_nonce : bool
        Append the state's ``nonce`` to the authorization URL.
    token_request_encoding : str
        ``"form"`` (application/x-www-form-urlencoded) or ``"json"``.
    authorization_params : Mapping[str, str]
        Extra authorization URL parameters (e.g. offline access flags).
    scope_on_refresh : bool
        Re-send the scope list in refresh requests.
    revocation_style : str
        How tokens are revoked: ``"rfc7009"`` (form POST of the token),
        ``"bearer"`` (POST with the token as bearer credential),
        ``"github_app"`` (DELETE with client basic auth) or ``"none"``.
    validation_style : str
        How a live access token is checked: ``"bearer_get"``,
        ``"bearer_post"``, ``"query_param"`` or ``"none"``.
    """

    use_pkce: bool = True
    send_nonce: bool = True
    token_request_encoding: TokenRequestEncoding = "form"
    authorization_params: Mapping[str, str] = field(default_factory=_frozen)
    scope_on_refresh: bool = False
    revocation_style: RevocationStyle = "rfc7009"
    validation_style: ValidationStyle = "bearer_get"


@dataclass(frozen=True)
class ProviderConfig:
    """Static OAuth2 configuration for one storage provider.

    Attributes
    ----------
    name : str
        Provider identifier (``"dropbox"``, ``"google"``, ...).
    display_name : str
        Human-readable name.
    client_id : str
        OAuth2 client ID.
    client_secret : str
        OAuth2 client secret.
    authorization_url : str
        Authorization endpoint.
    token_url : str
        Token endpoint (exchange and refresh).
    revocation_url : str or None
        Revocation endpoint, or None when the provider has none.
    validation_url : str or None
        Endpoint used to check that an access token is still accepted.
    scopes : tuple[str, ...]
        Requested scopes.
    redirect_uri : str
        Callback URL registered with the provider.
    quirks : ProviderQuirks
        Protocol variations.
    """

    name: str
    display_name: str
    authorization_url: str
    token_url: str
    client_id: str = ""
    client_secret: str = field(default="", repr=False)
    revocation_url: str | None = None
    validation_url: str | None = None
    scopes: tuple[str, ...] = ()
    redirect_uri: str = ""
    quirks: ProviderQuirks = field(default_factory=ProviderQuirks)

    @property
    def is_configured(self) -> bool:
        """Whether client credentials are present."""
        return bool(self.client_id and self.client_secret)

    def missing_fields(self) -> list[str]:
        """Names of required credential fields that are empty."""
        missing = []
        if not self.client_id:
            missing.append("client_id")
        if not self.client_secret:
            missing.append("client_secret")
        return missing


PROVIDER_TABLE: Mapping[str, ProviderConfig] = MappingProxyType(
    {
        "dropbox": ProviderConfig(
            name="dropbox",
            display_name="Dropbox",
            authorization_url="https://www.dropbox.com/oauth2/authorize",
            token_url="https://api.dropboxapi.com/oauth2/token",  # noqa: S106
            revocation_url="https://api.dropboxapi.com/2/auth/token/revoke",
            validation_url="https://api.dropboxapi.com/2/check/user",
            scopes=("files.content.write", "files.content.read"),
            quirks=ProviderQuirks(
                use_pkce=False,
                send_nonce=False,
                token_request_encoding="form",
                authorization_params=_frozen({"token_access_type": "offline"}),
                revocation_style="bearer",
                validation_style="bearer_post",
            ),
        ),
        "google": ProviderConfig(
            name="google",
            display_name="Google Drive",
            authorization_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",  # noqa: S106
            revocation_url="https://oauth2.googleapis.com/revoke",
            validation_url="https://oauth2.googleapis.com/tokeninfo",
            scopes=("https://www.googleapis.com/auth/drive",),
            quirks=ProviderQuirks(
                token_request_encoding="form",
                authorization_params=_frozen({"access_type": "offline", "prompt": "consent"}),
                revocation_style="rfc7009",
                validation_style="query_param",
            ),
        ),
        "github": ProviderConfig(
            name="github",
            display_name="GitHub",
            authorization_url="https://github.com/login/oauth/authorize",
            token_url="https://github.com/login/oauth/access_token",  # noqa: S106
            revocation_url="https://api.github.com/applications/{client_id}/token",
            validation_url="https://api.github.com/user",
            scopes=("repo", "user"),
            quirks=ProviderQuirks(
                token_request_encoding="json",
                revocation_style="github_app",
                validation_style="bearer_get",
            ),
        ),
        "onedrive": ProviderConfig(
            name="onedrive",
            display_name="OneDrive",
            authorization_url="https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
            token_url="https://login.microsoftonline.com/common/oauth2/v2.0/token",  # noqa: S106
            validation_url="https://graph.microsoft.com/v1.0/me",
            scopes=("Files.ReadWrite", "offline_access"),
            quirks=ProviderQuirks(
                token_request_encoding="form",
                scope_on_refresh=True,
                revocation_style="none",
                validation_style="bearer_get",
            ),
        ),
    }
)


def redirect_uri_for(base_url: str, provider: str) -> str:
    """Build ``{base_url}/auth/{provider}/callback``."""
    return f"{base_url.rstrip('/')}/auth/{provider}/callback"


class ProviderConfigRegistry:
    """Lookup of provider configurations, loaded once at startup.

    Parameters
    ----------
    configs : Mapping[str, ProviderConfig]
        Provider configurations keyed by lowercase name.
    """

    def __init__(self, configs: Mapping[str, ProviderConfig]) -> None:
        """Initialize the registry."""
        self._configs = {name.lower(): cfg for name, cfg in configs.items()}

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        table: Mapping[str, ProviderConfig] = PROVIDER_TABLE,
    ) -> ProviderConfigRegistry:
        """Merge credentials and ``BASE_URL`` from settings into ``table``.

        Parameters
        ----------
        settings : AppSettings
            Application settings.
        table : Mapping[str, ProviderConfig]
            Compiled-in provider metadata.

        Returns
        -------
        ProviderConfigRegistry
            Registry with credentials and redirect URIs filled in.
        """
        configs = {}
        for name, base in table.items():
            creds = settings.credentials_for(name)
            configs[name] = replace(
                base,
                client_id=creds.client_id,
                client_secret=creds.client_secret,
                redirect_uri=redirect_uri_for(settings.base_url, name),
            )
        return cls(configs)

    def get(self, provider: str) -> ProviderConfig:
        """Get the configuration for ``provider`` (case-insensitive).

        Raises
        ------
        UnknownProviderError
            If the provider is not in the table.
        """
        config = self._configs.get(provider.lower()) if provider else None
        if config is None:
            msg = "Unknown provider"
            raise UnknownProviderError(msg, provider=provider)
        return config

    def __contains__(self, provider: object) -> bool:
        """Whether ``provider`` is a known provider name."""
        return isinstance(provider, str) and provider.lower() in self._configs

    def names(self) -> list[str]:
        """All known provider names."""
        return list(self._configs)

    def available(self) -> list[str]:
        """Names of providers with client credentials configured."""
        return [name for name, cfg in self._configs.items() if cfg.is_configured]

    def validate_all(self) -> list[tuple[str, list[str]]]:
        """Report missing credential fields for every provider.

        Advisory only: logs a warning per incomplete provider so the
        application can run with a subset configured.

        Returns
        -------
        list[tuple[str, list[str]]]
            ``(provider, missing_fields)`` for every provider; the list of
            fields is empty for fully configured providers.
        """
        report = []
        for name, cfg in self._configs.items():
            missing = cfg.missing_fields()
            if missing:
                logger.warning(
                    "OAuth provider %s is not fully configured (missing: %s)",
                    name,
                    ", ".join(missing),
                )
            else:
                logger.info("OAuth provider %s is configured", name)
            report.append((name, missing))
        return report
