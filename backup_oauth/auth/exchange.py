"""Provider token endpoint client.

Exchanges authorization codes, refreshes access tokens, revokes and
validates them. Request encoding and parameters come from each
provider's quirks; failures are classified so the lifecycle manager can
tell a dead refresh token from a provider outage.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import time

from typing import TYPE_CHECKING, Any

import httpx

from ..exceptions import PermanentExchangeError, ProtocolError, TransientExchangeError
from ..log import redact_sensitive_data
from .types import OAuthTokens, RevocationResult


if TYPE_CHECKING:
    from .providers import ProviderConfig, ProviderConfigRegistry


logger = logging.getLogger("backup_oauth.auth")

DEFAULT_HTTP_TIMEOUT = 15.0

# Status codes that mean "this access token is no longer accepted"
_REJECTED_STATUSES = frozenset({400, 401, 403})


def _is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def _coerce_expires_in(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _coerce_scope(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value)
    return str(value)


class TokenExchanger:
    """HTTP client for provider token, revocation and validation endpoints.

    Parameters
    ----------
    registry : ProviderConfigRegistry
        Provider configurations.
    timeout : float
        Per-request timeout in seconds.
    http_client : httpx.AsyncClient, optional
        Client to use instead of an internally created one. It is not
        closed by :meth:`aclose`.
    """

    def __init__(
        self,
        registry: ProviderConfigRegistry,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the exchanger."""
        self._registry = registry
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._http_client

    async def aclose(self) -> None:
        """Close the HTTP client if this exchanger created it."""
        if self._owns_client and self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
        self._http_client = None

    # ── Token endpoint ────────────────────────────────────────────────

    async def exchange(
        self,
        provider: str,
        code: str,
        code_verifier: str | None = None,
    ) -> OAuthTokens:
        """Exchange an authorization code for tokens.

        Parameters
        ----------
        provider : str
            Provider identifier.
        code : str
            Authorization code from the callback.
        code_verifier : str, optional
            PKCE verifier; sent only when the provider uses PKCE.

        Returns
        -------
        OAuthTokens
            The normalized token set.

        Raises
        ------
        TransientExchangeError
            Network failure, timeout, HTTP 429 or 5xx.
        PermanentExchangeError
            The provider rejected the code.
        ProtocolError
            The response was not a usable token response.
        """
        config = self._registry.get(provider)
        payload: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": config.redirect_uri,
            "client_id": config.client_id,
            "client_secret": config.client_secret,
        }
        if config.quirks.use_pkce and code_verifier:
            payload["code_verifier"] = code_verifier

        tokens = await self._token_request(config, payload, operation="exchange")
        logger.info(
            "Exchanged authorization code for %s tokens (refresh_token=%s, expires_in=%s)",
            config.name,
            tokens.refresh_token is not None,
            tokens.expires_in,
        )
        return tokens

    async def refresh(self, provider: str, refresh_token: str) -> OAuthTokens:
        """Obtain a new access token with a refresh token.

        When the provider does not rotate refresh tokens the response
        has none; the one passed in is carried over.

        Parameters
        ----------
        provider : str
            Provider identifier.
        refresh_token : str
            Current refresh token.

        Returns
        -------
        OAuthTokens
            The new token set.

        Raises
        ------
        TransientExchangeError
            Network failure, timeout, HTTP 429 or 5xx.
        PermanentExchangeError
            The refresh token was rejected (e.g. ``invalid_grant``).
        ProtocolError
            The response was not a usable token response.
        """
        config = self._registry.get(provider)
        payload: dict[str, str] = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": config.client_id,
            "client_secret": config.client_secret,
        }
        if config.quirks.scope_on_refresh and config.scopes:
            payload["scope"] = " ".join(config.scopes)

        tokens = await self._token_request(config, payload, operation="refresh")
        if tokens.refresh_token is None:
            tokens.refresh_token = refresh_token
        logger.info("Refreshed %s access token (expires_in=%s)", config.name, tokens.expires_in)
        return tokens

    async def _token_request(
        self,
        config: ProviderConfig,
        payload: dict[str, str],
        operation: str,
    ) -> OAuthTokens:
        client = await self._get_client()
        headers = {"Accept": "application/json"}
        try:
            if config.quirks.token_request_encoding == "json":
                resp = await client.post(
                    config.token_url, json=payload, headers=headers, timeout=self._timeout
                )
            else:
                resp = await client.post(
                    config.token_url, data=payload, headers=headers, timeout=self._timeout
                )
        except httpx.TimeoutException as exc:
            logger.warning("Token %s for %s timed out", operation, config.name)
            msg = f"Token {operation} timed out"
            raise TransientExchangeError(msg, provider=config.name, error_code="timeout") from exc
        except httpx.TransportError as exc:
            logger.warning(
                "Token %s for %s failed: %s", operation, config.name, type(exc).__name__
            )
            msg = f"Token {operation} request failed"
            raise TransientExchangeError(
                msg, provider=config.name, error_code="network_error"
            ) from exc

        return self._parse_token_response(config, resp, operation)

    def _parse_token_response(
        self,
        config: ProviderConfig,
        resp: httpx.Response,
        operation: str,
    ) -> OAuthTokens:
        status = resp.status_code
        if _is_transient_status(status):
            logger.warning("Token %s for %s returned HTTP %d", operation, config.name, status)
            msg = f"Provider unavailable during token {operation}"
            raise TransientExchangeError(
                msg,
                provider=config.name,
                error_code="rate_limited" if status == 429 else "server_error",
                status_code=status,
            )

        try:
            body = resp.json()
        except ValueError:
            body = None

        if status >= 400:
            error_code = body.get("error") if isinstance(body, dict) else None
            error_code = str(error_code) if error_code else f"http_{status}"
            logger.warning(
                "Token %s for %s rejected: HTTP %d error=%s",
                operation,
                config.name,
                status,
                error_code,
            )
            logger.debug("Token %s error body: %s", operation, redact_sensitive_data(body))
            msg = f"Token {operation} rejected by provider"
            raise PermanentExchangeError(
                msg, provider=config.name, error_code=error_code, status_code=status
            )

        if not isinstance(body, dict):
            logger.warning("Token %s for %s returned a non-JSON body", operation, config.name)
            msg = "Token endpoint returned an unexpected response"
            raise ProtocolError(msg, provider=config.name, status_code=status)

        if body.get("error"):
            error_code = str(body["error"])
            logger.warning(
                "Token %s for %s returned error=%s", operation, config.name, error_code
            )
            logger.debug("Token %s error body: %s", operation, redact_sensitive_data(body))
            msg = f"Token {operation} rejected by provider"
            raise PermanentExchangeError(
                msg, provider=config.name, error_code=error_code, status_code=status
            )

        access_token = body.get("access_token")
        if not access_token or not isinstance(access_token, str):
            logger.warning("Token %s for %s returned no access_token", operation, config.name)
            msg = "Token response has no access_token"
            raise ProtocolError(msg, provider=config.name, status_code=status)

        return OAuthTokens(
            access_token=access_token,
            token_type=str(body.get("token_type") or "Bearer"),
            refresh_token=body.get("refresh_token") or None,
            expires_in=_coerce_expires_in(body.get("expires_in")),
            id_token=body.get("id_token") or None,
            scope=_coerce_scope(body.get("scope")),
            raw=body,
            issued_at=time.time(),
        )

    # ── Revocation ────────────────────────────────────────────────────

    async def revoke(
        self,
        provider: str,
        access_token: str,
        refresh_token: str | None = None,
    ) -> RevocationResult:
        """Revoke tokens at the provider, best effort.

        Never raises for remote failures; they are reported in the
        result so the caller can still delete local state.

        Parameters
        ----------
        provider : str
            Provider identifier.
        access_token : str
            Access token to revoke.
        refresh_token : str, optional
            Refresh token to revoke where the provider supports it.

        Returns
        -------
        RevocationResult
            ``remote_ok`` is False if any remote call failed.
        """
        config = self._registry.get(provider)
        style = config.quirks.revocation_style
        if style == "none" or not config.revocation_url:
            logger.debug("No revocation endpoint for %s", config.name)
            return RevocationResult(remote_ok=True, attempted=False)

        result = RevocationResult(attempted=True)
        client = await self._get_client()

        if style == "rfc7009":
            tokens = [t for t in (refresh_token, access_token) if t]
            for token in tokens:
                await self._send_revocation(
                    client,
                    config,
                    result,
                    "POST",
                    config.revocation_url,
                    data={
                        "token": token,
                        "client_id": config.client_id,
                        "client_secret": config.client_secret,
                    },
                )
        elif style == "bearer":
            await self._send_revocation(
                client,
                config,
                result,
                "POST",
                config.revocation_url,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        elif style == "github_app":
            await self._send_revocation(
                client,
                config,
                result,
                "DELETE",
                config.revocation_url.format(client_id=config.client_id),
                json={"access_token": access_token},
                auth=(config.client_id, config.client_secret),
                headers={"Accept": "application/vnd.github+json"},
            )
        else:
            result.remote_ok = False
            result.errors.append(f"unsupported revocation style {style}")

        if result.remote_ok:
            logger.info("Revoked %s tokens at provider", config.name)
        else:
            logger.warning(
                "Revocation at %s incomplete: %s", config.name, "; ".join(result.errors)
            )
        return result

    async def _send_revocation(
        self,
        client: httpx.AsyncClient,
        config: ProviderConfig,
        result: RevocationResult,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> None:
        try:
            resp = await client.request(method, url, timeout=self._timeout, **kwargs)
        except httpx.HTTPError as exc:
            result.remote_ok = False
            result.errors.append(f"{config.name} revocation failed: {type(exc).__name__}")
            return
        if not resp.is_success:
            result.remote_ok = False
            result.errors.append(f"{config.name} revocation returned HTTP {resp.status_code}")

    # ── Validation ────────────────────────────────────────────────────

    async def validate_access_token(self, provider: str, access_token: str) -> bool:
        """Ask the provider whether ``access_token`` is still accepted.

        Parameters
        ----------
        provider : str
            Provider identifier.
        access_token : str
            The access token.

        Returns
        -------
        bool
            False when the provider rejects the token; True when it
            accepts it or the provider has no validation endpoint.

        Raises
        ------
        TransientExchangeError
            If the provider could not be reached or answered 429/5xx.
        """
        config = self._registry.get(provider)
        style = config.quirks.validation_style
        if style == "none" or not config.validation_url:
            return True

        client = await self._get_client()
        bearer = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        try:
            if style == "query_param":
                resp = await client.get(
                    config.validation_url,
                    params={"access_token": access_token},
                    timeout=self._timeout,
                )
            elif style == "bearer_post":
                resp = await client.post(
                    config.validation_url,
                    json={"query": "backup-oauth"},
                    headers=bearer,
                    timeout=self._timeout,
                )
            else:
                resp = await client.get(
                    config.validation_url, headers=bearer, timeout=self._timeout
                )
        except httpx.TransportError as exc:
            logger.warning(
                "Token validation for %s failed: %s", config.name, type(exc).__name__
            )
            msg = "Token validation request failed"
            raise TransientExchangeError(
                msg, provider=config.name, error_code="network_error"
            ) from exc

        if resp.is_success:
            return True
        if resp.status_code in _REJECTED_STATUSES:
            logger.info(
                "%s rejected the stored access token (HTTP %d)", config.name, resp.status_code
            )
            return False
        msg = "Provider unavailable during token validation"
        raise TransientExchangeError(
            msg, provider=config.name, error_code="server_error", status_code=resp.status_code
        )
