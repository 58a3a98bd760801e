"""FastAPI routes for connecting storage providers.

Provides initiate, callback, status and disconnect endpoints plus a
``require_valid_token`` dependency for routes that call provider APIs.
"""

# pylint: disable=logging-too-many-args,too-many-statements

from __future__ import annotations

import collections
import logging
import math
import secrets
import threading
import time

from typing import TYPE_CHECKING

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from ..exceptions import (
    AuthRequiredError,
    ProviderNotConfiguredError,
    TransientExchangeError,
    UnknownProviderError,
)
from .types import TokenState


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from fastapi import FastAPI

    from ..config import AuthSettings
    from .flow import AuthFlowManager
    from .lifecycle import TokenLifecycleManager
    from .vault import TokenVault


logger = logging.getLogger("backup_oauth.auth")

DEFAULT_SESSION_COOKIE = "backup_oauth_session"
_SESSION_COOKIE_MAX_AGE = 60 * 60 * 24 * 30


# ── Login Rate Limiter ───────────────────────────────────────────────


class LoginRateLimiter:
    """Per-client sliding window for ``GET /auth/{provider}``.

    Every initiation writes a pending state, so this bounds how fast one
    client can fill the state store. Clients without a request inside the
    window are forgotten, and a full sweep runs at most once per window.

    Parameters
    ----------
    max_requests : int
        Initiations allowed per client per window.
    window_seconds : float
        Window length in seconds.
    clock : callable, optional
        Monotonic time source.
    """

    def __init__(
        self,
        max_requests: int = 30,
        window_seconds: float = 60.0,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.max_requests = max_requests
        self.window = window_seconds
        self._clock = clock or time.monotonic
        self._hits: dict[str, collections.deque[float]] = {}
        self._next_sweep = 0.0
        self._lock = threading.Lock()

    @property
    def tracked_clients(self) -> int:
        """Number of clients currently holding window state."""
        with self._lock:
            return len(self._hits)

    def _sweep(self, cutoff: float) -> None:
        for client_ip in [ip for ip, hits in self._hits.items() if hits[-1] <= cutoff]:
            del self._hits[client_ip]

    def is_allowed(self, client_ip: str) -> bool:
        """Count an initiation from ``client_ip`` unless it is over the limit."""
        now = self._clock()
        cutoff = now - self.window
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(cutoff)
                self._next_sweep = now + self.window

            hits = self._hits.pop(client_ip, None) or collections.deque()
            while hits and hits[0] <= cutoff:
                hits.popleft()
            allowed = len(hits) < self.max_requests
            if allowed:
                hits.append(now)
            if hits:
                self._hits[client_ip] = hits
            return allowed

    def retry_after(self, client_ip: str) -> int:
        """Whole seconds until ``client_ip`` may initiate again."""
        with self._lock:
            hits = self._hits.get(client_ip)
            if not hits or len(hits) < self.max_requests:
                return 0
            oldest = hits[-self.max_requests]
            return max(1, math.ceil(oldest + self.window - self._clock()))

    def reset(self) -> None:
        """Forget every client."""
        with self._lock:
            self._hits.clear()
            self._next_sweep = 0.0


# ── Error responses ──────────────────────────────────────────────────


def _error(status_code: int, error: str, description: str, **extra: object) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "error_description": description, **extra},
    )


def _provider_error_response(exc: UnknownProviderError) -> JSONResponse:
    if isinstance(exc, ProviderNotConfiguredError):
        return _error(503, "provider_not_configured", "This provider is not configured")
    return _error(404, "unknown_provider", "Unknown provider")


def add_exception_handlers(app: FastAPI) -> None:
    """Map lifecycle errors raised by ``require_valid_token`` to responses.

    ``AuthRequiredError`` becomes HTTP 401 with
    ``{"error": "authentication_required" | "authentication_expired" |
    "authentication_invalid"}``; ``TransientExchangeError`` becomes 503
    with ``{"error": "provider_unavailable", "retryable": true}``.
    """

    async def _auth_required(_request: Request, exc: AuthRequiredError) -> Response:
        return JSONResponse(
            status_code=401,
            content={"error": exc.error_code, "provider": exc.provider},
        )

    async def _transient(_request: Request, exc: TransientExchangeError) -> Response:
        return JSONResponse(
            status_code=503,
            content={"error": "provider_unavailable", "provider": exc.provider, "retryable": True},
        )

    async def _unknown_provider(_request: Request, exc: UnknownProviderError) -> Response:
        return _provider_error_response(exc)

    app.add_exception_handler(AuthRequiredError, _auth_required)  # type: ignore[arg-type]
    app.add_exception_handler(TransientExchangeError, _transient)  # type: ignore[arg-type]
    app.add_exception_handler(UnknownProviderError, _unknown_provider)  # type: ignore[arg-type]


def require_valid_token(
    lifecycle: TokenLifecycleManager,
    provider: str,
    session_cookie: str = DEFAULT_SESSION_COOKIE,
) -> Callable[[Request], Awaitable[str]]:
    """Build a dependency that yields a valid access token for ``provider``.

    Parameters
    ----------
    lifecycle : TokenLifecycleManager
        Hands out access tokens.
    provider : str
        Provider identifier.
    session_cookie : str
        Cookie holding the session key.

    Returns
    -------
    callable
        FastAPI dependency. Install :func:`add_exception_handlers` on the
        app so its errors become 401/503 responses.

    Examples
    --------
    >>> @app.post("/backups/dropbox")
    ... async def run(token: str = Depends(require_valid_token(lifecycle, "dropbox"))): ...
    """

    async def _dependency(request: Request) -> str:
        session_key = request.cookies.get(session_cookie)
        if not session_key:
            msg = "No session"
            raise AuthRequiredError(msg, provider=provider, reason="required")
        return await lifecycle.ensure_valid(provider, session_key)

    return _dependency


def create_auth_router(
    flow: AuthFlowManager,
    lifecycle: TokenLifecycleManager,
    vault: TokenVault,
    settings: AuthSettings,
    rate_limiter: LoginRateLimiter | None = None,
) -> APIRouter:
    """Create a FastAPI router with the provider connection routes.

    Parameters
    ----------
    flow : AuthFlowManager
        Initiate and callback handling.
    lifecycle : TokenLifecycleManager
        Status and disconnect.
    vault : TokenVault
        Read access to stored records for status.
    settings : AuthSettings
        Cookie name and rate limits.
    rate_limiter : LoginRateLimiter, optional
        Limiter for the initiate route; one is created from settings if
        omitted.

    Returns
    -------
    APIRouter
        Router with ``/auth/*`` routes.
    """
    router = APIRouter(prefix="/auth", tags=["authentication"])
    cookie_name = settings.session_cookie
    limiter = rate_limiter or LoginRateLimiter(
        max_requests=settings.login_rate_limit,
        window_seconds=settings.login_rate_window_seconds,
    )

    @router.get("/{provider}")
    async def auth_initiate(request: Request, provider: str, redirect: str = "/") -> Response:
        """Redirect the browser to the provider's consent page."""
        client_ip = request.client.host if request.client else "unknown"
        if not limiter.is_allowed(client_ip):
            logger.warning("Rate limited OAuth initiate from %s", client_ip)
            resp = _error(429, "rate_limited", "Too many login attempts. Please try again later.")
            resp.headers["Retry-After"] = str(limiter.retry_after(client_ip))
            return resp

        session_key = request.cookies.get(cookie_name)
        new_session = not session_key
        if new_session:
            session_key = secrets.token_urlsafe(32)

        try:
            auth = await flow.initiate(provider, redirect, session_key=session_key or "")
        except UnknownProviderError as exc:
            return _provider_error_response(exc)

        response = RedirectResponse(url=auth.url, status_code=302)
        if new_session:
            response.set_cookie(
                key=cookie_name,
                value=session_key or "",
                max_age=_SESSION_COOKIE_MAX_AGE,
                httponly=True,
                samesite="lax",
                secure=request.url.scheme == "https",
            )
        return response

    @router.get("/{provider}/callback")
    async def auth_callback(
        provider: str,
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
    ) -> Response:
        """Complete the flow and redirect to the app or the error page."""
        result = await flow.handle_callback(provider, code, state, error)
        return RedirectResponse(url=result.redirect_to, status_code=302)

    @router.get("/{provider}/status")
    async def auth_status(request: Request, provider: str) -> Response:
        """Report whether this session holds usable credentials."""
        session_key = request.cookies.get(cookie_name)
        try:
            # An empty session key never matches a record
            state = await lifecycle.token_state(provider, session_key or "")
        except UnknownProviderError as exc:
            return _provider_error_response(exc)

        expires_at = None
        if session_key and state is not TokenState.ABSENT:
            record = await vault.get_record(provider.lower(), session_key)
            expires_at = record.expires_at if record is not None else None

        return JSONResponse(
            content={
                "provider": provider.lower(),
                "connected": state not in (TokenState.ABSENT, TokenState.DEAD),
                "state": state.value,
                "expires_at": expires_at,
            }
        )

    @router.post("/{provider}/disconnect")
    async def auth_disconnect(request: Request, provider: str) -> Response:
        """Revoke (best effort) and forget this session's credentials."""
        session_key = request.cookies.get(cookie_name)
        if not session_key:
            return JSONResponse(
                content={"success": True, "remote_revoked": False, "partial": False}
            )
        try:
            result = await lifecycle.revoke(provider, session_key)
        except UnknownProviderError as exc:
            return _provider_error_response(exc)
        return JSONResponse(
            content={
                "success": True,
                "remote_revoked": result.attempted and result.remote_ok,
                "partial": result.partial,
            }
        )

    return router
