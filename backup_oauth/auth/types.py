"""Type definitions for the OAuth flow and token lifecycle."""

from __future__ import annotations

import time

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal


@dataclass
class OAuthState:
    """One in-flight authorization attempt.

    Attributes
    ----------
    state : str
        Opaque CSRF nonce round-tripped through the provider; lookup key.
    code_verifier : str
        PKCE code verifier (kept server-side only).
    provider : str
        Provider identifier.
    redirect_after_auth : str
        Application path to resume on success.
    nonce : str
        Secondary random value for providers with OIDC-style nonce checks.
    session_key : str
        Session/account the resulting tokens are bound to.
    created_at : float
        Unix timestamp when the state was created.
    """

    state: str
    code_verifier: str
    provider: str
    redirect_after_auth: str = "/"
    nonce: str = ""
    session_key: str = ""
    created_at: float = field(default_factory=time.time)


InvalidReason = Literal["not_found", "expired"]


@dataclass(frozen=True)
class InvalidState:
    """Result of a failed state validation.

    Attributes
    ----------
    reason : str
        ``"not_found"`` (never issued, already consumed) or ``"expired"``.
    """

    reason: InvalidReason


@dataclass
class OAuthTokens:
    """Normalized token set returned by a provider token endpoint.

    Attributes
    ----------
    access_token : str
        The access token for API requests.
    token_type : str
        Token type, typically "Bearer".
    refresh_token : str or None
        Optional refresh token.
    expires_in : int or None
        Token lifetime in seconds from issuance.
    id_token : str or None
        Optional OIDC ID token.
    scope : str
        Space-separated granted scopes.
    raw : dict[str, Any]
        Raw provider response. Never persisted and never logged.
    issued_at : float
        Unix timestamp when the token was issued.
    """

    access_token: str
    token_type: str = "Bearer"  # noqa: S105
    refresh_token: str | None = None
    expires_in: int | None = None
    id_token: str | None = None
    scope: str = ""
    raw: dict[str, Any] = field(default_factory=dict, repr=False)
    issued_at: float = field(default_factory=time.time)

    @property
    def expires_at(self) -> float | None:
        """Get the expiry timestamp, or None if the provider gave none."""
        if self.expires_in is None:
            return None
        return self.issued_at + self.expires_in

    def __repr__(self) -> str:
        """Represent without token material."""
        return (
            f"OAuthTokens(token_type={self.token_type!r}, scope={self.scope!r}, "
            f"expires_in={self.expires_in!r}, has_refresh_token={self.refresh_token is not None})"
        )


@dataclass
class TokenRecord:
    """At-rest credential set for one (provider, session_key).

    Every credential field is an EncryptionEngine envelope, never
    plaintext.

    Attributes
    ----------
    provider : str
        Provider identifier.
    session_key : str
        Session/account key.
    access_token_ciphertext : str
        Encrypted access token.
    refresh_token_ciphertext : str or None
        Encrypted refresh token.
    id_token_ciphertext : str or None
        Encrypted ID token.
    token_type : str
        Token type (not sensitive).
    scope : str
        Granted scopes (not sensitive).
    expires_at : float or None
        Absolute expiry; None when the provider did not say.
    created_at : float
        When the record was first stored.
    updated_at : float
        When the record was last written (exchange or refresh).
    """

    provider: str
    session_key: str
    access_token_ciphertext: str
    refresh_token_ciphertext: str | None = None
    id_token_ciphertext: str | None = None
    token_type: str = "Bearer"  # noqa: S105
    scope: str = ""
    expires_at: float | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)


@dataclass
class DecryptedTokens:
    """Plaintext view of a TokenRecord for immediate, short-lived use.

    Callers must not persist this object or keep it beyond the current
    operation.
    """

    provider: str
    session_key: str
    access_token: str = field(repr=False)
    refresh_token: str | None = field(default=None, repr=False)
    id_token: str | None = field(default=None, repr=False)
    token_type: str = "Bearer"  # noqa: S105
    scope: str = ""
    expires_at: float | None = None


@dataclass(frozen=True)
class AuthorizationRequest:
    """Provider redirect produced by AuthorizationUrlBuilder.

    Attributes
    ----------
    url : str
        Full provider authorization URL.
    state : str
        The state token embedded in ``url``.
    """

    url: str
    state: str


@dataclass
class RevocationResult:
    """Outcome of a (best-effort) revocation.

    Attributes
    ----------
    remote_ok : bool
        True when every remote revocation succeeded or none was needed.
    attempted : bool
        Whether any network call was made.
    errors : list[str]
        Short descriptions of remote failures (no token material).
    """

    remote_ok: bool = True
    attempted: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        """Local state was removed but the provider may still honor the token."""
        return not self.remote_ok


class TokenState(str, Enum):
    """Lifecycle state of one (provider, session_key) credential."""

    ABSENT = "absent"
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    DEAD = "dead"


class CallbackError(str, Enum):
    """Machine-readable error codes carried to the error route."""

    INVALID_STATE = "invalid_state"
    EXPIRED_STATE = "expired_state"
    MISSING_PARAMETERS = "missing_parameters"
    EXCHANGE_FAILED = "exchange_failed"
    TOKEN_STORAGE_FAILED = "token_storage_failed"  # noqa: S105
    PROVIDER_ERROR = "provider_error"


@dataclass
class CallbackResult:
    """Result of handling a provider callback.

    Attributes
    ----------
    success : bool
        Whether tokens were obtained and stored.
    redirect_to : str
        Where the browser should be sent next.
    provider : str or None
        Provider the callback was for.
    error : CallbackError or None
        Error code on failure.
    """

    success: bool
    redirect_to: str
    provider: str | None = None
    error: CallbackError | None = None
