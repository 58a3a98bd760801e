"""backup-oauth exception hierarchy.

All backup-oauth exceptions inherit from BackupOAuthError, enabling
catch-all handling while supporting specific error types.

Token material (access, refresh or ID tokens, ciphertext envelopes,
authorization codes, PKCE verifiers) must never be passed as message
text or context.
"""

from __future__ import annotations

from typing import Any


class BackupOAuthError(Exception):
    """Base exception for all backup-oauth errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize backup-oauth exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (provider, session_key, reason, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items() if v is not None)
            if ctx:
                return f"{self.message} ({ctx})"
        return self.message


class ConfigurationError(BackupOAuthError):
    """Invalid or incomplete configuration."""


class EncryptionKeyError(ConfigurationError):
    """No usable encryption key is configured.

    Raised at startup in production-like environments when
    ``ENCRYPTION_KEY`` is missing or cannot be turned into a key.
    """


class UnknownProviderError(BackupOAuthError):
    """The provider identifier is not in the provider table."""

    def __init__(self, message: str, provider: str | None = None, **context: Any) -> None:
        """Initialize unknown provider error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The unrecognized provider identifier.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, **context)
        self.provider = provider


class ProviderNotConfiguredError(UnknownProviderError):
    """The provider is known but has no client credentials configured."""


class InvalidStateError(BackupOAuthError):
    """OAuth ``state`` parameter failed validation.

    Not found, expired and replayed states are all treated as a CSRF or
    replay attempt. ``reason`` is for logs; end users only see a
    generic message.
    """

    def __init__(self, message: str, reason: str = "not_found", **context: Any) -> None:
        """Initialize invalid state error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        reason : str
            Either ``"not_found"`` or ``"expired"``.
        **context : Any
            Additional context.
        """
        super().__init__(message, reason=reason, **context)
        self.reason = reason


class DecryptionError(BackupOAuthError):
    """Ciphertext could not be decrypted.

    The message is identical for a malformed envelope, a wrong key and a
    failed authentication tag so callers cannot act as a decryption
    oracle. ``reason`` distinguishes them for logs only and is not part
    of ``str(exc)``.
    """

    GENERIC_MESSAGE = "Unable to decrypt value"

    def __init__(self, reason: str = "unknown") -> None:
        """Initialize decryption error.

        Parameters
        ----------
        reason : str
            Internal classification (``malformed``, ``authentication_failed``,
            ``encoding``) used only for log output.
        """
        super().__init__(self.GENERIC_MESSAGE)
        self.reason = reason


class AuthenticationError(BackupOAuthError):
    """Base exception for provider authentication failures."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The provider identifier (e.g., "dropbox", "google").
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, **context)
        self.provider = provider


class AuthRequiredError(AuthenticationError):
    """No valid credential is available; the user must (re-)authenticate.

    ``reason`` is one of ``"required"`` (never connected), ``"expired"``
    (refresh token dead or missing) or ``"invalid"`` (token rejected by the
    provider or undecryptable).
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        reason: str = "required",
        **context: Any,
    ) -> None:
        """Initialize auth-required error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The provider identifier.
        reason : str
            ``"required"``, ``"expired"`` or ``"invalid"``.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, reason=reason, **context)
        self.reason = reason

    @property
    def error_code(self) -> str:
        """Machine-readable code for the HTTP 401 body."""
        return f"authentication_{self.reason}"


class TokenExchangeError(AuthenticationError):
    """Base exception for token endpoint failures (exchange and refresh)."""

    retryable = False

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        error_code: str | None = None,
        status_code: int | None = None,
        **context: Any,
    ) -> None:
        """Initialize token exchange error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The provider identifier.
        error_code : str, optional
            OAuth2 ``error`` value returned by the provider.
        status_code : int, optional
            HTTP status code of the provider response.
        **context : Any
            Additional context.
        """
        super().__init__(
            message,
            provider=provider,
            error_code=error_code,
            status_code=status_code,
            **context,
        )
        self.error_code = error_code
        self.status_code = status_code


class TransientExchangeError(TokenExchangeError):
    """Network failure, timeout, rate limit or provider 5xx.

    The caller may retry; stored credentials are left untouched.
    """

    retryable = True


class PermanentExchangeError(TokenExchangeError):
    """Provider rejected the request (4xx with an OAuth2 error body).

    ``invalid_grant`` on refresh means the refresh token is dead and the
    user must re-authenticate.
    """


class ProtocolError(TokenExchangeError):
    """Provider response did not have the expected shape."""
