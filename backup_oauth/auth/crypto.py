"""Authenticated encryption of token material at rest.

AES-256-GCM with a fresh random 96-bit IV per call. Envelopes are
self-contained given the key::

    v1:{iv_hex}:{tag_hex}:{ciphertext_hex}

Every credential field a provider hands us goes through this single
engine before it is written to a store.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import binascii
import logging
import os
import secrets

from base64 import urlsafe_b64decode
from typing import TYPE_CHECKING

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..exceptions import DecryptionError, EncryptionKeyError


if TYPE_CHECKING:
    from ..config import AppSettings


logger = logging.getLogger("backup_oauth.auth")

ENVELOPE_VERSION = "v1"
KEY_LENGTH = 32
IV_LENGTH = 12
TAG_LENGTH = 16
_HKDF_INFO = b"backup-oauth token encryption v1"


def derive_key(secret: str) -> bytes:
    """Turn the configured secret into a 256-bit AES key.

    A 64-character hex string or a urlsafe-base64 encoding of 32 bytes is
    used as the raw key. Any other non-empty secret is stretched with
    HKDF-SHA256.

    Parameters
    ----------
    secret : str
        Value of ``ENCRYPTION_KEY``.

    Returns
    -------
    bytes
        32-byte key.

    Raises
    ------
    EncryptionKeyError
        If the secret is empty.
    """
    secret = secret.strip()
    if not secret:
        msg = "Encryption key is empty"
        raise EncryptionKeyError(msg)

    if len(secret) == KEY_LENGTH * 2:
        try:
            return bytes.fromhex(secret)
        except ValueError:
            pass

    if len(secret) in (43, 44):
        try:
            raw = urlsafe_b64decode(secret + "=" * (-len(secret) % 4))
        except (binascii.Error, ValueError):
            raw = b""
        if len(raw) == KEY_LENGTH:
            return raw

    return HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=None,
        info=_HKDF_INFO,
    ).derive(secret.encode("utf-8"))


class EncryptionEngine:
    """AES-256-GCM encryption of strings.

    Parameters
    ----------
    key : bytes
        32-byte AES key.

    Raises
    ------
    EncryptionKeyError
        If ``key`` is not 32 bytes.
    """

    def __init__(self, key: bytes) -> None:
        """Initialize the engine with a raw key."""
        if len(key) != KEY_LENGTH:
            msg = f"Encryption key must be {KEY_LENGTH} bytes"
            raise EncryptionKeyError(msg, length=len(key))
        self._aead = AESGCM(key)

    @classmethod
    def from_secret(cls, secret: str) -> EncryptionEngine:
        """Create an engine from the configured secret string."""
        return cls(derive_key(secret))

    @classmethod
    def from_settings(cls, settings: AppSettings) -> EncryptionEngine:
        """Create the engine for the running application.

        In a production-like environment a missing ``ENCRYPTION_KEY`` is
        fatal. Elsewhere an ephemeral key is generated and a warning is
        logged, because tokens encrypted with it are unreadable after a
        restart.

        Parameters
        ----------
        settings : AppSettings
            Application settings.

        Returns
        -------
        EncryptionEngine
            A ready engine.

        Raises
        ------
        EncryptionKeyError
            If no key is configured in a production-like environment.
        """
        if settings.encryption_key:
            return cls.from_secret(settings.encryption_key)

        if settings.is_production:
            logger.error("ENCRYPTION_KEY is not set (environment=%s)", settings.environment)
            msg = "ENCRYPTION_KEY must be set in a production environment"
            raise EncryptionKeyError(msg, environment=settings.environment)

        logger.warning(
            "ENCRYPTION_KEY is not set; using an ephemeral key. Stored tokens "
            "will be unreadable after restart (environment=%s)",
            settings.environment,
        )
        return cls(os.urandom(KEY_LENGTH))

    @staticmethod
    def generate_key() -> str:
        """Generate a new random key suitable for ``ENCRYPTION_KEY`` (hex)."""
        return secrets.token_hex(KEY_LENGTH)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string.

        Parameters
        ----------
        plaintext : str
            Value to protect.

        Returns
        -------
        str
            ``v1:{iv}:{tag}:{ciphertext}`` envelope (hex fields).
        """
        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return ":".join((ENVELOPE_VERSION, iv.hex(), tag.hex(), ciphertext.hex()))

    def decrypt(self, envelope: str) -> str:
        """Decrypt an envelope produced by :meth:`encrypt`.

        Parameters
        ----------
        envelope : str
            The envelope string.

        Returns
        -------
        str
            The original plaintext.

        Raises
        ------
        DecryptionError
            On a malformed envelope, a wrong key or a tampered value. The
            exception message is the same in every case.
        """
        try:
            iv, tag, ciphertext = self._split(envelope)
        except ValueError:
            logger.warning("Decryption failed: malformed envelope")
            raise DecryptionError("malformed") from None

        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            logger.warning("Decryption failed: authentication tag mismatch or wrong key")
            raise DecryptionError("authentication_failed") from None

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Decryption failed: plaintext is not valid UTF-8")
            raise DecryptionError("encoding") from None

    @staticmethod
    def _split(envelope: str) -> tuple[bytes, bytes, bytes]:
        if not isinstance(envelope, str):
            msg = "envelope must be a string"
            raise ValueError(msg)  # noqa: TRY004
        parts = envelope.split(":")
        if len(parts) != 4 or parts[0] != ENVELOPE_VERSION:
            msg = "unrecognized envelope"
            raise ValueError(msg)
        iv = bytes.fromhex(parts[1])
        tag = bytes.fromhex(parts[2])
        ciphertext = bytes.fromhex(parts[3])
        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            msg = "bad field length"
            raise ValueError(msg)
        return iv, tag, ciphertext
