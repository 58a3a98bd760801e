"""PKCE (Proof Key for Code Exchange) implementation.

RFC 7636 - Proof Key for Code Exchange for OAuth 2.0 public clients.
Uses S256 challenge method (SHA-256 hash of the code verifier).
"""

from __future__ import annotations

import hashlib
import secrets

from base64 import urlsafe_b64encode
from dataclasses import dataclass


#: Random bytes behind each verifier; 64 bytes encode to 86 characters.
VERIFIER_BYTES = 64


def generate_verifier(length: int = VERIFIER_BYTES) -> str:
    """Generate a code verifier from the OS CSPRNG.

    Parameters
    ----------
    length : int
        Number of random bytes (at least 32, i.e. 256 bits).

    Returns
    -------
    str
        URL-safe verifier of 43 to 128 characters.
    """
    if not 32 <= length <= 96:
        msg = "PKCE verifier length must be between 32 and 96 bytes"
        raise ValueError(msg)
    return secrets.token_urlsafe(length)


def compute_challenge(verifier: str) -> str:
    """Return base64url(SHA-256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class PKCEChallenge:
    """PKCE code verifier and challenge pair.

    Attributes
    ----------
    verifier : str
        The code verifier (high-entropy random string).
    challenge : str
        The code challenge (base64url-encoded SHA-256 hash of verifier).
    method : str
        The challenge method, always "S256".
    """

    verifier: str
    challenge: str
    method: str = "S256"

    @classmethod
    def generate(cls, length: int = VERIFIER_BYTES) -> PKCEChallenge:
        """Generate a new PKCE code verifier and challenge.

        Parameters
        ----------
        length : int
            Number of bytes for the random verifier (default 64).

        Returns
        -------
        PKCEChallenge
            A new PKCE challenge pair.
        """
        return cls.from_verifier(generate_verifier(length))

    @classmethod
    def from_verifier(cls, verifier: str) -> PKCEChallenge:
        """Rebuild the pair for an existing verifier (e.g. one held in a state)."""
        return cls(verifier=verifier, challenge=compute_challenge(verifier))
