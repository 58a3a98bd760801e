"""OAuth2 connection flow and encrypted token lifecycle.

Provides provider metadata, PKCE, single-use state, code exchange,
encrypted token storage and refresh/revocation for the storage
providers a backup job can target.
"""

from __future__ import annotations

from .authorize import AuthorizationUrlBuilder
from .crypto import EncryptionEngine
from .exchange import TokenExchanger
from .flow import AuthFlowManager, safe_redirect_path
from .lifecycle import TokenLifecycleManager
from .pkce import PKCEChallenge, compute_challenge, generate_verifier
from .providers import PROVIDER_TABLE, ProviderConfig, ProviderConfigRegistry, ProviderQuirks
from .state import StateManager
from .types import (
    AuthorizationRequest,
    CallbackError,
    CallbackResult,
    DecryptedTokens,
    InvalidState,
    OAuthState,
    OAuthTokens,
    RevocationResult,
    TokenRecord,
    TokenState,
)
from .vault import TokenVault


__all__ = [
    "PROVIDER_TABLE",
    "AuthFlowManager",
    "AuthorizationRequest",
    "AuthorizationUrlBuilder",
    "CallbackError",
    "CallbackResult",
    "DecryptedTokens",
    "EncryptionEngine",
    "InvalidState",
    "OAuthState",
    "OAuthTokens",
    "PKCEChallenge",
    "ProviderConfig",
    "ProviderConfigRegistry",
    "ProviderQuirks",
    "RevocationResult",
    "StateManager",
    "TokenExchanger",
    "TokenLifecycleManager",
    "TokenRecord",
    "TokenState",
    "TokenVault",
    "compute_challenge",
    "generate_verifier",
    "safe_redirect_path",
]
