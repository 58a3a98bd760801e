"""backup-oauth - OAuth2 connections for a backup dashboard.

Connects Dropbox, Google Drive, GitHub and OneDrive accounts with the
authorization code flow (PKCE where supported), keeps the resulting
tokens encrypted at rest and hands out valid access tokens to backup
jobs.
"""

from .app import OAuthCore
from .auth import (
    AuthFlowManager,
    EncryptionEngine,
    ProviderConfigRegistry,
    StateManager,
    TokenExchanger,
    TokenLifecycleManager,
    TokenVault,
)
from .config import AppSettings, AuthSettings, get_settings
from .exceptions import (
    AuthRequiredError,
    BackupOAuthError,
    DecryptionError,
    PermanentExchangeError,
    TransientExchangeError,
)
from .log import enable_debug, get_logger, set_level


__version__ = "0.1.0"

__all__ = [
    "AppSettings",
    "AuthFlowManager",
    "AuthRequiredError",
    "AuthSettings",
    "BackupOAuthError",
    "DecryptionError",
    "EncryptionEngine",
    "OAuthCore",
    "PermanentExchangeError",
    "ProviderConfigRegistry",
    "StateManager",
    "TokenExchanger",
    "TokenLifecycleManager",
    "TokenVault",
    "TransientExchangeError",
    "__version__",
    "enable_debug",
    "get_logger",
    "set_level",
]
