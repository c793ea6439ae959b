"""OAuth 2.0 authorization for email accounts.

This package lets users sign in to Gmail and Outlook accounts through the
browser instead of using app passwords, keeps the resulting tokens
encrypted on disk, and hands IMAP/SMTP code a valid access token on demand.

Main Components:
    OAuthManager: High-level entry point for the CLI and mail clients
    AuthFlowController: Authorization code flow with PKCE
    TokenRefresher: Expiry-aware access token retrieval
    TokenStore: Encrypted per-account token storage
    ProviderRegistry: Email domain to provider lookup

Quick Start:
    from email_oauth.config import load_settings
    from email_oauth.oauth import OAuthManager

    manager = OAuthManager.from_settings(load_settings())

    # Authenticate once
    if not manager.has_tokens(email):
        await manager.run_oauth_flow(email, on_status=print)

    # Before every IMAP/SMTP connection
    access_token = await manager.ensure_fresh_token(email)
"""

from .callback import CallbackListener, CallbackResult, ListenerState, parse_callback_url
from .crypto import SecretCipher, machine_passphrase
from .errors import (
    CallbackError,
    CallbackStateMismatchError,
    CallbackTimeoutError,
    ClientNotConfiguredError,
    ConsentDeniedError,
    MalformedTokenResponseError,
    MissingRefreshTokenError,
    NoTokensFoundError,
    OAuthError,
    PortAllocationError,
    ProviderNotSupportedError,
    RefreshTokenInvalidError,
    StoreCorruptedError,
    TokenEndpointError,
    TokenExchangeError,
    TokenRefreshError,
)
from .exchange import TokenExchanger
from .flow import AuthFlowController, build_authorization_url
from .manager import AccountStatus, OAuthFlowResult, OAuthManager
from .pkce import PKCEPair, generate_code_challenge, generate_code_verifier, generate_pkce_pair, generate_state
from .providers import (
    GOOGLE_PROVIDER,
    MICROSOFT_PROVIDER,
    ProviderConfig,
    ProviderRegistry,
    default_registry,
)
from .refresh import REFRESH_BUFFER_MS, TokenRefresher
from .store import TokenStore
from .tokens import ClientCredential, StoredTokenRecord, TokenResponse

__all__ = [
    # Manager (main entry point)
    "OAuthManager",
    "AccountStatus",
    "OAuthFlowResult",
    # Flow
    "AuthFlowController",
    "build_authorization_url",
    # Refresh
    "TokenRefresher",
    "REFRESH_BUFFER_MS",
    # Exchange
    "TokenExchanger",
    # Providers
    "ProviderConfig",
    "ProviderRegistry",
    "default_registry",
    "GOOGLE_PROVIDER",
    "MICROSOFT_PROVIDER",
    # Tokens
    "StoredTokenRecord",
    "ClientCredential",
    "TokenResponse",
    # Storage
    "TokenStore",
    "SecretCipher",
    "machine_passphrase",
    # PKCE
    "generate_pkce_pair",
    "generate_code_verifier",
    "generate_code_challenge",
    "generate_state",
    "PKCEPair",
    # Callback
    "CallbackListener",
    "CallbackResult",
    "ListenerState",
    "parse_callback_url",
    # Errors
    "OAuthError",
    "ProviderNotSupportedError",
    "ClientNotConfiguredError",
    "StoreCorruptedError",
    "NoTokensFoundError",
    "MissingRefreshTokenError",
    "CallbackError",
    "PortAllocationError",
    "CallbackTimeoutError",
    "CallbackStateMismatchError",
    "ConsentDeniedError",
    "TokenEndpointError",
    "TokenExchangeError",
    "TokenRefreshError",
    "RefreshTokenInvalidError",
    "MalformedTokenResponseError",
]
