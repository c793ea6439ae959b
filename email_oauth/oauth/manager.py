"""High-level OAuth manager for email accounts.

This module provides the interface other components use: the CLI runs
flows and inspects accounts through it, and the IMAP/SMTP wrappers only
ever call ensure_fresh_token().
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from ..config import Settings
from .crypto import SecretCipher
from .exchange import TokenExchanger
from .flow import AuthFlowController
from .providers import ProviderRegistry, default_registry
from .refresh import REFRESH_BUFFER_MS, TokenRefresher
from .store import TokenStore
from .tokens import ClientCredential, now_ms

logger = logging.getLogger(__name__)


def _format_timedelta(td: timedelta) -> str:
    """Format a timedelta into a human-readable string.

    Examples:
        - "45 minutes"
        - "2 hours"
        - "3 days"

    Args:
        td: The timedelta to format

    Returns:
        Human-readable string representation
    """
    total_seconds = int(td.total_seconds())

    if total_seconds < 0:
        return "Expired"

    if total_seconds < 60:
        return f"{total_seconds} seconds"

    minutes = total_seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"

    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''}"

    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''}"


def _format_time_ago(iso_timestamp: str) -> str | None:
    """Format an ISO timestamp as time ago from now, e.g. "3 hours ago"."""
    try:
        dt = datetime.fromisoformat(iso_timestamp)
    except ValueError:
        return None
    # Ensure dt is timezone-aware
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    diff = datetime.now(timezone.utc) - dt
    if diff.total_seconds() < 0:
        diff = timedelta(0)
    return _format_timedelta(diff) + " ago"


@dataclass
class AccountStatus:
    """Non-secret authentication status for one email account.

    Attributes:
        email: The account email
        provider: Provider name, or None if unknown/unsupported
        authenticated: Whether a readable token record exists
        expired: Whether the access token is within the refresh buffer
        expires_at: Access token expiry (ISO format string)
        expires_in_human: Human-readable time until expiry
        updated_ago_human: Human-readable time since the last save
        has_refresh_token: Whether a refresh token is stored
        scopes: Granted scopes
        error: Any error message
    """

    email: str
    provider: str | None = None
    authenticated: bool = False
    expired: bool = False
    expires_at: str | None = None
    expires_in_human: str | None = None
    updated_ago_human: str | None = None
    has_refresh_token: bool = False
    scopes: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "email": self.email,
            "provider": self.provider,
            "authenticated": self.authenticated,
            "expired": self.expired,
            "expires_at": self.expires_at,
            "expires_in_human": self.expires_in_human,
            "updated_ago_human": self.updated_ago_human,
            "has_refresh_token": self.has_refresh_token,
            "scopes": list(self.scopes),
            "error": self.error,
        }


@dataclass
class OAuthFlowResult:
    """Summary of a completed authorization (no secrets)."""

    email: str
    provider: str
    token_expiry: int
    scopes: list[str]
    has_refresh_token: bool

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "email": self.email,
            "provider": self.provider,
            "token_expiry": self.token_expiry,
            "scopes": list(self.scopes),
            "has_refresh_token": self.has_refresh_token,
        }


class OAuthManager:
    """Manages OAuth authentication for email accounts.

    This is the main interface for OAuth operations. It handles:
    - Checking whether an email can use OAuth
    - Running the browser flow for new accounts
    - Serving fresh access tokens, refreshing as needed
    - Managing stored tokens and client credentials

    Usage:
        manager = OAuthManager.from_settings(load_settings())

        # Authenticate once
        await manager.run_oauth_flow("user@gmail.com", on_status=print)

        # Before every IMAP/SMTP connection
        token = await manager.ensure_fresh_token("user@gmail.com")
    """

    def __init__(
        self,
        store: TokenStore,
        registry: ProviderRegistry | None = None,
        exchanger: TokenExchanger | None = None,
        callback_timeout: float = 300,
        refresh_buffer_ms: int = REFRESH_BUFFER_MS,
        open_browser: Callable[[str], bool] | None = None,
    ):
        """Initialize the manager.

        Args:
            store: Token and client credential storage
            registry: Provider lookup (default: built-in providers)
            exchanger: Token endpoint client
            callback_timeout: Seconds to wait for the browser redirect
            refresh_buffer_ms: Refresh-ahead buffer in milliseconds
            open_browser: Override for opening the authorization URL
        """
        self.store = store
        self.registry = registry or default_registry()
        self.exchanger = exchanger or TokenExchanger()
        self.callback_timeout = callback_timeout
        self.open_browser = open_browser
        self.refresher = TokenRefresher(
            self.registry, self.store, self.exchanger, buffer_ms=refresh_buffer_ms
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "OAuthManager":
        """Build a manager from resolved settings."""
        return cls(
            store=TokenStore(settings.config_dir, SecretCipher()),
            exchanger=TokenExchanger(timeout=settings.http_timeout),
            callback_timeout=settings.callback_timeout,
            refresh_buffer_ms=settings.refresh_buffer_ms,
        )

    # Token access

    async def ensure_fresh_token(self, email: str) -> str:
        """Return a valid access token, refreshing if needed.

        Raises:
            OAuthError: With ``requires_reauth`` set when the user must
                run the browser flow again
        """
        return await self.refresher.ensure_fresh_token(email)

    def is_token_expired(self, email: str) -> bool:
        """Check whether an account's token needs refreshing. Never refreshes."""
        return self.refresher.is_token_expired(email)

    # Account queries

    def is_oauth_supported(self, email: str) -> bool:
        """Check if OAuth is available for an email address."""
        return self.registry.is_supported(email)

    def has_tokens(self, email: str) -> bool:
        """Check if tokens are stored for an account."""
        return self.store.has(email)

    def list_stored_accounts(self) -> list[str]:
        """Get list of accounts with stored tokens."""
        return self.store.list_emails()

    def delete_tokens(self, email: str) -> bool:
        """Remove stored tokens for an account (local only).

        Returns:
            True if tokens were deleted, False if none were stored
        """
        deleted = self.store.delete(email)
        if deleted:
            logger.info(f"Removed OAuth tokens for {email}")
        return deleted

    def get_account_status(self, email: str) -> AccountStatus:
        """Get authentication status for an account.

        Args:
            email: The account email

        Returns:
            AccountStatus with current authentication state
        """
        provider = self.registry.detect_provider(email)
        record = self.store.load(email)

        if record is None:
            error = None
            if self.store.has(email):
                error = "Stored tokens could not be read; re-authenticate"
            elif provider is None:
                error = "OAuth is not supported for this email domain"
            return AccountStatus(
                email=email,
                provider=provider.name if provider else None,
                error=error,
            )

        remaining = timedelta(milliseconds=record.token_expiry - now_ms())
        expires_at = datetime.fromtimestamp(record.token_expiry / 1000, tz=timezone.utc)

        return AccountStatus(
            email=record.email,
            provider=record.provider,
            authenticated=True,
            expired=self.refresher.is_token_expired(email),
            expires_at=expires_at.isoformat(),
            expires_in_human=_format_timedelta(remaining),
            updated_ago_human=_format_time_ago(record.updated_at),
            has_refresh_token=record.has_refresh_token(),
            scopes=list(record.scopes),
        )

    # Flow

    async def run_oauth_flow(
        self,
        email: str,
        on_status: Callable[[str], None] | None = None,
    ) -> OAuthFlowResult:
        """Run the browser authorization flow for an account.

        Args:
            email: Account to authorize
            on_status: Callback for status messages

        Returns:
            OAuthFlowResult summary

        Raises:
            OAuthError: If authentication fails
        """
        controller_kwargs: dict[str, Any] = {}
        if self.open_browser is not None:
            controller_kwargs["open_browser"] = self.open_browser

        controller = AuthFlowController(
            self.registry,
            self.store,
            exchanger=self.exchanger,
            callback_timeout=self.callback_timeout,
            on_status=on_status,
            **controller_kwargs,
        )
        record = await controller.run(email)

        return OAuthFlowResult(
            email=record.email,
            provider=record.provider,
            token_expiry=record.token_expiry,
            scopes=list(record.scopes),
            has_refresh_token=record.has_refresh_token(),
        )

    # Client credentials

    def save_client_config(self, provider: str, client_id: str, client_secret: str) -> ClientCredential:
        """Store OAuth client credentials for a provider.

        Raises:
            ValueError: If the provider is unknown or a field is empty
        """
        config = self.registry.get(provider)
        if config is None:
            raise ValueError(
                f"Unknown provider: {provider}. Supported providers: {', '.join(self.registry.names())}"
            )
        if not client_id.strip():
            raise ValueError("Client ID is required")
        if not client_secret.strip():
            raise ValueError("Client Secret is required")

        credential = ClientCredential(config.name, client_id.strip(), client_secret.strip())
        self.store.save_client_credential(credential)
        logger.info(f"Saved OAuth client for {config.name}")
        return credential

    def load_client_config(self, provider: str) -> ClientCredential | None:
        """Load OAuth client credentials for a provider."""
        return self.store.load_client_credential(provider.strip().lower())
