"""Expiry-aware access token retrieval.

ensure_fresh_token() is the only call IMAP/SMTP wrappers need: it returns
the cached access token while it is comfortably valid and runs a refresh
grant otherwise. Refreshes for the same email are serialized within the
process, so a provider that rotates refresh tokens never sees the
superseded one presented twice. Separate processes are not coordinated.
"""

import asyncio
import logging
from typing import Callable

from .errors import (
    REAUTH_COMMAND,
    SETUP_COMMAND,
    ClientNotConfiguredError,
    MissingRefreshTokenError,
    NoTokensFoundError,
    ProviderNotSupportedError,
    RefreshTokenInvalidError,
    TokenRefreshError,
)
from .exchange import TokenExchanger
from .providers import ProviderConfig, ProviderRegistry
from .store import TokenStore
from .tokens import StoredTokenRecord, now_ms

logger = logging.getLogger(__name__)

# Refresh this long before the recorded expiry
REFRESH_BUFFER_MS = 60_000


class TokenRefresher:
    """Serves fresh access tokens, refreshing them when needed.

    Usage:
        refresher = TokenRefresher(registry, store)
        access_token = await refresher.ensure_fresh_token("user@gmail.com")
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        store: TokenStore,
        exchanger: TokenExchanger | None = None,
        buffer_ms: int = REFRESH_BUFFER_MS,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize the refresher.

        Args:
            registry: Provider lookup
            store: Token and client credential storage
            exchanger: Token endpoint client
            buffer_ms: Refresh-ahead buffer in milliseconds
            clock: Returns the current time in ms
        """
        self.registry = registry
        self.store = store
        self.exchanger = exchanger or TokenExchanger()
        self.buffer_ms = buffer_ms
        self.clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, email: str) -> asyncio.Lock:
        key = email.strip().lower()
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _is_fresh(self, record: StoredTokenRecord) -> bool:
        return not record.is_expired(self.buffer_ms, now=self.clock())

    def _provider_for(self, record: StoredTokenRecord) -> ProviderConfig:
        provider = self.registry.get(record.provider) or self.registry.detect_provider(record.email)
        if provider is None:
            raise ProviderNotSupportedError(
                f"Cannot refresh: unknown provider {record.provider!r} for {record.email}"
            )
        return provider

    async def ensure_fresh_token(self, email: str) -> str:
        """Return a currently valid access token for an account.

        Makes no network call while the cached token is outside the
        refresh-ahead buffer.

        Args:
            email: Account email

        Returns:
            Access token

        Raises:
            NoTokensFoundError: No (readable) record for the account
            MissingRefreshTokenError: Token expired and no refresh token stored
            RefreshTokenInvalidError: Provider rejected the refresh token
            TokenRefreshError: Other refresh failure (may be transient)
            ClientNotConfiguredError: Client credentials missing for the provider
        """
        record = self.store.load(email)
        if record is None:
            raise NoTokensFoundError(
                f"No OAuth tokens found for {email}",
                help_text=f"Authenticate with: {REAUTH_COMMAND.format(email=email)}",
            )

        if self._is_fresh(record):
            logger.debug(f"Using cached access token for {email}")
            return record.access_token

        async with self._lock_for(email):
            # Another caller may have refreshed while we waited
            record = self.store.load(email) or record
            if self._is_fresh(record):
                logger.debug(f"Access token for {email} was refreshed concurrently")
                return record.access_token

            return await self._refresh(record)

    async def _refresh(self, record: StoredTokenRecord) -> str:
        email = record.email
        reauth_hint = f"Re-authenticate with: {REAUTH_COMMAND.format(email=email)}"

        if not record.has_refresh_token():
            raise MissingRefreshTokenError(
                f"Cannot refresh: no refresh token stored for {email}",
                help_text=reauth_hint,
            )

        provider = self._provider_for(record)
        client = self.store.load_client_credential(provider.name)
        if client is None:
            raise ClientNotConfiguredError(
                f"Cannot refresh: no OAuth client configured for {provider.name}",
                help_text=f"Run the setup first: {SETUP_COMMAND.format(provider=provider.name)}",
            )

        logger.info(f"Access token for {email} expired or expiring, refreshing")
        issued = self.clock()
        try:
            tokens = await self.exchanger.refresh_token(provider, client, record.refresh_token)
        except RefreshTokenInvalidError as e:
            raise RefreshTokenInvalidError(
                f"Refresh token for {email} is invalid or revoked ({e.message})",
                status=e.status,
                body=e.body,
                help_text=reauth_hint,
            ) from e
        except TokenRefreshError as e:
            raise TokenRefreshError(
                f"Token refresh for {email} failed ({e.message})",
                status=e.status,
                body=e.body,
                help_text="This may be temporary; try again shortly.",
            ) from e

        updated = record.refreshed(tokens, now=issued)
        self.store.save(updated)

        logger.info(f"Token refreshed for {email}")
        return updated.access_token

    def is_token_expired(self, email: str) -> bool:
        """Check whether an account's token needs refreshing. Never refreshes.

        Returns:
            True if the token is within the buffer, past expiry, or missing
        """
        record = self.store.load(email)
        if record is None:
            return True
        return not self._is_fresh(record)
