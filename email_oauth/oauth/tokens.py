"""OAuth token data structures and utilities.

This module provides the StoredTokenRecord dataclass for the per-account
token record, ClientCredential for per-provider OAuth clients, and
TokenResponse, the validated form of a token endpoint reply.

Expiry instants are integer milliseconds since the epoch.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from .errors import MalformedTokenResponseError

logger = logging.getLogger(__name__)

# Providers that omit expires_in get this lifetime
DEFAULT_EXPIRES_IN = 3600  # seconds


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class TokenResponse:
    """Validated token endpoint response.

    Attributes:
        access_token: The new access token
        expires_in: Lifetime of the access token in seconds
        refresh_token: Refresh token, if the provider issued (or rotated) one
        scope: Granted scopes as returned by the provider
    """

    access_token: str
    expires_in: int = DEFAULT_EXPIRES_IN
    refresh_token: str | None = None
    scope: str | None = None

    @classmethod
    def from_response(cls, data: Any) -> "TokenResponse":
        """Validate a token endpoint JSON body.

        Args:
            data: Decoded JSON from the token endpoint

        Returns:
            TokenResponse instance

        Raises:
            MalformedTokenResponseError: If access_token is missing or a
                field has the wrong type
        """
        if not isinstance(data, dict):
            raise MalformedTokenResponseError("Token response is not a JSON object")

        access_token = data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise MalformedTokenResponseError("No access token in token response")

        refresh_token = data.get("refresh_token")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise MalformedTokenResponseError("refresh_token in token response is not a string")

        expires_in = DEFAULT_EXPIRES_IN
        raw_expires = data.get("expires_in")
        if raw_expires is not None:
            try:
                expires_in = int(raw_expires)
            except (TypeError, ValueError) as e:
                raise MalformedTokenResponseError(
                    f"expires_in in token response is not a number: {raw_expires!r}"
                ) from e
            if expires_in <= 0:
                expires_in = DEFAULT_EXPIRES_IN

        scope = data.get("scope")

        return cls(
            access_token=access_token,
            expires_in=expires_in,
            refresh_token=refresh_token or None,
            scope=scope if isinstance(scope, str) else None,
        )

    def expiry_from(self, issued_ms: int) -> int:
        """Absolute expiry in ms for a token issued at ``issued_ms``."""
        return issued_ms + self.expires_in * 1000


@dataclass
class StoredTokenRecord:
    """Token record for one email account.

    This is the decrypted, in-memory form. TokenStore encrypts the two
    token fields before anything touches disk.

    Attributes:
        email: Account email (unique key)
        provider: Provider name (e.g. "google")
        access_token: Current access token
        refresh_token: Refresh token ("" if the provider never issued one)
        token_expiry: Access token expiry, ms since epoch
        scopes: Granted scopes
        created_at: ISO timestamp of the first authorization
        updated_at: ISO timestamp of the last save
    """

    email: str
    provider: str
    access_token: str
    refresh_token: str
    token_expiry: int
    scopes: list[str] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    def is_expired(self, buffer_ms: int = 0, now: int | None = None) -> bool:
        """Check if the access token is expired or expires within the buffer.

        Args:
            buffer_ms: Treat the token as expired this long before expiry
            now: Current time in ms (default: now_ms())

        Returns:
            True if the token must be refreshed before use
        """
        current = now_ms() if now is None else now
        return current >= self.token_expiry - buffer_ms

    def has_refresh_token(self) -> bool:
        """Check if this record has a refresh token."""
        return bool(self.refresh_token)

    def refreshed(self, response: TokenResponse, now: int | None = None) -> "StoredTokenRecord":
        """Merge a refresh-grant response into a copy of this record.

        The refresh token is replaced only if the provider rotated it.

        Args:
            response: Validated refresh response
            now: Issue time in ms (default: now_ms())

        Returns:
            Updated record
        """
        issued = now_ms() if now is None else now
        return replace(
            self,
            access_token=response.access_token,
            token_expiry=response.expiry_from(issued),
            refresh_token=response.refresh_token or self.refresh_token,
            updated_at=utc_now_iso(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the on-disk field layout (secrets still plaintext)."""
        return {
            "email": self.email,
            "provider": self.provider,
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "tokenExpiry": self.token_expiry,
            "scopes": list(self.scopes),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StoredTokenRecord":
        """Deserialize from the on-disk field layout.

        Raises:
            KeyError: If a required field is missing
            ValueError: If tokenExpiry is not a number
        """
        now = utc_now_iso()
        return cls(
            email=data["email"],
            provider=data["provider"],
            access_token=data["accessToken"],
            refresh_token=data.get("refreshToken") or "",
            token_expiry=int(data["tokenExpiry"]),
            scopes=list(data.get("scopes") or []),
            created_at=data.get("createdAt") or now,
            updated_at=data.get("updatedAt") or now,
        )


@dataclass
class ClientCredential:
    """OAuth client registered with a provider.

    One per provider, created by `email-oauth auth setup`.
    """

    provider: str
    client_id: str
    client_secret: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the on-disk field layout (secret still plaintext)."""
        return {
            "provider": self.provider,
            "clientId": self.client_id,
            "clientSecret": self.client_secret,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClientCredential":
        """Deserialize credentials from dictionary."""
        return cls(
            provider=data["provider"],
            client_id=data["clientId"],
            client_secret=data.get("clientSecret") or "",
        )
