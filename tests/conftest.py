"""Shared fixtures and utilities for email-oauth tests."""

import os
from collections.abc import Generator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from email_oauth.oauth.crypto import SecretCipher
from email_oauth.oauth.exchange import TokenExchanger
from email_oauth.oauth.providers import default_registry, ProviderRegistry
from email_oauth.oauth.store import TokenStore
from email_oauth.oauth.tokens import ClientCredential, StoredTokenRecord, TokenResponse, now_ms

# Cheap scrypt cost so tests don't spend seconds deriving keys
TEST_SCRYPT_N = 2**4


# ============================================================================
# Storage Fixtures
# ============================================================================


@pytest.fixture
def cipher() -> SecretCipher:
    """Create a cipher with a fixed passphrase and low work factor."""
    return SecretCipher(passphrase="test-passphrase", n=TEST_SCRYPT_N)


@pytest.fixture
def temp_store(tmp_path: Path, cipher: SecretCipher) -> TokenStore:
    """Create a token store in a temporary directory."""
    return TokenStore(config_dir=tmp_path / "email-oauth", cipher=cipher)


@pytest.fixture
def registry() -> ProviderRegistry:
    """Registry with the built-in providers."""
    return default_registry()


@pytest.fixture
def google_client() -> ClientCredential:
    """Client credentials for the google provider."""
    return ClientCredential(provider="google", client_id="cid.apps.googleusercontent.com", client_secret="csecret")


@pytest.fixture
def configured_store(temp_store: TokenStore, google_client: ClientCredential) -> TokenStore:
    """Token store with google client credentials saved."""
    temp_store.save_client_credential(google_client)
    return temp_store


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def fresh_record() -> StoredTokenRecord:
    """A google record whose access token is valid for another hour."""
    return StoredTokenRecord(
        email="user@gmail.com",
        provider="google",
        access_token="AT0",
        refresh_token="RT0",
        token_expiry=now_ms() + 3600 * 1000,
        scopes=["https://mail.google.com/"],
    )


@pytest.fixture
def expired_record(fresh_record: StoredTokenRecord) -> StoredTokenRecord:
    """A google record whose access token expired a minute ago."""
    return StoredTokenRecord(
        email=fresh_record.email,
        provider=fresh_record.provider,
        access_token="AT_OLD",
        refresh_token="RT_OLD",
        token_expiry=now_ms() - 60 * 1000,
        scopes=list(fresh_record.scopes),
    )


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_exchanger() -> MagicMock:
    """Token exchanger with both grants mocked."""
    exchanger = MagicMock(spec=TokenExchanger)
    exchanger.exchange_code = AsyncMock(
        return_value=TokenResponse(access_token="AT1", refresh_token="RT1", expires_in=3600)
    )
    exchanger.refresh_token = AsyncMock(
        return_value=TokenResponse(access_token="AT_NEW", expires_in=3600)
    )
    return exchanger


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Temporarily clear EMAIL_OAUTH_* environment variables."""
    old_env = os.environ.copy()
    for key in list(os.environ.keys()):
        if key.startswith("EMAIL_OAUTH_"):
            del os.environ[key]
    yield
    os.environ.clear()
    os.environ.update(old_env)
