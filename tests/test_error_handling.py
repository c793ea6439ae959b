"""Tests for error handling scenarios across all modules."""

import json
import os
from pathlib import Path

import pytest
from click.testing import CliRunner

from email_oauth.cli import main
from email_oauth.oauth.errors import (
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


class TestErrorTaxonomy:
    """Tests for the OAuth exception hierarchy."""

    @pytest.mark.parametrize(
        "error_cls",
        [
            ProviderNotSupportedError,
            ClientNotConfiguredError,
            StoreCorruptedError,
            NoTokensFoundError,
            MissingRefreshTokenError,
            CallbackError,
            PortAllocationError,
            CallbackTimeoutError,
            CallbackStateMismatchError,
            TokenEndpointError,
            TokenExchangeError,
            TokenRefreshError,
            RefreshTokenInvalidError,
            MalformedTokenResponseError,
        ],
    )
    def test_all_errors_are_oauth_errors(self, error_cls: type[OAuthError]) -> None:
        """Test that callers can catch everything with OAuthError."""
        assert issubclass(error_cls, OAuthError)

    @pytest.mark.parametrize(
        "error",
        [
            NoTokensFoundError("x"),
            MissingRefreshTokenError("x"),
            RefreshTokenInvalidError("x", status=400),
        ],
    )
    def test_reauth_errors(self, error: OAuthError) -> None:
        """Test errors that only a new browser flow can fix."""
        assert error.requires_reauth

    @pytest.mark.parametrize(
        "error",
        [
            TokenRefreshError("x", status=503),
            TokenExchangeError("x"),
            CallbackTimeoutError("x"),
            ClientNotConfiguredError("x"),
            StoreCorruptedError("x"),
        ],
    )
    def test_retryable_errors(self, error: OAuthError) -> None:
        """Test errors that don't demand re-authentication."""
        assert not error.requires_reauth

    def test_invalid_refresh_token_is_a_refresh_error(self) -> None:
        """Test that generic refresh handlers also catch the invalid-token case."""
        assert issubclass(RefreshTokenInvalidError, TokenRefreshError)

    def test_str_includes_help_text(self) -> None:
        """Test that printing an error shows its remediation."""
        error = NoTokensFoundError("No tokens", help_text="Run: email-oauth auth login a@gmail.com")

        assert error.message == "No tokens"
        assert str(error) == "No tokens\nRun: email-oauth auth login a@gmail.com"

    def test_str_without_help_text(self) -> None:
        """Test plain error text."""
        assert str(StoreCorruptedError("bad data")) == "bad data"

    def test_consent_denied_message(self) -> None:
        """Test that the provider's error code and description are kept."""
        error = ConsentDeniedError("access_denied", "The user said no")

        assert error.error == "access_denied"
        assert error.error_description == "The user said no"
        assert "access_denied - The user said no" in error.message

    def test_endpoint_error_keeps_body_out_of_message(self) -> None:
        """Test that the raw body is available but not rendered."""
        error = TokenExchangeError("Token exchange failed (HTTP 500)", status=500, body="secret-body")

        assert error.status == 500
        assert error.body == "secret-body"
        assert "secret-body" not in str(error)


class TestCLIErrorDisplay:
    """Tests for how the CLI reports configuration errors."""

    @pytest.fixture(autouse=True)
    def isolated(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, clean_env: None) -> None:
        monkeypatch.chdir(tmp_path)

    def test_invalid_env_number_human(self, tmp_path: Path) -> None:
        """Test that a malformed setting exits with a readable error."""
        os.environ["EMAIL_OAUTH_CALLBACK_TIMEOUT"] = "forever"

        result = CliRunner().invoke(main, ["--config-dir", str(tmp_path), "auth", "list"])

        assert result.exit_code == 1
        assert "EMAIL_OAUTH_CALLBACK_TIMEOUT" in result.output

    def test_invalid_env_number_json(self, tmp_path: Path) -> None:
        """Test that a malformed setting is a structured error in JSON mode."""
        os.environ["EMAIL_OAUTH_REFRESH_BUFFER_MS"] = "-1"

        result = CliRunner().invoke(main, ["--json", "--config-dir", str(tmp_path), "auth", "list"])

        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["error"]["type"] == "ConfigError"

    def test_env_file_must_exist(self, tmp_path: Path) -> None:
        """Test that an explicit missing .env file is a usage error."""
        result = CliRunner().invoke(main, ["--env-file", str(tmp_path / "missing.env"), "auth", "list"])
        assert result.exit_code == 2

    def test_empty_config_dir_lists_nothing(self, tmp_path: Path) -> None:
        """Test that a fresh config directory works without setup."""
        result = CliRunner().invoke(main, ["--json", "--config-dir", str(tmp_path / "new"), "auth", "list"])

        assert result.exit_code == 0
        assert json.loads(result.output) == {"success": True, "data": []}
