"""Exception hierarchy for the OAuth subsystem.

Every failure the subsystem can surface derives from OAuthError. Errors
that can only be fixed by running the browser flow again set
``requires_reauth`` so callers (the CLI, the IMAP/SMTP wrappers) can show
the right remediation instead of suggesting a retry.
"""

from __future__ import annotations

REAUTH_COMMAND = "email-oauth auth login {email}"
SETUP_COMMAND = "email-oauth auth setup {provider}"


class OAuthError(Exception):
    """Base exception for all OAuth errors.

    Attributes:
        message: Human-readable error description.
        help_text: Optional remediation hint shown to the user.
    """

    requires_reauth = False

    def __init__(self, message: str, help_text: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.help_text = help_text

    def __str__(self) -> str:
        if self.help_text:
            return f"{self.message}\n{self.help_text}"
        return self.message


class ProviderNotSupportedError(OAuthError):
    """No OAuth provider is known for the email's domain."""

    pass


class ClientNotConfiguredError(OAuthError):
    """No OAuth client id/secret has been set up for the provider."""

    pass


class StoreCorruptedError(OAuthError):
    """Stored data could not be decrypted or parsed."""

    pass


class NoTokensFoundError(OAuthError):
    """No token record exists for the account."""

    requires_reauth = True


class MissingRefreshTokenError(OAuthError):
    """The access token expired and no refresh token is stored."""

    requires_reauth = True


# Callback listener errors


class CallbackError(OAuthError):
    """Error while waiting for the authorization redirect."""

    pass


class PortAllocationError(CallbackError):
    """No loopback port could be bound for the callback listener."""

    pass


class CallbackTimeoutError(CallbackError):
    """No valid redirect arrived before the timeout."""

    pass


class CallbackStateMismatchError(CallbackError):
    """Redirect was missing the code or carried an unexpected state."""

    pass


class ConsentDeniedError(CallbackError):
    """The provider redirected back with an ``error`` parameter."""

    def __init__(
        self,
        error: str,
        error_description: str | None = None,
        help_text: str | None = None,
    ) -> None:
        self.error = error
        self.error_description = error_description
        message = f"Authorization denied by provider: {error}"
        if error_description:
            message += f" - {error_description}"
        super().__init__(message, help_text)


# Token endpoint errors


class TokenEndpointError(OAuthError):
    """Error talking to a provider's token endpoint.

    Attributes:
        status: HTTP status code, or None for network failures.
        body: Raw response body. Kept for inspection only; never put in
            the message since it may carry secrets.
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        body: str | None = None,
        help_text: str | None = None,
    ) -> None:
        super().__init__(message, help_text)
        self.status = status
        self.body = body


class TokenExchangeError(TokenEndpointError):
    """Authorization code exchange failed."""

    pass


class TokenRefreshError(TokenEndpointError):
    """Refresh grant failed for a reason that may be transient."""

    pass


class RefreshTokenInvalidError(TokenRefreshError):
    """Refresh token was rejected (HTTP 400/401): expired or revoked."""

    requires_reauth = True


class MalformedTokenResponseError(TokenEndpointError):
    """Token endpoint answered 2xx without a usable ``access_token``."""

    pass
