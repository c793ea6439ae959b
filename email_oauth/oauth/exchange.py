"""Token endpoint client: authorization-code and refresh-token grants.

Both grants POST a form-encoded body to the provider's token endpoint and
validate the JSON reply into a TokenResponse. Error messages quote only
the ``error``/``error_description`` fields of a failed reply; the raw
body is kept on the exception but never formatted into text.
"""

import logging
from typing import Any

import httpx

from .errors import (
    MalformedTokenResponseError,
    RefreshTokenInvalidError,
    TokenEndpointError,
    TokenExchangeError,
    TokenRefreshError,
)
from .providers import ProviderConfig
from .tokens import ClientCredential, TokenResponse

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT = 30.0  # seconds

# Statuses meaning the refresh token itself is expired or revoked
INVALID_GRANT_STATUSES = frozenset({400, 401})


def _error_detail(response: httpx.Response) -> str:
    """Extract the safe error fields from a failed token response."""
    try:
        error_data = response.json()
    except ValueError:
        # Don't include raw response body - it might contain tokens or secrets
        return ""
    if not isinstance(error_data, dict):
        return ""
    error = error_data.get("error", "")
    description = error_data.get("error_description", "")
    if not error and not description:
        return ""
    return f": {error} - {description}" if description else f": {error}"


def _parse_success(response: httpx.Response) -> TokenResponse:
    try:
        data: Any = response.json()
    except ValueError as e:
        raise MalformedTokenResponseError(
            "Token endpoint returned a non-JSON body", status=response.status_code
        ) from e
    return TokenResponse.from_response(data)


class TokenExchanger:
    """Calls a provider's token endpoint.

    Usage:
        async with TokenExchanger() as exchanger:
            tokens = await exchanger.exchange_code(provider, client, code, redirect_uri, verifier)
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ):
        """Initialize the exchanger.

        Args:
            http_client: Optional shared client; owned by the caller if given
            timeout: Request timeout when creating a client per call
        """
        self._http_client = http_client
        self._owns_client = False
        self.timeout = timeout

    async def _post(self, provider: ProviderConfig, form: dict[str, str]) -> httpx.Response:
        http = self._http_client or httpx.AsyncClient(timeout=self.timeout)
        should_close = self._http_client is None
        try:
            return await http.post(
                provider.token_endpoint,
                data=form,
                headers={
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                },
            )
        finally:
            if should_close:
                await http.aclose()

    async def exchange_code(
        self,
        provider: ProviderConfig,
        client: ClientCredential,
        code: str,
        redirect_uri: str,
        code_verifier: str,
    ) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Args:
            provider: Provider whose token endpoint to call
            client: OAuth client credentials
            code: Authorization code from the callback
            redirect_uri: The redirect URI used in the authorization request
            code_verifier: PKCE code verifier

        Returns:
            Validated token response; refresh_token may be None

        Raises:
            TokenExchangeError: Non-2xx status or network failure
            MalformedTokenResponseError: 2xx without a usable access_token
        """
        form = {
            "client_id": client.client_id,
            "client_secret": client.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        }

        try:
            response = await self._post(provider, form)
        except httpx.RequestError as e:
            raise TokenExchangeError(f"Network error during token exchange: {e}") from e

        if not response.is_success:
            raise TokenExchangeError(
                f"Token exchange failed (HTTP {response.status_code}){_error_detail(response)}",
                status=response.status_code,
                body=response.text,
            )

        tokens = _parse_success(response)
        logger.debug(f"Exchanged authorization code with {provider.name}")
        return tokens

    async def refresh_token(
        self,
        provider: ProviderConfig,
        client: ClientCredential,
        refresh_token: str,
    ) -> TokenResponse:
        """Obtain a new access token with a refresh token.

        Args:
            provider: Provider whose token endpoint to call
            client: OAuth client credentials
            refresh_token: The stored refresh token

        Returns:
            Validated token response; refresh_token is set only if rotated

        Raises:
            RefreshTokenInvalidError: HTTP 400/401, the user must re-authenticate
            TokenRefreshError: Any other failure (may be transient)
            MalformedTokenResponseError: 2xx without a usable access_token
        """
        form = {
            "client_id": client.client_id,
            "client_secret": client.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            response = await self._post(provider, form)
        except httpx.RequestError as e:
            raise TokenRefreshError(f"Network error during token refresh: {e}") from e

        if not response.is_success:
            status = response.status_code
            detail = _error_detail(response)
            error_cls: type[TokenEndpointError] = (
                RefreshTokenInvalidError if status in INVALID_GRANT_STATUSES else TokenRefreshError
            )
            raise error_cls(
                f"Token refresh failed (HTTP {status}){detail}",
                status=status,
                body=response.text,
            )

        tokens = _parse_success(response)
        logger.debug(
            f"Refreshed access token with {provider.name}"
            f"{' (refresh token rotated)' if tokens.refresh_token else ''}"
        )
        return tokens

    async def __aenter__(self) -> "TokenExchanger":
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
            self._owns_client = False
