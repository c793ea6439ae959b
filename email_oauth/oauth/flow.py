"""OAuth authorization code flow with PKCE.

This module orchestrates one complete browser authorization:
1. Detect the provider from the email domain
2. Load the provider's client credentials
3. Start the loopback callback listener
4. Generate PKCE pair and CSRF state
5. Build authorization URL and open browser
6. Wait for callback with authorization code
7. Exchange code for tokens
8. Store tokens securely
"""

import logging
import webbrowser
from typing import Callable
from urllib.parse import urlencode

from .callback import DEFAULT_TIMEOUT, CallbackListener
from .errors import SETUP_COMMAND, ClientNotConfiguredError, ProviderNotSupportedError
from .exchange import TokenExchanger
from .pkce import generate_pkce_pair, generate_state
from .providers import ProviderConfig, ProviderRegistry
from .store import TokenStore
from .tokens import ClientCredential, StoredTokenRecord, now_ms, utc_now_iso

logger = logging.getLogger(__name__)


def build_authorization_url(
    provider: ProviderConfig,
    client: ClientCredential,
    redirect_uri: str,
    code_challenge: str,
    state: str,
) -> str:
    """Build the authorization URL for browser redirect.

    Requests offline access and forces the consent prompt so the provider
    issues a refresh token even on repeat authorizations.

    Args:
        provider: Provider to authorize with
        client: Client credentials (only the id is sent)
        redirect_uri: The callback URI
        code_challenge: PKCE code challenge
        state: State parameter for CSRF protection

    Returns:
        Complete authorization URL
    """
    params: dict[str, str] = {
        "client_id": client.client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": provider.scope_string,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "access_type": "offline",
        "prompt": "consent",
    }
    return f"{provider.authorization_endpoint}?{urlencode(params)}"


class AuthFlowController:
    """Runs the authorization code flow for one email account.

    Usage:
        controller = AuthFlowController(registry, store)
        record = await controller.run("user@gmail.com")
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        store: TokenStore,
        exchanger: TokenExchanger | None = None,
        callback_timeout: float = DEFAULT_TIMEOUT,
        open_browser: Callable[[str], bool] = webbrowser.open,
        listener_factory: Callable[[], CallbackListener] = CallbackListener,
        on_status: Callable[[str], None] | None = None,
    ):
        """Initialize the controller.

        Args:
            registry: Provider lookup
            store: Token and client credential storage
            exchanger: Token endpoint client
            callback_timeout: Seconds to wait for the browser redirect
            open_browser: Opens a URL, returning False if it could not
            listener_factory: Creates the callback listener
            on_status: Optional callback for status messages
        """
        self.registry = registry
        self.store = store
        self.exchanger = exchanger or TokenExchanger()
        self.callback_timeout = callback_timeout
        self.open_browser = open_browser
        self.listener_factory = listener_factory
        self.on_status = on_status or (lambda msg: None)

    def _emit_status(self, message: str) -> None:
        """Emit a status message."""
        logger.info(message)
        self.on_status(message)

    def _present_url(self, provider: ProviderConfig, auth_url: str) -> None:
        """Open the browser; print the URL when that is not possible."""
        self._emit_status(f"Opening browser for {provider.name} authorization...")
        try:
            opened = self.open_browser(auth_url)
        except Exception as e:
            logger.warning(f"Could not open browser: {e}")
            opened = False

        if not opened:
            self._emit_status(
                f"Could not open browser. Please open this URL manually:\n{auth_url}"
            )

    async def run(self, email: str) -> StoredTokenRecord:
        """Execute the complete OAuth flow.

        Args:
            email: Account to authorize

        Returns:
            The stored token record (decrypted form)

        Raises:
            ProviderNotSupportedError: Unknown email domain
            ClientNotConfiguredError: No client credentials for the provider
            CallbackError: Listener, consent or state failure
            TokenEndpointError: Code exchange failure
        """
        # Step 1: Detect provider
        provider = self.registry.detect_provider(email)
        if provider is None:
            raise ProviderNotSupportedError(
                f"OAuth is not supported for {email}",
                help_text=f"Supported providers: {self.registry.describe()}",
            )

        # Step 2: Load client credentials
        client = self.store.load_client_credential(provider.name)
        if client is None:
            raise ClientNotConfiguredError(
                f"No OAuth client configured for {provider.name}",
                help_text=f"Run the setup first: {SETUP_COMMAND.format(provider=provider.name)}",
            )

        # Step 3: Start callback listener
        listener = self.listener_factory()
        try:
            port = await listener.start()
            redirect_uri = listener.redirect_uri
            logger.debug(f"Callback listener bound to port {port}")

            # Step 4: Generate PKCE and state
            pkce = generate_pkce_pair()
            state = generate_state()

            # Step 5: Build authorization URL and present it
            auth_url = build_authorization_url(
                provider, client, redirect_uri, pkce.challenge, state
            )
            self._present_url(provider, auth_url)

            # Step 6: Wait for callback
            self._emit_status("Waiting for authorization...")
            code = await listener.await_callback(state, timeout=self.callback_timeout)
        finally:
            await listener.close()

        # Step 7: Exchange code for tokens
        self._emit_status("Exchanging authorization code for tokens...")
        issued = now_ms()
        tokens = await self.exchanger.exchange_code(
            provider, client, code, redirect_uri, pkce.verifier
        )

        # Step 8: Create and store record, keeping a prior refresh token
        # when the provider did not issue a new one
        existing = self.store.load(email)
        timestamp = utc_now_iso()
        refresh_token = tokens.refresh_token or ""
        if not refresh_token and existing is not None:
            refresh_token = existing.refresh_token

        record = StoredTokenRecord(
            email=email,
            provider=provider.name,
            access_token=tokens.access_token,
            refresh_token=refresh_token,
            token_expiry=tokens.expiry_from(issued),
            scopes=list(provider.scopes),
            created_at=existing.created_at if existing is not None else timestamp,
            updated_at=timestamp,
        )
        self.store.save(record)

        if not record.has_refresh_token():
            logger.warning(
                f"{provider.name} issued no refresh token for {email}; "
                f"the account will need to re-authenticate when the access token expires"
            )

        self._emit_status(f"OAuth tokens saved for {email}")
        return record
