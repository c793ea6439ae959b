"""One-shot loopback listener for the OAuth authorization redirect.

The listener binds 127.0.0.1 on an OS-assigned port and accepts exactly
one decisive request on its callback path:

    IDLE -> LISTENING -> RESOLVED | DENIED | MISMATCHED | TIMED_OUT | CANCELLED

Every terminal state is entered through ``_finish``, which closes the
listening socket exactly once. After that no further request is
processed and new connections are refused. Requests to any other path
(favicon, prefetch) get a 404 and leave the state untouched.
"""

import asyncio
import hmac
import html
import logging
from dataclasses import dataclass
from enum import Enum
from http import HTTPStatus
from typing import Any
from urllib.parse import parse_qs, urlparse

from .errors import (
    CallbackError,
    CallbackStateMismatchError,
    CallbackTimeoutError,
    ConsentDeniedError,
    PortAllocationError,
)

logger = logging.getLogger(__name__)

# Time the user has to finish the browser consent
DEFAULT_TIMEOUT = 300  # seconds

# Idle connections (browser preconnects) are dropped after this long
REQUEST_READ_TIMEOUT = 10  # seconds

CALLBACK_PATH = "/callback"


class ListenerState(Enum):
    """Lifecycle of a CallbackListener."""

    IDLE = "idle"
    LISTENING = "listening"
    RESOLVED = "resolved"
    DENIED = "denied"
    MISMATCHED = "mismatched"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (ListenerState.IDLE, ListenerState.LISTENING)


@dataclass
class CallbackResult:
    """Query parameters of an authorization redirect.

    Attributes:
        code: The authorization code from the callback
        state: The state parameter from the callback
        error: Error code if authorization failed
        error_description: Human-readable error description
    """

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    def is_success(self) -> bool:
        """Check if callback was successful."""
        return self.code is not None and self.error is None


# HTML templates for callback responses
SUCCESS_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Authentication Successful</title>
    <style>
        body {
            font-family: system-ui, -apple-system, 'Segoe UI', Roboto, sans-serif;
            display: flex;
            justify-content: center;
            align-items: center;
            height: 100vh;
            margin: 0;
            background: #f0fdf4;
        }
        .card { text-align: center; max-width: 400px; }
        h1 { color: #16a34a; }
    </style>
</head>
<body>
    <div class="card">
        <h1>Authentication Successful</h1>
        <p>You can close this window and return to your terminal.</p>
    </div>
</body>
</html>"""

ERROR_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Authentication Failed</title>
    <style>
        body {{
            font-family: system-ui, -apple-system, 'Segoe UI', Roboto, sans-serif;
            display: flex;
            justify-content: center;
            align-items: center;
            height: 100vh;
            margin: 0;
            background: #fef2f2;
        }}
        .card {{ text-align: center; max-width: 400px; }}
        h1 {{ color: #dc2626; }}
        .error {{ font-family: monospace; color: #b91c1c; }}
    </style>
</head>
<body>
    <div class="card">
        <h1>Authentication Failed</h1>
        <p class="error">{message}</p>
        <p>Please close this window and try again.</p>
    </div>
</body>
</html>"""


def render_error_page(message: str) -> str:
    """Render the failure page with the message HTML-escaped."""
    return ERROR_HTML.format(message=html.escape(message))


def parse_callback_url(url: str) -> CallbackResult:
    """Parse OAuth callback URL parameters.

    Args:
        url: The callback URL (or request target) with query parameters

    Returns:
        CallbackResult with parsed parameters
    """
    parsed = urlparse(url)
    params = parse_qs(parsed.query)

    def get_param(name: str) -> str | None:
        values = params.get(name, [])
        return values[0] if values else None

    return CallbackResult(
        code=get_param("code"),
        state=get_param("state"),
        error=get_param("error"),
        error_description=get_param("error_description"),
    )


def _states_match(received: str | None, expected: str | None) -> bool:
    if not received or not expected:
        return False
    # Constant-time comparison; bytes so non-ASCII input cannot raise
    return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))


class CallbackListener:
    """Ephemeral HTTP listener for a single OAuth redirect.

    Usage:
        listener = CallbackListener()
        port = await listener.start()
        # open browser with listener.redirect_uri
        code = await listener.await_callback(state, timeout=300)

    The listener is owned by one flow; ``close()`` is safe to call at any
    point and is what shutdown paths (Ctrl+C) rely on.
    """

    def __init__(
        self,
        path: str = CALLBACK_PATH,
        host: str = "127.0.0.1",
        redirect_host: str = "localhost",
    ):
        """Initialize the listener.

        Args:
            path: URL path to listen on (default "/callback")
            host: Interface to bind (loopback)
            redirect_host: Host name used in the redirect URI
        """
        self.path = path
        self.host = host
        self.redirect_host = redirect_host
        self.port: int = 0

        self._state = ListenerState.IDLE
        self._server: asyncio.Server | None = None
        self._outcome: asyncio.Future[str] | None = None
        self._armed: asyncio.Event | None = None
        self._expected_state: str | None = None
        self._connections: set[asyncio.StreamWriter] = set()

    @property
    def state(self) -> ListenerState:
        """Current lifecycle state."""
        return self._state

    @property
    def redirect_uri(self) -> str:
        """Redirect URI to register in the authorization request."""
        return f"http://{self.redirect_host}:{self.port}{self.path}"

    async def start(self) -> int:
        """Bind the loopback socket and start accepting connections.

        Returns:
            The OS-assigned port

        Raises:
            PortAllocationError: If no loopback port can be bound
            CallbackError: If the listener was already started
        """
        if self._state is not ListenerState.IDLE:
            raise CallbackError("Callback listener can only be started once")

        self._outcome = asyncio.get_running_loop().create_future()
        self._armed = asyncio.Event()

        try:
            # port=0 lets the OS assign a free port atomically
            self._server = await asyncio.start_server(self._handle_connection, self.host, 0)
        except OSError as e:
            raise PortAllocationError(
                f"Could not bind a loopback port for the OAuth callback: {e}"
            ) from e

        sockets = self._server.sockets
        if not sockets:
            self._server.close()
            self._server = None
            raise PortAllocationError("Failed to start callback listener: no sockets created")

        self.port = sockets[0].getsockname()[1]
        self._state = ListenerState.LISTENING

        logger.debug(f"Callback listener started on {self.host}:{self.port}")
        return self.port

    async def await_callback(self, expected_state: str, timeout: float = DEFAULT_TIMEOUT) -> str:
        """Wait for the authorization redirect.

        The listener is closed when this returns or raises.

        Args:
            expected_state: The CSRF state sent in the authorization request
            timeout: Seconds to wait for a decisive request

        Returns:
            The authorization code

        Raises:
            ConsentDeniedError: The redirect carried an ``error`` parameter
            CallbackStateMismatchError: Missing code or unexpected state
            CallbackTimeoutError: Nothing decisive arrived in time
            CallbackError: The listener was not started or was closed
        """
        if self._outcome is None or self._armed is None:
            raise CallbackError("Callback listener not started")

        self._expected_state = expected_state
        self._armed.set()

        try:
            done, _ = await asyncio.wait({self._outcome}, timeout=timeout)
            if not done:
                self._finish(
                    ListenerState.TIMED_OUT,
                    error=CallbackTimeoutError(
                        f"OAuth flow timed out after {timeout:g} seconds. Please try again."
                    ),
                )
        finally:
            await self.close()

        return self._outcome.result()

    async def close(self) -> None:
        """Stop the listener. Idempotent.

        A listener still waiting for its redirect moves to CANCELLED.
        """
        self._finish(
            ListenerState.CANCELLED,
            error=CallbackError("Callback listener closed before the redirect arrived"),
        )

        if self._server is not None:
            server, self._server = self._server, None
            await server.wait_closed()
            logger.debug("Callback listener stopped")

    def _finish(
        self,
        terminal: ListenerState,
        code: str | None = None,
        error: Exception | None = None,
        keep: asyncio.StreamWriter | None = None,
    ) -> bool:
        """Leave LISTENING for a terminal state. No-op unless LISTENING.

        Args:
            terminal: Terminal state to enter
            code: Authorization code (RESOLVED only)
            error: Exception for every other terminal state
            keep: Connection still owed a response

        Returns:
            True if this call performed the transition
        """
        if self._state is not ListenerState.LISTENING:
            return False

        self._state = terminal

        if self._server is not None:
            self._server.close()
        for writer in list(self._connections):
            if writer is not keep:
                writer.close()

        assert self._outcome is not None and self._armed is not None
        if error is not None:
            self._outcome.set_exception(error)
            if terminal is ListenerState.CANCELLED:
                # no waiter will read it
                self._outcome.exception()
        else:
            self._outcome.set_result(code or "")

        # Wake handlers parked until await_callback() supplied the state
        self._armed.set()

        logger.debug(f"Callback listener finished: {terminal.value}")
        return True

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle incoming HTTP connection."""
        self._connections.add(writer)
        try:
            if self._state is not ListenerState.LISTENING:
                return

            try:
                request_line = await asyncio.wait_for(reader.readline(), REQUEST_READ_TIMEOUT)
                # Read headers (consume them but we don't need them)
                while True:
                    header_line = await asyncio.wait_for(reader.readline(), REQUEST_READ_TIMEOUT)
                    if header_line in (b"\r\n", b"\n", b""):
                        break
            except TimeoutError:
                return

            if self._state is not ListenerState.LISTENING:
                return

            # Parse request line (e.g., "GET /callback?code=xxx HTTP/1.1")
            parts = request_line.decode("utf-8", errors="replace").strip().split(" ")
            if len(parts) < 2:
                await self._send_response(writer, HTTPStatus.BAD_REQUEST, "Invalid request")
                return

            method, target = parts[0], parts[1]

            if urlparse(target).path != self.path:
                await self._send_response(writer, HTTPStatus.NOT_FOUND, "Not found")
                return

            if method != "GET":
                await self._send_response(
                    writer, HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed"
                )
                return

            # A redirect can beat await_callback(); hold it until the state is known
            assert self._armed is not None
            await self._armed.wait()
            if self._state is not ListenerState.LISTENING:
                return

            await self._resolve(writer, parse_callback_url(target))

        except Exception as e:
            logger.warning(f"Error handling callback request: {e}")

        finally:
            self._connections.discard(writer)
            try:
                writer.close()
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    async def _resolve(self, writer: asyncio.StreamWriter, result: CallbackResult) -> None:
        """Decide the flow outcome from a callback request and answer it."""
        if result.error:
            self._finish(
                ListenerState.DENIED,
                error=ConsentDeniedError(result.error, result.error_description),
                keep=writer,
            )
            description = result.error_description or result.error
            await self._send_html(
                writer, HTTPStatus.OK, render_error_page(f"{result.error}: {description}")
            )
            return

        if not result.code or not _states_match(result.state, self._expected_state):
            self._finish(
                ListenerState.MISMATCHED,
                error=CallbackStateMismatchError(
                    "Invalid callback: missing code or state mismatch (possible CSRF attack)"
                ),
                keep=writer,
            )
            await self._send_html(
                writer,
                HTTPStatus.BAD_REQUEST,
                render_error_page("Invalid callback: missing code or state mismatch"),
            )
            return

        self._finish(ListenerState.RESOLVED, code=result.code, keep=writer)
        await self._send_html(writer, HTTPStatus.OK, SUCCESS_HTML)

    async def _send_response(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        body: str,
    ) -> None:
        """Send a plain text HTTP response."""
        payload = body.encode("utf-8")
        response = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: text/plain; charset=utf-8\r\n"
            f"Content-Length: {len(payload)}\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(response.encode("utf-8") + payload)
        await writer.drain()

    async def _send_html(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        html_content: str,
    ) -> None:
        """Send an HTML HTTP response with security headers."""
        body = html_content.encode("utf-8")
        headers = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: text/html; charset=utf-8\r\n"
            f"Content-Length: {len(body)}\r\n"
            f"X-Content-Type-Options: nosniff\r\n"
            f"X-Frame-Options: DENY\r\n"
            f"Content-Security-Policy: default-src 'none'; style-src 'unsafe-inline'\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(headers.encode("utf-8") + body)
        await writer.drain()

    async def __aenter__(self) -> "CallbackListener":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
