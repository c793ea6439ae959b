"""Output formatters for human-readable and JSON output.

JSON mode writes exactly one document to stdout per command:
``{"success": true, "data": ...}`` or ``{"success": false, "error": {...}}``.
Progress messages and human-mode errors go to stderr.
"""

import json
import sys
from typing import Any, NoReturn, Sequence

import click

from .oauth.manager import AccountStatus


def error_payload(
    error: Exception,
    error_type: str | None = None,
    help_text: str | None = None,
) -> dict[str, Any]:
    """Describe an error without its help text baked into the message.

    OAuthError subclasses carry ``message``, ``help_text`` and
    ``requires_reauth``; other exceptions fall back to ``str(error)``.
    """
    return {
        "type": error_type or type(error).__name__,
        "message": getattr(error, "message", None) or str(error),
        "requires_reauth": bool(getattr(error, "requires_reauth", False)),
        "help": help_text or getattr(error, "help_text", None) or "",
    }


def format_json(data: Any) -> str:
    """Wrap data in a success envelope."""
    return json.dumps({"success": True, "data": data}, indent=2, default=str)


def format_error_json(
    error: Exception,
    error_type: str | None = None,
    help_text: str | None = None,
) -> str:
    """Wrap an error in a failure envelope."""
    return json.dumps(
        {"success": False, "error": error_payload(error, error_type, help_text)},
        indent=2,
    )


def _account_state(status: AccountStatus) -> str:
    """One-word token state for account tables."""
    if not status.authenticated:
        return "unreadable" if status.error else "not authenticated"
    if status.expired:
        return "expired" if status.has_refresh_token else "expired (no refresh)"
    return f"valid ({status.expires_in_human})"


class OutputHandler:
    """Handles output formatting based on mode (JSON or human)."""

    def __init__(self, json_mode: bool = False):
        self.json_mode = json_mode

    def status(self, message: str) -> None:
        """Progress message; silent in JSON mode."""
        if not self.json_mode:
            click.echo(message, err=True)

    def success(self, data: Any, human_message: str | None = None) -> None:
        """Output success response."""
        if self.json_mode:
            click.echo(format_json(data))
        elif human_message:
            click.echo(human_message)
        else:
            click.echo(json.dumps(data, indent=2, default=str))

    def error(
        self,
        error: Exception,
        error_type: str | None = None,
        help_text: str | None = None,
    ) -> NoReturn:
        """Output error response and exit with status 1."""
        if self.json_mode:
            click.echo(format_error_json(error, error_type, help_text))
        else:
            payload = error_payload(error, error_type, help_text)
            click.secho(f"Error: {payload['message']}", fg="red", err=True)
            if payload["help"]:
                click.echo(f"\n{payload['help']}", err=True)
        sys.exit(1)

    def table(self, headers: list[str], rows: list[list[str]]) -> None:
        """Output a table (JSON mode outputs a list of objects)."""
        if self.json_mode:
            click.echo(format_json([dict(zip(headers, row)) for row in rows]))
            return

        widths = [len(h) for h in headers]
        for row in rows:
            for i, cell in enumerate(row):
                widths[i] = max(widths[i], len(str(cell)))

        header_line = "  ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
        click.secho(header_line, bold=True)
        click.echo("-" * len(header_line))
        for row in rows:
            click.echo("  ".join(str(c).ljust(widths[i]) for i, c in enumerate(row)).rstrip())

    def account_list(self, statuses: Sequence[AccountStatus]) -> None:
        """Output stored accounts with their token state."""
        if self.json_mode:
            click.echo(format_json([s.to_dict() for s in statuses]))
            return

        if not statuses:
            click.echo("No authenticated accounts.")
            click.echo("\nTo add one: email-oauth auth login <email>")
            return

        self.table(
            ["Account", "Provider", "Token"],
            [[s.email, s.provider or "-", _account_state(s)] for s in statuses],
        )

    def account_status(self, status: AccountStatus) -> None:
        """Output the status of one account. Never shows secrets."""
        if self.json_mode:
            click.echo(format_json(status.to_dict()))
            return

        click.secho(f"\n{status.email}\n", bold=True)
        click.echo(f"  Provider: {status.provider or 'unsupported'}")
        if not status.authenticated:
            click.secho("  Authenticated: no", fg="red")
            if status.error:
                click.echo(f"  {status.error}")
            if status.provider:
                click.echo(f"\nTo authenticate: email-oauth auth login {status.email}")
            return

        click.secho("  Authenticated: yes", fg="green")
        click.secho(
            f"  Access token expires: {status.expires_at} ({status.expires_in_human})",
            fg="yellow" if status.expired else "green",
        )
        click.echo(f"  Refresh token: {'stored' if status.has_refresh_token else 'missing'}")
        if status.scopes:
            click.echo(f"  Scopes: {' '.join(status.scopes)}")
        if status.updated_ago_human:
            click.echo(f"  Last updated: {status.updated_ago_human}")
