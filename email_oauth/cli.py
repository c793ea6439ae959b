"""CLI entry point for email-oauth."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
import click

from . import __version__
from .config import Settings, load_settings
from .oauth import OAuthError, OAuthManager
from .output import OutputHandler

# Logger for CLI
logger = logging.getLogger("email_oauth")


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--config-dir", "config_dir", type=click.Path(file_okay=False), help="Directory for tokens and client credentials")
@click.option("--env-file", "env_path", type=click.Path(exists=True), help="Path to .env file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, json_mode: bool, config_dir: str | None, env_path: str | None, verbose: bool) -> None:
    """email-oauth - Sign in to Gmail and Outlook accounts with OAuth."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["config_dir"] = Path(config_dir).expanduser() if config_dir else None
    ctx.obj["env_path"] = Path(env_path) if env_path else None
    ctx.obj["output"] = OutputHandler(json_mode)

    # Configure logging based on verbosity
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)


def get_settings(ctx: click.Context) -> Settings:
    """Get settings from context, handling errors."""
    output: OutputHandler = ctx.obj["output"]
    try:
        return load_settings(ctx.obj["config_dir"], ctx.obj["env_path"])
    except ValueError as e:
        output.error(
            e,
            error_type="ConfigError",
            help_text="Fix the EMAIL_OAUTH_* environment variables or your .env file.",
        )


def get_manager(ctx: click.Context) -> OAuthManager:
    """Build the OAuth manager, reusing one injected by tests."""
    manager = ctx.obj.get("manager")
    if manager is None:
        settings = get_settings(ctx)
        logger.debug(f"Using config directory {settings.config_dir}")
        manager = OAuthManager.from_settings(settings)
        ctx.obj["manager"] = manager
    return manager


@main.group()
@click.pass_context
def auth(ctx: click.Context) -> None:
    """Manage OAuth authentication for email accounts."""
    pass


@auth.command("setup")
@click.argument("provider")
@click.option("--client-id", help="OAuth client ID (prompted if omitted)")
@click.option("--client-secret", help="OAuth client secret (prompted if omitted)")
@click.pass_context
def auth_setup(ctx: click.Context, provider: str, client_id: str | None, client_secret: str | None) -> None:
    """Store OAuth client credentials for PROVIDER (google or microsoft).

    The credentials come from an OAuth app you register with the provider.
    Use a "Desktop" or "Public client" application type so that loopback
    redirect URIs (http://localhost:<port>/callback) are accepted.
    """
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx)

    config = manager.registry.get(provider)
    if config is None:
        output.error(
            ValueError(f"Unknown provider: {provider}"),
            help_text=f"Supported providers: {', '.join(manager.registry.names())}",
        )

    if ctx.obj["json_mode"] and (client_id is None or client_secret is None):
        output.error(
            ValueError("--client-id and --client-secret are required with --json"),
            error_type="UsageError",
            help_text=f"Run: email-oauth --json auth setup {config.name} --client-id ID --client-secret SECRET",
        )

    if client_id is None or client_secret is None:
        click.secho(f"\nConfigure OAuth client for {config.name}\n", bold=True)
        if config.console_url:
            click.echo(f"  Create credentials at: {config.console_url}")
        click.echo(f"  Required scopes: {config.scope_string}")
        click.echo()

    if client_id is None:
        client_id = click.prompt("Client ID", err=True)
    if client_secret is None:
        client_secret = click.prompt("Client Secret", hide_input=True, err=True)

    try:
        manager.save_client_config(config.name, client_id, client_secret)
    except ValueError as e:
        output.error(e)

    output.success(
        {"provider": config.name, "configured": True},
        human_message=click.style(f"Saved OAuth client for {config.name}.", fg="green"),
    )


@auth.command("login")
@click.argument("email")
@click.option("--no-browser", is_flag=True, help="Print the authorization URL instead of opening a browser")
@click.pass_context
def auth_login(ctx: click.Context, email: str, no_browser: bool) -> None:
    """Authenticate EMAIL by signing in through the browser.

    Opens the provider's consent page, waits for the redirect on a local
    port and stores the resulting tokens encrypted on disk.
    """
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx)

    if no_browser:
        manager.open_browser = lambda url: False

    try:
        result = asyncio.run(manager.run_oauth_flow(email, on_status=output.status))
    except OAuthError as e:
        output.error(e)
    except KeyboardInterrupt:
        click.echo("\nAuthentication cancelled.", err=True)
        raise SystemExit(130)

    human = click.style(f"Authenticated {result.email} ({result.provider}).", fg="green")
    if not result.has_refresh_token:
        human += (
            "\n" + click.style("Warning: ", fg="yellow") + "no refresh token was issued; "
            "you will need to sign in again when the access token expires."
        )
    output.success(result.to_dict(), human_message=human)


@auth.command("list")
@click.pass_context
def auth_list(ctx: click.Context) -> None:
    """List accounts with stored tokens."""
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx)

    output.account_list(
        [manager.get_account_status(email) for email in manager.list_stored_accounts()]
    )


@auth.command("status")
@click.argument("email")
@click.pass_context
def auth_status(ctx: click.Context, email: str) -> None:
    """Show authentication status for EMAIL. Never shows secrets."""
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx)

    output.account_status(manager.get_account_status(email))


@auth.command("refresh")
@click.argument("email")
@click.pass_context
def auth_refresh(ctx: click.Context, email: str) -> None:
    """Make sure EMAIL has a valid access token, refreshing if needed."""
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx)

    try:
        asyncio.run(manager.ensure_fresh_token(email))
    except OAuthError as e:
        output.error(e)

    status = manager.get_account_status(email)
    output.success(
        {"email": email, "expires_at": status.expires_at},
        human_message=click.style(
            f"Access token for {email} is valid ({status.expires_in_human}).", fg="green"
        ),
    )


@auth.command("revoke")
@click.argument("email")
@click.pass_context
def auth_revoke(ctx: click.Context, email: str) -> None:
    """Delete stored tokens for EMAIL.

    This only removes local tokens. To revoke access at the provider,
    remove the app from your account's security settings.
    """
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx)

    deleted = manager.delete_tokens(email)
    if deleted:
        output.success(
            {"email": email, "deleted": True},
            human_message=click.style(f"Removed tokens for {email}.", fg="green"),
        )
    else:
        output.success(
            {"email": email, "deleted": False},
            human_message=f"No tokens stored for {email}.",
        )


if __name__ == "__main__":
    main()
