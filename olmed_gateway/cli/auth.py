"""olmed-gateway auth command - Olmed API login and logout."""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from olmed_gateway.cli.error_handler import AuthenticationError, ConfigurationError, handle_errors

app = typer.Typer(help="Log in to or out of the Olmed API.")
console = Console()


@app.command("login")
@handle_errors
def login() -> None:
    """Log in with the configured credentials and show the issued token's expiry.

    Example:
        olmed-gateway auth login
    """
    from olmed_gateway.auth.olmed_auth import OlmedAuthClient
    from olmed_gateway.auth.token_store import TokenStore
    from olmed_gateway.config import get_config
    from olmed_gateway.daemon.service import create_http_client

    config = get_config()
    if not config.olmed.has_credentials:
        raise ConfigurationError(
            "Olmed credentials are not configured",
            details={"hint": "set olmed.username and olmed.password or OLMED_GATEWAY_USERNAME/PASSWORD"},
        )

    async def _login():
        async with create_http_client(config) as client:
            return await OlmedAuthClient(client, TokenStore(), config.olmed).login()

    result = asyncio.run(_login())
    if not result.success:
        raise AuthenticationError(result.message, details={"status_code": result.status_code})

    table = Table(title="Olmed Token")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Login URL", config.olmed.login_url)
    table.add_row("Expires in", f"{result.expires_in}s")
    table.add_row("Expires at", result.expires_at.isoformat())
    console.print(table)
    console.print("[green]✓[/green] Login successful")


@app.command("logout")
@handle_errors
def logout(
    token: Optional[str] = typer.Option(
        None,
        "--token",
        "-t",
        envvar="OLMED_GATEWAY_TOKEN",
        help="Token to invalidate. Without it a fresh login is performed first.",
    ),
) -> None:
    """Invalidate a token on the Olmed API.

    Example:
        olmed-gateway auth logout --token eyJ...
        olmed-gateway auth logout
    """
    from olmed_gateway.auth.olmed_auth import OlmedAuthClient
    from olmed_gateway.auth.token_store import TokenInfo, TokenStore
    from olmed_gateway.config import get_config
    from olmed_gateway.daemon.service import create_http_client

    config = get_config()

    async def _logout():
        async with create_http_client(config) as client:
            store = TokenStore()
            auth = OlmedAuthClient(client, store, config.olmed)
            if token:
                store.set(auth.provider_key, TokenInfo.issue(token, config.olmed.default_expires_in))
            else:
                login_result = await auth.login()
                if not login_result.success:
                    return login_result
            return await auth.logout()

    result = asyncio.run(_logout())
    if not result.success:
        raise AuthenticationError(result.message, details={"status_code": result.status_code})

    console.print(f"[green]✓[/green] {result.message}")
