"""olmed-gateway sync command - Product and order sync configurations."""

import json
from typing import TYPE_CHECKING, Optional, Tuple

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from olmed_gateway.cli.error_handler import NotFoundError, handle_errors

if TYPE_CHECKING:
    from olmed_gateway.sync.configurations import SyncConfiguration, SyncConfigurationStore

app = typer.Typer(help="Manage product and order synchronization configurations.")
console = Console()


def _find(configuration_id: str) -> Tuple["SyncConfigurationStore", "SyncConfiguration"]:
    """Locate a configuration and its store across all providers."""
    from olmed_gateway.config import get_config
    from olmed_gateway.sync.configurations import stores_from_config

    for store in stores_from_config(get_config()):
        configuration = store.get_configuration(configuration_id)
        if configuration is not None:
            return store, configuration
    raise NotFoundError(f"Sync configuration not found: {configuration_id}")


@app.command("list")
def list_configurations(
    provider: Optional[str] = typer.Option(
        None,
        "--provider",
        "-p",
        help="Only show one provider (product, order).",
    ),
    active_only: bool = typer.Option(False, "--active", help="Only show active configurations."),
) -> None:
    """List sync configurations.

    Example:
        olmed-gateway sync list
        olmed-gateway sync list --provider order --active
    """
    from olmed_gateway.config import get_config
    from olmed_gateway.sync.configurations import stores_from_config

    table = Table(title="Sync Configurations")
    table.add_column("ID", style="cyan")
    table.add_column("Provider", style="magenta")
    table.add_column("Name")
    table.add_column("Interval", style="green")
    table.add_column("Request")
    table.add_column("Status", style="bold")

    for store in stores_from_config(get_config()):
        if provider and store.provider_name != provider:
            continue
        configurations = (
            store.get_active_configurations() if active_only else store.get_all_configurations()
        )
        for configuration in configurations:
            status = "[green]active[/green]" if configuration.is_active else "[yellow]inactive[/yellow]"
            table.add_row(
                configuration.id,
                store.provider_name,
                configuration.name,
                f"{configuration.interval_seconds}s",
                f"{configuration.method} {configuration.url}",
                status,
            )

    console.print(table)


@app.command("show")
@handle_errors
def show_configuration(
    configuration_id: str = typer.Argument(..., help="Configuration ID."),
) -> None:
    """Show one sync configuration as JSON.

    Example:
        olmed-gateway sync show olmed-sync-orders
    """
    store, configuration = _find(configuration_id)
    console.print(f"[bold]{configuration.id}[/bold] [dim]({store.provider_name}, {store.path})[/dim]")
    console.print(Syntax(json.dumps(configuration.to_dict(), indent=2, ensure_ascii=False), "json", theme="monokai"))


@app.command("preview")
@handle_errors
def preview_request(
    configuration_id: str = typer.Argument(..., help="Configuration ID."),
) -> None:
    """Show the request a sync job would send today.

    Example:
        olmed-gateway sync preview olmed-sync-orders
    """
    _, configuration = _find(configuration_id)
    template = configuration.to_request_template()

    console.print(f"[bold]{template.method}[/bold] {template.url}")
    for name, value in template.headers.items():
        console.print(f"  [dim]{name}:[/dim] {value}")
    if template.use_shared_auth:
        console.print("  [dim]Authorization:[/dim] Bearer <shared Olmed token>")
    if template.body:
        console.print()
        try:
            body = json.dumps(json.loads(template.body), indent=2, ensure_ascii=False)
            console.print(Syntax(body, "json", theme="monokai"))
        except ValueError:
            console.print(template.body, markup=False)


@app.command("delete")
@handle_errors
def delete_configuration(
    configuration_id: str = typer.Argument(..., help="Configuration ID."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Delete a sync configuration.

    A running gateway applies the change after `olmed-gateway run reload`.

    Example:
        olmed-gateway sync delete olmed-sync-orders --yes
    """
    store, configuration = _find(configuration_id)

    if not yes and not typer.confirm(f"Delete sync configuration {configuration.id}?"):
        console.print("[yellow]Cancelled[/yellow]")
        raise typer.Exit()

    if not store.delete_configuration(configuration.id):
        console.print(f"[red]Failed to delete {configuration.id}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]✓[/green] Deleted {configuration.id}")
