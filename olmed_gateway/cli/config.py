"""olmed-gateway config command - Configuration management."""

import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from olmed_gateway.cli.error_handler import ConfigurationError, handle_errors
from olmed_gateway.cli.exit_codes import ExitCode

app = typer.Typer(help="Manage gateway configuration.")
console = Console()


def _config_path() -> Path:
    from olmed_gateway.config import DEFAULT_CONFIG_DIR, DEFAULT_CONFIG_FILE, DEFAULT_ENV_PREFIX

    config_dir = Path(os.environ.get(f"{DEFAULT_ENV_PREFIX}CONFIG_DIR", DEFAULT_CONFIG_DIR))
    return config_dir / DEFAULT_CONFIG_FILE


@app.command("show")
def show_config(
    section: Optional[str] = typer.Argument(
        None,
        help="Configuration section to show (olmed, scheduler, sync, logging, paths).",
    ),
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format (table, yaml, json).",
    ),
    unmask: bool = typer.Option(
        False,
        "--unmask",
        help="Show unmasked secrets (use with caution).",
    ),
) -> None:
    """Show current configuration.

    Example:
        olmed-gateway config show
        olmed-gateway config show scheduler
        olmed-gateway config show --format yaml
    """
    from olmed_gateway.config import (
        _config_to_dict,
        export_config_json,
        export_config_yaml,
        get_config,
    )

    config = get_config()

    if format == "yaml":
        console.print(Syntax(export_config_yaml(config, mask_secrets=not unmask), "yaml", theme="monokai"))
        return
    elif format == "json":
        console.print(Syntax(export_config_json(config, mask_secrets=not unmask), "json", theme="monokai"))
        return

    sections = _config_to_dict(config, mask_secrets=not unmask)
    sections["paths"] = {
        "config_dir": sections.pop("config_dir"),
        "data_dir": sections.pop("data_dir"),
    }

    if section and section not in sections:
        console.print(f"[red]Unknown section: {section}[/red]")
        console.print(f"Available: {', '.join(sections)}")
        raise typer.Exit(code=1)

    console.print("[bold]Olmed Gateway Configuration[/bold]")
    console.print()

    for name in [section] if section else list(sections):
        table = Table(title=name.capitalize())
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")

        for key, value in sections[name].items():
            table.add_row(key, "" if value is None else str(value))

        console.print(table)
        console.print()


@app.command("set")
@handle_errors
def set_config(
    key: str = typer.Argument(
        ...,
        help="Configuration key (format: section.key, e.g., scheduler.check_interval).",
    ),
    value: str = typer.Argument(..., help="Value to set."),
) -> None:
    """Set a configuration value.

    Example:
        olmed-gateway config set olmed.username api-user
        olmed-gateway config set scheduler.login_on_startup false
    """
    from olmed_gateway.config import clear_config_cache, set_config_value

    if "." not in key:
        raise ConfigurationError("Key must be in format: section.key")

    section, config_key = key.split(".", 1)

    try:
        set_config_value(section, config_key, value, _config_path())
    except ValueError as e:
        raise ConfigurationError(str(e))

    clear_config_cache()
    console.print(f"[green]✓[/green] Set {section}.{config_key} = {value}")


@app.command("init")
def init_config(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration.",
    ),
    interactive: bool = typer.Option(
        True,
        "--interactive/--no-interactive",
        "-i/-I",
        help="Prompt for the Olmed API connection settings.",
    ),
) -> None:
    """Initialize gateway configuration.

    Example:
        olmed-gateway config init
        olmed-gateway config init --no-interactive --force
    """
    from olmed_gateway.config import (
        DEFAULT_DATA_DIR,
        DEFAULT_ENV_PREFIX,
        GatewayConfig,
        ensure_directories,
        save_config,
    )

    config_path = _config_path()

    if config_path.exists() and not force:
        console.print(f"[yellow]Configuration already exists at {config_path}[/yellow]")
        console.print("Use --force to overwrite")
        raise typer.Exit(code=1)

    console.print("[bold]Initializing Olmed gateway configuration...[/bold]")
    console.print()

    config = GatewayConfig(
        config_dir=config_path.parent,
        data_dir=Path(os.environ.get(f"{DEFAULT_ENV_PREFIX}DATA_DIR", DEFAULT_DATA_DIR)),
    )

    if interactive:
        console.print("[bold cyan]Olmed API[/bold cyan]")
        config.olmed.base_url = typer.prompt("  Base URL", default=config.olmed.base_url)
        config.olmed.username = typer.prompt("  Username", default="")
        password = typer.prompt("  Password", default="", hide_input=True)
        config.olmed.password = password

        console.print()
        console.print("[bold cyan]Scheduler[/bold cyan]")
        config.scheduler.login_on_startup = typer.confirm(
            "  Log in on startup?",
            default=config.scheduler.login_on_startup,
        )
        config.scheduler.auto_load_sync_jobs = typer.confirm(
            "  Load product and order sync jobs on startup?",
            default=config.scheduler.auto_load_sync_jobs,
        )

    ensure_directories(config)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    save_config(config, config_path)

    # Credentials live in this file
    config_path.chmod(0o600)

    console.print()
    console.print(f"[green]✓[/green] Configuration initialized at {config_path}")
    console.print("[dim]Config file permissions set to 0600 (owner only)[/dim]")


@app.command("path")
def config_path() -> None:
    """Show configuration file path.

    Example:
        olmed-gateway config path
    """
    config_file_path = _config_path()
    console.print(f"[bold]Config directory:[/bold] {config_file_path.parent}")
    console.print(f"[bold]Config file:[/bold] {config_file_path}")
    console.print(f"[bold]Exists:[/bold] {config_file_path.exists()}")


@app.command("validate")
def validate_config() -> None:
    """Validate current configuration.

    Example:
        olmed-gateway config validate
    """
    from olmed_gateway.config import get_config, validate_config as do_validate

    config = get_config()
    config_path = _config_path()

    console.print("[bold]Validating configuration...[/bold]")
    console.print()

    exists = config_path.exists()
    status = "[green]✓[/green]" if exists else "[yellow]![/yellow]"
    console.print(f"  {status} Config file exists [dim]({config_path})[/dim]")

    all_passed = True
    errors = do_validate(config)

    if errors:
        console.print()
        console.print("[bold yellow]Validation Results:[/bold yellow]")
        for error in errors:
            if error.severity == "error":
                status = "[red]✗[/red]"
                all_passed = False
            else:
                status = "[yellow]![/yellow]"
            console.print(f"  {status} [{error.severity.upper()}] {error.field}: {error.message}")

    console.print()
    if all_passed:
        console.print("[green]Configuration is valid[/green]")
    else:
        console.print("[red]Configuration has errors[/red]")
        raise typer.Exit(code=ExitCode.CONFIGURATION_ERROR)
