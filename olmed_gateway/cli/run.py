"""olmed-gateway run command - Start the gateway with its cron scheduler."""

import asyncio
import atexit
import logging
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from olmed_gateway.cli.exit_codes import ExitCode

app = typer.Typer(help="Start the gateway with its cron scheduler.")
console = Console()

_CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to configuration file.",
    exists=True,
    file_okay=True,
    dir_okay=False,
    resolve_path=True,
)


def _setup_logging(verbose: bool, log_file: Optional[Path] = None, level: str = "INFO") -> None:
    """Set up logging for the foreground gateway process.

    Args:
        verbose: Enable DEBUG logging
        log_file: Optional log file path
        level: Level from configuration when not verbose
    """
    log_level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format=format_str,
        handlers=handlers,
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


@app.callback(invoke_without_command=True)
def run(
    ctx: typer.Context,
    config_file: Optional[Path] = _CONFIG_OPTION,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging.",
    ),
) -> None:
    """Start the gateway in the foreground.

    The gateway logs in to the Olmed API, loads the product and order
    sync jobs and executes due jobs every few seconds until it receives
    SIGINT or SIGTERM. SIGHUP reloads the sync configurations.

    Example:
        olmed-gateway run
        olmed-gateway run --config config.toml --verbose
    """
    if ctx.invoked_subcommand is not None:
        return

    from olmed_gateway.config import ensure_directories, load_config
    from olmed_gateway.daemon.pid import PIDFile
    from olmed_gateway.daemon.service import run_daemon

    config = load_config(config_file)
    ensure_directories(config)

    pid_file = PIDFile(config.pid_file)

    if pid_file.is_running():
        console.print("[red]Error: Gateway is already running[/red]")
        console.print(f"[yellow]PID: {pid_file.read()}[/yellow]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    pid_file.clear_if_stale()

    console.print("[bold green]Starting Olmed gateway...[/bold green]")

    if verbose:
        console.print(f"Config: {config_file or 'default'}")
        console.print(f"Olmed API: {config.olmed.base_url}")
        console.print(f"Data directory: {config.data_dir}")
        console.print(f"Event logs: {config.logging.event_log_dir}")

    _setup_logging(verbose, config.logging.file, config.logging.level)

    try:
        pid_file.create()
    except OSError as e:
        console.print(f"[red]Error: Failed to create PID file: {e}[/red]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    atexit.register(pid_file.remove)

    try:
        asyncio.run(run_daemon(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
    except Exception as e:
        logging.exception("Gateway error")
        console.print(f"[red]Gateway error: {e}[/red]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)


@app.command()
def status(config_file: Optional[Path] = _CONFIG_OPTION) -> None:
    """Check whether the gateway is running.

    Example:
        olmed-gateway run status
    """
    from olmed_gateway.config import load_config
    from olmed_gateway.daemon.pid import PIDFile

    config = load_config(config_file)
    pid_file = PIDFile(config.pid_file)

    if pid_file.is_running():
        console.print(f"[green]● Gateway is running[/green] (PID: {pid_file.read()})")
        console.print(f"  Olmed API: {config.olmed.base_url}")
        console.print(f"  Data directory: {config.data_dir}")
        console.print(f"  Event logs: {config.logging.event_log_dir}")
    else:
        console.print("[yellow]○ Gateway is not running[/yellow]")
        if pid_file.clear_if_stale():
            console.print("[dim]  (removed stale PID file)[/dim]")


@app.command()
def stop(config_file: Optional[Path] = _CONFIG_OPTION) -> None:
    """Ask the running gateway to shut down (SIGTERM).

    Example:
        olmed-gateway run stop
    """
    from olmed_gateway.config import load_config
    from olmed_gateway.daemon.pid import PIDFile

    config = load_config(config_file)
    pid_file = PIDFile(config.pid_file)

    if pid_file.read() is None:
        console.print("[yellow]Gateway is not running (no PID file found)[/yellow]")
        raise typer.Exit()

    try:
        pid = pid_file.terminate()
    except PermissionError:
        console.print(f"[red]Permission denied: cannot signal process {pid_file.read()}[/red]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)
    except OSError as e:
        console.print(f"[red]Error signaling gateway: {e}[/red]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    if pid is None:
        console.print("[yellow]Gateway is not running (stale PID file)[/yellow]")
        pid_file.remove()
        raise typer.Exit()

    console.print(f"[green]Shutdown signal sent to gateway (PID: {pid})[/green]")


@app.command()
def reload(config_file: Optional[Path] = _CONFIG_OPTION) -> None:
    """Make the running gateway reload its sync configurations (SIGHUP).

    Example:
        olmed-gateway run reload
    """
    from olmed_gateway.config import load_config
    from olmed_gateway.daemon.pid import PIDFile

    config = load_config(config_file)
    pid_file = PIDFile(config.pid_file)

    try:
        pid = pid_file.terminate(signal.SIGHUP)
    except OSError as e:
        console.print(f"[red]Error signaling gateway: {e}[/red]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    if pid is None:
        console.print("[yellow]Gateway is not running[/yellow]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    console.print(f"[green]Reload signal sent to gateway (PID: {pid})[/green]")
