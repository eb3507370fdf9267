"""Main CLI entry point for olmed-gateway."""

import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from olmed_gateway import __app_name__, __version__
from olmed_gateway.cli import auth, config, jobs, run, sync
from olmed_gateway.cli.exit_codes import ExitCode

app = typer.Typer(
    name=__app_name__,
    help="Olmed gateway - scheduled synchronization jobs against the Olmed ERP API.",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

app.add_typer(run.app, name="run")
app.add_typer(jobs.app, name="jobs")
app.add_typer(auth.app, name="auth")
app.add_typer(sync.app, name="sync")
app.add_typer(config.app, name="config")

_global_state: dict[str, bool] = {
    "verbose": False,
    "debug": False,
    "quiet": False,
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"{__app_name__} v{__version__}")
        raise typer.Exit(code=ExitCode.SUCCESS)


def _setup_logging(
    verbose: bool = False,
    debug: bool = False,
    quiet: bool = False,
    log_file: Optional[Path] = None,
) -> None:
    """Set up logging configuration based on CLI options.

    Args:
        verbose: Enable INFO level logging
        debug: Enable DEBUG level logging
        quiet: Only log errors
        log_file: Optional log file path (always DEBUG)
    """
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING

    if debug:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
    else:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handlers: list[logging.Handler] = []

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    if not quiet:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        handlers.append(console_handler)
    elif not log_file:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=logging.DEBUG if log_file else level,
        format=format_str,
        handlers=handlers,
        force=True,
    )

    logger = logging.getLogger(__name__)
    logger.debug(f"Logging configured: level={logging.getLevelName(level)}, debug={debug}")


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-V",
        help="Enable verbose output (INFO level logging).",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug mode (DEBUG level logging).",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Suppress non-error output.",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Log to file (logs DEBUG level regardless of console settings).",
    ),
) -> None:
    """Olmed gateway - scheduled synchronization jobs against the Olmed ERP API.

    [bold]Commands:[/bold]

    • [cyan]run[/cyan] - Start the gateway and its cron scheduler
    • [cyan]jobs[/cyan] - Preview, validate and execute jobs
    • [cyan]auth[/cyan] - Log in to or out of the Olmed API
    • [cyan]sync[/cyan] - Manage product and order sync configurations
    • [cyan]config[/cyan] - Manage configuration

    [bold]Examples:[/bold]

        olmed-gateway config init
        olmed-gateway auth login
        olmed-gateway jobs preview
        olmed-gateway run --verbose
    """
    _global_state["verbose"] = verbose
    _global_state["debug"] = debug
    _global_state["quiet"] = quiet

    if quiet and (verbose or debug):
        console.print("[red]Error:[/red] --quiet cannot be combined with --verbose or --debug")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    _setup_logging(verbose=verbose, debug=debug, quiet=quiet, log_file=log_file)

    logger = logging.getLogger(__name__)
    logger.debug(f"{__app_name__} v{__version__} starting")


def is_verbose() -> bool:
    """True if verbose or debug mode is enabled."""
    return _global_state.get("verbose", False) or _global_state.get("debug", False)


def is_quiet() -> bool:
    return _global_state.get("quiet", False)


if __name__ == "__main__":
    app()
