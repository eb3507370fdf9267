"""Exception handling for CLI commands.

Commands raise GatewayError subclasses; the ``handle_errors`` decorator
prints them and exits with the matching exit code.
"""

from functools import wraps
from typing import Callable, TypeVar, Any
import logging

import typer
from rich.console import Console

from olmed_gateway.cli.exit_codes import ExitCode
from olmed_gateway.scheduler.exceptions import SchedulerError

# Console for error output (stderr)
console = Console(stderr=True)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class GatewayError(Exception):
    """Base exception for CLI-facing errors.

    Attributes:
        message: Error message
        exit_code: Exit code to use when exiting
        details: Additional error details shown below the message
    """

    exit_code: int = ExitCode.GENERAL_ERROR

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(GatewayError):
    """Invalid or unreadable configuration."""

    exit_code = ExitCode.CONFIGURATION_ERROR


class AuthenticationError(GatewayError):
    """Login, refresh or logout against the Olmed API failed.

    Examples:
        - Missing credentials
        - Login rejected by the server
    """

    exit_code = ExitCode.AUTHENTICATION_ERROR


class NetworkError(GatewayError):
    """Network/connectivity error."""

    exit_code = ExitCode.NETWORK_ERROR


class ValidationError(GatewayError):
    """User input failed validation (bad URL, malformed JSON, bad header)."""

    exit_code = ExitCode.INVALID_ARGUMENT


class NotFoundError(GatewayError):
    """Requested job or sync configuration does not exist."""

    exit_code = ExitCode.NOT_FOUND


def _report(e: GatewayError) -> None:
    logger.error(
        f"GatewayError: {e.message}",
        extra={"exit_code": e.exit_code, "details": e.details},
    )
    console.print(f"[red]Error:[/red] {e.message}")
    for key, value in e.details.items():
        console.print(f"  [dim]{key}:[/dim] {value}")


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling across CLI commands.

    - GatewayError: message and details, with the error's exit code
    - SchedulerError: reported as a scheduler error
    - KeyboardInterrupt: cancellation message, exit code 130
    - anything else: generic message, exit code 1

    Example:
        @app.command()
        @handle_errors
        def login():
            raise AuthenticationError("Login failed")
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except GatewayError as e:
            _report(e)
            raise typer.Exit(code=e.exit_code)

        except SchedulerError as e:
            logger.error(f"SchedulerError: {e}")
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=ExitCode.SCHEDULER_ERROR)

        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user.[/yellow]")
            logger.info("Operation cancelled by user (KeyboardInterrupt)")
            raise typer.Exit(code=ExitCode.CANCELLED)

        except typer.Exit:
            raise

        except Exception as e:
            logger.exception("Unexpected error occurred")
            console.print(f"[red]Unexpected error:[/red] {e}")
            console.print("[dim]Run with --verbose for more details[/dim]")
            raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    return wrapper  # type: ignore[return-value]
