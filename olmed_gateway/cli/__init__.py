"""CLI command modules for olmed-gateway."""

from olmed_gateway.cli import auth, config, jobs, run, sync
from olmed_gateway.cli.exit_codes import ExitCode
from olmed_gateway.cli.error_handler import (
    AuthenticationError,
    ConfigurationError,
    GatewayError,
    NetworkError,
    NotFoundError,
    ValidationError,
    handle_errors,
)

__all__ = [
    "auth",
    "config",
    "jobs",
    "run",
    "sync",
    "ExitCode",
    "GatewayError",
    "AuthenticationError",
    "ConfigurationError",
    "NetworkError",
    "NotFoundError",
    "ValidationError",
    "handle_errors",
]
