"""Long-running gateway process."""

from olmed_gateway.daemon.pid import PIDFile
from olmed_gateway.daemon.service import GatewayDaemon, create_http_client, run_daemon

__all__ = [
    "GatewayDaemon",
    "PIDFile",
    "create_http_client",
    "run_daemon",
]
