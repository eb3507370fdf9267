"""Gateway daemon.

Wires the long-lived components together and runs them until a shutdown
signal arrives:

- one shared ``httpx.AsyncClient``
- the token store and the Olmed auth client
- the job executor
- the product and order sync configuration stores
- the cron scheduler
"""

import asyncio
import logging
import signal
from typing import Optional

import httpx

from olmed_gateway.auth.olmed_auth import OlmedAuthClient
from olmed_gateway.auth.token_store import TokenStore
from olmed_gateway.config import GatewayConfig
from olmed_gateway.event_log import EventLog
from olmed_gateway.scheduler.job_executor import JobExecutor
from olmed_gateway.scheduler.job_scheduler import CronScheduler
from olmed_gateway.sync.configurations import stores_from_config

logger = logging.getLogger(__name__)


def create_http_client(config: GatewayConfig) -> httpx.AsyncClient:
    """Shared HTTP client for auth calls and job requests."""
    return httpx.AsyncClient(timeout=config.olmed.request_timeout)


class GatewayDaemon:
    """Runs the cron scheduler and its collaborators.

    Example:
        daemon = GatewayDaemon(config)

        await daemon.start()
        await daemon.run_until_shutdown()
        await daemon.stop()
    """

    def __init__(
        self,
        config: GatewayConfig,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the daemon.

        Args:
            config: Gateway configuration
            http_client: HTTP client to use instead of creating one
        """
        self._config = config
        self._client = http_client
        self._owns_client = http_client is None
        self._token_store = TokenStore()
        self._auth_client: Optional[OlmedAuthClient] = None
        self._scheduler: Optional[CronScheduler] = None
        self._running = False
        self._shutdown_event = asyncio.Event()

    def build_scheduler(self) -> CronScheduler:
        """Create the scheduler and its collaborators on the daemon's HTTP client."""
        config = self._config

        event_log = EventLog(config.logging.event_log_dir, debug=config.logging.debug_events)

        self._auth_client = OlmedAuthClient(self._client, self._token_store, config.olmed)

        executor = JobExecutor(
            self._client,
            self._token_store,
            auth_client=self._auth_client,
            auth_domain=config.olmed.auth_domain,
            provider_key=config.olmed.provider_key,
            event_log=event_log,
        )

        providers = stores_from_config(config)

        return CronScheduler(
            executor,
            auth_client=self._auth_client,
            event_log=event_log,
            config=config.scheduler,
            providers=providers,
        )

    async def start(self) -> None:
        """Start the daemon services."""
        logger.info("Starting Olmed gateway...")

        if self._client is None:
            self._client = create_http_client(self._config)

        self._scheduler = self.build_scheduler()

        if self._config.scheduler.enabled:
            await self._scheduler.start()
            logger.info("Cron scheduler started")
        else:
            logger.warning("Scheduler is disabled in configuration, no jobs will run")

        self._running = True
        logger.info("Olmed gateway started")

    async def stop(self) -> None:
        """Stop the scheduler, then close the HTTP client."""
        logger.info("Stopping Olmed gateway...")

        self._running = False

        if self._scheduler:
            try:
                await self._scheduler.stop()
            except Exception as e:
                logger.warning(f"Error stopping scheduler: {e}")

        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

        logger.info("Olmed gateway stopped")

    async def reload(self) -> int:
        """Re-read the sync configurations and replace their jobs."""
        if self._scheduler is None:
            return 0
        try:
            return await self._scheduler.reload()
        except Exception:
            logger.exception("Reloading sync jobs failed")
            return 0

    async def run_until_shutdown(self) -> None:
        """Block until request_shutdown() is called."""
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def scheduler(self) -> Optional[CronScheduler]:
        """Get the cron scheduler, or None if not started."""
        return self._scheduler

    @property
    def auth_client(self) -> Optional[OlmedAuthClient]:
        return self._auth_client

    @property
    def token_store(self) -> TokenStore:
        return self._token_store


async def run_daemon(config: GatewayConfig) -> None:
    """Run the gateway until SIGINT or SIGTERM; SIGHUP reloads the sync jobs.

    Args:
        config: Gateway configuration
    """
    daemon = GatewayDaemon(config)

    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        daemon.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda signum, frame: handle_signal(signal.Signals(signum)))

    reloads: set = set()

    def handle_reload() -> None:
        logger.info("Received SIGHUP, reloading sync jobs...")
        task = loop.create_task(daemon.reload())
        reloads.add(task)
        task.add_done_callback(reloads.discard)

    if hasattr(signal, "SIGHUP"):
        try:
            loop.add_signal_handler(signal.SIGHUP, handle_reload)
        except NotImplementedError:
            logger.debug("SIGHUP reload is not supported on this platform")

    try:
        await daemon.start()
        await daemon.run_until_shutdown()
    finally:
        await daemon.stop()
