"""Cron scheduler for recurring gateway jobs.

The CronScheduler keeps jobs in a JobRegistry and runs a tick every
``check_interval`` seconds (driven by APScheduler). Each tick dispatches
every due job as its own asyncio task and returns immediately, so a slow
job never delays other jobs or the next tick. Failures are caught at the
job boundary, recorded, and the job is rescheduled normally.

A job whose previous execution is still in flight is skipped for that
tick. Job definitions come from the API (``add_or_update_job``) and from
sync providers (``load_jobs`` / ``reload``); nothing is persisted across
restarts.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Set, Tuple

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from olmed_gateway.auth.olmed_auth import OlmedAuthClient
from olmed_gateway.clock import ensure_utc, utcnow
from olmed_gateway.config import SchedulerConfig
from olmed_gateway.event_log import EventLog
from olmed_gateway.scheduler.exceptions import ScheduleConfigurationError
from olmed_gateway.scheduler.job_executor import JobExecutor
from olmed_gateway.scheduler.registry import ExecutionOutcome, JobRegistry, ScheduledJob
from olmed_gateway.scheduler.schedule import RequestTemplate, Schedule

logger = logging.getLogger(__name__)

TICK_JOB_ID = "scheduler-tick"
TOKEN_REFRESH_JOB_ID = "olmed-auth-refresh"
ERROR_LOG_CATEGORY = "cronjobs_errors"


class JobProvider(Protocol):
    """Source of job definitions, such as a sync configuration store."""

    provider_name: str

    def jobs(self) -> List[Tuple[str, Schedule]]:
        ...


@dataclass
class JobExecutionResult:
    """Result of a job execution.

    Attributes:
        job_id: ID of the job that ran
        started_at: When execution started
        completed_at: When execution completed
        success: Whether execution succeeded
        status_code: HTTP status, 0 if no response
        error: Error message if failed
    """

    job_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    success: bool = False
    status_code: int = 0
    error: Optional[str] = None


class CronScheduler:
    """Schedules and executes recurring HTTP jobs.

    Example:
        scheduler = CronScheduler(executor, auth_client=auth, providers=[products, orders])

        scheduler.add_or_update_job(
            "ping",
            Schedule.interval(30, RequestTemplate(url="https://example.com/ping")),
        )

        await scheduler.start()
    """

    def __init__(
        self,
        executor: JobExecutor,
        registry: Optional[JobRegistry] = None,
        auth_client: Optional[OlmedAuthClient] = None,
        event_log: Optional[EventLog] = None,
        config: Optional[SchedulerConfig] = None,
        providers: Iterable[JobProvider] = (),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the scheduler.

        Args:
            executor: Sends job requests
            registry: Job registry (a new one is created if omitted)
            auth_client: Logs in on startup and refreshes the shared token
            event_log: Structured event log
            config: Scheduler configuration
            providers: Sources of sync job definitions
            clock: Time source
        """
        self._executor = executor
        self._registry = registry or JobRegistry()
        self._auth_client = auth_client
        self._event_log = event_log
        self._config = config or SchedulerConfig()
        self._providers: List[JobProvider] = list(providers)
        self._clock = clock

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._running_jobs: Set[str] = set()
        self._in_flight: Set[asyncio.Task] = set()
        self._background: Set[asyncio.Task] = set()
        self._execution_history: List[JobExecutionResult] = []
        self._max_history = self._config.max_history

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    @property
    def jobs(self) -> List[ScheduledJob]:
        """Get all registered jobs."""
        return self._registry.all()

    @property
    def active_jobs(self) -> List[ScheduledJob]:
        """Get all active jobs."""
        return [j for j in self._registry.all() if j.is_active]

    def list_jobs(self) -> List[ScheduledJob]:
        return self.jobs

    def add_or_update_job(
        self,
        job_id: str,
        schedule: Schedule,
        source: Optional[str] = None,
    ) -> ScheduledJob:
        """Register a job or replace its schedule.

        Args:
            job_id: Unique job identifier
            schedule: When the job fires and what it sends
            source: Provider that owns the job

        Returns:
            The registered job

        Raises:
            ScheduleConfigurationError: If the schedule is invalid
        """
        existed = job_id in self._registry
        job = self._registry.add_or_update(job_id, schedule, self._clock(), source=source)

        action = "UPDATED" if existed else "ADDED"
        logger.info(
            f"{'Updated' if existed else 'Added'} job {job_id} ({schedule.describe()}), "
            f"next execution {job.next_execution.isoformat()}"
        )
        if self._event_log:
            self._emit(self._event_log.job_event(
                job_id,
                f"JOB_{action}",
                f"Job {action.lower()}",
                {
                    "schedule": schedule.to_dict(),
                    "next_execution": job.next_execution,
                    "source": source,
                },
            ))
        return job

    schedule_job = add_or_update_job

    def remove_job(self, job_id: str) -> bool:
        """Remove a job from the scheduler.

        Args:
            job_id: ID of the job to remove

        Returns:
            True if job was removed
        """
        if not self._registry.remove(job_id):
            return False

        logger.info(f"Removed job {job_id}")
        if self._event_log:
            self._emit(self._event_log.job_event(job_id, "JOB_REMOVED", "Job removed"))
        return True

    def get_job(self, job_id: str) -> Optional[ScheduledJob]:
        """Get a job by ID.

        Args:
            job_id: ID of the job

        Returns:
            The job or None if not found
        """
        return self._registry.get(job_id)

    def pause_job(self, job_id: str) -> bool:
        """Pause a job.

        Args:
            job_id: ID of the job to pause

        Returns:
            True if job was paused
        """
        if not self._registry.set_active(job_id, False):
            return False
        logger.info(f"Paused job {job_id}")
        return True

    def resume_job(self, job_id: str) -> bool:
        """Resume a paused job.

        Args:
            job_id: ID of the job to resume

        Returns:
            True if job was resumed
        """
        if not self._registry.set_active(job_id, True, self._clock()):
            return False
        logger.info(f"Resumed job {job_id}")
        return True

    async def tick(self, now: Optional[datetime] = None) -> List[asyncio.Task]:
        """Dispatch every due job without waiting for it.

        Args:
            now: Tick time (defaults to the clock)

        Returns:
            Tasks spawned for this tick
        """
        now = ensure_utc(now or self._clock())
        due = self._registry.due(now)
        if due:
            logger.info(f"Found {len(due)} due jobs")

        tasks: List[asyncio.Task] = []
        for job in due:
            if job.job_id in self._running_jobs:
                logger.warning(f"Job {job.job_id} is still running, skipping this tick")
                continue
            tasks.append(self._dispatch(job, now))
        return tasks

    def _dispatch(self, job: ScheduledJob, now: datetime) -> asyncio.Task:
        self._running_jobs.add(job.job_id)
        task = asyncio.create_task(self._run_job(job, now), name=f"job-{job.job_id}")
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _run_job(self, job: ScheduledJob, now: datetime) -> ExecutionOutcome:
        """Execute one job and record the result.

        Every exception is caught here; the job is rescheduled whatever
        the outcome.
        """
        started_at = self._clock()
        job_error: Optional[Exception] = None
        try:
            logger.info(f"Executing job {job.job_id}")
            try:
                outcome = await self._executor.execute(job.schedule.request, job_id=job.job_id)
            except Exception as e:
                logger.exception(f"Error executing job {job.job_id}")
                job_error = e
                outcome = ExecutionOutcome(
                    success=False,
                    status_code=0,
                    executed_at=started_at,
                    error=str(e) or type(e).__name__,
                )

            updated = self._registry.record_execution(job.job_id, now, outcome)
            completed_at = self._clock()
            self._record_execution(JobExecutionResult(
                job_id=job.job_id,
                started_at=started_at,
                completed_at=completed_at,
                success=outcome.success,
                status_code=outcome.status_code,
                error=outcome.error,
            ))

            if updated is not None:
                logger.info(
                    f"Job {job.job_id} finished (success={outcome.success}, "
                    f"status={outcome.status_code}), next execution {updated.next_execution.isoformat()}"
                )

            if self._event_log:
                try:
                    await self._event_log.job_execution(
                        job.job_id,
                        outcome.success,
                        started_at,
                        outcome.duration_ms,
                        outcome.status_code,
                        outcome.response_body,
                        outcome.error,
                    )
                    if job_error is not None:
                        await self._event_log.log(
                            ERROR_LOG_CATEGORY,
                            logging.ERROR,
                            f"Job {job.job_id} raised during execution",
                            error=job_error,
                            context={"job_id": job.job_id, "url": job.schedule.request.url},
                        )
                except Exception as e:
                    logger.error(f"Failed to log execution of job {job.job_id}: {e}")

            return outcome
        finally:
            self._running_jobs.discard(job.job_id)

    async def run_job_now(self, job_id: str) -> ExecutionOutcome:
        """Run a registered job immediately (outside of its schedule).

        Args:
            job_id: ID of the job to run

        Returns:
            Execution outcome
        """
        job = self._registry.get(job_id)
        if job is None:
            return ExecutionOutcome(success=False, error="Job not found", executed_at=self._clock())
        if job_id in self._running_jobs:
            return ExecutionOutcome(success=False, error="Job is already running", executed_at=self._clock())

        return await self._dispatch(job, self._clock())

    async def execute_ad_hoc(self, template: RequestTemplate) -> ExecutionOutcome:
        """Send a one-off request, bypassing the registry.

        Raises:
            ScheduleConfigurationError: If the request URL is invalid
        """
        template.validate()
        try:
            return await self._executor.execute(template)
        except Exception as e:
            logger.exception("Error executing ad-hoc request")
            return ExecutionOutcome(success=False, status_code=0, error=str(e) or type(e).__name__)

    async def refresh_token(self) -> None:
        """Proactively refresh the shared token (runs on its own interval)."""
        if self._auth_client is None:
            return
        result = await self._auth_client.refresh_if_needed()
        if result.success:
            logger.debug(f"Token check: {result.message}")
        else:
            logger.warning(f"Scheduled token refresh failed: {result.message}")

    async def start(self) -> None:
        """Start the scheduler.

        Logs in, loads provider jobs, then starts the tick loop and the
        proactive token refresh on APScheduler.
        """
        if self._running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting cron scheduler...")

        if self._config.login_on_startup and self._auth_client is not None:
            await self._login_on_startup()

        if self._config.auto_load_sync_jobs and self._providers:
            await self.load_jobs()

        self._scheduler = self._create_scheduler()
        self._setup_listeners()
        self._scheduler.start()

        self._scheduler.add_job(
            self.tick,
            IntervalTrigger(seconds=self._config.check_interval),
            id=TICK_JOB_ID,
            name="Scheduler tick",
            next_run_time=utcnow(),
        )
        if self._auth_client is not None:
            self._scheduler.add_job(
                self.refresh_token,
                IntervalTrigger(seconds=self._config.token_refresh_interval),
                id=TOKEN_REFRESH_JOB_ID,
                name="Olmed token refresh",
            )

        self._running = True
        logger.info(f"Scheduler started with {len(self.active_jobs)} active jobs")
        await self._scheduler_event("SERVICE_STARTED", "Cron scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler and wait for in-flight jobs."""
        if not self._running:
            return

        logger.info("Stopping cron scheduler...")

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        if self._in_flight:
            logger.info(f"Waiting for {len(self._in_flight)} running jobs")
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

        self._running = False
        await self._scheduler_event("SERVICE_STOPPED", "Cron scheduler stopped")
        logger.info("Scheduler stopped")

    def _create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure APScheduler instance."""
        jobstores = {"default": MemoryJobStore()}

        executors = {"default": AsyncIOExecutor()}

        job_defaults = {
            "coalesce": True,  # Combine missed ticks
            "max_instances": 1,
            "misfire_grace_time": 60,
        }

        return AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone="UTC",
        )

    def _setup_listeners(self) -> None:
        """Set up APScheduler event listeners."""
        if not self._scheduler:
            return

        def on_job_error(event: Any) -> None:
            exception = getattr(event, "exception", "Unknown error")
            logger.error(f"Scheduler task {event.job_id} failed: {exception}")

        def on_job_missed(event: Any) -> None:
            logger.warning(f"Scheduler task {event.job_id} missed its run")

        self._scheduler.add_listener(on_job_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(on_job_missed, EVENT_JOB_MISSED)

    async def _login_on_startup(self) -> None:
        logger.info("Logging in to Olmed API on startup")
        result = await self._auth_client.login()
        if result.success:
            await self._scheduler_event(
                "OLMED_LOGIN_SUCCESS",
                "Logged in to Olmed API on startup",
                {"expires_at": result.expires_at},
            )
        else:
            logger.error(f"Olmed login on startup failed: {result.message}")
            await self._scheduler_event(
                "OLMED_LOGIN_FAILED",
                "Olmed login on startup failed",
                {"status_code": result.status_code, "message": result.message},
            )
            if self._event_log:
                await self._event_log.log(
                    ERROR_LOG_CATEGORY,
                    logging.ERROR,
                    f"Olmed login on startup failed: {result.message}",
                    context={"status_code": result.status_code},
                )

    def _select_providers(self, provider_name: Optional[str]) -> List[JobProvider]:
        if provider_name is None:
            return list(self._providers)
        selected = [p for p in self._providers if p.provider_name == provider_name]
        if not selected:
            raise ValueError(f"Unknown job provider: {provider_name}")
        return selected

    async def load_jobs(self, provider_name: Optional[str] = None) -> int:
        """Register the active definitions of one or all providers.

        Args:
            provider_name: Provider to load, or None for all

        Returns:
            Number of jobs registered
        """
        loaded = 0
        for provider in self._select_providers(provider_name):
            loaded += await self._load_provider_jobs(provider)

        await self._scheduler_event("JOBS_LOADED", f"Loaded {loaded} jobs", {"count": loaded})
        return loaded

    async def reload(self, provider_name: Optional[str] = None) -> int:
        """Replace the jobs of one or all providers with their current definitions.

        Jobs whose definition became inactive or was deleted disappear
        from the registry.

        Args:
            provider_name: Provider to reload, or None for all

        Returns:
            Number of jobs registered
        """
        loaded = 0
        for provider in self._select_providers(provider_name):
            name = provider.provider_name
            removed = 0
            for job_id in self._registry.ids_for_source(name):
                if self.remove_job(job_id):
                    removed += 1

            refresh_cache = getattr(provider, "refresh_cache", None)
            if callable(refresh_cache):
                refresh_cache()

            count = await self._load_provider_jobs(provider)
            loaded += count
            logger.info(f"Reloaded {name} sync jobs: removed {removed}, loaded {count}")
            await self._scheduler_event(
                f"{name.upper()}_SYNC_JOBS_RELOADED",
                f"Reloaded {name} sync jobs",
                {"removed": removed, "loaded": count},
            )
        return loaded

    async def _load_provider_jobs(self, provider: JobProvider) -> int:
        prefix = f"{provider.provider_name.upper()}_SYNC"
        try:
            definitions = await asyncio.to_thread(provider.jobs)
        except Exception as e:
            logger.exception(f"Failed to load {provider.provider_name} sync jobs")
            await self._scheduler_event(
                f"{prefix}_JOBS_LOAD_CRITICAL_ERROR",
                f"Failed to load {provider.provider_name} sync jobs",
                {"error": str(e)},
            )
            return 0

        if not definitions:
            logger.warning(f"No active {provider.provider_name} sync configurations")
            await self._scheduler_event(
                f"{prefix}_JOBS_LOAD_WARNING",
                f"No active {provider.provider_name} sync configurations",
            )
            return 0

        loaded = 0
        for job_id, schedule in definitions:
            try:
                self.add_or_update_job(job_id, schedule, source=provider.provider_name)
            except ScheduleConfigurationError as e:
                logger.error(f"Invalid {provider.provider_name} sync job {job_id}: {e}")
                if self._event_log:
                    await self._event_log.job_event(
                        job_id, f"{prefix}_JOB_LOAD_ERROR", str(e), {"field": e.field}
                    )
                continue
            loaded += 1
            if self._event_log:
                await self._event_log.job_event(
                    job_id,
                    f"{prefix}_JOB_LOADED",
                    f"Loaded {provider.provider_name} sync job",
                    {"schedule": schedule.describe(), "url": schedule.request.url},
                )

        await self._scheduler_event(
            f"{prefix}_JOBS_LOADED",
            f"Loaded {loaded} {provider.provider_name} sync jobs",
            {"loaded": loaded, "total": len(definitions)},
        )
        return loaded

    def _record_execution(self, result: JobExecutionResult) -> None:
        """Record execution result in the in-memory history."""
        self._execution_history.append(result)

        if len(self._execution_history) > self._max_history:
            self._execution_history = self._execution_history[-self._max_history:]

    def get_history(
        self,
        job_id: Optional[str] = None,
        limit: int = 10,
    ) -> List[JobExecutionResult]:
        """Get execution history.

        Args:
            job_id: Filter by job ID (optional)
            limit: Maximum number of results

        Returns:
            Most recent execution results, oldest first
        """
        history = self._execution_history

        if job_id:
            history = [r for r in history if r.job_id == job_id]

        return history[-limit:]

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status.

        Returns:
            Dictionary with scheduler status information
        """
        now = self._clock()
        jobs = self._registry.all()
        active = [j for j in jobs if j.is_active]
        executed = [j for j in jobs if j.last_execution is not None]

        next_job = min(active, key=lambda j: j.next_execution, default=None)
        recent = sorted(executed, key=lambda j: j.last_execution, reverse=True)[:5]

        status: Dict[str, Any] = {
            "running": self._running,
            "check_interval": self._config.check_interval,
            "total_jobs": len(jobs),
            "active_jobs": len(active),
            "inactive_jobs": len(jobs) - len(active),
            "running_jobs": len(self._running_jobs),
            "total_executions": sum(j.execution_count for j in jobs),
            "total_errors": sum(j.error_count for j in jobs),
            "executed_today": sum(1 for j in executed if j.last_execution.date() == now.date()),
            "next_job": None,
            "recent_activity": [
                {
                    "job_id": j.job_id,
                    "last_execution": j.last_execution.isoformat(),
                    "success": j.last_outcome.success if j.last_outcome else None,
                }
                for j in recent
            ],
            "token_valid": None,
        }
        if next_job is not None:
            status["next_job"] = {
                "job_id": next_job.job_id,
                "next_execution": next_job.next_execution.isoformat(),
            }
        if self._auth_client is not None:
            status["token_valid"] = self._auth_client.shared_token().success
        return status

    async def _scheduler_event(
        self,
        event_type: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self._event_log is None:
            return
        await self._event_log.scheduler_event(
            event_type, message, data, active_jobs=len(self.active_jobs)
        )

    def _emit(self, coro: Any) -> None:
        """Write an event log entry in the background from synchronous code."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
