"""In-memory registry of scheduled jobs.

The registry is shared between the public API (which registers and
removes jobs) and the scheduler loop (which reads due jobs and records
executions). All operations take a lock, and everything handed out is a
copy, so callers can enumerate safely while the loop mutates state.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum, auto
from typing import Dict, List, Optional

from olmed_gateway.clock import ensure_utc, utcnow
from olmed_gateway.scheduler.schedule import Schedule, ScheduleKind
from olmed_gateway.scheduler.exceptions import ScheduleConfigurationError

logger = logging.getLogger(__name__)


class JobStatus(Enum):
    """Status of a scheduled job."""

    ACTIVE = auto()  # Considered by the scheduler loop
    PAUSED = auto()  # Deactivated, next_execution frozen
    EXPIRED = auto()  # once_at job that already fired


@dataclass
class ExecutionOutcome:
    """Result of sending one job request.

    Attributes:
        success: Whether a 2xx response was received
        status_code: HTTP status, or 0 when no response arrived
        response_body: Raw response text
        executed_at: When the request was started
        error: Error message for transport failures
        duration_ms: Round-trip time in milliseconds
    """

    success: bool
    status_code: int = 0
    response_body: str = ""
    executed_at: datetime = field(default_factory=utcnow)
    error: Optional[str] = None
    duration_ms: float = 0.0

    def truncated(self, limit: int = 500) -> str:
        """Response body cut to ``limit`` characters for logging."""
        if len(self.response_body) > limit:
            return self.response_body[:limit] + "..."
        return self.response_body


@dataclass
class ScheduledJob:
    """A registered job and its runtime bookkeeping.

    Attributes:
        job_id: Unique identifier
        schedule: When the job fires and what it sends
        next_execution: When the job is next due
        last_execution: When the job last ran
        execution_count: Number of completed execution attempts
        error_count: Number of failed execution attempts
        is_active: Whether the scheduler loop considers the job
        created_at: When the job was first registered
        last_outcome: Outcome of the most recent execution
        source: Name of the provider that registered the job
    """

    job_id: str
    schedule: Schedule
    next_execution: datetime
    last_execution: Optional[datetime] = None
    execution_count: int = 0
    error_count: int = 0
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    last_outcome: Optional[ExecutionOutcome] = None
    source: Optional[str] = None

    @property
    def status(self) -> JobStatus:
        """Get current job status."""
        if self.is_active:
            return JobStatus.ACTIVE
        if self.schedule.kind is ScheduleKind.ONCE_AT and self.execution_count > 0:
            return JobStatus.EXPIRED
        return JobStatus.PAUSED

    def is_due(self, now: datetime) -> bool:
        return self.is_active and self.next_execution <= ensure_utc(now)


class JobRegistry:
    """Thread-safe store of scheduled jobs keyed by job id.

    Example:
        registry = JobRegistry()
        registry.add_or_update("ping", schedule, now)
        for job in registry.due(now):
            ...
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, ScheduledJob] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs

    def add_or_update(
        self,
        job_id: str,
        schedule: Schedule,
        now: Optional[datetime] = None,
        source: Optional[str] = None,
    ) -> ScheduledJob:
        """Register a job, or replace the schedule of an existing one.

        The schedule is validated before anything is stored. Re-registering
        keeps the execution counters and creation time, recomputes
        ``next_execution`` from ``now`` and reactivates the job.

        Args:
            job_id: Unique job identifier
            schedule: Schedule to use
            now: Current time (defaults to the wall clock)
            source: Provider that owns the job

        Returns:
            Snapshot of the stored job

        Raises:
            ScheduleConfigurationError: If the id is empty or the
                schedule is invalid
        """
        if not job_id:
            raise ScheduleConfigurationError("Job id is required", field="job_id")
        try:
            schedule.validate()
        except ScheduleConfigurationError as e:
            e.job_id = job_id
            raise

        now = ensure_utc(now or utcnow())
        next_execution = schedule.compute_next(now)

        with self._lock:
            existing = self._jobs.get(job_id)
            if existing is None:
                job = ScheduledJob(
                    job_id=job_id,
                    schedule=schedule,
                    next_execution=next_execution,
                    created_at=now,
                    source=source,
                )
            else:
                job = replace(
                    existing,
                    schedule=schedule,
                    next_execution=next_execution,
                    is_active=True,
                    source=source if source is not None else existing.source,
                )
            self._jobs[job_id] = job
            return replace(job)

    def remove(self, job_id: str) -> bool:
        """Remove a job.

        Returns:
            True if the job existed
        """
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def get(self, job_id: str) -> Optional[ScheduledJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job else None

    def all(self) -> List[ScheduledJob]:
        """Snapshot of every registered job."""
        with self._lock:
            return [replace(job) for job in self._jobs.values()]

    def due(self, now: datetime) -> List[ScheduledJob]:
        """Snapshot of active jobs whose next execution has passed."""
        with self._lock:
            return [replace(job) for job in self._jobs.values() if job.is_due(now)]

    def ids_for_source(self, source: str) -> List[str]:
        with self._lock:
            return [job.job_id for job in self._jobs.values() if job.source == source]

    def set_active(self, job_id: str, active: bool, now: Optional[datetime] = None) -> bool:
        """Pause or resume a job.

        Resuming recomputes ``next_execution`` from ``now``; pausing
        leaves it untouched.

        Returns:
            True if the job exists
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            job.is_active = active
            if active:
                job.next_execution = job.schedule.compute_next(
                    ensure_utc(now or utcnow()), job.last_execution
                )
            return True

    def record_execution(
        self,
        job_id: str,
        executed_at: datetime,
        outcome: ExecutionOutcome,
    ) -> Optional[ScheduledJob]:
        """Update bookkeeping after an execution attempt.

        The next execution is computed from ``executed_at``, so interval
        jobs keep their cadence relative to the tick that fired them.
        once_at jobs are deactivated after they fire.

        Args:
            job_id: Job that ran
            executed_at: Tick time at which the job was dispatched
            outcome: Result of the execution

        Returns:
            Snapshot of the updated job, or None if it was removed while running
        """
        executed_at = ensure_utc(executed_at)
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                logger.debug(f"Job {job_id} was removed before its execution completed")
                return None

            job.last_execution = executed_at
            job.execution_count += 1
            if not outcome.success:
                job.error_count += 1
            job.last_outcome = outcome
            job.next_execution = job.schedule.compute_next(executed_at, executed_at)

            if job.schedule.kind is ScheduleKind.ONCE_AT:
                job.is_active = False
                logger.info(f"One-time job {job_id} fired and was deactivated")

            return replace(job)
