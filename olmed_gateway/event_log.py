"""Structured JSON-lines event log for the scheduler.

Events are appended to daily files in the event log directory:

- ``cronjobs_job_events_YYYYMMDD.log``: job registration, removal, response notes
- ``cronjobs_job_executions_YYYYMMDD.log``: one entry per execution attempt
- ``cronjobs_scheduler_events_YYYYMMDD.log``: start, stop, logins, reloads
- ``{category}_YYYYMMDD.log``: free-form entries written through ``log()``

File writes run in a worker thread so callers on the event loop never
block. Write failures are reported through the standard logger and never
propagate.
"""

import asyncio
import json
import logging
import threading
import traceback
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from olmed_gateway.clock import utcnow

logger = logging.getLogger(__name__)

JOB_EVENTS = "job_events"
JOB_EXECUTIONS = "job_executions"
SCHEDULER_EVENTS = "scheduler_events"


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    return str(value)


class EventLog:
    """Append-only JSON-lines event log.

    Example:
        events = EventLog(Path("logs/cronjobs"))
        await events.job_event("ping", "JOB_ADDED", "Job registered")
    """

    def __init__(
        self,
        directory: Path,
        debug: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the event log.

        Args:
            directory: Directory for log files (created on first write)
            debug: Write every ``log()`` entry instead of errors only
            clock: Time source for timestamps and file names
        """
        self._directory = Path(directory)
        self._debug = debug
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, log_type: str, when: Optional[datetime] = None) -> Path:
        date = (when or self._clock()).strftime("%Y%m%d")
        return self._directory / f"cronjobs_{log_type}_{date}.log"

    def write(self, path: Path, entry: Dict[str, Any]) -> None:
        """Append one entry to a file (blocking)."""
        line = json.dumps(entry, default=_json_default, ensure_ascii=False)
        try:
            with self._lock:
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            logger.error(f"Failed to write event log entry to {path}: {e}")

    async def _append(self, path: Path, entry: Dict[str, Any]) -> None:
        await asyncio.to_thread(self.write, path, entry)

    async def job_event(
        self,
        job_id: str,
        event_type: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        entry = {
            "timestamp": self._clock(),
            "event_type": event_type,
            "job_id": job_id,
            "message": message,
            "additional_data": data,
        }
        await self._append(self.path_for(JOB_EVENTS), entry)

    async def job_execution(
        self,
        job_id: str,
        success: bool,
        started_at: datetime,
        duration_ms: float,
        status_code: Optional[int],
        response_data: Optional[str],
        error: Optional[str] = None,
    ) -> None:
        """Record one execution attempt.

        The response is truncated to 500 characters.
        """
        if response_data and len(response_data) > 500:
            response_data = response_data[:500] + "..."
        entry = {
            "timestamp": self._clock(),
            "job_id": job_id,
            "success": success,
            "start_time": started_at,
            "duration_ms": duration_ms,
            "status_code": status_code,
            "response_data": response_data,
            "error_message": error,
            "execution_id": uuid.uuid4().hex[:8],
        }
        await self._append(self.path_for(JOB_EXECUTIONS), entry)

    async def scheduler_event(
        self,
        event_type: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        active_jobs: Optional[int] = None,
    ) -> None:
        entry = {
            "timestamp": self._clock(),
            "event_type": event_type,
            "message": message,
            "additional_data": data,
            "active_jobs_count": active_jobs,
        }
        await self._append(self.path_for(SCHEDULER_EVENTS), entry)

    async def log(
        self,
        category: str,
        level: int,
        message: str,
        error: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Write a free-form structured entry.

        Outside debug mode only ERROR and above are written.

        Args:
            category: Log category, used as the file name prefix
            level: Standard logging level
            message: Log message
            error: Exception to record, if any
            context: Extra structured data
        """
        if not self._debug and level < logging.ERROR:
            return

        now = self._clock()
        entry: Dict[str, Any] = {
            "timestamp": now,
            "level": logging.getLevelName(level),
            "category": category,
            "message": message,
        }
        if error is not None:
            entry["exception"] = {
                "type": type(error).__name__,
                "message": str(error),
                "stack_trace": "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                ),
            }
        if context:
            entry["context"] = context

        path = self._directory / f"{category}_{now.strftime('%Y%m%d')}.log"
        await self._append(path, entry)
