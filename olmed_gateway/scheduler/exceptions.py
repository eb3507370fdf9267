"""Exceptions raised by the scheduler."""

from typing import Optional


class SchedulerError(Exception):
    """Base exception for scheduler errors."""


class ScheduleConfigurationError(SchedulerError):
    """A schedule is missing a field its kind requires, or a value is out of range.

    Raised when a job is registered, never while computing the next run.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.job_id = job_id

    def __str__(self) -> str:
        prefix = f"job '{self.job_id}': " if self.job_id else ""
        return f"{prefix}{self.message}"

