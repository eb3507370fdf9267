"""In-process cron scheduler for recurring HTTP jobs.

Jobs fire on interval, daily, weekly or one-shot schedules and send an
HTTP request, optionally carrying the shared Olmed bearer token.
"""

from olmed_gateway.scheduler.exceptions import (
    ScheduleConfigurationError,
    SchedulerError,
)
from olmed_gateway.scheduler.job_executor import JobExecutor
from olmed_gateway.scheduler.job_scheduler import CronScheduler, JobExecutionResult
from olmed_gateway.scheduler.registry import ExecutionOutcome, JobRegistry, ScheduledJob
from olmed_gateway.scheduler.schedule import DayOfWeek, RequestTemplate, Schedule, ScheduleKind

__all__ = [
    "CronScheduler",
    "DayOfWeek",
    "ExecutionOutcome",
    "JobExecutionResult",
    "JobExecutor",
    "JobRegistry",
    "RequestTemplate",
    "Schedule",
    "ScheduleConfigurationError",
    "ScheduleKind",
    "ScheduledJob",
    "SchedulerError",
]
