"""Schedule model for recurring gateway jobs.

A Schedule describes *when* a job fires and carries the HTTP request
template the job sends. Four kinds are supported:

- interval: every N seconds, counted from the previous run
- daily: every day at a fixed hour:minute
- weekly: once a week on a fixed day at hour:minute
- once_at: a single fixed instant

All instants are timezone-aware UTC. Naive datetimes are interpreted as UTC.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Union
from urllib.parse import urlparse

from olmed_gateway.clock import ensure_utc, parse_datetime
from olmed_gateway.scheduler.exceptions import ScheduleConfigurationError


def _require_int(value: Any, field_name: str) -> None:
    # bool is an int subclass but never a valid count
    if not isinstance(value, int) or isinstance(value, bool):
        raise ScheduleConfigurationError(
            f"{field_name} must be an integer, got {value!r}", field=field_name
        )


class ScheduleKind(str, Enum):
    """Kinds of schedule a job can use."""

    INTERVAL = "interval"
    DAILY = "daily"
    WEEKLY = "weekly"
    ONCE_AT = "once_at"

    @classmethod
    def parse(cls, value: Union[str, "ScheduleKind"]) -> "ScheduleKind":
        """Parse a kind name such as ``"interval"``, ``"OnceAt"`` or ``"once_at"``."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "").replace("_", "")
        for kind in cls:
            if kind.value.replace("_", "") == normalized:
                return kind
        raise ScheduleConfigurationError(
            f"Unknown schedule kind: {value!r}", field="kind"
        )


class DayOfWeek(IntEnum):
    """Day of week, numbered like ``datetime.weekday()``."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def parse(cls, value: Union[int, str, "DayOfWeek"]) -> "DayOfWeek":
        """Parse a day from its index (Monday=0) or English name.

        Full names and three-letter abbreviations are accepted,
        case-insensitively.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise ScheduleConfigurationError(
                    f"Day of week must be 0-6, got {value}", field="day_of_week"
                ) from None
        name = str(value).strip().upper()
        if name.isdigit():
            return cls.parse(int(name))
        for day in cls:
            if day.name == name or day.name[:3] == name:
                return day
        raise ScheduleConfigurationError(
            f"Unknown day of week: {value!r}", field="day_of_week"
        )


@dataclass(frozen=True)
class RequestTemplate:
    """HTTP request a job sends on every execution.

    Attributes:
        method: HTTP method (normalized to upper case)
        url: Absolute target URL
        headers: Extra request headers
        body: Raw request body, sent only for POST/PUT
        use_shared_auth: Inject the shared ERP bearer token when the
            target host belongs to the ERP domain
    """

    method: str = "GET"
    url: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None
    use_shared_auth: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", (self.method or "GET").upper())
        object.__setattr__(self, "headers", dict(self.headers or {}))

    def validate(self) -> None:
        """Check that the request can be sent.

        Raises:
            ScheduleConfigurationError: If the URL is missing or not absolute
        """
        if not isinstance(self.url, str) or not self.url:
            raise ScheduleConfigurationError("Request URL is required", field="request.url")
        parsed = urlparse(self.url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ScheduleConfigurationError(
                f"Request URL must be an absolute http(s) URL: {self.url}",
                field="request.url",
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "url": self.url,
            "headers": dict(self.headers),
            "body": self.body,
            "use_shared_auth": self.use_shared_auth,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequestTemplate":
        use_shared_auth = data.get("use_shared_auth", data.get("useSharedAuth", False))
        return cls(
            method=data.get("method", "GET"),
            url=data.get("url", ""),
            headers=data.get("headers") or {},
            body=data.get("body"),
            use_shared_auth=bool(use_shared_auth),
        )


@dataclass(frozen=True)
class Schedule:
    """When a job fires, plus the request it sends.

    Only the fields relevant to ``kind`` are used; ``validate()`` checks
    that they are present and in range.

    Example:
        schedule = Schedule.interval(
            30, RequestTemplate(url="https://example.com/ping")
        )
        next_run = schedule.compute_next(utcnow())
    """

    kind: ScheduleKind
    request: RequestTemplate = field(default_factory=RequestTemplate)
    interval_seconds: Optional[int] = None
    hour: Optional[int] = None
    minute: Optional[int] = None
    day_of_week: Optional[DayOfWeek] = None
    run_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", ScheduleKind.parse(self.kind))
        if self.day_of_week is not None:
            object.__setattr__(self, "day_of_week", DayOfWeek.parse(self.day_of_week))
        if self.run_at is not None:
            object.__setattr__(self, "run_at", parse_datetime(self.run_at))

    @classmethod
    def interval(cls, seconds: int, request: RequestTemplate) -> "Schedule":
        return cls(kind=ScheduleKind.INTERVAL, request=request, interval_seconds=seconds)

    @classmethod
    def daily(cls, hour: int, minute: int, request: RequestTemplate) -> "Schedule":
        return cls(kind=ScheduleKind.DAILY, request=request, hour=hour, minute=minute)

    @classmethod
    def weekly(
        cls,
        day_of_week: Union[DayOfWeek, int, str],
        hour: int,
        minute: int,
        request: RequestTemplate,
    ) -> "Schedule":
        return cls(
            kind=ScheduleKind.WEEKLY,
            request=request,
            hour=hour,
            minute=minute,
            day_of_week=DayOfWeek.parse(day_of_week),
        )

    @classmethod
    def once_at(cls, run_at: datetime, request: RequestTemplate) -> "Schedule":
        return cls(kind=ScheduleKind.ONCE_AT, request=request, run_at=run_at)

    def validate(self) -> None:
        """Check that every field required by the schedule kind is set.

        Raises:
            ScheduleConfigurationError: On the first missing or
                out-of-range field
        """
        if self.kind is ScheduleKind.INTERVAL:
            if self.interval_seconds is None:
                raise ScheduleConfigurationError(
                    "interval_seconds is required for interval schedules",
                    field="interval_seconds",
                )
            _require_int(self.interval_seconds, "interval_seconds")
            if self.interval_seconds <= 0:
                raise ScheduleConfigurationError(
                    f"interval_seconds must be positive, got {self.interval_seconds}",
                    field="interval_seconds",
                )
        elif self.kind in (ScheduleKind.DAILY, ScheduleKind.WEEKLY):
            self._validate_time_of_day()
            if self.kind is ScheduleKind.WEEKLY and self.day_of_week is None:
                raise ScheduleConfigurationError(
                    "day_of_week is required for weekly schedules",
                    field="day_of_week",
                )
        elif self.kind is ScheduleKind.ONCE_AT:
            if self.run_at is None:
                raise ScheduleConfigurationError(
                    "run_at is required for once_at schedules", field="run_at"
                )

        self.request.validate()

    def _validate_time_of_day(self) -> None:
        kind = self.kind.value
        if self.hour is None:
            raise ScheduleConfigurationError(f"hour is required for {kind} schedules", field="hour")
        if self.minute is None:
            raise ScheduleConfigurationError(f"minute is required for {kind} schedules", field="minute")
        _require_int(self.hour, "hour")
        _require_int(self.minute, "minute")
        if not 0 <= self.hour <= 23:
            raise ScheduleConfigurationError(f"hour must be 0-23, got {self.hour}", field="hour")
        if not 0 <= self.minute <= 59:
            raise ScheduleConfigurationError(f"minute must be 0-59, got {self.minute}", field="minute")

    def compute_next(
        self,
        now: datetime,
        last_execution: Optional[datetime] = None,
    ) -> datetime:
        """Compute the next execution instant.

        Args:
            now: Current time
            last_execution: When the job last ran, if ever

        Returns:
            Next execution time in UTC
        """
        now = ensure_utc(now)

        if self.kind is ScheduleKind.INTERVAL:
            base = ensure_utc(last_execution) if last_execution else now
            return base + timedelta(seconds=self.interval_seconds)

        if self.kind is ScheduleKind.DAILY:
            candidate = now.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
            if candidate <= now:
                candidate += timedelta(days=1)
            return candidate

        if self.kind is ScheduleKind.WEEKLY:
            days_ahead = (int(self.day_of_week) - now.weekday()) % 7
            candidate = now.replace(
                hour=self.hour, minute=self.minute, second=0, microsecond=0
            ) + timedelta(days=days_ahead)
            if candidate <= now:
                candidate += timedelta(days=7)
            return candidate

        if self.kind is ScheduleKind.ONCE_AT:
            return self.run_at

        raise ScheduleConfigurationError(f"Unsupported schedule kind: {self.kind}", field="kind")

    def describe(self) -> str:
        """Short human-readable description, used in CLI tables."""
        if self.kind is ScheduleKind.INTERVAL:
            return f"every {self.interval_seconds}s"
        if self.kind is ScheduleKind.DAILY:
            return f"daily at {self.hour:02d}:{self.minute:02d} UTC"
        if self.kind is ScheduleKind.WEEKLY:
            return (
                f"weekly on {self.day_of_week.name.title()} "
                f"at {self.hour:02d}:{self.minute:02d} UTC"
            )
        return f"once at {self.run_at.isoformat()}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "interval_seconds": self.interval_seconds,
            "hour": self.hour,
            "minute": self.minute,
            "day_of_week": self.day_of_week.name.lower() if self.day_of_week is not None else None,
            "run_at": self.run_at.isoformat() if self.run_at else None,
            "request": self.request.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Schedule":
        """Build a schedule from a plain dictionary (e.g. parsed JSON).

        Accepts ``kind`` or ``type`` for the schedule kind and both
        snake_case and camelCase field names.
        """
        kind = data.get("kind", data.get("type"))
        if kind is None:
            raise ScheduleConfigurationError("Schedule kind is required", field="kind")

        def pick(snake: str, camel: str) -> Any:
            return data[snake] if snake in data else data.get(camel)

        day_of_week = pick("day_of_week", "dayOfWeek")
        run_at = pick("run_at", "runAt")
        try:
            parsed_run_at = parse_datetime(run_at) if run_at else None
        except ValueError as e:
            raise ScheduleConfigurationError(f"Invalid run_at: {e}", field="run_at") from e

        return cls(
            kind=ScheduleKind.parse(kind),
            request=RequestTemplate.from_dict(data.get("request") or {}),
            interval_seconds=pick("interval_seconds", "intervalSeconds"),
            hour=data.get("hour"),
            minute=data.get("minute"),
            day_of_week=DayOfWeek.parse(day_of_week) if day_of_week is not None else None,
            run_at=parsed_run_at,
        )
