"""Test helpers shared across test modules."""

from datetime import datetime, timedelta, timezone


T0 = datetime(2024, 3, 4, 12, 0, 0, tzinfo=timezone.utc)  # a Monday


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now
