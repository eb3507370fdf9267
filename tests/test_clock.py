"""Tests for the UTC time helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from olmed_gateway.clock import ensure_utc, parse_datetime, utcnow


class TestClock:
    """Tests for clock helpers."""

    def test_utcnow_is_aware(self):
        """Test that utcnow carries the UTC zone."""
        assert utcnow().tzinfo == timezone.utc

    def test_ensure_utc_naive(self):
        """Test that naive values are taken as UTC."""
        assert ensure_utc(datetime(2024, 3, 4, 12, 0)) == datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)

    def test_ensure_utc_converts(self):
        """Test that other zones are converted."""
        warsaw = timezone(timedelta(hours=1))
        value = ensure_utc(datetime(2024, 3, 4, 13, 0, tzinfo=warsaw))
        assert value == datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)
        assert value.tzinfo == timezone.utc

    @pytest.mark.parametrize(
        "text",
        ["2024-03-04T12:00:00Z", "2024-03-04T12:00:00+00:00", "2024-03-04T13:00:00+01:00", "2024-03-04T12:00:00"],
    )
    def test_parse_datetime(self, text):
        """Test parsing ISO-8601 variants."""
        assert parse_datetime(text) == datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)

    def test_parse_datetime_invalid(self):
        """Test that garbage raises ValueError."""
        with pytest.raises(ValueError):
            parse_datetime("tomorrow")
