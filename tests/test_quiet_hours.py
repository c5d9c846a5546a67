"""Tests for quiet-hours evaluation."""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from notifier.services.quiet_hours import QuietWindow, is_quiet, next_sendable

NIGHT = QuietWindow(22, 7)
NY = ZoneInfo("America/New_York")


def at(hour: int, minute: int = 0, day: int = 10) -> datetime:
    return datetime(2026, 3, day, hour, minute, tzinfo=NY)


class TestIsQuiet:
    """Tests for is_quiet."""

    @pytest.mark.parametrize("hour", [22, 23, 0, 3, 6])
    def test_inside_window_spanning_midnight(self, hour):
        assert is_quiet(at(hour), NIGHT) is True

    @pytest.mark.parametrize("hour", [7, 10, 15, 21])
    def test_outside_window_spanning_midnight(self, hour):
        assert is_quiet(at(hour), NIGHT) is False

    def test_same_day_window(self):
        window = QuietWindow(13, 15)
        assert is_quiet(at(13), window) is True
        assert is_quiet(at(14, 59), window) is True
        assert is_quiet(at(15), window) is False
        assert is_quiet(at(12), window) is False

    def test_zero_length_window_is_never_quiet(self):
        window = QuietWindow(9, 9)
        assert all(not is_quiet(at(h), window) for h in range(24))

    def test_no_window(self):
        assert is_quiet(at(23), None) is False

    def test_rejects_out_of_range_hours(self):
        with pytest.raises(ValueError):
            QuietWindow(24, 7)


class TestNextSendable:
    """Tests for next_sendable."""

    def test_late_evening_rolls_to_next_morning(self):
        result = next_sendable(at(23, 30), NIGHT)
        assert result == datetime(2026, 3, 11, 7, 0, tzinfo=NY)

    def test_early_morning_same_day(self):
        result = next_sendable(at(2, 15), NIGHT)
        assert result == datetime(2026, 3, 10, 7, 0, tzinfo=NY)

    def test_not_quiet_returns_now(self):
        now = at(12)
        assert next_sendable(now, NIGHT) == now

    def test_result_is_strictly_after_now(self):
        now = at(6, 59)
        assert next_sendable(now, NIGHT) > now
