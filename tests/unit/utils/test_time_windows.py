"""Tests for window arithmetic."""

from datetime import date, datetime, timezone

from src.core.enums import WindowKind
from src.utils.time_windows import (
    ledger_date,
    next_daily_reset,
    seconds_until,
    window_bounds,
)


def at(hour: int, minute: int = 0, second: int = 0, day: int = 14) -> datetime:
    return datetime(2026, 3, day, hour, minute, second, tzinfo=timezone.utc)


def test_hourly_window_is_floor_aligned():
    start, end = window_bounds(WindowKind.HOURLY, at(10, 59, 59))

    assert start == at(10)
    assert end == at(11)


def test_daily_window_starts_at_midnight_utc_by_default():
    start, end = window_bounds(WindowKind.DAILY, at(23, 30))

    assert start == at(0)
    assert end == at(0, day=15)


def test_daily_window_honours_reset_hour():
    # Before today's 06:00 reset the window still belongs to yesterday
    start, end = window_bounds(WindowKind.DAILY, at(5, 59), reset_hour=6)

    assert start == at(6, day=13)
    assert end == at(6)


def test_window_bounds_normalises_other_timezones():
    from datetime import timedelta

    local = datetime(2026, 3, 14, 1, 30, tzinfo=timezone(timedelta(hours=2)))

    start, _ = window_bounds(WindowKind.HOURLY, local)

    assert start == at(23, day=13)


def test_ledger_date_follows_reset_hour():
    assert ledger_date(at(3)) == date(2026, 3, 14)
    assert ledger_date(at(3), reset_hour=4) == date(2026, 3, 13)


def test_next_daily_reset():
    assert next_daily_reset(at(12)) == at(0, day=15)


def test_seconds_until_rounds_up_and_never_goes_negative():
    assert seconds_until(at(11), at(10, 59, 59)) == 1
    assert seconds_until(at(11), datetime(2026, 3, 14, 10, 59, 59, 500000, tzinfo=timezone.utc)) == 1
    assert seconds_until(at(11), at(10)) == 3600
    assert seconds_until(at(10), at(11)) == 0
