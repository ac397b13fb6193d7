"""Wall-clock window arithmetic for rate windows and the free credit day."""

from datetime import date, datetime, timedelta, timezone

from src.core.enums import WindowKind


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def window_bounds(
    kind: WindowKind, now: datetime, reset_hour: int = 0
) -> tuple[datetime, datetime]:
    """
    Floor-aligned [start, end) bounds of the window containing ``now``.

    Hourly windows start at the top of the hour; daily windows start at
    ``reset_hour`` UTC.
    """
    now = now.astimezone(timezone.utc)
    if kind == WindowKind.HOURLY:
        start = now.replace(minute=0, second=0, microsecond=0)
        return start, start + timedelta(hours=1)

    start = now.replace(hour=reset_hour, minute=0, second=0, microsecond=0)
    if start > now:
        start -= timedelta(days=1)
    return start, start + timedelta(days=1)


def ledger_date(now: datetime, reset_hour: int = 0) -> date:
    """The free-credit day ``now`` belongs to."""
    start, _ = window_bounds(WindowKind.DAILY, now, reset_hour)
    return start.date()


def next_daily_reset(now: datetime, reset_hour: int = 0) -> datetime:
    _, end = window_bounds(WindowKind.DAILY, now, reset_hour)
    return end


def seconds_until(moment: datetime, now: datetime) -> int:
    """Whole seconds until ``moment``, rounded up, never negative."""
    delta = (moment - now).total_seconds()
    if delta <= 0:
        return 0
    return int(delta) + (0 if delta == int(delta) else 1)
