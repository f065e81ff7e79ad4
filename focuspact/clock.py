"""Calendar arithmetic in the configured reference timezone.

Ledger timestamps are stored as naive UTC.  Every notion of "day",
"week" and "month" is taken in ``Settings.timezone`` so that streaks,
stats and pact days agree with each other no matter which host
evaluates them.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator

from .settings import get_settings


def utcnow() -> datetime:
    """Current time as naive UTC (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(moment: datetime) -> datetime:
    """Normalise *moment* to naive UTC.  Naive input is assumed UTC already."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def from_epoch_ms(ms: int | float) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).replace(tzinfo=None)


def local_date(moment: datetime) -> date:
    """Calendar day of a stored (naive UTC) timestamp."""
    aware = to_utc_naive(moment).replace(tzinfo=timezone.utc)
    return aware.astimezone(get_settings().tz).date()


def today(now: datetime | None = None) -> date:
    return local_date(now if now is not None else utcnow())


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """``[start, end)`` of a local calendar day, as naive UTC."""
    tz = get_settings().tz
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return to_utc_naive(start), to_utc_naive(end)


def week_start(day: date) -> date:
    """Monday of the ISO week containing *day*."""
    return day - timedelta(days=day.weekday())


def month_start(day: date) -> date:
    return day.replace(day=1)


def year_start(day: date) -> date:
    return day.replace(month=1, day=1)


def date_range(start: date, end: date) -> Iterator[date]:
    """Every day from *start* to *end*, inclusive."""
    d = start
    while d <= end:
        yield d
        d += timedelta(days=1)
