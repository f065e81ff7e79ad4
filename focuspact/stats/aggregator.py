"""Per-user statistics, derived from the session ledger on every call.

No counter cache is consulted.  The only stored input besides the ledger
is ``User.best_daily_streak``, a high-water mark that can only raise the
reported best streak, never lower it.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy.orm import Session as OrmSession

from ..clock import local_date, month_start, utcnow, week_start, year_start, to_utc_naive
from ..database.db import get_session
from ..database.models import Session as LedgerSession, User
from ..identity import Identity, resolve_user
from ..settings import get_settings
from .streaks import (
    FitnessPoint, best_streak, current_daily_streak, focus_fitness, weekly_streak,
)


@dataclass
class UserStats:
    total: int = 0
    today: int = 0
    week: int = 0
    month: int = 0
    current_streak: int = 0
    best_streak: int = 0
    weekly_streak: int = 0
    focus_fitness: list[FitnessPoint] = field(default_factory=list)


def _focus_sessions(
    db: OrmSession, user_id: int, as_of: datetime, since: datetime | None = None,
) -> list[LedgerSession]:
    q = db.query(LedgerSession).filter(
        LedgerSession.user_id == user_id,
        LedgerSession.mode == "focus",
        LedgerSession.completed_at <= as_of,
    )
    if since is not None:
        q = q.filter(LedgerSession.completed_at >= since)
    return q.order_by(LedgerSession.completed_at.asc()).all()


def stats_from_days(
    session_days: list[date], today: date, stored_best: int = 0,
) -> UserStats:
    """Build ``UserStats`` from one calendar day per focus session."""
    settings = get_settings()
    wk, mo = week_start(today), month_start(today)
    counts = Counter(session_days)
    return UserStats(
        total=len(session_days),
        today=counts.get(today, 0),
        week=sum(n for d, n in counts.items() if wk <= d <= today),
        month=sum(n for d, n in counts.items() if mo <= d <= today),
        current_streak=current_daily_streak(counts, today),
        best_streak=best_streak(counts, today, stored_best),
        weekly_streak=weekly_streak(
            session_days, today, settings.weekly_streak_min_sessions,
        ),
        focus_fitness=focus_fitness(
            dict(counts), today,
            days=settings.fitness_days,
            decay=settings.fitness_decay,
            weight=settings.fitness_weight,
        ),
    )


def compute_stats(
    user_id: int, as_of: datetime | None = None, db: OrmSession | None = None,
) -> UserStats:
    """Counts, streaks and focus fitness for *user_id* as of *as_of*.

    Sessions completed after *as_of* are ignored.  A missing user yields
    zeroed stats.
    """
    if db is None:
        with get_session() as db:
            return compute_stats(user_id, as_of, db)

    as_of = to_utc_naive(as_of) if as_of is not None else utcnow()
    user = db.get(User, user_id)
    if user is None:
        return UserStats()
    days = [local_date(s.completed_at) for s in _focus_sessions(db, user_id, as_of)]
    return stats_from_days(days, local_date(as_of), user.best_daily_streak or 0)


def get_my_stats(identity: Identity | None, as_of: datetime | None = None) -> UserStats:
    """Stats for the caller.  Anonymous or unknown callers get zeroes."""
    with get_session() as db:
        user = resolve_user(db, identity)
        if user is None:
            return UserStats()
        return compute_stats(user.id, as_of, db)


# ── summaries for dashboards ─────────────────────────────────────────────


def period_summary(
    user_id: int, as_of: datetime | None = None, db: OrmSession | None = None,
) -> dict[str, dict[str, int]]:
    """Session count and focus minutes for total / week / month / year."""
    if db is None:
        with get_session() as db:
            return period_summary(user_id, as_of, db)

    as_of = to_utc_naive(as_of) if as_of is not None else utcnow()
    today = local_date(as_of)
    starts = {
        "total": date.min,
        "week": week_start(today),
        "month": month_start(today),
        "year": year_start(today),
    }
    seconds = {k: 0 for k in starts}
    counts = {k: 0 for k in starts}
    for s in _focus_sessions(db, user_id, as_of):
        d = local_date(s.completed_at)
        for key, start in starts.items():
            if d >= start:
                counts[key] += 1
                seconds[key] += s.duration_seconds
    return {
        key: {"count": counts[key], "minutes": round(seconds[key] / 60)}
        for key in starts
    }


def activity(
    user_id: int,
    as_of: datetime | None = None,
    days: int = 365,
    db: OrmSession | None = None,
) -> list[dict]:
    """Per-day ``{date, count, minutes}`` for the heatmap, oldest first.

    Only days with at least one focus session are returned.
    """
    if db is None:
        with get_session() as db:
            return activity(user_id, as_of, days, db)

    as_of = to_utc_naive(as_of) if as_of is not None else utcnow()
    since = as_of - timedelta(days=days)
    by_day: dict[date, list[int]] = defaultdict(lambda: [0, 0])
    for s in _focus_sessions(db, user_id, as_of, since=since):
        bucket = by_day[local_date(s.completed_at)]
        bucket[0] += 1
        bucket[1] += s.duration_seconds
    return [
        {"date": d, "count": count, "minutes": round(secs / 60)}
        for d, (count, secs) in sorted(by_day.items())
    ]
