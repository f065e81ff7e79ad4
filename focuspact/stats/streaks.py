"""Streak and focus-fitness math.

Everything here is a pure function of calendar days (already bucketed in
the reference timezone), so it can be unit-tested without a database.

Daily streak
------------
Consecutive days with at least one focus session, counted backwards from
today.  If today has nothing yet the walk starts at yesterday, so an
unbroken streak is not reported as broken before the day is over.

Best streak
-----------
Longest run of consecutive distinct session days in the whole history.
The reported best never regresses: it is the max of the historical best,
the stored high-water mark and the live streak.

Weekly streak
-------------
Consecutive ISO weeks (Monday start), counted backwards from the current
week, each holding at least ``min_sessions`` focus sessions.

Focus fitness
-------------
An exponentially decayed "training load"::

    score[d] = score[d-1] * decay + pomos[d] * weight

seeded at zero at the start of the window.  One session adds ``weight``
points; a rest day costs ``1 - decay`` of the current score.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable

from ..clock import week_start


@dataclass(frozen=True)
class FitnessPoint:
    date: date
    score: float


def current_daily_streak(days: Iterable[date], today: date) -> int:
    active = set(days)
    check = today if today in active else today - timedelta(days=1)
    streak = 0
    while check in active:
        streak += 1
        check -= timedelta(days=1)
    return streak


def best_historical_streak(days: Iterable[date]) -> int:
    ordered = sorted(set(days))
    if not ordered:
        return 0
    best = run = 1
    for prev, curr in zip(ordered, ordered[1:]):
        if (curr - prev).days == 1:
            run += 1
            best = max(best, run)
        else:
            run = 1
    return best


def best_streak(days: Iterable[date], today: date, stored_best: int = 0) -> int:
    """Best streak as reported to users: never below any known value."""
    days = list(days)
    return max(
        best_historical_streak(days),
        stored_best or 0,
        current_daily_streak(days, today),
    )


def weekly_streak(session_days: Iterable[date], today: date, min_sessions: int = 5) -> int:
    """*session_days* holds one entry per session (duplicates count)."""
    per_week = Counter(week_start(d) for d in session_days)
    check = week_start(today)
    streak = 0
    while per_week.get(check, 0) >= min_sessions:
        streak += 1
        check -= timedelta(days=7)
    return streak


def focus_fitness(
    pomos_by_day: dict[date, int],
    today: date,
    days: int = 90,
    decay: float = 0.976,
    weight: float = 1.0,
) -> list[FitnessPoint]:
    """EWMA over the *days*-long window ending at *today* (inclusive)."""
    points: list[FitnessPoint] = []
    score = 0.0
    for offset in range(days - 1, -1, -1):
        d = today - timedelta(days=offset)
        score = score * decay + pomos_by_day.get(d, 0) * weight
        points.append(FitnessPoint(d, score))
    return points
