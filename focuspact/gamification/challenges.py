"""Challenge catalog and one-way completion tracking.

Challenge Types
---------------
Each ``ChallengeType`` has exactly one pure progress function over
``UserStats``:

    total              lifetime focus sessions
    daily              today's sessions
    weekly             this ISO week's sessions
    monthly            this calendar month's sessions
    recurring_monthly  this month's sessions, but only in ``recurring_month``
    streak             best daily streak (losing a streak never un-qualifies)

Completion
----------
Only ``ChallengeCompletion.completed=True`` is durable; numeric progress is
recomputed live every time.  A completion is never reset and its
``completed_at`` is stamped once.  Evaluation is an idempotent upsert keyed
on ``(user_id, challenge_id)``: running it twice, or concurrently from two
deferred tasks, converges on the same rows.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable

from PyQt6.QtCore import QObject, pyqtSignal
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as OrmSession

from ..clock import local_date, to_utc_naive, utcnow
from ..database.db import get_session
from ..database.models import ChallengeCompletion, ChallengeDefinition, Session as LedgerSession, User
from ..errors import NotFound, ValidationError
from ..identity import Identity, require_admin, require_user, resolve_user
from ..settings import get_settings
from ..stats.aggregator import UserStats, compute_stats

logger = logging.getLogger(__name__)


class ChallengeType(Enum):
    TOTAL = "total"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    RECURRING_MONTHLY = "recurring_monthly"
    STREAK = "streak"


# ── progress functions ───────────────────────────────────────────────────

ProgressFn = Callable[[UserStats, ChallengeDefinition, date], int]


def _recurring_monthly(stats: UserStats, challenge: ChallengeDefinition, today: date) -> int:
    if challenge.recurring_month == today.month:
        return stats.month
    return 0


PROGRESS: dict[ChallengeType, ProgressFn] = {
    ChallengeType.TOTAL: lambda stats, _c, _d: stats.total,
    ChallengeType.DAILY: lambda stats, _c, _d: stats.today,
    ChallengeType.WEEKLY: lambda stats, _c, _d: stats.week,
    ChallengeType.MONTHLY: lambda stats, _c, _d: stats.month,
    ChallengeType.RECURRING_MONTHLY: _recurring_monthly,
    ChallengeType.STREAK: lambda stats, _c, _d: stats.best_streak,
}


def progress_for(challenge: ChallengeDefinition, stats: UserStats, today: date) -> int:
    return PROGRESS[ChallengeType(challenge.type)](stats, challenge, today)


def _challenge_dict(challenge: ChallengeDefinition) -> dict:
    return {
        "id": challenge.id,
        "name": challenge.name,
        "description": challenge.description,
        "badge": challenge.badge,
        "type": challenge.type,
        "target": challenge.target,
        "recurring_month": challenge.recurring_month,
        "active": challenge.active,
    }


def _evaluable(db: OrmSession) -> list[ChallengeDefinition]:
    return (
        db.query(ChallengeDefinition)
        .filter_by(active=True, is_badge=False)
        .order_by(ChallengeDefinition.id.asc())
        .all()
    )


# ── idempotent upsert ────────────────────────────────────────────────────


def mark_completed(
    db: OrmSession, user_id: int, challenge_id: int, now: datetime,
) -> bool:
    """Record a completion.  Returns ``True`` only for the writer that
    flipped it; already-completed rows are left untouched."""
    row = (
        db.query(ChallengeCompletion)
        .filter_by(user_id=user_id, challenge_id=challenge_id)
        .first()
    )
    if row is None:
        try:
            with db.begin_nested():
                db.add(ChallengeCompletion(
                    user_id=user_id,
                    challenge_id=challenge_id,
                    completed=True,
                    completed_at=now,
                ))
            return True
        except IntegrityError:
            # A concurrent evaluation inserted first.
            row = (
                db.query(ChallengeCompletion)
                .filter_by(user_id=user_id, challenge_id=challenge_id)
                .one()
            )

    if row.completed:
        return False

    flipped = (
        db.query(ChallengeCompletion)
        .filter(
            ChallengeCompletion.id == row.id,
            ChallengeCompletion.completed.is_(False),
        )
        .update(
            {
                "completed": True,
                "completed_at": func.coalesce(ChallengeCompletion.completed_at, now),
            },
            synchronize_session=False,
        )
    )
    db.expire(row)
    return flipped == 1


def raise_best_streak(db: OrmSession, user_id: int, best: int) -> None:
    """Lift the stored high-water mark; never lowers it."""
    db.query(User).filter(
        User.id == user_id,
        User.best_daily_streak < best,
    ).update({"best_daily_streak": best}, synchronize_session=False)


# ── evaluator ────────────────────────────────────────────────────────────


class ChallengeEvaluator(QObject):
    """Maps the active catalog onto a user's live stats.

    Signals
    -------
    challenge_completed(data: dict)
        Emitted once per newly completed challenge after the transaction
        commits.  Keys: ``user_id``, ``challenge_id``, ``name``, ``badge``.
    """

    challenge_completed = pyqtSignal(object)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)

    def evaluate(
        self, user_id: int, *, now: datetime | None = None, db: OrmSession | None = None,
    ) -> list[int]:
        """Complete every newly satisfied challenge.  Returns their ids."""
        if db is not None:
            completed = self._evaluate(db, user_id, now)
        else:
            with get_session() as db:
                completed = self._evaluate(db, user_id, now)

        for data in completed:
            self.challenge_completed.emit(data)
        return [d["challenge_id"] for d in completed]

    def sweep(self, now: datetime | None = None) -> dict:
        """Re-evaluate every user with a recent focus session.

        Catches up on evaluations whose deferred task was lost or queued
        in another process.  Each user gets their own transaction; a user
        that raises is logged and skipped.
        """
        now = to_utc_naive(now) if now is not None else utcnow()
        since = now - timedelta(hours=get_settings().challenge_sweep_lookback_hours)
        with get_session() as db:
            user_ids = [
                uid for (uid,) in db.query(LedgerSession.user_id)
                .filter(
                    LedgerSession.mode == "focus",
                    LedgerSession.completed_at >= since,
                    LedgerSession.completed_at <= now,
                )
                .distinct()
                .order_by(LedgerSession.user_id)
            ]

        summary = {"checked": 0, "completed": 0, "errors": 0}
        for user_id in user_ids:
            try:
                completed = self.evaluate(user_id, now=now)
            except Exception:
                logger.exception("challenge sweep: user %s skipped", user_id)
                summary["errors"] += 1
                continue
            summary["checked"] += 1
            summary["completed"] += len(completed)

        logger.info("challenge sweep: %s", summary)
        return summary

    def _evaluate(self, db: OrmSession, user_id: int, now: datetime | None) -> list[dict]:
        now = to_utc_naive(now) if now is not None else utcnow()
        if db.get(User, user_id) is None:
            logger.debug("evaluate skipped: user %s not found", user_id)
            return []

        stats = compute_stats(user_id, now, db)
        raise_best_streak(db, user_id, stats.best_streak)

        today = local_date(now)
        done: set[int] = {
            cid for (cid,) in db.query(ChallengeCompletion.challenge_id)
            .filter_by(user_id=user_id, completed=True)
        }
        newly: list[dict] = []
        for challenge in _evaluable(db):
            if challenge.id in done:
                continue
            if progress_for(challenge, stats, today) < challenge.target:
                continue
            if mark_completed(db, user_id, challenge.id, now):
                logger.info(
                    "challenge completed user=%s challenge=%s (%s)",
                    user_id, challenge.id, challenge.name,
                )
                newly.append({
                    "user_id": user_id,
                    "challenge_id": challenge.id,
                    "name": challenge.name,
                    "badge": challenge.badge,
                })
        return newly


# Module-level singleton
EVALUATOR = ChallengeEvaluator()


def evaluate_challenges(user_id: int, now: datetime | None = None) -> list[int]:
    """Deferred-task entry point."""
    return EVALUATOR.evaluate(user_id, now=now)


def sweep_challenges(now: datetime | None = None) -> dict:
    return EVALUATOR.sweep(now)


# ── queries ──────────────────────────────────────────────────────────────


def get_active_challenges() -> list[dict]:
    with get_session() as db:
        return [_challenge_dict(c) for c in _evaluable(db)]


def get_user_challenges(identity: Identity | None, now: datetime | None = None) -> dict:
    """``{"active": [...], "completed": [...]}`` with live progress."""
    with get_session() as db:
        user = resolve_user(db, identity)
        if user is None:
            return {"active": [], "completed": []}

        now = to_utc_naive(now) if now is not None else utcnow()
        stats = compute_stats(user.id, now, db)
        today = local_date(now)
        completions = {
            c.challenge_id: c
            for c in db.query(ChallengeCompletion).filter_by(user_id=user.id)
        }

        active, completed = [], []
        for challenge in _evaluable(db):
            row = completions.get(challenge.id)
            data = _challenge_dict(challenge)
            data["progress"] = progress_for(challenge, stats, today)
            if row is not None and row.completed:
                data["completed_at"] = row.completed_at
                completed.append(data)
            else:
                active.append(data)

        # Badges and retired challenges still show once earned.
        shown = {d["id"] for d in completed}
        for cid, row in completions.items():
            if row.completed and cid not in shown:
                challenge = db.get(ChallengeDefinition, cid)
                if challenge is None:
                    continue
                data = _challenge_dict(challenge)
                data["progress"] = challenge.target
                data["completed_at"] = row.completed_at
                completed.append(data)

        return {"active": active, "completed": completed}


def sync_my_progress(identity: Identity | None, now: datetime | None = None) -> dict:
    """Run the evaluator for the caller right now (no deferral)."""
    with get_session() as db:
        user = require_user(db, identity)
        user_id = user.id
    newly = EVALUATOR.evaluate(user_id, now=now)
    with get_session() as db:
        count = len(_evaluable(db))
    return {"message": "Progress synced", "challenges": count, "newly_completed": newly}


# ── admin ────────────────────────────────────────────────────────────────


def create_challenge(
    identity: Identity | None,
    *,
    name: str,
    type: str,
    target: int,
    description: str = "",
    badge: str = "",
    recurring_month: int | None = None,
) -> int:
    require_admin(identity)
    try:
        kind = ChallengeType(type)
    except ValueError:
        raise ValidationError(f"Unknown challenge type: {type!r}") from None
    if not name.strip():
        raise ValidationError("Challenge name is required")
    if target < 1:
        raise ValidationError("Target must be at least 1")
    if kind is ChallengeType.RECURRING_MONTHLY:
        if recurring_month is None or not 1 <= recurring_month <= 12:
            raise ValidationError("recurring_monthly challenges need a month 1-12")
    elif recurring_month is not None:
        raise ValidationError("Only recurring_monthly challenges take a month")

    with get_session() as db:
        challenge = ChallengeDefinition(
            name=name.strip(),
            description=description,
            badge=badge,
            type=kind.value,
            target=target,
            recurring_month=recurring_month,
            is_badge=False,
            active=True,
        )
        db.add(challenge)
        db.flush()
        logger.info("challenge created id=%s type=%s target=%s", challenge.id, kind.value, target)
        return challenge.id


def toggle_challenge_active(identity: Identity | None, challenge_id: int) -> bool:
    """Flip ``active`` and return the new value."""
    require_admin(identity)
    with get_session() as db:
        challenge = db.get(ChallengeDefinition, challenge_id)
        if challenge is None:
            raise NotFound("Challenge not found")
        challenge.active = not challenge.active
        return challenge.active


def get_all_challenges(identity: Identity | None) -> list[dict]:
    require_admin(identity)
    with get_session() as db:
        return [
            _challenge_dict(c)
            for c in db.query(ChallengeDefinition).order_by(ChallengeDefinition.id)
        ]
