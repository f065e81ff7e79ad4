"""Accountability pact state machine.

States
------
PENDING     Created; people may join until the start date.
ACTIVE      Start date reached; every participant owes the daily quota.
COMPLETED   End date passed with every participant meeting every day.
FAILED      Someone missed a day.  Fails the pact for everyone.

Transitions
-----------
PENDING → ACTIVE        today >= start_date       (lazy: ingestion or sweep)
ACTIVE  → FAILED        first (date, participant) with date < today whose
                        progress row is missing or incomplete; dates
                        ascending, then participants in join order
ACTIVE  → COMPLETED     today > end_date and every row completed; the team
                        badge is awarded in the same transaction

COMPLETED and FAILED are terminal.  Every transition is a compare-and-set
``UPDATE ... WHERE status = <expected>``, so two concurrent evaluations of
the same pact converge: one wins, the other sees zero rows updated.

Daily progress
--------------
``pomos_completed`` is always a fresh count of the participant's focus
sessions in that calendar day, never an increment, so retried or
out-of-order session writes cannot skew it.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from enum import Enum

from PyQt6.QtCore import QObject, pyqtSignal
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as OrmSession

from ..clock import date_range, day_bounds, local_date, to_utc_naive, utcnow
from ..database.db import get_session
from ..database.models import (
    Pact, PactDailyProgress, PactParticipant, Session as LedgerSession,
)
from ..gamification.badges import award_on_pact_completion

logger = logging.getLogger(__name__)


class PactStatus(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (PactStatus.COMPLETED.value, PactStatus.FAILED.value)
OPEN_STATUSES = (PactStatus.PENDING.value, PactStatus.ACTIVE.value)


def count_focus_sessions_on(db: OrmSession, user_id: int, day: date) -> int:
    start, end = day_bounds(day)
    return (
        db.query(func.count(LedgerSession.id))
        .filter(
            LedgerSession.user_id == user_id,
            LedgerSession.mode == "focus",
            LedgerSession.completed_at >= start,
            LedgerSession.completed_at < end,
        )
        .scalar()
        or 0
    )


def ordered_participants(db: OrmSession, pact_id: int) -> list[PactParticipant]:
    return (
        db.query(PactParticipant)
        .filter_by(pact_id=pact_id)
        .order_by(PactParticipant.joined_at.asc(), PactParticipant.id.asc())
        .all()
    )


class PactEngine(QObject):
    """Drives pacts through their lifecycle.

    Signals
    -------
    pact_status_changed(data: dict)
        Emitted after commit for every transition.  Keys: ``pact_id``,
        ``old_status``, ``new_status``, ``failed_on_date``,
        ``failed_by_user_id``, ``badges_awarded`` (user ids).
    """

    pact_status_changed = pyqtSignal(object)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)

    # ══════════════════════════════════════════════════════════════════
    #  DAILY PROGRESS
    # ══════════════════════════════════════════════════════════════════

    def refresh_daily_progress(
        self, db: OrmSession, pact: Pact, user_id: int, day: date,
    ) -> PactDailyProgress:
        """Recount one participant-day from the ledger and upsert it."""
        pomos = count_focus_sessions_on(db, user_id, day)
        completed = pomos >= pact.required_pomos_per_day

        row = (
            db.query(PactDailyProgress)
            .filter_by(pact_id=pact.id, user_id=user_id, date=day)
            .first()
        )
        if row is None:
            try:
                with db.begin_nested():
                    row = PactDailyProgress(
                        pact_id=pact.id,
                        user_id=user_id,
                        date=day,
                        pomos_completed=pomos,
                        completed=completed,
                    )
                    db.add(row)
                return row
            except IntegrityError:
                row = (
                    db.query(PactDailyProgress)
                    .filter_by(pact_id=pact.id, user_id=user_id, date=day)
                    .one()
                )
        row.pomos_completed = pomos
        row.completed = completed
        return row

    def refresh_elapsed_progress(self, db: OrmSession, pact: Pact, today: date) -> int:
        """Recount every participant for every pact day up to *today*."""
        last = min(pact.end_date, today)
        refreshed = 0
        for p in ordered_participants(db, pact.id):
            for d in date_range(pact.start_date, last):
                self.refresh_daily_progress(db, pact, p.user_id, d)
                refreshed += 1
        db.flush()
        return refreshed

    # ══════════════════════════════════════════════════════════════════
    #  TRANSITIONS
    # ══════════════════════════════════════════════════════════════════

    def _transition(
        self,
        db: OrmSession,
        pact: Pact,
        old: PactStatus,
        new: PactStatus,
        events: list[dict],
        **fields,
    ) -> bool:
        updated = (
            db.query(Pact)
            .filter(Pact.id == pact.id, Pact.status == old.value)
            .update({"status": new.value, **fields}, synchronize_session=False)
        )
        db.refresh(pact)
        if updated != 1:
            return False
        logger.info("pact %s: %s -> %s %s", pact.id, old.value, new.value, fields or "")
        events.append({
            "pact_id": pact.id,
            "old_status": old.value,
            "new_status": new.value,
            "failed_on_date": pact.failed_on_date,
            "failed_by_user_id": pact.failed_by_user_id,
            "badges_awarded": [],
        })
        return True

    def activate_if_due(
        self, db: OrmSession, pact: Pact, today: date, events: list[dict],
    ) -> bool:
        if pact.status != PactStatus.PENDING.value or today < pact.start_date:
            return False
        return self._transition(db, pact, PactStatus.PENDING, PactStatus.ACTIVE, events)

    def check_failed(
        self, db: OrmSession, pact: Pact, today: date, now: datetime, events: list[dict],
    ) -> bool:
        """Fail-fast scan over elapsed days.  Returns ``True`` if it failed now."""
        if pact.status != PactStatus.ACTIVE.value:
            return False
        participants = ordered_participants(db, pact.id)
        rows = {
            (r.user_id, r.date): r
            for r in db.query(PactDailyProgress).filter_by(pact_id=pact.id)
        }
        for d in date_range(pact.start_date, pact.end_date):
            if d >= today:
                break
            for p in participants:
                row = rows.get((p.user_id, d))
                if row is None or not row.completed:
                    return self._transition(
                        db, pact, PactStatus.ACTIVE, PactStatus.FAILED, events,
                        failed_on_date=d,
                        failed_by_user_id=p.user_id,
                        finished_at=now,
                    )
        return False

    def check_completed(
        self, db: OrmSession, pact: Pact, today: date, now: datetime, events: list[dict],
    ) -> bool:
        if pact.status != PactStatus.ACTIVE.value or today <= pact.end_date:
            return False
        rows = {
            (r.user_id, r.date): r
            for r in db.query(PactDailyProgress).filter_by(pact_id=pact.id)
        }
        for p in ordered_participants(db, pact.id):
            for d in date_range(pact.start_date, pact.end_date):
                row = rows.get((p.user_id, d))
                if row is None or not row.completed:
                    return False

        if not self._transition(
            db, pact, PactStatus.ACTIVE, PactStatus.COMPLETED, events, finished_at=now,
        ):
            return False
        events[-1]["badges_awarded"] = award_on_pact_completion(pact.id, now=now, db=db)
        return True

    def reconcile(
        self, db: OrmSession, pact: Pact, now: datetime, events: list[dict],
    ) -> None:
        """Activate, recount, then re-check fail and complete.  Re-entrant."""
        if pact.status in TERMINAL_STATUSES:
            return
        today = local_date(now)
        self.activate_if_due(db, pact, today, events)
        if pact.status != PactStatus.ACTIVE.value:
            return
        self.refresh_elapsed_progress(db, pact, today)
        if not self.check_failed(db, pact, today, now, events):
            self.check_completed(db, pact, today, now, events)

    # ══════════════════════════════════════════════════════════════════
    #  ENTRY POINTS
    # ══════════════════════════════════════════════════════════════════

    def _emit(self, events: list[dict]) -> None:
        for data in events:
            self.pact_status_changed.emit(data)

    def on_focus_session(
        self, user_id: int, completed_at: datetime, *, now: datetime | None = None,
    ) -> list[dict]:
        """Bring every open pact of *user_id* up to date after a session.

        Returns the transitions that happened.
        """
        now = to_utc_naive(now) if now is not None else utcnow()
        session_day = local_date(completed_at)
        events: list[dict] = []
        with get_session() as db:
            pacts = (
                db.query(Pact)
                .join(PactParticipant, PactParticipant.pact_id == Pact.id)
                .filter(
                    PactParticipant.user_id == user_id,
                    Pact.status.in_(OPEN_STATUSES),
                )
                .order_by(Pact.id)
                .all()
            )
            for pact in pacts:
                if pact.start_date <= session_day <= pact.end_date:
                    self.refresh_daily_progress(db, pact, user_id, session_day)
                self.reconcile(db, pact, now, events)
        self._emit(events)
        return events

    def sweep(self, now: datetime | None = None) -> dict:
        """Reconcile every non-terminal pact, one transaction per pact.

        A pact that raises is logged and skipped; the next sweep retries it.
        """
        now = to_utc_naive(now) if now is not None else utcnow()
        with get_session() as db:
            pact_ids = [
                pid for (pid,) in db.query(Pact.id)
                .filter(Pact.status.in_(OPEN_STATUSES))
                .order_by(Pact.id)
            ]

        summary = {"checked": 0, "activated": 0, "failed": 0, "completed": 0, "errors": 0}
        for pact_id in pact_ids:
            events: list[dict] = []
            try:
                with get_session() as db:
                    pact = db.get(Pact, pact_id)
                    if pact is None:
                        continue
                    self.reconcile(db, pact, now, events)
            except Exception:
                logger.exception("sweep: pact %s skipped", pact_id)
                summary["errors"] += 1
                continue
            summary["checked"] += 1
            for e in events:
                summary[e["new_status"] if e["new_status"] != "active" else "activated"] += 1
            self._emit(events)

        logger.info("pact sweep: %s", summary)
        return summary


# Module-level singleton
ENGINE = PactEngine()


def refresh_pacts_for_session(
    user_id: int, completed_at: datetime, now: datetime | None = None,
) -> list[dict]:
    """Deferred-task entry point."""
    return ENGINE.on_focus_session(user_id, completed_at, now=now)


def sweep_pacts(now: datetime | None = None) -> dict:
    return ENGINE.sweep(now)
