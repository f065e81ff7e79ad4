"""Pact membership operations and read models."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from ..clock import local_date, to_utc_naive, utcnow
from ..database.db import get_session
from ..database.models import Pact, PactDailyProgress, PactParticipant, User
from ..errors import InvariantViolation, NotFound, PermissionDenied, ValidationError
from ..identity import Identity, require_user, resolve_user
from ..settings import get_settings
from .engine import PactStatus, count_focus_sessions_on, ordered_participants
from .join_codes import normalize_join_code, unique_join_code

logger = logging.getLogger(__name__)


def _now(now: datetime | None) -> datetime:
    return to_utc_naive(now) if now is not None else utcnow()


def _validate_shape(days: int, required_pomos_per_day: int) -> None:
    settings = get_settings()
    if not 1 <= days <= settings.max_pact_days:
        raise ValidationError(f"Pact length must be 1-{settings.max_pact_days} days")
    if not 1 <= required_pomos_per_day <= settings.max_required_pomos_per_day:
        raise ValidationError(
            f"Required pomodoros per day must be 1-{settings.max_required_pomos_per_day}"
        )


def _pact_dict(pact: Pact) -> dict:
    return {
        "id": pact.id,
        "name": pact.name,
        "join_code": pact.join_code,
        "start_date": pact.start_date,
        "end_date": pact.end_date,
        "required_pomos_per_day": pact.required_pomos_per_day,
        "status": pact.status,
        "failed_on_date": pact.failed_on_date,
        "failed_by_user_id": pact.failed_by_user_id,
        "finished_at": pact.finished_at,
        "creator_id": pact.creator_id,
    }


# ── mutations ────────────────────────────────────────────────────────────


def create_pact(
    identity: Identity | None,
    start_date: date,
    *,
    name: str = "Focus Pact",
    days: int | None = None,
    required_pomos_per_day: int = 1,
    now: datetime | None = None,
) -> dict:
    """Create a pending pact with the caller as creator.

    ``end_date = start_date + days - 1``.  Returns ``{"pact_id", "join_code"}``.
    """
    now = _now(now)
    if days is None:
        days = get_settings().default_pact_days
    _validate_shape(days, required_pomos_per_day)
    if start_date < local_date(now):
        raise ValidationError("Start date cannot be in the past")
    if not name or not name.strip():
        raise ValidationError("Pact name is required")

    with get_session() as db:
        user = require_user(db, identity)
        pact = Pact(
            creator_id=user.id,
            name=name.strip(),
            join_code=unique_join_code(db),
            start_date=start_date,
            end_date=start_date + timedelta(days=days - 1),
            required_pomos_per_day=required_pomos_per_day,
            status=PactStatus.PENDING.value,
            created_at=now,
        )
        db.add(pact)
        db.flush()
        db.add(PactParticipant(
            pact_id=pact.id, user_id=user.id, role="creator", joined_at=now,
        ))
        logger.info(
            "pact created id=%s code=%s %s..%s x%s",
            pact.id, pact.join_code, pact.start_date, pact.end_date,
            pact.required_pomos_per_day,
        )
        return {"pact_id": pact.id, "join_code": pact.join_code}


def join_pact(
    identity: Identity | None, join_code: str, *, now: datetime | None = None,
) -> int:
    """Join by code.  Returns the pact id."""
    now = _now(now)
    with get_session() as db:
        user = require_user(db, identity)
        pact = db.query(Pact).filter_by(join_code=normalize_join_code(join_code)).first()
        if pact is None:
            raise NotFound("Pact not found")
        if pact.status != PactStatus.PENDING.value:
            raise InvariantViolation("Pact has already started")
        if local_date(now) > pact.start_date:
            raise InvariantViolation("Pact has already started")
        already = (
            db.query(PactParticipant)
            .filter_by(pact_id=pact.id, user_id=user.id)
            .first()
        )
        if already is not None:
            raise InvariantViolation("Already in this pact")

        db.add(PactParticipant(
            pact_id=pact.id, user_id=user.id, role="participant", joined_at=now,
        ))
        logger.info("user %s joined pact %s", user.id, pact.id)
        return pact.id


def leave_pact(identity: Identity | None, pact_id: int) -> bool:
    """Leave a pending pact.  The pact is deleted when nobody is left.

    A departing creator hands the role to the earliest remaining joiner.

    Returns ``True`` if the pact was deleted.
    """
    with get_session() as db:
        user = require_user(db, identity)
        pact = db.get(Pact, pact_id)
        if pact is None:
            raise NotFound("Pact not found")
        if pact.status != PactStatus.PENDING.value:
            raise InvariantViolation("Cannot leave a pact that has started")
        membership = (
            db.query(PactParticipant)
            .filter_by(pact_id=pact.id, user_id=user.id)
            .first()
        )
        if membership is None:
            raise InvariantViolation("Not in this pact")

        db.delete(membership)
        db.flush()
        remaining = db.query(PactParticipant).filter_by(pact_id=pact.id).count()
        logger.info("user %s left pact %s (%s remaining)", user.id, pact.id, remaining)
        if remaining == 0:
            db.query(PactDailyProgress).filter_by(pact_id=pact.id).delete()
            db.delete(pact)
            logger.info("pact %s deleted: no participants", pact_id)
            return True
        if membership.role == "creator":
            heir = ordered_participants(db, pact.id)[0]
            heir.role = "creator"
            pact.creator_id = heir.user_id
            logger.info("pact %s creator handed to user %s", pact.id, heir.user_id)
        return False


def update_pact(
    identity: Identity | None,
    pact_id: int,
    *,
    name: str | None = None,
    start_date: date | None = None,
    days: int | None = None,
    required_pomos_per_day: int | None = None,
    now: datetime | None = None,
) -> dict:
    """Creator-only edit of a pact that has not started yet."""
    now = _now(now)
    today = local_date(now)
    with get_session() as db:
        user = require_user(db, identity)
        pact = db.get(Pact, pact_id)
        if pact is None:
            raise NotFound("Pact not found")
        if pact.creator_id != user.id:
            raise PermissionDenied("Only the creator can edit this pact")
        if pact.status != PactStatus.PENDING.value or today >= pact.start_date:
            raise InvariantViolation("Cannot edit a pact that has started")

        new_start = start_date if start_date is not None else pact.start_date
        new_days = days if days is not None else (pact.end_date - pact.start_date).days + 1
        new_required = (
            required_pomos_per_day
            if required_pomos_per_day is not None
            else pact.required_pomos_per_day
        )
        _validate_shape(new_days, new_required)
        if new_start < today:
            raise ValidationError("Start date cannot be in the past")
        if name is not None:
            if not name.strip():
                raise ValidationError("Pact name is required")
            pact.name = name.strip()

        pact.start_date = new_start
        pact.end_date = new_start + timedelta(days=new_days - 1)
        pact.required_pomos_per_day = new_required
        logger.info("pact %s updated", pact.id)
        return _pact_dict(pact)


# ── reads ────────────────────────────────────────────────────────────────


def get_my_pacts(identity: Identity | None) -> dict:
    """``{"pending": [...], "active": [...], "past": [...]}``."""
    result = {"pending": [], "active": [], "past": []}
    with get_session() as db:
        user = resolve_user(db, identity)
        if user is None:
            return result
        pacts = (
            db.query(Pact, PactParticipant.role)
            .join(PactParticipant, PactParticipant.pact_id == Pact.id)
            .filter(PactParticipant.user_id == user.id)
            .order_by(Pact.start_date.desc(), Pact.id.desc())
            .all()
        )
        for pact, role in pacts:
            data = _pact_dict(pact)
            data["role"] = role
            data["participant_count"] = (
                db.query(PactParticipant).filter_by(pact_id=pact.id).count()
            )
            if pact.status == PactStatus.PENDING.value:
                result["pending"].append(data)
            elif pact.status == PactStatus.ACTIVE.value:
                result["active"].append(data)
            else:
                result["past"].append(data)
    return result


def get_pact_details(pact_id: int) -> dict | None:
    """Pact with participants and their per-day progress."""
    with get_session() as db:
        pact = db.get(Pact, pact_id)
        if pact is None:
            return None
        progress: dict[int, list[dict]] = {}
        for row in (
            db.query(PactDailyProgress)
            .filter_by(pact_id=pact.id)
            .order_by(PactDailyProgress.date)
        ):
            progress.setdefault(row.user_id, []).append({
                "date": row.date,
                "pomos_completed": row.pomos_completed,
                "completed": row.completed,
            })

        participants = []
        for p in ordered_participants(db, pact.id):
            user = db.get(User, p.user_id)
            participants.append({
                "user_id": p.user_id,
                "username": user.username if user else None,
                "role": p.role,
                "joined_at": p.joined_at,
            })

        data = _pact_dict(pact)
        data["participants"] = participants
        data["progress_by_user"] = progress
        return data


def get_pact_by_join_code(code: str) -> dict | None:
    """Preview shown before joining."""
    with get_session() as db:
        pact = db.query(Pact).filter_by(join_code=normalize_join_code(code)).first()
        if pact is None:
            return None
        names = [
            username
            for (username,) in db.query(User.username)
            .join(PactParticipant, PactParticipant.user_id == User.id)
            .filter(PactParticipant.pact_id == pact.id)
            .order_by(PactParticipant.joined_at, PactParticipant.id)
        ]
        data = _pact_dict(pact)
        data["participants"] = names
        return data


def get_pacts_for_today(identity: Identity | None, now: datetime | None = None) -> list[dict]:
    """Active pacts covering today, with the caller's tally for the day."""
    now = _now(now)
    today = local_date(now)
    with get_session() as db:
        user = resolve_user(db, identity)
        if user is None:
            return []
        pacts = (
            db.query(Pact)
            .join(PactParticipant, PactParticipant.pact_id == Pact.id)
            .filter(
                PactParticipant.user_id == user.id,
                Pact.status == PactStatus.ACTIVE.value,
                Pact.start_date <= today,
                Pact.end_date >= today,
            )
            .order_by(Pact.id)
            .all()
        )
        result = []
        for pact in pacts:
            pomos = count_focus_sessions_on(db, user.id, today)
            data = _pact_dict(pact)
            data["pomos_today"] = pomos
            data["completed_today"] = pomos >= pact.required_pomos_per_day
            result.append(data)
        return result
