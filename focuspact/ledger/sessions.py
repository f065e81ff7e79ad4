"""Reads over the session ledger, plus the one permitted mutation (tags)."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func

from ..clock import day_bounds, local_date, to_utc_naive, utcnow
from ..database.db import get_session
from ..database.models import Session as LedgerSession
from ..errors import NotFound, PermissionDenied
from ..identity import Identity, require_user, resolve_user
from .ingest import normalize_tag

logger = logging.getLogger(__name__)


def session_dict(session: LedgerSession, *, hide_private_tag: bool = False) -> dict:
    tag = session.tag
    if hide_private_tag and session.tag_private:
        tag = None
    return {
        "id": session.id,
        "mode": session.mode,
        "duration_seconds": session.duration_seconds,
        "tag": tag,
        "tag_private": session.tag_private,
        "completed_at": session.completed_at,
    }


def get_my_sessions(identity: Identity | None, limit: int = 50) -> list[dict]:
    """Newest first."""
    with get_session() as db:
        user = resolve_user(db, identity)
        if user is None:
            return []
        rows = (
            db.query(LedgerSession)
            .filter_by(user_id=user.id)
            .order_by(LedgerSession.completed_at.desc(), LedgerSession.id.desc())
            .limit(limit)
            .all()
        )
        return [session_dict(s) for s in rows]


def get_today_count(identity: Identity | None, now: datetime | None = None) -> int:
    """Focus sessions in the caller's current calendar day."""
    now = to_utc_naive(now) if now is not None else utcnow()
    start, end = day_bounds(local_date(now))
    with get_session() as db:
        user = resolve_user(db, identity)
        if user is None:
            return 0
        return (
            db.query(func.count(LedgerSession.id))
            .filter(
                LedgerSession.user_id == user.id,
                LedgerSession.mode == "focus",
                LedgerSession.completed_at >= start,
                LedgerSession.completed_at < end,
            )
            .scalar()
            or 0
        )


def get_tag_suggestions(identity: Identity | None, limit: int = 10) -> list[dict]:
    """The caller's tags by frequency, most used first."""
    with get_session() as db:
        user = resolve_user(db, identity)
        if user is None:
            return []
        count = func.count(LedgerSession.id)
        rows = (
            db.query(LedgerSession.tag, count)
            .filter(LedgerSession.user_id == user.id, LedgerSession.tag.isnot(None))
            .group_by(LedgerSession.tag)
            .order_by(count.desc(), LedgerSession.tag.asc())
            .limit(limit)
            .all()
        )
        return [{"tag": tag, "count": n} for tag, n in rows]


def update_session_tag(
    identity: Identity | None,
    session_id: int,
    tag: str | None,
    tag_private: bool | None = None,
) -> dict:
    """Retag one of the caller's own sessions."""
    tag = normalize_tag(tag)
    with get_session() as db:
        user = require_user(db, identity)
        session = db.get(LedgerSession, session_id)
        if session is None:
            raise NotFound("Session not found")
        if session.user_id != user.id:
            raise PermissionDenied("Not your session")
        session.tag = tag
        if tag_private is not None:
            session.tag_private = bool(tag_private)
        logger.debug("session %s retagged", session_id)
        return session_dict(session)
