"""Flow sessions: runs of back-to-back focus sessions.

A user has at most one open flow.  Starting while one is open returns
the open one.  The client bumps the pomodoro count as each focus
session in the run finishes and ends the flow when the run breaks.
Only ended flows count toward the user's longest flow.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session as OrmSession

from .clock import to_utc_naive, utcnow
from .database.db import get_session
from .database.models import FlowSession, User
from .errors import NotFound, PermissionDenied
from .identity import Identity, require_user, resolve_user

logger = logging.getLogger(__name__)


def _flow_dict(flow: FlowSession) -> dict:
    end = flow.ended_at
    return {
        "id": flow.id,
        "started_at": flow.started_at,
        "ended_at": end,
        "completed_pomos": flow.completed_pomos,
        "duration_seconds": int((end - flow.started_at).total_seconds()) if end else 0,
    }


def _open_flow(db: OrmSession, user_id: int) -> FlowSession | None:
    return (
        db.query(FlowSession)
        .filter(FlowSession.user_id == user_id, FlowSession.ended_at.is_(None))
        .order_by(FlowSession.id.asc())
        .first()
    )


def _owned_flow(db: OrmSession, user: User, flow_id: int) -> FlowSession:
    flow = db.get(FlowSession, flow_id)
    if flow is None:
        raise NotFound("Flow session not found")
    if flow.user_id != user.id:
        raise PermissionDenied("Not your flow session")
    return flow


def start_flow_session(identity: Identity | None, *, now: datetime | None = None) -> int:
    """Open a flow, or return the id of the one already open."""
    now = to_utc_naive(now) if now is not None else utcnow()
    with get_session(write_lock=True) as db:
        user = require_user(db, identity)
        db.query(User.id).filter(User.id == user.id).with_for_update().one()
        current = _open_flow(db, user.id)
        if current is not None:
            return current.id
        flow = FlowSession(user_id=user.id, started_at=now, completed_pomos=0)
        db.add(flow)
        db.flush()
        logger.info("flow %s started for user %s", flow.id, user.id)
        return flow.id


def increment_flow_pomo(identity: Identity | None, flow_id: int) -> int:
    """Count one more finished pomodoro in the flow.  Returns the new count."""
    with get_session() as db:
        user = require_user(db, identity)
        flow = _owned_flow(db, user, flow_id)
        db.query(FlowSession).filter(FlowSession.id == flow.id).update(
            {"completed_pomos": FlowSession.completed_pomos + 1},
            synchronize_session=False,
        )
        db.refresh(flow)
        return flow.completed_pomos


def end_flow_session(
    identity: Identity | None, flow_id: int, *, now: datetime | None = None,
) -> dict:
    """Close the flow.  Ending an already ended flow keeps its first end time."""
    now = to_utc_naive(now) if now is not None else utcnow()
    with get_session() as db:
        user = require_user(db, identity)
        flow = _owned_flow(db, user, flow_id)
        closed = (
            db.query(FlowSession)
            .filter(FlowSession.id == flow.id, FlowSession.ended_at.is_(None))
            .update({"ended_at": max(now, flow.started_at)}, synchronize_session=False)
        )
        db.refresh(flow)
        if closed:
            logger.info(
                "flow %s ended for user %s after %s pomodoros",
                flow.id, user.id, flow.completed_pomos,
            )
        return _flow_dict(flow)


def get_active_flow_session(identity: Identity | None) -> dict | None:
    with get_session() as db:
        user = resolve_user(db, identity)
        if user is None:
            return None
        flow = _open_flow(db, user.id)
        return _flow_dict(flow) if flow is not None else None


def longest_flow(db: OrmSession, user_id: int) -> dict | None:
    """The ended flow with the most pomodoros; the earliest wins a tie."""
    flow = (
        db.query(FlowSession)
        .filter(FlowSession.user_id == user_id, FlowSession.ended_at.isnot(None))
        .order_by(FlowSession.completed_pomos.desc(), FlowSession.started_at.asc(), FlowSession.id.asc())
        .first()
    )
    return _flow_dict(flow) if flow is not None else None


def get_longest_flow_session(identity: Identity | None) -> dict | None:
    with get_session() as db:
        user = resolve_user(db, identity)
        if user is None:
            return None
        return longest_flow(db, user.id)
