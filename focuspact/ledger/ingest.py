"""Ingestion guard: the only way a session enters the ledger.

Clients retry, double-submit and race each other, so the same finished
interval can arrive more than once a few milliseconds apart.  A
submission that matches an existing session of the same user, mode and
duration within ``Settings.dedup_window_ms`` (inclusive, either side)
is the same session: its id is returned and nothing downstream runs.
The lookup and the insert hold the write lock together, so two racing
duplicates still produce one row.

Only a genuinely new ``focus`` session schedules the deferred
challenge evaluation and pact refresh.  ``break`` sessions are recorded
and otherwise inert.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy.orm import Session as OrmSession

from ..clock import from_epoch_ms, to_utc_naive, utcnow
from ..database.db import get_session
from ..database.models import Session as LedgerSession, User
from ..errors import ValidationError
from ..gamification.challenges import evaluate_challenges
from ..identity import Identity, require_user
from ..pacts.engine import refresh_pacts_for_session
from ..settings import get_settings
from ..tasks import TASKS, TaskQueue

logger = logging.getLogger(__name__)

MAX_TAG_LENGTH = 64


class SessionMode(Enum):
    FOCUS = "focus"
    BREAK = "break"


def parse_mode(mode: str | SessionMode) -> SessionMode:
    if isinstance(mode, SessionMode):
        return mode
    try:
        return SessionMode(mode)
    except ValueError:
        raise ValidationError(f"Unknown session mode: {mode!r}") from None


def normalize_completed_at(completed_at: datetime | int | float) -> datetime:
    """Accept a datetime or epoch milliseconds; return naive UTC."""
    if isinstance(completed_at, datetime):
        return to_utc_naive(completed_at)
    if isinstance(completed_at, (int, float)) and not isinstance(completed_at, bool):
        try:
            return from_epoch_ms(completed_at)
        except (OverflowError, OSError, ValueError):
            raise ValidationError("completed_at is out of range") from None
    raise ValidationError("completed_at must be a datetime or epoch milliseconds")


def normalize_tag(tag: str | None) -> str | None:
    if tag is None:
        return None
    tag = tag.strip()
    if not tag:
        return None
    if len(tag) > MAX_TAG_LENGTH:
        raise ValidationError(f"Tag must be at most {MAX_TAG_LENGTH} characters")
    return tag


def find_duplicate(
    db: OrmSession,
    user_id: int,
    mode: SessionMode,
    duration_seconds: int,
    completed_at: datetime,
) -> LedgerSession | None:
    window = timedelta(milliseconds=get_settings().dedup_window_ms)
    return (
        db.query(LedgerSession)
        .filter(
            LedgerSession.user_id == user_id,
            LedgerSession.mode == mode.value,
            LedgerSession.duration_seconds == duration_seconds,
            LedgerSession.completed_at >= completed_at - window,
            LedgerSession.completed_at <= completed_at + window,
        )
        .order_by(LedgerSession.id.asc())
        .first()
    )


def record_session(
    identity: Identity | None,
    mode: str | SessionMode,
    duration_seconds: int,
    completed_at: datetime | int | float,
    tag: str | None = None,
    tag_private: bool = False,
    *,
    now: datetime | None = None,
    tasks: TaskQueue | None = None,
) -> int:
    """Append a finished interval to the ledger.  Returns the session id.

    Raises ``NotAuthenticated``, ``NotFound`` or ``ValidationError``
    before anything is written.
    """
    settings = get_settings()
    tasks = tasks if tasks is not None else TASKS
    clock_now = to_utc_naive(now) if now is not None else utcnow()

    kind = parse_mode(mode)
    if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, int):
        raise ValidationError("duration_seconds must be an integer")
    if not settings.min_duration_seconds <= duration_seconds <= settings.max_duration_seconds:
        raise ValidationError(
            f"duration_seconds must be between {settings.min_duration_seconds} "
            f"and {settings.max_duration_seconds}"
        )
    at = normalize_completed_at(completed_at)
    if at > clock_now + timedelta(seconds=settings.max_future_skew_seconds):
        raise ValidationError("completed_at is in the future")
    tag = normalize_tag(tag)

    # Check-then-insert must not interleave with another submission for
    # the same user: SQLite takes its write lock at BEGIN, other backends
    # lock the user row.
    with get_session(write_lock=True) as db:
        user = require_user(db, identity)
        user_id = user.id
        db.query(User.id).filter(User.id == user_id).with_for_update().one()

        existing = find_duplicate(db, user_id, kind, duration_seconds, at)
        if existing is not None:
            logger.debug(
                "duplicate %s session for user %s at %s -> %s",
                kind.value, user_id, at, existing.id,
            )
            return existing.id

        session = LedgerSession(
            user_id=user_id,
            mode=kind.value,
            duration_seconds=duration_seconds,
            tag=tag,
            tag_private=bool(tag_private),
            completed_at=at,
        )
        db.add(session)
        db.flush()
        session_id = session.id

    logger.info("recorded %s session %s for user %s", kind.value, session_id, user_id)
    if kind is SessionMode.FOCUS:
        # A pinned clock travels with the deferred work.
        tasks.enqueue("evaluate_challenges", evaluate_challenges, user_id=user_id, now=now)
        tasks.enqueue(
            "refresh_pacts", refresh_pacts_for_session,
            user_id=user_id, completed_at=at, now=now,
        )
    return session_id
