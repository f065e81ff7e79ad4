"""Team badge awarded to everyone in a completed pact."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as OrmSession

from ..clock import to_utc_naive, utcnow
from ..database.db import get_session
from ..database.models import ChallengeDefinition, PactParticipant
from .challenges import ChallengeType, mark_completed

logger = logging.getLogger(__name__)

TEAM_BADGE_KEY = "team_player"


def ensure_team_badge(db: OrmSession) -> ChallengeDefinition:
    """Return the singleton team badge definition, creating it if absent."""
    badge = db.query(ChallengeDefinition).filter_by(key=TEAM_BADGE_KEY).first()
    if badge is not None:
        return badge
    try:
        with db.begin_nested():
            badge = ChallengeDefinition(
                key=TEAM_BADGE_KEY,
                name="Team Player",
                description="Complete an accountability pact with your team",
                badge="Users",
                type=ChallengeType.TOTAL.value,
                target=1,
                is_badge=True,
                active=True,
            )
            db.add(badge)
        logger.info("created team badge definition id=%s", badge.id)
        return badge
    except IntegrityError:
        return db.query(ChallengeDefinition).filter_by(key=TEAM_BADGE_KEY).one()


def award_on_pact_completion(
    pact_id: int, *, now: datetime | None = None, db: OrmSession | None = None,
) -> list[int]:
    """Give every participant of *pact_id* the team badge (once).

    Safe to call repeatedly.  Returns the user ids that received it in
    this call.
    """
    if db is None:
        with get_session() as db:
            return award_on_pact_completion(pact_id, now=now, db=db)

    now = to_utc_naive(now) if now is not None else utcnow()
    badge = ensure_team_badge(db)
    awarded = []
    participants = (
        db.query(PactParticipant)
        .filter_by(pact_id=pact_id)
        .order_by(PactParticipant.joined_at, PactParticipant.id)
        .all()
    )
    for p in participants:
        if mark_completed(db, p.user_id, badge.id, now):
            awarded.append(p.user_id)
    if awarded:
        logger.info("team badge awarded pact=%s users=%s", pact_id, awarded)
    return awarded
