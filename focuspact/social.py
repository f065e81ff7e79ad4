"""Follows, privacy and public profiles.

Privacy Levels
--------------
    public          anyone sees the full profile
    followers_only  followers (and the owner) see it; the default
    private         only the owner sees it

Basic info (username, privacy, join date) is always visible.  Private
session tags are never shown to anyone but the owner.  The same rules
gate the friend cards in the activity feed and the suggestions.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from .clock import to_utc_naive, utcnow
from .database.db import get_session
from .database.models import ChallengeCompletion, ChallengeDefinition, Follow, Session, User
from .errors import InvariantViolation, NotFound, ValidationError
from .flow import longest_flow
from .identity import Identity, require_user, resolve_user
from .ledger.sessions import session_dict
from .stats.aggregator import activity, compute_stats, period_summary
from .stats.levels import level_info

logger = logging.getLogger(__name__)

RECENT_SESSIONS = 10
CARD_SESSIONS = 3
SUGGESTION_LIMIT = 20


class Privacy(Enum):
    PUBLIC = "public"
    FOLLOWERS_ONLY = "followers_only"
    PRIVATE = "private"


def _target(db, username: str) -> User:
    user = db.query(User).filter_by(username=username).first()
    if user is None:
        raise NotFound("User not found")
    return user


def follow_user(identity: Identity | None, username: str) -> bool:
    """Follow *username*.  Returns ``False`` if already following."""
    with get_session() as db:
        me = require_user(db, identity)
        target = _target(db, username)
        if target.id == me.id:
            raise InvariantViolation("Cannot follow yourself")
        try:
            with db.begin_nested():
                db.add(Follow(follower_id=me.id, following_id=target.id))
        except IntegrityError:
            return False
        logger.info("user %s follows %s", me.id, target.id)
        return True


def unfollow_user(identity: Identity | None, username: str) -> bool:
    with get_session() as db:
        me = require_user(db, identity)
        target = _target(db, username)
        removed = (
            db.query(Follow)
            .filter_by(follower_id=me.id, following_id=target.id)
            .delete()
        )
        return removed > 0


def is_following(identity: Identity | None, username: str) -> bool:
    with get_session() as db:
        me = resolve_user(db, identity)
        target = db.query(User).filter_by(username=username).first()
        if me is None or target is None:
            return False
        return _follows(db, me.id, target.id)


def _follows(db, follower_id: int, following_id: int) -> bool:
    return (
        db.query(Follow.id)
        .filter_by(follower_id=follower_id, following_id=following_id)
        .first()
        is not None
    )


def set_privacy(identity: Identity | None, privacy: str) -> str:
    try:
        level = Privacy(privacy)
    except ValueError:
        raise ValidationError(f"Unknown privacy level: {privacy!r}") from None
    with get_session() as db:
        me = require_user(db, identity)
        me.privacy = level.value
        return level.value


def can_view(db, viewer: User | None, owner: User) -> bool:
    if viewer is not None and viewer.id == owner.id:
        return True
    if owner.privacy == Privacy.PUBLIC.value:
        return True
    if owner.privacy == Privacy.FOLLOWERS_ONLY.value and viewer is not None:
        return _follows(db, viewer.id, owner.id)
    return False


def get_public_profile(
    identity: Identity | None, username: str, as_of: datetime | None = None,
) -> dict | None:
    """Profile of *username* as the caller is allowed to see it."""
    as_of = to_utc_naive(as_of) if as_of is not None else utcnow()
    with get_session() as db:
        owner = db.query(User).filter_by(username=username).first()
        if owner is None:
            return None
        viewer = resolve_user(db, identity)
        is_owner = viewer is not None and viewer.id == owner.id

        profile = {
            "username": owner.username,
            "privacy": owner.privacy,
            "created_at": owner.created_at,
            "is_owner": is_owner,
            "is_following": viewer is not None and not is_owner and _follows(db, viewer.id, owner.id),
            **_follow_counts(db, owner.id),
            "can_view": can_view(db, viewer, owner),
        }
        if not profile["can_view"]:
            return profile

        stats = compute_stats(owner.id, as_of, db)
        recent = (
            db.query(Session)
            .filter(Session.user_id == owner.id, Session.completed_at <= as_of)
            .order_by(Session.completed_at.desc(), Session.id.desc())
            .limit(RECENT_SESSIONS)
            .all()
        )
        completed = (
            db.query(ChallengeDefinition, ChallengeCompletion.completed_at)
            .join(ChallengeCompletion, ChallengeCompletion.challenge_id == ChallengeDefinition.id)
            .filter(ChallengeCompletion.user_id == owner.id, ChallengeCompletion.completed.is_(True))
            .order_by(ChallengeCompletion.completed_at)
            .all()
        )
        profile.update({
            "stats": stats,
            "summary": period_summary(owner.id, as_of, db),
            "level": level_info(stats.total),
            "longest_flow": longest_flow(db, owner.id),
            "activity": activity(owner.id, as_of, db=db),
            "recent_sessions": [
                session_dict(s, hide_private_tag=not is_owner) for s in recent
            ],
            "completed_challenges": [
                {"name": c.name, "badge": c.badge, "completed_at": at}
                for c, at in completed
            ],
        })
        return profile


# ── follow graph ─────────────────────────────────────────────────────────


def _follow_counts(db, user_id: int) -> dict:
    return {
        "followers": db.query(Follow).filter_by(following_id=user_id).count(),
        "following": db.query(Follow).filter_by(follower_id=user_id).count(),
    }


def get_follow_counts(username: str) -> dict:
    """Follower and following counts; zeros for an unknown username."""
    with get_session() as db:
        user = db.query(User).filter_by(username=username).first()
        if user is None:
            return {"followers": 0, "following": 0}
        return _follow_counts(db, user.id)


def _follow_list(username: str, *, followers: bool) -> list[dict]:
    with get_session() as db:
        user = db.query(User).filter_by(username=username).first()
        if user is None:
            return []
        if followers:
            other, mine = Follow.follower_id, Follow.following_id
        else:
            other, mine = Follow.following_id, Follow.follower_id
        rows = (
            db.query(User)
            .join(Follow, other == User.id)
            .filter(mine == user.id)
            .order_by(Follow.created_at.asc(), Follow.id.asc())
            .all()
        )
        return [{"user_id": u.id, "username": u.username} for u in rows]


def get_followers(username: str) -> list[dict]:
    """Users following *username*, oldest follow first."""
    return _follow_list(username, followers=True)


def get_following(username: str) -> list[dict]:
    """Users *username* follows, oldest follow first."""
    return _follow_list(username, followers=False)


# ── friend cards ─────────────────────────────────────────────────────────


def _latest_challenge(db, user_id: int) -> dict | None:
    row = (
        db.query(ChallengeDefinition, ChallengeCompletion.completed_at)
        .join(ChallengeCompletion, ChallengeCompletion.challenge_id == ChallengeDefinition.id)
        .filter(ChallengeCompletion.user_id == user_id, ChallengeCompletion.completed.is_(True))
        .order_by(ChallengeCompletion.completed_at.desc(), ChallengeCompletion.id.desc())
        .first()
    )
    if row is None:
        return None
    challenge, completed_at = row
    return {
        "name": challenge.name,
        "description": challenge.description,
        "badge": challenge.badge,
        "completed_at": completed_at,
    }


def _friend_card(db, viewer: User, user: User, as_of: datetime) -> dict:
    """Activity card for *user*; stats only when *viewer* may see them."""
    card = {"user_id": user.id, "username": user.username, "can_view": can_view(db, viewer, user)}
    if not card["can_view"]:
        return card

    stats = compute_stats(user.id, as_of, db)
    level = level_info(stats.total)
    recent = (
        db.query(Session)
        .filter(
            Session.user_id == user.id,
            Session.mode == "focus",
            Session.completed_at <= as_of,
        )
        .order_by(Session.completed_at.desc(), Session.id.desc())
        .limit(CARD_SESSIONS)
        .all()
    )
    card.update({
        "total": stats.total,
        "today": stats.today,
        "current_streak": stats.current_streak,
        "level": level["level"],
        "level_title": level["title"],
        "recent_sessions": [session_dict(s, hide_private_tag=True) for s in recent],
        "latest_challenge": _latest_challenge(db, user.id),
    })
    return card


def _most_active_first(cards: list[dict]) -> list[dict]:
    # Hidden cards carry no numbers and sink to the end, by username.
    return sorted(
        cards,
        key=lambda c: (not c["can_view"], -c.get("today", 0), -c.get("total", 0), c["username"]),
    )


def get_friends_activity(identity: Identity | None, as_of: datetime | None = None) -> list[dict]:
    """Cards for everyone the caller follows, most active today first.

    Privacy is applied per friend: a ``private`` friend shows up by name
    only, and private session tags are always hidden.
    """
    as_of = to_utc_naive(as_of) if as_of is not None else utcnow()
    with get_session() as db:
        me = resolve_user(db, identity)
        if me is None:
            return []
        friends = (
            db.query(User)
            .join(Follow, Follow.following_id == User.id)
            .filter(Follow.follower_id == me.id)
            .all()
        )
        return _most_active_first([_friend_card(db, me, f, as_of) for f in friends])


def get_suggested_friends(
    identity: Identity | None,
    as_of: datetime | None = None,
    limit: int = SUGGESTION_LIMIT,
) -> list[dict]:
    """Users the caller does not follow yet, most active today first."""
    as_of = to_utc_naive(as_of) if as_of is not None else utcnow()
    with get_session() as db:
        me = resolve_user(db, identity)
        if me is None:
            return []
        followed = select(Follow.following_id).where(Follow.follower_id == me.id)
        candidates = (
            db.query(User)
            .filter(User.id != me.id, User.id.not_in(followed))
            .all()
        )
        cards = _most_active_first([_friend_card(db, me, u, as_of) for u in candidates])
        return cards[:limit]
