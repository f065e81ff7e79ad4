"""Caller identity and user resolution.

Authentication itself happens elsewhere.  The engine receives an
:class:`Identity` (or ``None`` for an anonymous caller) whose ``subject``
is the verified, provider-issued user reference.
"""

from __future__ import annotations

import logging
import random
import re
import time
from dataclasses import dataclass

from sqlalchemy.orm import Session as OrmSession

from .database.db import get_session
from .database.models import User
from .errors import NotAuthenticated, NotFound, PermissionDenied
from .settings import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    subject: str
    email: str | None = None


def resolve_user(db: OrmSession, identity: Identity | None) -> User | None:
    """Map a caller to exactly one ``User`` (``None`` if anonymous/unknown)."""
    if identity is None:
        return None
    return db.query(User).filter_by(identity_ref=identity.subject).first()


def require_user(db: OrmSession, identity: Identity | None) -> User:
    """Like :func:`resolve_user` but raises, for mutations."""
    if identity is None:
        raise NotAuthenticated()
    user = resolve_user(db, identity)
    if user is None:
        raise NotFound("User not found - call ensure_user first")
    return user


def require_admin(identity: Identity | None) -> None:
    if identity is None:
        raise NotAuthenticated()
    if not get_settings().is_admin_email(identity.email):
        raise PermissionDenied("Unauthorized: admin access only")


def is_admin(identity: Identity | None) -> bool:
    return identity is not None and get_settings().is_admin_email(identity.email)


# ── user creation ────────────────────────────────────────────────────────


def _base_username(first_name: str | None, last_name: str | None) -> str:
    raw = f"{first_name or ''}{last_name or ''}" if first_name else ""
    base = re.sub(r"[^a-z0-9]", "", raw.lower())
    return base or "user"


def _unique_username(db: OrmSession, first_name: str | None, last_name: str | None) -> str:
    base = _base_username(first_name, last_name)
    candidate = f"{base}{random.randint(1000, 9999)}"
    if db.query(User).filter_by(username=candidate).first() is None:
        return candidate
    # Collision on the 4-digit suffix: fall back to a timestamp.
    return f"{base}{int(time.time() * 1000)}"


def ensure_user(
    identity: Identity | None,
    first_name: str | None = None,
    last_name: str | None = None,
) -> dict:
    """Create the caller's ``User`` row if it does not exist yet.

    Idempotent.  Returns ``{"user_id", "username", "is_new"}``.
    """
    if identity is None:
        raise NotAuthenticated()

    with get_session() as db:
        existing = resolve_user(db, identity)
        if existing is not None:
            return {"user_id": existing.id, "username": existing.username, "is_new": False}

        user = User(
            identity_ref=identity.subject,
            username=_unique_username(db, first_name, last_name),
            email=identity.email,
            best_daily_streak=0,
        )
        db.add(user)
        db.flush()
        logger.info("created user id=%s username=%s", user.id, user.username)
        return {"user_id": user.id, "username": user.username, "is_new": True}
