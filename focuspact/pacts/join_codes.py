"""Six-character pact join codes."""

from __future__ import annotations

import logging
import secrets

from sqlalchemy.orm import Session as OrmSession

from ..database.models import Pact

logger = logging.getLogger(__name__)

# No 0/O or 1/I.
JOIN_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
JOIN_CODE_LENGTH = 6


def generate_join_code() -> str:
    return "".join(secrets.choice(JOIN_CODE_ALPHABET) for _ in range(JOIN_CODE_LENGTH))


def normalize_join_code(code: str) -> str:
    return code.strip().upper()


def unique_join_code(db: OrmSession) -> str:
    """Generate a code no existing pact uses."""
    code = generate_join_code()
    while db.query(Pact.id).filter_by(join_code=code).first() is not None:
        logger.debug("join code collision on %s, regenerating", code)
        code = generate_join_code()
    return code
