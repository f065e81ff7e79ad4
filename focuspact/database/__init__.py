"""Database package."""

from .db import get_session, init_db, configure_engine
from .models import (
    User, Session, ChallengeDefinition, ChallengeCompletion,
    Pact, PactParticipant, PactDailyProgress, Follow, FlowSession,
)

__all__ = [
    "get_session", "init_db", "configure_engine",
    "User", "Session", "ChallengeDefinition", "ChallengeCompletion",
    "Pact", "PactParticipant", "PactDailyProgress", "Follow", "FlowSession",
]
