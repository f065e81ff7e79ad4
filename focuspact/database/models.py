"""SQLAlchemy ORM models for FocusPact.

All ``DateTime`` columns hold naive UTC.  Calendar ``Date`` columns are
days in the configured reference timezone.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Date, ForeignKey, Index,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase

from ..clock import utcnow


class Base(DeclarativeBase):
    pass


class User(Base):
    """A person resolved from the identity provider."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    identity_ref = Column(String(255), nullable=False, unique=True)
    username = Column(String(64), nullable=False, unique=True)
    email = Column(String(255), nullable=True)
    best_daily_streak = Column(Integer, nullable=False, default=0)
    privacy = Column(String(20), nullable=False, default="followers_only")  # public | followers_only | private
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<User id={self.id} username={self.username} "
            f"best_streak={self.best_daily_streak}>"
        )


class Session(Base):
    """One completed focus or break interval.  The ledger."""

    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    mode = Column(String(10), nullable=False)  # focus | break
    duration_seconds = Column(Integer, nullable=False)
    tag = Column(String(64), nullable=True)
    tag_private = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_sessions_user_completed_at", "user_id", "completed_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Session id={self.id} user={self.user_id} mode={self.mode} "
            f"at={self.completed_at}>"
        )


class ChallengeDefinition(Base):
    """Catalog entry for a challenge (or an event-awarded badge)."""

    __tablename__ = "challenges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(64), nullable=True, unique=True)  # set for system badges
    name = Column(String(120), nullable=False)
    description = Column(String(255), nullable=False, default="")
    badge = Column(String(64), nullable=False, default="")
    type = Column(String(20), nullable=False)  # see ChallengeType
    target = Column(Integer, nullable=False)
    recurring_month = Column(Integer, nullable=True)  # 1-12
    is_badge = Column(Boolean, nullable=False, default=False)  # awarded, never evaluated
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<ChallengeDefinition id={self.id} type={self.type} "
            f"target={self.target} active={self.active}>"
        )


class ChallengeCompletion(Base):
    """Durable fact that a user completed a challenge.  Never reset."""

    __tablename__ = "challenge_completions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    challenge_id = Column(Integer, ForeignKey("challenges.id"), nullable=False)
    completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "challenge_id", name="uq_completion_user_challenge"),
    )

    def __repr__(self) -> str:
        return (
            f"<ChallengeCompletion user={self.user_id} "
            f"challenge={self.challenge_id} completed={self.completed}>"
        )


class Pact(Base):
    """A multi-participant accountability commitment."""

    __tablename__ = "pacts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    creator_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    name = Column(String(120), nullable=False, default="Focus Pact")
    join_code = Column(String(6), nullable=False, unique=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    required_pomos_per_day = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default="pending")  # pending | active | completed | failed
    failed_on_date = Column(Date, nullable=True)
    failed_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    finished_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<Pact id={self.id} code={self.join_code} status={self.status} "
            f"{self.start_date}..{self.end_date}>"
        )


class PactParticipant(Base):
    __tablename__ = "pact_participants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    pact_id = Column(Integer, ForeignKey("pacts.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    role = Column(String(20), nullable=False, default="participant")  # creator | participant
    joined_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("pact_id", "user_id", name="uq_participant_pact_user"),
    )

    def __repr__(self) -> str:
        return f"<PactParticipant pact={self.pact_id} user={self.user_id} role={self.role}>"


class PactDailyProgress(Base):
    """Per-(pact, user, day) tally, always recounted from the ledger."""

    __tablename__ = "pact_daily_progress"

    id = Column(Integer, primary_key=True, autoincrement=True)
    pact_id = Column(Integer, ForeignKey("pacts.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(Date, nullable=False)
    pomos_completed = Column(Integer, nullable=False, default=0)
    completed = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("pact_id", "user_id", "date", name="uq_progress_pact_user_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<PactDailyProgress pact={self.pact_id} user={self.user_id} "
            f"date={self.date} pomos={self.pomos_completed}>"
        )


class Follow(Base):
    __tablename__ = "follows"

    id = Column(Integer, primary_key=True, autoincrement=True)
    follower_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    following_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("follower_id", "following_id", name="uq_follow_pair"),
    )


class FlowSession(Base):
    """A run of back-to-back focus sessions.  Open while ``ended_at`` is null."""

    __tablename__ = "flow_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    ended_at = Column(DateTime, nullable=True)
    completed_pomos = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_flow_sessions_user_ended_at", "user_id", "ended_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<FlowSession id={self.id} user={self.user_id} "
            f"pomos={self.completed_pomos} ended={self.ended_at}>"
        )
