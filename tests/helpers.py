"""Shared test helpers for FocusPact."""

from datetime import date, datetime, timedelta

from focuspact.database.db import get_session
from focuspact.database.models import Session as LedgerSession, User
from focuspact.identity import Identity, ensure_user


# Wednesday; its ISO week starts Monday 2026-03-16.
NOW = datetime(2026, 3, 18, 15, 0)
TODAY = NOW.date()


class SignalCollector:
    """Utility to capture pyqtSignal emissions into a list."""

    def __init__(self):
        self.items: list = []

    def slot(self, *args):
        self.items.append(args if len(args) > 1 else args[0] if args else None)

    def __call__(self, *args):
        self.slot(*args)

    def __len__(self):
        return len(self.items)

    def __getitem__(self, idx):
        return self.items[idx]

    @property
    def last(self):
        return self.items[-1] if self.items else None

    def clear(self):
        self.items.clear()


def at(day: date, hour: int = 12, minute: int = 0) -> datetime:
    """Naive UTC timestamp on *day*."""
    return datetime(day.year, day.month, day.day, hour, minute)


def days_ago(n: int) -> date:
    return TODAY - timedelta(days=n)


def make_user(subject: str, email: str | None = None, first_name: str | None = None) -> Identity:
    identity = Identity(subject=subject, email=email)
    ensure_user(identity, first_name or subject.capitalize(), "Tester")
    return identity


def user_id(identity: Identity) -> int:
    with get_session() as db:
        return db.query(User).filter_by(identity_ref=identity.subject).one().id


def username(identity: Identity) -> str:
    with get_session() as db:
        return db.query(User).filter_by(identity_ref=identity.subject).one().username


def add_sessions(
    uid: int,
    day: date,
    count: int = 1,
    *,
    mode: str = "focus",
    duration_seconds: int = 1500,
    hour: int = 12,
    tag: str | None = None,
    tag_private: bool = False,
) -> None:
    """Write ledger rows directly, one minute apart, bypassing ingestion."""
    with get_session() as db:
        for i in range(count):
            db.add(LedgerSession(
                user_id=uid,
                mode=mode,
                duration_seconds=duration_seconds,
                tag=tag,
                tag_private=tag_private,
                completed_at=at(day, hour, i),
            ))
