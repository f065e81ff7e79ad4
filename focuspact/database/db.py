"""Database connection and session management."""

import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.orm import sessionmaker, Session as OrmSession

from ..settings import APP_SUPPORT_DIR, get_settings
from .models import Base

logger = logging.getLogger(__name__)

# ── paths ────────────────────────────────────────────────────────────────────

DB_PATH = APP_SUPPORT_DIR / "focuspact.db"

WRITE_LOCK_OPTION = "focuspact_write_lock"

# ── engine & session factory (created lazily) ─────────────────────────────

_engine = None
_SessionFactory = None


def _get_engine():
    global _engine
    if _engine is None:
        url = get_settings().database_url
        if url is None:
            APP_SUPPORT_DIR.mkdir(parents=True, exist_ok=True)
            url = f"sqlite:///{DB_PATH}"
        _engine = _create(url)
    return _engine


def _create(url: str):
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True, echo=False)

    engine = create_engine(
        url,
        connect_args={"check_same_thread": False},
        echo=False,
    )

    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; let
    # SQLAlchemy emit it so upsert retries can roll back to a savepoint.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    # A write-locked session takes the RESERVED lock at BEGIN, so a second
    # writer waits on the busy timeout instead of failing mid-transaction.
    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        if conn.get_execution_options().get(WRITE_LOCK_OPTION):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")

    return engine


def _get_session_factory():
    global _SessionFactory
    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=_get_engine(), expire_on_commit=False)
    return _SessionFactory


# ── public API ────────────────────────────────────────────────────────────


def configure_engine(url: str) -> None:
    """Override the database connection URL.  Used by tests to point at
    an in-memory SQLite database instead of the real one on disk."""
    global _engine, _SessionFactory
    _SessionFactory = None
    _engine = _create(url)


def _run_migrations(engine) -> None:
    """Schema migrations for existing databases.

    Runs after ``create_all`` so new columns exist in fresh installs.
    Each migration is idempotent and safe to run repeatedly.
    """
    insp = inspect(engine)
    table_names = set(insp.get_table_names())

    with engine.connect() as conn:
        # ── M1: per-session private tag flag ───────────────────────────
        if "sessions" in table_names:
            columns = {c["name"] for c in insp.get_columns("sessions")}
            if "tag_private" not in columns:
                logger.info("migrating: adding sessions.tag_private")
                conn.execute(text(
                    "ALTER TABLE sessions "
                    "ADD COLUMN tag_private BOOLEAN NOT NULL DEFAULT 0"
                ))

        # ── M2: profile privacy ────────────────────────────────────────
        if "users" in table_names:
            columns = {c["name"] for c in insp.get_columns("users")}
            if "privacy" not in columns:
                logger.info("migrating: adding users.privacy")
                conn.execute(text(
                    "ALTER TABLE users "
                    "ADD COLUMN privacy VARCHAR(20) NOT NULL DEFAULT 'followers_only'"
                ))

        # ── M3: event-awarded badges are never evaluated ───────────────
        if "challenges" in table_names:
            columns = {c["name"] for c in insp.get_columns("challenges")}
            if "is_badge" not in columns:
                logger.info("migrating: adding challenges.is_badge")
                conn.execute(text(
                    "ALTER TABLE challenges "
                    "ADD COLUMN is_badge BOOLEAN NOT NULL DEFAULT 0"
                ))

        conn.commit()


def init_db() -> None:
    """Create all tables and run migrations."""
    engine = _get_engine()
    Base.metadata.create_all(engine)
    _run_migrations(engine)


@contextmanager
def get_session(write_lock: bool = False):
    """Yield a SQLAlchemy session; commit on success, rollback on error.

    With *write_lock* the transaction holds the database write lock from
    its first statement (``BEGIN IMMEDIATE`` on SQLite), so read-then-write
    sequences in it are serialized against other writers.
    """
    factory = _get_session_factory()
    session: OrmSession = factory()
    try:
        if write_lock:
            session.connection(execution_options={WRITE_LOCK_OPTION: True})
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
