"""Session ledger."""

from .ingest import SessionMode, record_session, find_duplicate
from .sessions import (
    get_my_sessions,
    get_today_count,
    get_tag_suggestions,
    update_session_tag,
)

__all__ = [
    "SessionMode",
    "record_session",
    "find_duplicate",
    "get_my_sessions",
    "get_today_count",
    "get_tag_suggestions",
    "update_session_tag",
]
