"""Accountability pacts."""

from .engine import (
    PactStatus,
    PactEngine,
    ENGINE,
    refresh_pacts_for_session,
    sweep_pacts,
)
from .join_codes import JOIN_CODE_ALPHABET, generate_join_code
from .service import (
    create_pact,
    join_pact,
    leave_pact,
    update_pact,
    get_my_pacts,
    get_pact_details,
    get_pact_by_join_code,
    get_pacts_for_today,
)

__all__ = [
    "PactStatus",
    "PactEngine",
    "ENGINE",
    "refresh_pacts_for_session",
    "sweep_pacts",
    "JOIN_CODE_ALPHABET",
    "generate_join_code",
    "create_pact",
    "join_pact",
    "leave_pact",
    "update_pact",
    "get_my_pacts",
    "get_pact_details",
    "get_pact_by_join_code",
    "get_pacts_for_today",
]
