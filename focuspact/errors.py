"""Exception taxonomy for FocusPact mutations.

Queries never raise these for a missing caller or entity; they return an
empty result instead.  Mutations raise them before any write happens.
"""


class FocusPactError(Exception):
    """Base class for every error the engine raises on purpose."""


class NotAuthenticated(FocusPactError):
    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class NotFound(FocusPactError):
    """A referenced user, session, pact or challenge does not exist."""


class PermissionDenied(FocusPactError):
    """The caller exists but may not touch this entity."""


class InvariantViolation(FocusPactError):
    """The operation would break a lifecycle rule (e.g. joining a started pact)."""


class ValidationError(FocusPactError):
    """An argument is out of range; nothing was written."""
