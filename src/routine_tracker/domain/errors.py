"""Errors raised by the session store and time-zone layer."""

from routine_tracker.domain.sessions import RoutineSession


class SessionStoreError(RuntimeError):
    """Base error for session store failures."""


class SessionAlreadyOpenError(SessionStoreError):
    """Raised when a start is rejected because a session is already open."""

    def __init__(self, existing: RoutineSession) -> None:
        super().__init__(
            f"{existing.routine_kind.value} already open for subject "
            f"{existing.subject_id} (session {existing.id})"
        )
        self.existing = existing


class SessionNotOpenError(SessionStoreError):
    """Raised when closing a routine that has no open session."""


class SessionStoreUnavailableError(SessionStoreError):
    """Raised for transient transport failures; safe for the user to retry."""


class InvalidTimezoneError(ValueError):
    """Raised for an unknown time-zone identifier."""

    def __init__(self, zone_id: str) -> None:
        super().__init__(f"Invalid timezone identifier: {zone_id!r}")
        self.zone_id = zone_id
