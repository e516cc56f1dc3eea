"""Domain models for routine sessions."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class RoutineKind(str, Enum):
    """Timed routine categories tracked by the store."""

    FEEDING = "FEEDING"
    SLEEP = "SLEEP"
    BATH = "BATH"
    MILK_EXTRACTION = "MILK_EXTRACTION"

    @property
    def slug(self) -> str:
        """Return the path segment used by the routines API."""
        return _SLUGS[self]

    @property
    def label(self) -> str:
        """Return a human label for user-facing messages."""
        return _LABELS[self]

    @classmethod
    def from_slug(cls, value: str) -> "RoutineKind":
        """Resolve a kind from its API slug or its enum value."""
        cleaned = value.strip()
        for kind, slug in _SLUGS.items():
            if cleaned.lower() == slug or cleaned.upper() == kind.value:
                return kind
        raise ValueError(f"Unknown routine kind: {value!r}")


_SLUGS = {
    RoutineKind.FEEDING: "feeding",
    RoutineKind.SLEEP: "sleep",
    RoutineKind.BATH: "bath",
    RoutineKind.MILK_EXTRACTION: "extraction",
}

_LABELS = {
    RoutineKind.FEEDING: "feeding",
    RoutineKind.SLEEP: "sleep",
    RoutineKind.BATH: "bath",
    RoutineKind.MILK_EXTRACTION: "milk extraction",
}


class SessionState(str, Enum):
    """Lifecycle states of a routine session controller."""

    IDLE = "IDLE"
    STARTING = "STARTING"
    OPEN = "OPEN"
    CONFLICT = "CONFLICT"
    CLOSING = "CLOSING"


@dataclass(frozen=True)
class RoutineSession:
    """Represents one open or completed timed routine."""

    id: int
    subject_id: int
    routine_kind: RoutineKind
    started_at: datetime
    ended_at: datetime | None = None
    attributes: dict[str, object] = field(default_factory=dict)
    duration_seconds: int | None = None
    notes: str | None = None

    @property
    def is_open(self) -> bool:
        """Return True while the session has no end instant."""
        return self.ended_at is None


@dataclass(frozen=True)
class SessionNotice:
    """User-facing outcome of a controller command."""

    kind: str
    text: str
    retryable: bool = False
