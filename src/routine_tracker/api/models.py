"""Pydantic models for the routines JSON API."""

from pydantic import BaseModel, Field

from routine_tracker.services.conflicts import ConflictResolution


class StartRoutineRequest(BaseModel):
    """Start payload with initial attributes."""

    attributes: dict[str, object] = Field(default_factory=dict)


class AttributesRequest(BaseModel):
    """Attributes gathered while a routine is open."""

    attributes: dict[str, object]


class CloseRoutineRequest(BaseModel):
    """Close payload merged over the accumulated attributes."""

    attributes: dict[str, object] = Field(default_factory=dict)
    note: str | None = None


class ResolveConflictRequest(BaseModel):
    """Conflict resolution choice."""

    resolution: ConflictResolution


class TimezoneRequest(BaseModel):
    """Time-zone preference payload."""

    timezone: str


class TimezoneConversionRequest(BaseModel):
    """Wall-clock value to convert; defaults to the user's zone."""

    local: str
    zone: str | None = None
