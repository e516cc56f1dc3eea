"""User settings service."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from routine_tracker.domain.errors import SessionStoreError
from routine_tracker.services.timezones import (
    DEFAULT_TIMEZONE,
    from_utc,
    resolve_timezone,
    to_utc,
    validate_timezone,
)

_logger = logging.getLogger(__name__)


class TimezoneRepository(Protocol):
    """Persistence interface for the time-zone preference."""

    async def get_timezone(self) -> str | None:
        """Return the stored timezone if set."""

    async def set_timezone(self, timezone: str) -> None:
        """Update the stored timezone."""


@dataclass
class UserSettingsService:
    """Service for the user's time-zone preference."""

    repository: TimezoneRepository
    timezone: str = DEFAULT_TIMEZONE
    is_loaded: bool = False

    async def load_timezone(self, detected: str | None = None) -> str:
        """Load the stored timezone, or detect and store one when unset."""
        try:
            stored = await self.repository.get_timezone()
        except SessionStoreError:
            _logger.warning("Timezone lookup failed; using detected timezone")
            self.timezone = resolve_timezone(detected)
            self.is_loaded = True
            return self.timezone

        if stored:
            self.timezone = resolve_timezone(stored)
        else:
            self.timezone = resolve_timezone(detected)
            try:
                await self.repository.set_timezone(self.timezone)
            except SessionStoreError:
                _logger.warning("Failed to store detected timezone %s", self.timezone)
        self.is_loaded = True
        return self.timezone

    async def set_timezone(self, timezone: str) -> str:
        """Validate and persist a timezone; raises ``InvalidTimezoneError``."""
        zone = validate_timezone(timezone)
        await self.repository.set_timezone(zone)
        self.timezone = zone
        return zone

    def to_utc(self, local_wall_clock: str) -> datetime:
        """Convert a wall-clock string in the user's timezone to UTC."""
        return to_utc(local_wall_clock, self.timezone)

    def from_utc(self, instant: datetime) -> str:
        """Render an instant as a wall-clock string in the user's timezone."""
        return from_utc(instant, self.timezone)
