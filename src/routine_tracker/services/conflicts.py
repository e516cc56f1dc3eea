"""Resolution of start requests that hit an already-open session."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from routine_tracker.domain.errors import SessionNotOpenError
from routine_tracker.domain.sessions import RoutineKind, RoutineSession

if TYPE_CHECKING:
    from routine_tracker.services.sessions import SessionStore

_logger = logging.getLogger(__name__)


class ConflictResolution(str, Enum):
    """The only two ways out of a conflict."""

    RESUME = "resume"
    FINISH = "finish"


@dataclass(frozen=True)
class SessionConflict:
    """A start attempt rejected because ``existing`` is still open."""

    subject_id: int
    kind: RoutineKind
    existing: RoutineSession


@dataclass
class ConflictResolver:
    """Applies a conflict resolution against the store."""

    store: SessionStore

    async def resolve(
        self, conflict: SessionConflict, resolution: ConflictResolution | str
    ) -> RoutineSession | None:
        """Resume returns the existing session; finish returns the closed one.

        Finishing returns None when the store says the session was already
        closed elsewhere.
        """
        choice = ConflictResolution(resolution)
        if choice is ConflictResolution.RESUME:
            _logger.info(
                "Resuming open session: subject=%s kind=%s id=%s",
                conflict.subject_id,
                conflict.kind.value,
                conflict.existing.id,
            )
            return conflict.existing

        _logger.info(
            "Finishing open session: subject=%s kind=%s id=%s",
            conflict.subject_id,
            conflict.kind.value,
            conflict.existing.id,
        )
        try:
            return await self.store.close_session(
                conflict.subject_id, conflict.kind, {}, None
            )
        except SessionNotOpenError:
            _logger.info(
                "Session already closed elsewhere: subject=%s kind=%s",
                conflict.subject_id,
                conflict.kind.value,
            )
            return None
