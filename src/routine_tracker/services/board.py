"""Per-subject registry of routine session controllers."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from routine_tracker.domain.errors import SessionStoreError
from routine_tracker.domain.sessions import RoutineKind, SessionNotice, SessionState
from routine_tracker.services.elapsed import utc_now
from routine_tracker.services.sessions import RoutineSessionController, SessionStore

_logger = logging.getLogger(__name__)


@dataclass
class RoutineBoard:
    """Holds the one controller per routine kind for the active subject.

    Every view asks the board for a controller instead of building its own,
    so the "which session is open" fact lives in exactly one place.
    """

    store: SessionStore
    kinds: tuple[RoutineKind, ...] = tuple(RoutineKind)
    clock: Callable[[], datetime] = utc_now
    tick_interval_seconds: float = 1.0
    poll_interval_seconds: float = 60.0
    subject_id: int | None = None
    _controllers: dict[RoutineKind, RoutineSessionController] = field(
        default_factory=dict, init=False
    )

    @property
    def controllers(self) -> dict[RoutineKind, RoutineSessionController]:
        """Return the controllers of the active subject."""
        return dict(self._controllers)

    @property
    def has_open_session(self) -> bool:
        """Return True when any routine of the active subject is open."""
        return any(
            controller.state is SessionState.OPEN
            for controller in self._controllers.values()
        )

    def controller(self, kind: RoutineKind) -> RoutineSessionController:
        """Return the shared controller for a routine kind."""
        if self.subject_id is None:
            raise LookupError("No subject mounted")
        controller = self._controllers.get(kind)
        if controller is None:
            raise LookupError(f"Routine {kind.value} is not enabled")
        return controller

    async def mount(self, subject_id: int) -> dict[RoutineKind, SessionNotice]:
        """Activate a subject and adopt its open sessions from the store."""
        if subject_id != self.subject_id:
            self.teardown()
            self.subject_id = subject_id
            self._controllers = {
                kind: RoutineSessionController(
                    subject_id=subject_id,
                    kind=kind,
                    store=self.store,
                    clock=self.clock,
                    tick_interval_seconds=self.tick_interval_seconds,
                    poll_interval_seconds=self.poll_interval_seconds,
                )
                for kind in self.kinds
            }
            _logger.info("Mounted subject %s", subject_id)

        try:
            open_sessions = await self.store.get_open_sessions(subject_id)
        except SessionStoreError:
            _logger.warning(
                "Consolidated open-session lookup failed for subject %s; "
                "checking each routine",
                subject_id,
            )
            return {
                kind: await controller.mount()
                for kind, controller in self._controllers.items()
            }
        return {
            kind: await controller.adopt(open_sessions.get(kind))
            for kind, controller in self._controllers.items()
        }

    def teardown(self) -> None:
        """Tear down every controller of the active subject."""
        for controller in self._controllers.values():
            controller.teardown()
        self._controllers = {}
        self.subject_id = None
