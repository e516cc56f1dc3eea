"""Open/close lifecycle of a single routine session per subject and kind."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from routine_tracker.domain.errors import (
    SessionAlreadyOpenError,
    SessionNotOpenError,
    SessionStoreError,
    SessionStoreUnavailableError,
)
from routine_tracker.domain.sessions import (
    RoutineKind,
    RoutineSession,
    SessionNotice,
    SessionState,
)
from routine_tracker.services.conflicts import (
    ConflictResolution,
    ConflictResolver,
    SessionConflict,
)
from routine_tracker.services.elapsed import (
    ElapsedTimer,
    TimerStatus,
    format_duration,
    utc_now,
)

_logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    """Remote store that owns routine sessions and their uniqueness."""

    async def start_session(
        self, subject_id: int, kind: RoutineKind, attributes: dict[str, object]
    ) -> RoutineSession:
        """Create an open session or raise ``SessionAlreadyOpenError``."""

    async def get_open_session(
        self, subject_id: int, kind: RoutineKind
    ) -> RoutineSession | None:
        """Return the open session for a subject and kind, if any."""

    async def get_open_sessions(
        self, subject_id: int
    ) -> dict[RoutineKind, RoutineSession]:
        """Return every open session for a subject, keyed by kind."""

    async def close_session(
        self,
        subject_id: int,
        kind: RoutineKind,
        attributes: dict[str, object],
        note: str | None = None,
    ) -> RoutineSession:
        """Close the open session or raise ``SessionNotOpenError``."""

    async def delete_session(self, session_id: int) -> None:
        """Delete a completed session."""


@dataclass
class RoutineSessionController:
    """State machine for one routine kind of one subject.

    Commands are serialized by a lock, so at most one store request is in
    flight per controller. Each command runs shielded: cancelling the caller
    does not cancel the request, and its result is still applied.
    """

    subject_id: int
    kind: RoutineKind
    store: SessionStore
    clock: Callable[[], datetime] = utc_now
    tick_interval_seconds: float = 1.0
    poll_interval_seconds: float = 60.0
    on_tick: Callable[[int], None] | None = None
    state: SessionState = SessionState.IDLE
    open_session: RoutineSession | None = None
    pending_conflict: SessionConflict | None = None
    last_closed: RoutineSession | None = None
    timer: ElapsedTimer = field(init=False)
    resolver: ConflictResolver = field(init=False)
    _attributes: dict[str, object] = field(default_factory=dict, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    _poll_task: asyncio.Task | None = field(default=None, init=False, repr=False)
    _torn_down: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        self.timer = ElapsedTimer(
            clock=self.clock,
            tick_interval_seconds=self.tick_interval_seconds,
            on_tick=self.on_tick,
        )
        self.resolver = ConflictResolver(self.store)

    @property
    def elapsed_seconds(self) -> int:
        """Return the live elapsed seconds of the open session."""
        return self.timer.elapsed_seconds

    @property
    def elapsed_display(self) -> str:
        """Return the formatted live timer value."""
        return self.timer.display

    @property
    def timer_status(self) -> TimerStatus:
        """Return whether the live timer is running, paused or idle."""
        return self.timer.status

    @property
    def accumulated_attributes(self) -> dict[str, object]:
        """Return the attributes gathered while the session is open."""
        return dict(self._attributes)

    @property
    def is_torn_down(self) -> bool:
        """Return True once the owning view has been torn down."""
        return self._torn_down

    async def request_start(
        self, attributes: dict[str, object] | None = None
    ) -> SessionNotice:
        """Ask the store to open a session with initial attributes."""
        return await asyncio.shield(self._start(dict(attributes or {})))

    async def resolve_conflict(
        self, resolution: ConflictResolution | str
    ) -> SessionNotice:
        """Resume or finish the session that blocked the last start."""
        choice = ConflictResolution(resolution)
        return await asyncio.shield(self._resolve(choice))

    async def request_close(
        self, attributes: dict[str, object] | None = None, note: str | None = None
    ) -> SessionNotice:
        """Close the open session, merging accumulated and closing attributes."""
        return await asyncio.shield(self._close(dict(attributes or {}), note))

    async def mount(self) -> SessionNotice:
        """Look up an open session in the store and adopt it."""
        return await asyncio.shield(self._mount())

    async def refresh(self) -> SessionNotice:
        """Re-check the open session; reflects a close made elsewhere."""
        return await asyncio.shield(self._refresh())

    async def delete_last_closed(self) -> SessionNotice:
        """Delete the session this controller most recently closed."""
        return await asyncio.shield(self._delete_last_closed())

    async def adopt(self, session: RoutineSession | None) -> SessionNotice:
        """Apply an open-session fact fetched by someone else."""
        async with self._lock:
            return self._adopt(session)

    def update_attributes(self, attributes: dict[str, object]) -> SessionNotice:
        """Accumulate attributes locally while the session is open."""
        if self.state is not SessionState.OPEN:
            return self._rejected()
        self._attributes.update(attributes)
        return SessionNotice(kind="updated", text=f"{self._label} details saved.")

    def pause_timer(self) -> SessionNotice:
        """Freeze the live timer; the recorded duration is unaffected."""
        if self.state is not SessionState.OPEN:
            return self._rejected()
        self.timer.pause()
        return SessionNotice(kind="paused", text=f"{self._label} timer paused.")

    def resume_timer(self) -> SessionNotice:
        """Resume the live timer from the real elapsed time."""
        if self.state is not SessionState.OPEN:
            return self._rejected()
        self.timer.resume()
        return SessionNotice(kind="running", text=f"{self._label} timer running.")

    def teardown(self) -> None:
        """Stop timers and polling; in-flight requests still complete."""
        self._torn_down = True
        self.timer.disarm()
        self._stop_polling()

    async def _start(self, attributes: dict[str, object]) -> SessionNotice:
        async with self._lock:
            if self.state is not SessionState.IDLE:
                return self._rejected()
            self._transition(SessionState.STARTING)
            try:
                session = await self.store.start_session(
                    self.subject_id, self.kind, attributes
                )
            except SessionAlreadyOpenError as exc:
                self.pending_conflict = SessionConflict(
                    subject_id=self.subject_id, kind=self.kind, existing=exc.existing
                )
                self._transition(SessionState.CONFLICT)
                return SessionNotice(
                    kind="conflict",
                    text=(
                        f"A {self.kind.label} is already in progress. "
                        "Resume it or finish it now."
                    ),
                )
            except SessionStoreUnavailableError:
                _logger.warning(
                    "Start failed: subject=%s kind=%s",
                    self.subject_id,
                    self.kind.value,
                )
                self._transition(SessionState.IDLE)
                return self._retry(f"Could not start {self.kind.label}.")
            except SessionStoreError:
                _logger.exception(
                    "Start rejected: subject=%s kind=%s",
                    self.subject_id,
                    self.kind.value,
                )
                self._transition(SessionState.IDLE)
                return SessionNotice(
                    kind="error", text=f"Could not start {self.kind.label}."
                )
            self._enter_open(session, attributes)
            return SessionNotice(kind="started", text=f"{self._label} started.")

    async def _resolve(self, choice: ConflictResolution) -> SessionNotice:
        async with self._lock:
            conflict = self.pending_conflict
            if self.state is not SessionState.CONFLICT or conflict is None:
                return self._rejected()
            try:
                session = await self.resolver.resolve(conflict, choice)
            except SessionStoreUnavailableError:
                _logger.warning(
                    "Finish from conflict failed: subject=%s kind=%s",
                    self.subject_id,
                    self.kind.value,
                )
                return self._retry(f"Could not finish {self.kind.label}.")
            except SessionStoreError:
                _logger.exception(
                    "Finish from conflict rejected: subject=%s kind=%s",
                    self.subject_id,
                    self.kind.value,
                )
                return SessionNotice(
                    kind="error", text=f"Could not finish {self.kind.label}."
                )
            if choice is ConflictResolution.RESUME and session is not None:
                self._enter_open(session)
                return SessionNotice(
                    kind="resumed",
                    text=f"Resumed the {self.kind.label} in progress.",
                )
            self._enter_idle()
            if session is None:
                return SessionNotice(
                    kind="already_finished",
                    text=f"This {self.kind.label} was already finished.",
                )
            self.last_closed = session
            return self._finished(session)

    async def _close(
        self, attributes: dict[str, object], note: str | None
    ) -> SessionNotice:
        async with self._lock:
            if self.state is not SessionState.OPEN:
                return self._rejected()
            merged = {**self._attributes, **attributes}
            self._transition(SessionState.CLOSING)
            try:
                closed = await self.store.close_session(
                    self.subject_id, self.kind, merged, note
                )
            except SessionNotOpenError:
                _logger.info(
                    "Close found no open session: subject=%s kind=%s",
                    self.subject_id,
                    self.kind.value,
                )
                self._enter_idle()
                return SessionNotice(
                    kind="already_finished",
                    text=f"This {self.kind.label} was already finished.",
                )
            except SessionStoreUnavailableError:
                _logger.warning(
                    "Close failed: subject=%s kind=%s",
                    self.subject_id,
                    self.kind.value,
                )
                self._attributes = merged
                self._transition(SessionState.OPEN)
                return self._retry(f"Could not finish {self.kind.label}.")
            except SessionStoreError:
                _logger.exception(
                    "Close rejected: subject=%s kind=%s",
                    self.subject_id,
                    self.kind.value,
                )
                self._attributes = merged
                self._transition(SessionState.OPEN)
                return SessionNotice(
                    kind="error", text=f"Could not finish {self.kind.label}."
                )
            self.last_closed = closed
            self._enter_idle()
            return self._finished(closed)

    async def _delete_last_closed(self) -> SessionNotice:
        async with self._lock:
            session = self.last_closed
            if session is None or session.is_open:
                return SessionNotice(
                    kind="rejected",
                    text=f"No finished {self.kind.label} to delete.",
                )
            try:
                await self.store.delete_session(session.id)
            except SessionStoreUnavailableError:
                _logger.warning(
                    "Delete failed: subject=%s kind=%s id=%s",
                    self.subject_id,
                    self.kind.value,
                    session.id,
                )
                return self._retry(f"Could not delete {self.kind.label}.")
            except SessionStoreError:
                _logger.exception(
                    "Delete rejected: subject=%s kind=%s id=%s",
                    self.subject_id,
                    self.kind.value,
                    session.id,
                )
                return SessionNotice(
                    kind="error", text=f"Could not delete {self.kind.label}."
                )
            _logger.info(
                "Deleted session: subject=%s kind=%s id=%s",
                self.subject_id,
                self.kind.value,
                session.id,
            )
            self.last_closed = None
            return SessionNotice(kind="deleted", text=f"{self._label} deleted.")

    async def _mount(self) -> SessionNotice:
        async with self._lock:
            try:
                session = await self.store.get_open_session(self.subject_id, self.kind)
            except SessionStoreError:
                _logger.warning(
                    "Open-session lookup failed: subject=%s kind=%s",
                    self.subject_id,
                    self.kind.value,
                )
                return self._retry(
                    f"Could not check for a {self.kind.label} in progress."
                )
            return self._adopt(session)

    async def _refresh(self) -> SessionNotice:
        async with self._lock:
            if self.state is not SessionState.OPEN:
                return self._notice_for_state()
            try:
                session = await self.store.get_open_session(self.subject_id, self.kind)
            except SessionStoreError:
                _logger.warning(
                    "Open-session poll failed: subject=%s kind=%s",
                    self.subject_id,
                    self.kind.value,
                )
                return self._notice_for_state()
            return self._adopt(session)

    def _adopt(self, session: RoutineSession | None) -> SessionNotice:
        if session is not None and (
            session.subject_id != self.subject_id or session.routine_kind != self.kind
        ):
            _logger.warning(
                "Ignoring session %s for subject=%s kind=%s",
                session.id,
                session.subject_id,
                session.routine_kind.value,
            )
            return self._notice_for_state()

        if self.state is SessionState.CONFLICT:
            if session is not None and self.pending_conflict is not None:
                self.pending_conflict = SessionConflict(
                    subject_id=self.subject_id, kind=self.kind, existing=session
                )
            return self._notice_for_state()

        if session is None:
            if self.state is SessionState.OPEN:
                _logger.info(
                    "Session closed elsewhere: subject=%s kind=%s",
                    self.subject_id,
                    self.kind.value,
                )
                self._enter_idle()
                return SessionNotice(
                    kind="finished_elsewhere",
                    text=f"This {self.kind.label} was finished on another device.",
                )
            return self._notice_for_state()

        if self.open_session is not None and self.open_session.id == session.id:
            self.open_session = session
            return self._notice_for_state()

        self._enter_open(session)
        return SessionNotice(
            kind="resumed", text=f"Resumed the {self.kind.label} in progress."
        )

    def _enter_open(
        self, session: RoutineSession, attributes: dict[str, object] | None = None
    ) -> None:
        self.open_session = session
        self._attributes = {**(attributes or {}), **session.attributes}
        self.pending_conflict = None
        self._transition(SessionState.OPEN)
        if self._torn_down:
            return
        self.timer.arm(session.started_at)
        self._start_polling()

    def _enter_idle(self) -> None:
        self.open_session = None
        self.pending_conflict = None
        self._attributes = {}
        self.timer.disarm()
        self._stop_polling()
        self._transition(SessionState.IDLE)

    def _transition(self, state: SessionState) -> None:
        if state is self.state:
            return
        if self._torn_down:
            _logger.warning(
                "Result applied after teardown: subject=%s kind=%s %s -> %s",
                self.subject_id,
                self.kind.value,
                self.state.value,
                state.value,
            )
            self.state = state
            return
        _logger.info(
            "Routine state: subject=%s kind=%s %s -> %s",
            self.subject_id,
            self.kind.value,
            self.state.value,
            state.value,
        )
        self.state = state

    def _start_polling(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._poll_task = loop.create_task(self._poll_loop())

    def _stop_polling(self) -> None:
        task = self._poll_task
        self._poll_task = None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    async def _poll_loop(self) -> None:
        while self.state is SessionState.OPEN and not self._torn_down:
            await asyncio.sleep(self.poll_interval_seconds)
            if self.state is not SessionState.OPEN or self._torn_down:
                break
            await self._refresh()

    @property
    def _label(self) -> str:
        return self.kind.label.capitalize()

    def _finished(self, session: RoutineSession) -> SessionNotice:
        duration = format_duration(session.duration_seconds or 0)
        return SessionNotice(
            kind="finished", text=f"{self._label} recorded: {duration}."
        )

    def _retry(self, text: str) -> SessionNotice:
        return SessionNotice(kind="error", text=f"{text} Try again.", retryable=True)

    def _rejected(self) -> SessionNotice:
        if self.state is SessionState.CONFLICT:
            text = f"Resume or finish the {self.kind.label} in progress first."
        elif self.state in {SessionState.OPEN, SessionState.CLOSING}:
            text = f"A {self.kind.label} is already in progress."
        elif self.state is SessionState.STARTING:
            text = f"Starting {self.kind.label}, please wait."
        else:
            text = f"No {self.kind.label} in progress."
        return SessionNotice(kind="rejected", text=text)

    def _notice_for_state(self) -> SessionNotice:
        if self.state is SessionState.OPEN:
            return SessionNotice(
                kind="open", text=f"{self._label} in progress: {self.elapsed_display}."
            )
        if self.state is SessionState.CONFLICT:
            return SessionNotice(
                kind="conflict",
                text=(
                    f"A {self.kind.label} is already in progress. "
                    "Resume it or finish it now."
                ),
            )
        return SessionNotice(kind="idle", text=f"No {self.kind.label} in progress.")
