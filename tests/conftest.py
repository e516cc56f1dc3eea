"""Shared test fixtures."""

import asyncio
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta

import pytest

from routine_tracker.config import Settings
from routine_tracker.containers import AppContainer
from routine_tracker.domain.errors import (
    SessionAlreadyOpenError,
    SessionNotOpenError,
    SessionStoreError,
    SessionStoreUnavailableError,
)
from routine_tracker.domain.sessions import RoutineKind, RoutineSession
from routine_tracker.services.board import RoutineBoard
from routine_tracker.services.sessions import SessionStore
from routine_tracker.services.user_settings import (
    TimezoneRepository,
    UserSettingsService,
)

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


@dataclass
class FakeClock:
    """Manually advanced UTC clock."""

    now: datetime = T0

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@dataclass
class InMemorySessionStore(SessionStore):
    """In-memory session store that enforces one open session per kind."""

    clock: FakeClock = field(default_factory=FakeClock)
    sessions: dict[int, RoutineSession] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)
    fail_next: set[str] = field(default_factory=set)
    reject_next: dict[str, str] = field(default_factory=dict)
    next_id: int = 1

    def find_open(self, subject_id: int, kind: RoutineKind) -> RoutineSession | None:
        for session in self.sessions.values():
            if (
                session.subject_id == subject_id
                and session.routine_kind == kind
                and session.is_open
            ):
                return session
        return None

    def open_count(self, subject_id: int, kind: RoutineKind) -> int:
        return sum(
            1
            for session in self.sessions.values()
            if session.subject_id == subject_id
            and session.routine_kind == kind
            and session.is_open
        )

    def seed_open(
        self,
        subject_id: int,
        kind: RoutineKind,
        started_at: datetime,
        attributes: dict[str, object] | None = None,
    ) -> RoutineSession:
        session = RoutineSession(
            id=self.next_id,
            subject_id=subject_id,
            routine_kind=kind,
            started_at=started_at,
            attributes=dict(attributes or {}),
        )
        self.next_id += 1
        self.sessions[session.id] = session
        return session

    def close_elsewhere(self, subject_id: int, kind: RoutineKind) -> RoutineSession:
        existing = self.find_open(subject_id, kind)
        assert existing is not None
        return self._close(existing, {}, None)

    async def start_session(
        self, subject_id: int, kind: RoutineKind, attributes: dict[str, object]
    ) -> RoutineSession:
        self._record("start_session")
        existing = self.find_open(subject_id, kind)
        if existing is not None:
            raise SessionAlreadyOpenError(existing)
        return self.seed_open(subject_id, kind, self.clock(), attributes)

    async def get_open_session(
        self, subject_id: int, kind: RoutineKind
    ) -> RoutineSession | None:
        self._record("get_open_session")
        return self.find_open(subject_id, kind)

    async def get_open_sessions(
        self, subject_id: int
    ) -> dict[RoutineKind, RoutineSession]:
        self._record("get_open_sessions")
        return {
            session.routine_kind: session
            for session in self.sessions.values()
            if session.subject_id == subject_id and session.is_open
        }

    async def close_session(
        self,
        subject_id: int,
        kind: RoutineKind,
        attributes: dict[str, object],
        note: str | None = None,
    ) -> RoutineSession:
        self._record("close_session")
        existing = self.find_open(subject_id, kind)
        if existing is None:
            raise SessionNotOpenError(f"No open {kind.value}")
        return self._close(existing, attributes, note)

    async def delete_session(self, session_id: int) -> None:
        self._record("delete_session")
        session = self.sessions.get(session_id)
        if session is not None and session.is_open:
            raise SessionStoreError("Open sessions cannot be deleted")
        self.sessions.pop(session_id, None)

    def _close(
        self,
        existing: RoutineSession,
        attributes: dict[str, object],
        note: str | None,
    ) -> RoutineSession:
        ended_at = self.clock()
        closed = replace(
            existing,
            ended_at=ended_at,
            attributes={**existing.attributes, **attributes},
            duration_seconds=int((ended_at - existing.started_at).total_seconds()),
            notes=note,
        )
        self.sessions[closed.id] = closed
        return closed

    def _record(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_next:
            self.fail_next.discard(operation)
            raise SessionStoreUnavailableError(f"{operation} timed out")
        if operation in self.reject_next:
            raise SessionStoreError(self.reject_next.pop(operation))


@dataclass
class GatedSessionStore(InMemorySessionStore):
    """Session store whose writes wait until the gate is opened."""

    gate: asyncio.Event = field(default_factory=asyncio.Event)

    async def start_session(
        self, subject_id: int, kind: RoutineKind, attributes: dict[str, object]
    ) -> RoutineSession:
        await self.gate.wait()
        return await super().start_session(subject_id, kind, attributes)

    async def close_session(
        self,
        subject_id: int,
        kind: RoutineKind,
        attributes: dict[str, object],
        note: str | None = None,
    ) -> RoutineSession:
        await self.gate.wait()
        return await super().close_session(subject_id, kind, attributes, note)


@dataclass
class InMemoryTimezoneRepository(TimezoneRepository):
    """In-memory timezone preference for tests."""

    timezone: str | None = None
    fail: bool = False

    async def get_timezone(self) -> str | None:
        if self.fail:
            raise SessionStoreUnavailableError("settings unavailable")
        return self.timezone

    async def set_timezone(self, timezone: str) -> None:
        if self.fail:
            raise SessionStoreUnavailableError("settings unavailable")
        self.timezone = timezone


@pytest.fixture
def settings() -> Settings:
    return Settings(api_base_url="https://api.test", api_token="token")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemorySessionStore:
    return InMemorySessionStore(clock=clock)


@pytest.fixture
def timezone_repository() -> InMemoryTimezoneRepository:
    return InMemoryTimezoneRepository()


@pytest.fixture
def container(
    settings: Settings,
    clock: FakeClock,
    store: InMemorySessionStore,
    timezone_repository: InMemoryTimezoneRepository,
) -> AppContainer:
    board = RoutineBoard(store=store, clock=clock)
    user_settings_service = UserSettingsService(
        repository=timezone_repository,
        timezone=settings.default_timezone,
    )

    async def close_resources() -> None:
        board.teardown()

    return AppContainer(
        settings=settings,
        store=store,
        user_settings_service=user_settings_service,
        board=board,
        close_resources=close_resources,
    )
