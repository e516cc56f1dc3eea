"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, status

from routine_tracker.api.models import (
    AttributesRequest,
    CloseRoutineRequest,
    ResolveConflictRequest,
    StartRoutineRequest,
    TimezoneConversionRequest,
    TimezoneRequest,
)
from routine_tracker.app_logging import configure_logging
from routine_tracker.containers import AppContainer
from routine_tracker.domain.errors import InvalidTimezoneError, SessionStoreError
from routine_tracker.domain.sessions import RoutineKind, RoutineSession, SessionNotice
from routine_tracker.services.sessions import RoutineSessionController
from routine_tracker.services.timezones import SUPPORTED_TIMEZONES, from_utc, to_utc

_HTTP_UNPROCESSABLE = 422


def create_app(container: AppContainer) -> FastAPI:  # noqa: PLR0915
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level.upper())
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        service = app.state.container.user_settings_service
        if not service.is_loaded:
            await service.load_timezone()
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post("/subjects/{subject_id}/mount")
    async def mount_subject(subject_id: int, request: Request) -> dict[str, object]:
        """Activate a subject and pick up its open routines."""
        state_container: AppContainer = request.app.state.container
        notices = await state_container.board.mount(subject_id)
        payload = _board_payload(state_container)
        payload["notices"] = {
            kind.slug: _notice_payload(notice) for kind, notice in notices.items()
        }
        return payload

    @app.get("/routines")
    async def list_routines(request: Request) -> dict[str, object]:
        """Return the state of every routine of the active subject."""
        return _board_payload(request.app.state.container)

    @app.get("/routines/{kind}")
    async def routine_detail(kind: str, request: Request) -> dict[str, object]:
        """Return the state of one routine."""
        state_container: AppContainer = request.app.state.container
        controller = _controller(state_container, kind)
        return _controller_payload(controller, _timezone(state_container))

    @app.post("/routines/{kind}/start")
    async def start_routine(
        kind: str, body: StartRoutineRequest, request: Request
    ) -> dict[str, object]:
        """Start a routine."""
        state_container: AppContainer = request.app.state.container
        controller = _controller(state_container, kind)
        notice = await controller.request_start(body.attributes)
        return _command_payload(state_container, controller, notice)

    @app.post("/routines/{kind}/conflict")
    async def resolve_conflict(
        kind: str, body: ResolveConflictRequest, request: Request
    ) -> dict[str, object]:
        """Resume or finish the routine that blocked a start."""
        state_container: AppContainer = request.app.state.container
        controller = _controller(state_container, kind)
        notice = await controller.resolve_conflict(body.resolution)
        return _command_payload(state_container, controller, notice)

    @app.post("/routines/{kind}/attributes")
    async def update_attributes(
        kind: str, body: AttributesRequest, request: Request
    ) -> dict[str, object]:
        """Record details of an open routine."""
        state_container: AppContainer = request.app.state.container
        controller = _controller(state_container, kind)
        notice = controller.update_attributes(body.attributes)
        return _command_payload(state_container, controller, notice)

    @app.post("/routines/{kind}/close")
    async def close_routine(
        kind: str, body: CloseRoutineRequest, request: Request
    ) -> dict[str, object]:
        """Finish a routine."""
        state_container: AppContainer = request.app.state.container
        controller = _controller(state_container, kind)
        notice = await controller.request_close(body.attributes, body.note)
        return _command_payload(state_container, controller, notice)

    @app.delete("/routines/{kind}/last")
    async def delete_last_routine(kind: str, request: Request) -> dict[str, object]:
        """Delete the routine record finished most recently from this board."""
        state_container: AppContainer = request.app.state.container
        controller = _controller(state_container, kind)
        notice = await controller.delete_last_closed()
        return _command_payload(state_container, controller, notice)

    @app.post("/routines/{kind}/pause")
    async def pause_routine(kind: str, request: Request) -> dict[str, object]:
        """Pause the live timer of a routine."""
        state_container: AppContainer = request.app.state.container
        controller = _controller(state_container, kind)
        notice = controller.pause_timer()
        return _command_payload(state_container, controller, notice)

    @app.post("/routines/{kind}/resume")
    async def resume_routine(kind: str, request: Request) -> dict[str, object]:
        """Resume the live timer of a routine."""
        state_container: AppContainer = request.app.state.container
        controller = _controller(state_container, kind)
        notice = controller.resume_timer()
        return _command_payload(state_container, controller, notice)

    @app.get("/settings/timezone")
    async def get_timezone(request: Request) -> dict[str, object]:
        """Return the active timezone and the supported choices."""
        state_container: AppContainer = request.app.state.container
        service = state_container.user_settings_service
        if not service.is_loaded:
            await service.load_timezone()
        return {"timezone": service.timezone, "supported": SUPPORTED_TIMEZONES}

    @app.put("/settings/timezone")
    async def put_timezone(body: TimezoneRequest, request: Request) -> dict[str, str]:
        """Validate and store the timezone preference."""
        state_container: AppContainer = request.app.state.container
        try:
            zone = await state_container.user_settings_service.set_timezone(
                body.timezone
            )
        except InvalidTimezoneError as exc:
            raise HTTPException(
                status_code=_HTTP_UNPROCESSABLE, detail=str(exc)
            ) from exc
        except SessionStoreError as exc:
            logger.exception("Failed to store timezone")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Could not save your timezone. Try again.",
            ) from exc
        return {"timezone": zone}

    @app.post("/timezone/convert")
    async def convert_timezone(
        body: TimezoneConversionRequest, request: Request
    ) -> dict[str, str]:
        """Convert a wall-clock value to UTC and back."""
        state_container: AppContainer = request.app.state.container
        zone = body.zone or _timezone(state_container)
        try:
            instant = to_utc(body.local, zone)
        except ValueError as exc:
            raise HTTPException(
                status_code=_HTTP_UNPROCESSABLE, detail=str(exc)
            ) from exc
        return {
            "zone": zone,
            "utc": instant.isoformat().replace("+00:00", "Z"),
            "local": from_utc(instant, zone),
        }

    return app


def _controller(container: AppContainer, kind: str) -> RoutineSessionController:
    try:
        routine_kind = RoutineKind.from_slug(kind)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown routine {kind}"
        ) from exc
    if container.board.subject_id is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Select a baby first."
        )
    try:
        return container.board.controller(routine_kind)
    except LookupError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)
        ) from exc


def _timezone(container: AppContainer) -> str:
    return container.user_settings_service.timezone


def _board_payload(container: AppContainer) -> dict[str, object]:
    board = container.board
    zone = _timezone(container)
    return {
        "subject_id": board.subject_id,
        "has_open_session": board.has_open_session,
        "routines": [
            _controller_payload(controller, zone)
            for controller in board.controllers.values()
        ],
    }


def _command_payload(
    container: AppContainer,
    controller: RoutineSessionController,
    notice: SessionNotice,
) -> dict[str, object]:
    return {
        "notice": _notice_payload(notice),
        "routine": _controller_payload(controller, _timezone(container)),
    }


def _notice_payload(notice: SessionNotice) -> dict[str, object]:
    return {"kind": notice.kind, "text": notice.text, "retryable": notice.retryable}


def _controller_payload(
    controller: RoutineSessionController, zone: str
) -> dict[str, object]:
    conflict = controller.pending_conflict
    return {
        "kind": controller.kind.slug,
        "routine_type": controller.kind.value,
        "state": controller.state.value,
        "timer": controller.timer_status.value,
        "elapsed_seconds": controller.elapsed_seconds,
        "elapsed_display": controller.elapsed_display,
        "attributes": controller.accumulated_attributes,
        "session": _session_payload(controller.open_session, zone),
        "conflict": _session_payload(conflict.existing, zone) if conflict else None,
        "last_closed": _session_payload(controller.last_closed, zone),
    }


def _session_payload(session: RoutineSession | None, zone: str) -> dict | None:
    if session is None:
        return None
    return {
        "id": session.id,
        "subject_id": session.subject_id,
        "routine_type": session.routine_kind.value,
        "started_at": session.started_at.isoformat(),
        "started_at_local": from_utc(session.started_at, zone),
        "ended_at": session.ended_at.isoformat() if session.ended_at else None,
        "duration_seconds": session.duration_seconds,
        "attributes": session.attributes,
        "notes": session.notes,
    }
