"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from routine_tracker.adapters.routine_api_client import HttpxRoutineApiClient
from routine_tracker.config import Settings, parse_routine_kinds
from routine_tracker.services.board import RoutineBoard
from routine_tracker.services.sessions import SessionStore
from routine_tracker.services.user_settings import UserSettingsService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    store: SessionStore
    user_settings_service: UserSettingsService
    board: RoutineBoard
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    api_client = HttpxRoutineApiClient.create(
        base_url=resolved_settings.api_base_url,
        api_token=resolved_settings.api_token,
        timeout=resolved_settings.request_timeout_seconds,
    )
    user_settings_service = UserSettingsService(
        repository=api_client,
        timezone=resolved_settings.default_timezone,
    )
    board = RoutineBoard(
        store=api_client,
        kinds=parse_routine_kinds(resolved_settings.enabled_routines),
        tick_interval_seconds=resolved_settings.tick_interval_seconds,
        poll_interval_seconds=resolved_settings.poll_interval_seconds,
    )

    async def close_resources() -> None:
        board.teardown()
        await api_client.close()

    return AppContainer(
        settings=resolved_settings,
        store=api_client,
        user_settings_service=user_settings_service,
        board=board,
        close_resources=close_resources,
    )
