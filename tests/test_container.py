"""Tests for container wiring."""

import asyncio

from routine_tracker.adapters.routine_api_client import HttpxRoutineApiClient
from routine_tracker.config import Settings
from routine_tracker.containers import build_container
from routine_tracker.domain.sessions import RoutineKind


def test_build_container_creates_services(settings) -> None:
    container = build_container(settings)

    assert isinstance(container.store, HttpxRoutineApiClient)
    assert container.user_settings_service.repository is container.store
    assert container.board.kinds == tuple(RoutineKind)
    assert container.board.poll_interval_seconds == 60
    asyncio.run(container.close_resources())


def test_build_container_limits_routines() -> None:
    settings = Settings(
        api_base_url="https://api.test",
        enabled_routines="feeding,sleep",
        poll_interval_seconds=30,
    )

    container = build_container(settings)

    assert container.board.kinds == (RoutineKind.FEEDING, RoutineKind.SLEEP)
    assert container.board.poll_interval_seconds == 30
    asyncio.run(container.close_resources())
