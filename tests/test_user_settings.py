"""Tests for the time-zone preference service."""

import asyncio
from datetime import UTC, datetime

import pytest

from routine_tracker.domain.errors import InvalidTimezoneError
from routine_tracker.services.timezones import DEFAULT_TIMEZONE
from routine_tracker.services.user_settings import UserSettingsService
from tests.conftest import InMemoryTimezoneRepository


def test_load_uses_stored_timezone() -> None:
    repository = InMemoryTimezoneRepository(timezone="Europe/Paris")
    service = UserSettingsService(repository=repository)

    zone = asyncio.run(service.load_timezone(detected="Asia/Tokyo"))

    assert zone == "Europe/Paris"
    assert service.is_loaded


def test_load_persists_detected_timezone_when_unset() -> None:
    repository = InMemoryTimezoneRepository()
    service = UserSettingsService(repository=repository)

    zone = asyncio.run(service.load_timezone(detected="Asia/Tokyo"))

    assert zone == "Asia/Tokyo"
    assert repository.timezone == "Asia/Tokyo"


def test_load_falls_back_when_detection_is_invalid() -> None:
    repository = InMemoryTimezoneRepository()
    service = UserSettingsService(repository=repository)

    zone = asyncio.run(service.load_timezone(detected="Nowhere/Land"))

    assert zone == DEFAULT_TIMEZONE
    assert repository.timezone == DEFAULT_TIMEZONE


def test_load_survives_store_failure() -> None:
    repository = InMemoryTimezoneRepository(fail=True)
    service = UserSettingsService(repository=repository)

    zone = asyncio.run(service.load_timezone(detected="America/New_York"))

    assert zone == "America/New_York"
    assert service.is_loaded


def test_set_timezone_validates_before_storing() -> None:
    repository = InMemoryTimezoneRepository(timezone="Asia/Tokyo")
    service = UserSettingsService(repository=repository, timezone="Asia/Tokyo")

    with pytest.raises(InvalidTimezoneError):
        asyncio.run(service.set_timezone("Asia/Atlantis"))

    assert repository.timezone == "Asia/Tokyo"
    assert asyncio.run(service.set_timezone("Europe/Lisbon")) == "Europe/Lisbon"
    assert repository.timezone == "Europe/Lisbon"
    assert service.timezone == "Europe/Lisbon"


def test_conversions_follow_current_timezone() -> None:
    service = UserSettingsService(repository=InMemoryTimezoneRepository())

    assert service.to_utc("2024-06-01T09:00") == datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

    service.timezone = "Asia/Tokyo"

    assert service.from_utc(datetime(2024, 6, 1, 12, 0, tzinfo=UTC)) == (
        "2024-06-01T21:00"
    )
