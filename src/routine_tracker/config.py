"""Application configuration."""

import os

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from routine_tracker.domain.sessions import RoutineKind
from routine_tracker.services.timezones import DEFAULT_TIMEZONE, validate_timezone

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    api_base_url: str
    api_token: str | None = None
    default_timezone: str = DEFAULT_TIMEZONE
    enabled_routines: str | None = None
    poll_interval_seconds: float = 60
    tick_interval_seconds: float = 1
    request_timeout_seconds: float = 10
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    @field_validator("default_timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        return validate_timezone(value)


def parse_routine_kinds(raw: str | None) -> tuple[RoutineKind, ...]:
    """Parse enabled routine kinds from env; unset or ``*`` means all."""
    if raw is None:
        return tuple(RoutineKind)
    cleaned = raw.strip()
    if cleaned in {"", "*"}:
        return tuple(RoutineKind)
    kinds: list[RoutineKind] = []
    for chunk in cleaned.split(","):
        value = chunk.strip()
        if not value:
            continue
        kind = RoutineKind.from_slug(value)
        if kind not in kinds:
            kinds.append(kind)
    return tuple(kinds) or tuple(RoutineKind)
