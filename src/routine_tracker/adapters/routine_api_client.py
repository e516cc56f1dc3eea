"""Routines REST API client."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx

from routine_tracker.domain.errors import (
    SessionAlreadyOpenError,
    SessionNotOpenError,
    SessionStoreError,
    SessionStoreUnavailableError,
)
from routine_tracker.domain.sessions import RoutineKind, RoutineSession
from routine_tracker.services.sessions import SessionStore
from routine_tracker.services.user_settings import TimezoneRepository

_logger = logging.getLogger(__name__)

_HTTP_NOT_FOUND = 404
_HTTP_CONFLICT = 409
_HTTP_SERVER_ERROR = 500


@dataclass
class HttpxRoutineApiClient(SessionStore, TimezoneRepository):
    """HTTPX-backed client for the routines and settings endpoints."""

    base_url: str
    http_client: httpx.AsyncClient
    timeout: float = 10

    @classmethod
    def create(
        cls, base_url: str, api_token: str | None = None, timeout: float = 10
    ) -> "HttpxRoutineApiClient":
        """Create a client with a managed httpx session."""
        headers = {"Content-Type": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        return cls(
            base_url=base_url.rstrip("/"),
            http_client=httpx.AsyncClient(headers=headers),
            timeout=timeout,
        )

    async def start_session(
        self, subject_id: int, kind: RoutineKind, attributes: dict[str, object]
    ) -> RoutineSession:
        """Start a routine via ``POST /routines/{kind}/start``."""
        response = await self._request(
            "POST",
            f"/routines/{kind.slug}/start",
            json={"babyId": subject_id, "meta": attributes},
        )
        code = _error_code(response)
        if response.status_code == _HTTP_CONFLICT or code == "ALREADY_OPEN":
            existing = _optional_session(_envelope(response).get("data"))
            if existing is None:
                existing = await self.get_open_session(subject_id, kind)
            if existing is None:
                raise SessionStoreError(
                    f"Start of {kind.value} rejected but no open session was found"
                )
            raise SessionAlreadyOpenError(existing)
        return _parse_session(self._data(response))

    async def get_open_session(
        self, subject_id: int, kind: RoutineKind
    ) -> RoutineSession | None:
        """Return the open routine via ``GET /routines/{kind}/open``."""
        response = await self._request(
            "GET", f"/routines/{kind.slug}/open", params={"babyId": subject_id}
        )
        if response.status_code == _HTTP_NOT_FOUND:
            return None
        return _optional_session(self._data(response))

    async def get_open_sessions(
        self, subject_id: int
    ) -> dict[RoutineKind, RoutineSession]:
        """Return all open routines via ``GET /routines/open-all``."""
        response = await self._request(
            "GET", "/routines/open-all", params={"babyId": subject_id}
        )
        data = self._data(response)
        if not isinstance(data, dict):
            return {}
        sessions: dict[RoutineKind, RoutineSession] = {}
        for key, row in data.items():
            session = _optional_session(row)
            if session is None:
                continue
            try:
                kind = RoutineKind.from_slug(key)
            except ValueError:
                _logger.warning("Ignoring open routine with unknown key %s", key)
                continue
            sessions[kind] = session
        return sessions

    async def close_session(
        self,
        subject_id: int,
        kind: RoutineKind,
        attributes: dict[str, object],
        note: str | None = None,
    ) -> RoutineSession:
        """Close a routine via ``POST /routines/{kind}/close``."""
        payload: dict[str, object] = {"babyId": subject_id, "meta": attributes}
        if note is not None:
            payload["notes"] = note
        response = await self._request(
            "POST", f"/routines/{kind.slug}/close", json=payload
        )
        if response.status_code in {_HTTP_NOT_FOUND, _HTTP_CONFLICT} or (
            _error_code(response) == "NOT_OPEN"
        ):
            raise SessionNotOpenError(
                f"No open {kind.value} for subject {subject_id}"
            )
        return _parse_session(self._data(response))

    async def delete_session(self, session_id: int) -> None:
        """Delete a completed routine via ``DELETE /routines/log/{id}``."""
        response = await self._request("DELETE", f"/routines/log/{session_id}")
        self._data(response)

    async def get_timezone(self) -> str | None:
        """Return the stored time-zone preference."""
        response = await self._request("GET", "/settings/timezone")
        if response.status_code == _HTTP_NOT_FOUND:
            return None
        data = self._data(response)
        if isinstance(data, dict) and data.get("timezone"):
            return str(data["timezone"])
        return None

    async def set_timezone(self, timezone: str) -> None:
        """Store the time-zone preference."""
        response = await self._request(
            "PUT", "/settings/timezone", json={"timezone": timezone}
        )
        self._data(response)

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()

    async def _request(self, method: str, path: str, **kwargs: object) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = await self.http_client.request(
                method, url, timeout=self.timeout, **kwargs
            )
        except httpx.HTTPError as exc:
            raise SessionStoreUnavailableError(f"{method} {path} failed") from exc
        if response.status_code >= _HTTP_SERVER_ERROR:
            raise SessionStoreUnavailableError(
                f"{method} {path} returned {response.status_code}"
            )
        return response

    def _data(self, response: httpx.Response) -> object:
        envelope = _envelope(response)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            message = envelope.get("message") or str(exc)
            raise SessionStoreError(str(message)) from exc
        if envelope.get("success") is False:
            message = envelope.get("message") or "Request was not successful"
            raise SessionStoreError(str(message))
        return envelope.get("data")


def _envelope(response: httpx.Response) -> dict[str, object]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _error_code(response: httpx.Response) -> str | None:
    envelope = _envelope(response)
    if response.is_success and envelope.get("success") is not False:
        return None
    code = envelope.get("code")
    return str(code) if code else None


def _optional_session(row: object) -> RoutineSession | None:
    if not isinstance(row, dict) or not row:
        return None
    return _parse_session(row)


def _parse_session(row: object) -> RoutineSession:
    if not isinstance(row, dict):
        raise SessionStoreError("Malformed routine payload")
    try:
        return RoutineSession(
            id=int(row["id"]),
            subject_id=int(row["babyId"]),
            routine_kind=RoutineKind(str(row["routineType"])),
            started_at=_parse_instant(str(row["startTime"])),
            ended_at=_parse_instant(str(row["endTime"])) if row.get("endTime") else None,
            attributes=dict(row.get("meta") or {}),
            duration_seconds=(
                int(row["durationSeconds"])
                if row.get("durationSeconds") is not None
                else None
            ),
            notes=row.get("notes"),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise SessionStoreError("Malformed routine payload") from exc


def _parse_instant(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
