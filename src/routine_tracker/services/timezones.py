"""Local wall-clock and UTC conversions for named time zones.

Wall-clock strings are what a local date/time input produces:
``YYYY-MM-DDTHH:MM`` with no zone information. A bare ``YYYY-MM-DD`` (or an
empty time part) means midnight.

Conversions resolve the zone eagerly and raise ``InvalidTimezoneError`` for
unknown identifiers. Falling back to ``DEFAULT_TIMEZONE`` only happens in
``resolve_timezone``, which is meant for the point where a zone is detected,
never during formatting.
"""

import re
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from routine_tracker.domain.errors import InvalidTimezoneError

DEFAULT_TIMEZONE = "America/Sao_Paulo"

SUPPORTED_TIMEZONES: list[dict[str, object]] = [
    {"value": "America/Sao_Paulo", "label": "Brasilia (GMT-3)", "offset": -3},
    {"value": "America/Manaus", "label": "Manaus (GMT-4)", "offset": -4},
    {"value": "America/Cuiaba", "label": "Cuiaba (GMT-4)", "offset": -4},
    {"value": "America/Rio_Branco", "label": "Rio Branco (GMT-5)", "offset": -5},
    {"value": "America/Noronha", "label": "Fernando de Noronha (GMT-2)", "offset": -2},
    {"value": "America/New_York", "label": "New York (EST)", "offset": -5},
    {"value": "America/Los_Angeles", "label": "Los Angeles (PST)", "offset": -8},
    {"value": "Europe/London", "label": "London (GMT)", "offset": 0},
    {"value": "Europe/Lisbon", "label": "Lisbon (WET)", "offset": 0},
    {"value": "Europe/Paris", "label": "Paris (CET)", "offset": 1},
    {"value": "Asia/Tokyo", "label": "Tokyo (JST)", "offset": 9},
    {"value": "Australia/Sydney", "label": "Sydney (AEDT)", "offset": 11},
]

WALL_CLOCK_FORMAT = "%Y-%m-%dT%H:%M"

_WALL_CLOCK_RE = re.compile(
    r"^(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2})"
    r"(?:[T ](?P<hour>\d{1,2})?(?::(?P<minute>\d{2}))?(?::\d{2}(?:\.\d+)?)?)?$"
)

_SECONDS_PER_MINUTE = 60
_SECONDS_PER_HOUR = 3600
_SECONDS_PER_DAY = 86400


def get_zone(zone_id: str) -> ZoneInfo:
    """Return the tzinfo for a zone, failing fast on unknown identifiers."""
    if not isinstance(zone_id, str) or not zone_id.strip():
        raise InvalidTimezoneError(str(zone_id))
    try:
        return ZoneInfo(zone_id.strip())
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        raise InvalidTimezoneError(zone_id) from exc


def is_valid_timezone(zone_id: str) -> bool:
    """Return True when the zone identifier resolves."""
    try:
        get_zone(zone_id)
    except InvalidTimezoneError:
        return False
    return True


def validate_timezone(zone_id: str) -> str:
    """Return the normalized zone identifier or raise ``InvalidTimezoneError``."""
    get_zone(zone_id)
    return zone_id.strip()


def resolve_timezone(candidate: str | None) -> str:
    """Return ``candidate`` when valid, otherwise ``DEFAULT_TIMEZONE``."""
    if candidate and is_valid_timezone(candidate):
        return candidate.strip()
    return DEFAULT_TIMEZONE


def parse_wall_clock(value: str) -> datetime:
    """Parse a wall-clock string into a naive datetime."""
    match = _WALL_CLOCK_RE.match(value.strip())
    if match is None:
        raise ValueError(f"Invalid wall-clock value: {value!r}")
    return datetime(
        int(match["year"]),
        int(match["month"]),
        int(match["day"]),
        int(match["hour"] or 0),
        int(match["minute"] or 0),
    )


def to_utc(local_wall_clock: str, zone_id: str) -> datetime:
    """Interpret a wall-clock string in ``zone_id`` and return the UTC instant."""
    zone = get_zone(zone_id)
    naive = parse_wall_clock(local_wall_clock)
    return naive.replace(tzinfo=zone).astimezone(UTC)


def from_utc(instant: datetime, zone_id: str) -> str:
    """Render an instant as the wall-clock string an observer in ``zone_id`` sees."""
    zone = get_zone(zone_id)
    return _as_utc(instant).astimezone(zone).strftime(WALL_CLOCK_FORMAT)


def zone_offset(zone_id: str, at: datetime | None = None) -> timedelta:
    """Return the zone's offset from UTC at ``at`` (default: now).

    The offset is found by rendering the same instant in UTC and in the zone
    and subtracting the two naive wall-clock values.
    """
    zone = get_zone(zone_id)
    instant = _as_utc(at) if at is not None else datetime.now(tz=UTC)
    utc_wall = instant.replace(tzinfo=None)
    zone_wall = instant.astimezone(zone).replace(tzinfo=None)
    return zone_wall - utc_wall


def start_of_day_utc(instant: datetime, zone_id: str) -> datetime:
    """Return the UTC instant of local midnight for the day containing ``instant``."""
    local_day = from_utc(instant, zone_id)[:10]
    return to_utc(f"{local_day}T00:00", zone_id)


def end_of_day_utc(instant: datetime, zone_id: str) -> datetime:
    """Return the UTC instant of the last local minute of the day."""
    local_day = from_utc(instant, zone_id)[:10]
    return to_utc(f"{local_day}T23:59", zone_id)


def format_in_timezone(instant: datetime, zone_id: str, style: str = "datetime") -> str:
    """Format an instant for display (``date``, ``time`` or ``datetime``)."""
    local = _as_utc(instant).astimezone(get_zone(zone_id))
    if style == "date":
        return local.strftime("%d/%m/%Y")
    if style == "time":
        return local.strftime("%H:%M")
    if style == "datetime":
        return local.strftime("%d/%m/%Y %H:%M")
    raise ValueError(f"Unknown format style: {style!r}")


def format_relative_time(instant: datetime, now: datetime | None = None) -> str:
    """Describe how long ago ``instant`` was, in whole units rounded down."""
    reference = _as_utc(now) if now is not None else datetime.now(tz=UTC)
    seconds = int((reference - _as_utc(instant)).total_seconds())
    days = seconds // _SECONDS_PER_DAY
    hours = seconds // _SECONDS_PER_HOUR
    minutes = seconds // _SECONDS_PER_MINUTE
    if days > 0:
        return "1 day ago" if days == 1 else f"{days} days ago"
    if hours > 0:
        return "1 hour ago" if hours == 1 else f"{hours} hours ago"
    if minutes > 0:
        return "1 minute ago" if minutes == 1 else f"{minutes} minutes ago"
    return "just now"


def _as_utc(instant: datetime) -> datetime:
    # Naive instants are treated as already being UTC.
    if instant.tzinfo is None:
        return instant.replace(tzinfo=UTC)
    return instant.astimezone(UTC)
