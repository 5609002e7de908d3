"""ISO 8601 helpers for server timestamps."""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from .errors import ParseError

__all__ = [
    "DISTANT_PAST",
    "parse_server_datetime",
    "format_iso8601",
    "to_storage",
    "from_storage",
    "utcnow",
]

DISTANT_PAST = datetime(1, 1, 1, tzinfo=timezone.utc)

_ZONE = r"(?P<zone>Z|[+-]\d{2}:\d{2})"
_BASE = r"(?P<date>\d{4}-\d{2}-\d{2})T(?P<time>\d{2}:\d{2}:\d{2})"

# Tried in order: with fractional seconds, then whole seconds.
_FORMATS = (
    re.compile(rf"^{_BASE}\.(?P<fraction>\d{{1,9}}){_ZONE}$"),
    re.compile(rf"^{_BASE}{_ZONE}$"),
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_zone(zone: str) -> timezone:
    if zone == "Z":
        return timezone.utc
    sign = 1 if zone[0] == "+" else -1
    hours, minutes = int(zone[1:3]), int(zone[4:6])
    return timezone(sign * timedelta(hours=hours, minutes=minutes))


def parse_server_datetime(value: str) -> datetime:
    """Parse a server timestamp into an aware UTC datetime.

    Accepts ``2024-01-01T10:00:00.500Z`` and ``2024-01-01T10:00:00Z`` (and
    numeric offsets such as ``+08:00``). The fractional part may carry up to
    nine digits; anything past microseconds is truncated.

    Raises:
        ParseError: If the value matches neither format.
    """
    if not isinstance(value, str):
        raise ParseError(f"Expected a date string, got {type(value).__name__}")

    for pattern in _FORMATS:
        match = pattern.match(value)
        if match is None:
            continue
        fraction = match.groupdict().get("fraction") or ""
        microseconds = int(fraction[:6].ljust(6, "0")) if fraction else 0
        try:
            naive = datetime.strptime(
                f"{match['date']}T{match['time']}", "%Y-%m-%dT%H:%M:%S"
            )
            tz = _parse_zone(match["zone"])
            return naive.replace(microsecond=microseconds, tzinfo=tz).astimezone(
                timezone.utc
            )
        except (ValueError, OverflowError) as e:
            raise ParseError(f"Cannot parse date string: {value!r}") from e

    raise ParseError(f"Cannot parse date string: {value!r}")


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_iso8601(dt: datetime) -> str:
    """Format as whole-second UTC, e.g. ``2024-01-01T10:00:00Z``."""
    dt = _as_utc(dt)
    # strftime("%Y") does not zero-pad years below 1000 on every platform
    return f"{dt.year:04d}-{dt:%m-%dT%H:%M:%S}Z"


def to_storage(dt: datetime) -> str:
    """Sortable UTC representation with microseconds, used for SQLite columns."""
    dt = _as_utc(dt)
    return f"{dt.year:04d}-{dt:%m-%dT%H:%M:%S}.{dt.microsecond:06d}Z"


def from_storage(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)
