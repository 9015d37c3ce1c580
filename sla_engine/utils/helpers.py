"""Shared time and request-parsing helpers.

as_utc:                normalise naive (SQLite) / foreign-zone datetimes to UTC-aware
utcnow:                the engine's single clock read
whole_minutes_between: floor of elapsed minutes, the unit every SLA threshold uses
parse_datetime:        ISO-8601 query parameter → UTC datetime (None on empty)
"""
from datetime import date, datetime, time, timezone


def as_utc(dt: datetime | None) -> datetime | None:
    """Return ``dt`` as a UTC-aware datetime.

    SQLite drops tzinfo on DateTime(timezone=True) columns; every stored
    timestamp is written in UTC, so a naive value is read as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def whole_minutes_between(earlier: datetime, later: datetime) -> int:
    """Floor of (later - earlier) in minutes; negative when ``later`` is first."""
    seconds = (as_utc(later) - as_utc(earlier)).total_seconds()
    return int(seconds // 60)


def parse_datetime(value):
    """Parse an ISO date or datetime string to a UTC-aware datetime.

    Returns None for empty input. A bare date means midnight UTC.

    Raises:
        ValueError: On malformed input, so blueprints can answer 400.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    text = str(value).strip().replace("Z", "+00:00")
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError as exc:
        raise ValueError(
            f"Invalid datetime {value!r}. Use ISO-8601, e.g. 2024-12-06T15:00:00Z."
        ) from exc
