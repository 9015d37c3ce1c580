"""
SLA deadline arithmetic.

Turns (start time, hours, policy calendar) into a concrete UTC deadline.
Calendar walks happen in the policy's IANA timezone so that "09:00" means
09:00 where the service desk sits, not 09:00 UTC.
"""

import logging
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sla_engine.core.exceptions import ValidationError
from sla_engine.models.sla import DEFAULT_BUSINESS_DAYS, WEEKDAY_NAMES
from sla_engine.utils.helpers import as_utc

logger = logging.getLogger(__name__)

# Ten years of calendar days; a walk that needs more is a broken calendar.
MAX_WALK_DAYS = 3660


def resolve_timezone(name):
    """Return a tzinfo for an IANA zone name. Empty or "UTC" means UTC."""
    if not name or str(name).upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(
            f"Unknown timezone {name!r}", details={"timezone": "must be an IANA zone name"},
        ) from exc


def business_weekdays(days):
    """Map ["Mon", "Fri"] style names to datetime.weekday() integers."""
    names = DEFAULT_BUSINESS_DAYS if days is None else days
    try:
        return {WEEKDAY_NAMES.index(d) for d in names}
    except ValueError as exc:
        raise ValidationError(
            f"Invalid business days {names!r}", details={"business_days": "use Mon..Sun"},
        ) from exc


def _next_opening(current, open_hour, tz):
    next_day = current.date() + timedelta(days=1)
    return datetime.combine(next_day, time(hour=open_hour), tzinfo=tz)


def calculate_deadline(start_time: datetime, hours, policy) -> datetime:
    """Return the UTC deadline ``hours`` after ``start_time`` under ``policy``.

    Without business hours the deadline is plain wall-clock addition. With
    business hours the walk consumes whole minutes only inside the opening
    window of business days; each pass either finishes or moves to a later
    calendar day, and the walk gives up after MAX_WALK_DAYS.

    Raises:
        ValidationError: Negative hours, an empty calendar, start >= end,
            an unknown timezone or a walk past MAX_WALK_DAYS.
    """
    start = as_utc(start_time)
    hours = float(hours or 0)
    if hours < 0:
        raise ValidationError("SLA hours must not be negative", details={"hours": hours})

    if not policy.business_hours_only:
        return start + timedelta(hours=hours)

    open_hour = 9 if policy.business_hours_start is None else policy.business_hours_start
    close_hour = 17 if policy.business_hours_end is None else policy.business_hours_end
    if open_hour >= close_hour:
        raise ValidationError(
            "Business hours start must be before end",
            details={"business_hours_start": open_hour, "business_hours_end": close_hour},
        )
    weekdays = business_weekdays(policy.business_days)
    if not weekdays:
        raise ValidationError("Business calendar has no business days",
                              details={"business_days": "must not be empty"})

    tz = resolve_timezone(policy.timezone_name)
    remaining = int(round(hours * 60))
    current = start.astimezone(tz)
    days_walked = 0

    while remaining > 0:
        if days_walked > MAX_WALK_DAYS:
            raise ValidationError(
                f"Deadline walk exceeded {MAX_WALK_DAYS} days",
                details={"hours": hours},
            )

        if current.weekday() not in weekdays or current.hour >= close_hour:
            current = _next_opening(current, open_hour, tz)
            days_walked += 1
            continue

        if current.hour < open_hour:
            current = current.replace(hour=open_hour, minute=0, second=0, microsecond=0)
            continue

        minutes_left_today = (close_hour - current.hour) * 60 - current.minute
        if remaining <= minutes_left_today:
            current = current + timedelta(minutes=remaining)
            remaining = 0
        else:
            remaining -= minutes_left_today
            current = _next_opening(current, open_hour, tz)
            days_walked += 1

    return current.astimezone(timezone.utc)
