"""
Tests: business-calendar deadline arithmetic.

Covers:
    - Wall-clock deadlines when business hours are off
    - Snapping before/after hours and across weekends
    - Carrying remaining minutes over several business days
    - Policy timezone vs UTC
    - Broken calendars raise ValidationError instead of looping

Policies here are transient SlaPolicy instances; no rows are written.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from sla_engine.core.exceptions import ValidationError
from sla_engine.models.sla import SlaPolicy
from sla_engine.services.deadline import calculate_deadline, resolve_timezone

UTC = timezone.utc

# 2024-12-06 is a Friday, 2024-12-09 a Monday
FRI = datetime(2024, 12, 6, tzinfo=UTC)
MON = datetime(2024, 12, 9, tzinfo=UTC)


def _policy(**overrides) -> SlaPolicy:
    values = dict(
        name="Calendar",
        response_time_hours=1,
        resolution_time_hours=8,
        business_hours_only=True,
        business_hours_start=9,
        business_hours_end=17,
        business_days=["Mon", "Tue", "Wed", "Thu", "Fri"],
        timezone_name="UTC",
    )
    values.update(overrides)
    return SlaPolicy(**values)


def _at(day: datetime, hour: int, minute: int = 0) -> datetime:
    return day.replace(hour=hour, minute=minute)


# ═════════════════════════════════════════════════════════════════════════════
# 1. WALL-CLOCK MODE
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
@pytest.mark.parametrize("hours", [0, 0.5, 1, 8, 36.25, 200])
def test_wall_clock_deadline_is_exact_addition(hours):
    start = datetime(2024, 12, 7, 23, 41, 17, 500, tzinfo=UTC)  # a Saturday night
    policy = _policy(business_hours_only=False)
    assert calculate_deadline(start, hours, policy) == start + timedelta(hours=hours)


@pytest.mark.unit
def test_wall_clock_deadline_accepts_naive_utc_start():
    """SQLite hands back naive datetimes; they are read as UTC."""
    naive = datetime(2024, 12, 9, 10, 0)
    policy = _policy(business_hours_only=False)
    assert calculate_deadline(naive, 1, policy) == datetime(2024, 12, 9, 11, 0, tzinfo=UTC)


# ═════════════════════════════════════════════════════════════════════════════
# 2. BUSINESS-HOURS WALK
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_friday_afternoon_rolls_over_weekend():
    """2h from Friday 16:00 → 1h Friday + 1h Monday = Monday 10:00."""
    assert calculate_deadline(_at(FRI, 16), 2, _policy()) == _at(MON, 10)


@pytest.mark.unit
def test_fits_within_same_day():
    assert calculate_deadline(_at(MON, 9), 4, _policy()) == _at(MON, 13)


@pytest.mark.unit
def test_remainder_carries_to_next_day():
    """4h from Monday 15:00 → 2h Monday + 2h Tuesday = Tuesday 11:00."""
    assert calculate_deadline(_at(MON, 15), 4, _policy()) == _at(MON + timedelta(days=1), 11)


@pytest.mark.unit
def test_before_opening_snaps_to_business_start():
    assert calculate_deadline(_at(MON, 7, 30), 1, _policy()) == _at(MON, 10)


@pytest.mark.unit
def test_after_closing_jumps_to_next_opening():
    assert calculate_deadline(_at(MON, 18), 1, _policy()) == _at(MON + timedelta(days=1), 10)


@pytest.mark.unit
def test_exactly_at_closing_counts_as_after_hours():
    assert calculate_deadline(_at(MON, 17), 1, _policy()) == _at(MON + timedelta(days=1), 10)


@pytest.mark.unit
def test_weekend_start_waits_for_monday():
    saturday = FRI + timedelta(days=1)
    assert calculate_deadline(_at(saturday, 12), 1, _policy()) == _at(MON, 10)


@pytest.mark.unit
def test_finishing_exactly_at_closing_stays_on_that_day():
    assert calculate_deadline(_at(MON, 9), 8, _policy()) == _at(MON, 17)


@pytest.mark.unit
def test_fractional_hours_round_to_whole_minutes():
    assert calculate_deadline(_at(MON, 9), 0.25, _policy()) == _at(MON, 9, 15)
    # 0.01h = 36s → rounds to 1 minute
    assert calculate_deadline(_at(MON, 9), 0.01, _policy()) == _at(MON, 9, 1)


@pytest.mark.unit
def test_multi_week_walk():
    """80 business hours = ten 8h days: Monday 09:00 → Friday of next week 17:00."""
    assert calculate_deadline(_at(MON, 9), 80, _policy()) == datetime(2024, 12, 20, 17, 0, tzinfo=UTC)


@pytest.mark.unit
def test_seven_day_calendar_does_not_skip_weekend():
    policy = _policy(business_days=["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"])
    saturday = FRI + timedelta(days=1)
    assert calculate_deadline(_at(FRI, 16), 2, policy) == _at(saturday, 10)


@pytest.mark.unit
def test_zero_hours_returns_start():
    start = _at(MON, 12, 34)
    assert calculate_deadline(start, 0, _policy()) == start


@pytest.mark.unit
def test_walk_happens_in_policy_timezone():
    """Monday 13:00 UTC is 08:00 in New York (EST): snap to 09:00 EST, +1h = 15:00 UTC."""
    policy = _policy(timezone_name="America/New_York")
    result = calculate_deadline(datetime(2024, 12, 9, 13, 0, tzinfo=UTC), 1, policy)
    assert result == datetime(2024, 12, 9, 15, 0, tzinfo=UTC)
    assert result.tzinfo == UTC


# ═════════════════════════════════════════════════════════════════════════════
# 3. INVALID CALENDARS
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_empty_business_days_raises():
    with pytest.raises(ValidationError):
        calculate_deadline(_at(MON, 9), 1, _policy(business_days=[]))


@pytest.mark.unit
def test_start_not_before_end_raises():
    with pytest.raises(ValidationError):
        calculate_deadline(_at(MON, 9), 1, _policy(business_hours_start=17, business_hours_end=9))


@pytest.mark.unit
def test_unknown_weekday_name_raises():
    with pytest.raises(ValidationError):
        calculate_deadline(_at(MON, 9), 1, _policy(business_days=["Funday"]))


@pytest.mark.unit
def test_negative_hours_raises():
    with pytest.raises(ValidationError):
        calculate_deadline(_at(MON, 9), -1, _policy())


@pytest.mark.unit
def test_unknown_timezone_raises():
    with pytest.raises(ValidationError):
        resolve_timezone("Mars/Olympus_Mons")


@pytest.mark.unit
def test_utc_aliases_resolve_to_utc():
    assert resolve_timezone(None) is UTC
    assert resolve_timezone("") is UTC
    assert resolve_timezone("utc") is UTC
