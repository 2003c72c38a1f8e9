"""Payout scheduling policy.

A payout is never released before a security hold has elapsed since
capture. After the hold, the owner's payout schedule decides the slot,
always at a fixed hour of the day (UTC).
"""

import calendar as cal
from datetime import datetime, timedelta

from app.models.payment_settings import PayoutSchedule

DEFAULT_PAYOUT_WEEKDAY = 4  # Friday
DEFAULT_PAYOUT_DAY_OF_MONTH = 1


def _at_hour(dt: datetime, hour: int) -> datetime:
    return dt.replace(hour=hour, minute=0, second=0, microsecond=0)


def _next_hour_slot(earliest: datetime, hour: int) -> datetime:
    """First occurrence of ``hour`` at or after ``earliest``."""
    slot = _at_hour(earliest, hour)
    if slot < earliest:
        slot += timedelta(days=1)
    return slot


def _next_weekday_slot(earliest: datetime, weekday: int, hour: int) -> datetime:
    """First ``weekday`` at ``hour`` at or after ``earliest``."""
    if not 0 <= weekday <= 6:
        raise ValueError(f"Invalid payout weekday: {weekday}")
    days_ahead = (weekday - earliest.weekday()) % 7
    slot = _at_hour(earliest + timedelta(days=days_ahead), hour)
    if slot < earliest:
        slot += timedelta(weeks=1)
    return slot


def _month_slot(year: int, month: int, day: int, hour: int, template: datetime) -> datetime:
    """Configured day of the month, clamped to the month's length."""
    max_day = cal.monthrange(year, month)[1]
    return _at_hour(template.replace(year=year, month=month, day=min(day, max_day)), hour)


def _next_month_day_slot(earliest: datetime, day: int, hour: int) -> datetime:
    """First configured day-of-month at ``hour`` at or after ``earliest``."""
    if not 1 <= day <= 31:
        raise ValueError(f"Invalid payout day of month: {day}")
    slot = _month_slot(earliest.year, earliest.month, day, hour, earliest.replace(day=1))
    if slot < earliest:
        year = earliest.year + earliest.month // 12
        month = earliest.month % 12 + 1
        slot = _month_slot(year, month, day, hour, earliest.replace(day=1))
    return slot


def calculate_payout_time(
    schedule: str,
    captured_at: datetime,
    day_of_week: int | None = None,
    day_of_month: int | None = None,
    hold_hours: int = 24,
    payout_hour: int = 10,
) -> datetime:
    """Calculate when a captured payment becomes eligible for payout.

    Args:
        schedule: The owner's PayoutSchedule value.
        captured_at: When the payment was captured.
        day_of_week: Weekday for weekly payouts (0 = Monday). Defaults to Friday.
        day_of_month: Day for monthly payouts. Clamped to the month's length.
        hold_hours: Minimum hold after capture before any payout.
        payout_hour: Fixed hour of the day (UTC) payouts are released at.

    Returns:
        The scheduled payout datetime, never earlier than the hold.

    Raises:
        ValueError: If the schedule or its parameters are not valid.
    """
    earliest = captured_at + timedelta(hours=hold_hours)

    if schedule in (PayoutSchedule.ON_DEMAND.value, PayoutSchedule.DAILY.value):
        return _next_hour_slot(earliest, payout_hour)
    elif schedule in (PayoutSchedule.WEEKLY.value, PayoutSchedule.BI_WEEKLY.value):
        weekday = DEFAULT_PAYOUT_WEEKDAY if day_of_week is None else day_of_week
        return _next_weekday_slot(earliest, weekday, payout_hour)
    elif schedule == PayoutSchedule.MONTHLY.value:
        day = DEFAULT_PAYOUT_DAY_OF_MONTH if day_of_month is None else day_of_month
        return _next_month_day_slot(earliest, day, payout_hour)
    raise ValueError(f"Unknown payout schedule: {schedule}")
