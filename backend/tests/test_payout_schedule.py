"""Tests for payout scheduling."""

from datetime import UTC, datetime

import pytest

from app.services.payout_schedule import calculate_payout_time


def _dt(*args: int) -> datetime:
    return datetime(*args, tzinfo=UTC)


class TestDailySchedule:
    def test_next_slot_after_hold(self):
        # Monday 09:00 + 24h hold -> Tuesday 09:00 -> Tuesday 10:00
        assert calculate_payout_time("daily", _dt(2026, 3, 2, 9, 0)) == _dt(2026, 3, 3, 10, 0)

    def test_rolls_to_next_day_when_slot_passed(self):
        assert calculate_payout_time("daily", _dt(2026, 3, 2, 15, 30)) == _dt(2026, 3, 4, 10, 0)

    def test_on_demand_behaves_like_daily(self):
        assert calculate_payout_time("on_demand", _dt(2026, 3, 2, 9, 0)) == _dt(2026, 3, 3, 10, 0)

    def test_exact_slot_is_kept(self):
        assert calculate_payout_time("daily", _dt(2026, 3, 2, 10, 0)) == _dt(2026, 3, 3, 10, 0)


class TestWeeklySchedule:
    def test_defaults_to_friday(self):
        # Monday 09:00 capture -> Friday 10:00
        assert calculate_payout_time("weekly", _dt(2026, 3, 2, 9, 0)) == _dt(2026, 3, 6, 10, 0)

    def test_configured_weekday(self):
        result = calculate_payout_time("weekly", _dt(2026, 3, 2, 9, 0), day_of_week=2)
        assert result == _dt(2026, 3, 4, 10, 0)

    def test_hold_pushes_to_following_week(self):
        # Thursday 12:00 + 24h -> Friday 12:00, past the 10:00 slot
        assert calculate_payout_time("weekly", _dt(2026, 3, 5, 12, 0)) == _dt(2026, 3, 13, 10, 0)

    def test_bi_weekly_uses_weekday(self):
        assert calculate_payout_time("bi_weekly", _dt(2026, 3, 2, 9, 0)) == _dt(2026, 3, 6, 10, 0)

    def test_invalid_weekday(self):
        with pytest.raises(ValueError):
            calculate_payout_time("weekly", _dt(2026, 3, 2, 9, 0), day_of_week=7)


class TestMonthlySchedule:
    def test_defaults_to_first_of_next_month(self):
        assert calculate_payout_time("monthly", _dt(2026, 3, 10, 9, 0)) == _dt(2026, 4, 1, 10, 0)

    def test_day_clamped_to_month_length(self):
        result = calculate_payout_time("monthly", _dt(2026, 2, 5, 9, 0), day_of_month=31)
        assert result == _dt(2026, 2, 28, 10, 0)

    def test_rolls_over_year_end(self):
        result = calculate_payout_time("monthly", _dt(2026, 12, 20, 9, 0), day_of_month=15)
        assert result == _dt(2027, 1, 15, 10, 0)

    def test_invalid_day(self):
        with pytest.raises(ValueError):
            calculate_payout_time("monthly", _dt(2026, 3, 2, 9, 0), day_of_month=0)


def test_custom_hold_and_hour():
    result = calculate_payout_time(
        "daily", _dt(2026, 3, 2, 9, 0), hold_hours=72, payout_hour=8
    )
    assert result == _dt(2026, 3, 6, 8, 0)


def test_unknown_schedule():
    with pytest.raises(ValueError, match="Unknown payout schedule"):
        calculate_payout_time("yearly", _dt(2026, 3, 2, 9, 0))
