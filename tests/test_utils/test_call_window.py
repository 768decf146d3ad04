"""
Tests for call window checks.
"""
from datetime import datetime, timezone

from reminder_orchestrator.schemas.settings import ReminderSettings
from reminder_orchestrator.utils.call_window import check_call_window, next_available_time


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestCheckCallWindow:
    """Test day-of-week, time-of-day and timezone handling."""

    def test_inside_default_window(self):
        # Wednesday 15:00 UTC
        assert check_call_window(utc(2025, 3, 12, 15, 0), ReminderSettings()).can_call

    def test_window_bounds_are_inclusive(self):
        settings = ReminderSettings()
        assert check_call_window(utc(2025, 3, 12, 9, 0, 0), settings).can_call
        assert check_call_window(utc(2025, 3, 12, 18, 0, 0), settings).can_call
        assert not check_call_window(utc(2025, 3, 12, 18, 0, 1), settings).can_call

    def test_before_start_time(self):
        check = check_call_window(utc(2025, 3, 12, 7, 30), ReminderSettings())

        assert not check.can_call
        assert "outside call window" in check.reason
        assert check.next_available_time == utc(2025, 3, 12, 9, 0)

    def test_weekend_blocked(self):
        # Saturday
        check = check_call_window(utc(2025, 3, 15, 12, 0), ReminderSettings())

        assert not check.can_call
        assert check.reason == "Calls are not allowed on Saturday"
        assert check.next_available_time == utc(2025, 3, 17, 9, 0)

    def test_sunday_allowed_when_configured(self):
        settings = ReminderSettings(call_days_of_week=[0])
        assert check_call_window(utc(2025, 3, 16, 12, 0), settings).can_call

    def test_account_timezone(self):
        """10:00 UTC is 15:30 in Kolkata and 06:00 in New York."""
        now = utc(2025, 3, 12, 10, 0)
        assert check_call_window(now, ReminderSettings(call_timezone="Asia/Kolkata")).can_call
        assert not check_call_window(now, ReminderSettings(call_timezone="America/New_York")).can_call

    def test_local_day_differs_from_utc_day(self):
        """Friday 23:00 UTC is already Saturday in Tokyo."""
        settings = ReminderSettings(call_timezone="Asia/Tokyo", call_start_time="00:00:00", call_end_time="23:59:59")
        assert not check_call_window(utc(2025, 3, 14, 23, 0), settings).can_call


class TestNextAvailableTime:
    def test_after_end_rolls_to_next_allowed_day(self):
        # Friday 19:00 UTC -> Monday 09:00 UTC
        assert next_available_time(utc(2025, 3, 14, 19, 0), ReminderSettings()) == utc(2025, 3, 17, 9, 0)

    def test_inside_window_is_now(self):
        now = utc(2025, 3, 12, 15, 0)
        assert next_available_time(now, ReminderSettings()) == now
