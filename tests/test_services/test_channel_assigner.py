"""
Tests for delivery channel assignment.
"""
import pytest

from reminder_orchestrator.schemas.reminder import Channel
from reminder_orchestrator.schemas.settings import ReminderSettings
from reminder_orchestrator.services.channel_assigner import assign_channel


class TestSmartMode:
    """Far-off reminders go by SMS, close or overdue ones by voice."""

    @pytest.mark.parametrize(
        "reminder_type",
        ["30_days_before", "15_days_before", "7_days_before", "5_days_before", "custom_5_days_before", "custom_21_days_before"],
    )
    def test_sms(self, reminder_type):
        assert assign_channel(reminder_type, ReminderSettings()) == Channel.SMS

    @pytest.mark.parametrize(
        "reminder_type",
        [
            "3_days_before",
            "1_day_before",
            "on_due_date",
            "1_day_overdue",
            "7_days_overdue",
            "custom_4_days_before",
            "custom_10_days_overdue",
            "custom_on_due_date",
        ],
    )
    def test_voice(self, reminder_type):
        assert assign_channel(reminder_type, ReminderSettings()) == Channel.VOICE

    @pytest.mark.parametrize("reminder_type", ["7_DAYS_BEFORE", "custom_x_days_before", "", "weekly"])
    def test_unrecognized_labels_fall_back_to_voice(self, reminder_type):
        assert assign_channel(reminder_type, ReminderSettings()) == Channel.VOICE


class TestManualMode:
    def test_manual_channel_always_wins(self):
        settings = ReminderSettings(smart_mode=False, manual_channel="sms")

        assert assign_channel("on_due_date", settings) == Channel.SMS
        assert assign_channel("3_days_overdue", settings) == Channel.SMS

    def test_manual_voice(self):
        settings = ReminderSettings(smart_mode=False, manual_channel=Channel.VOICE)
        assert assign_channel("30_days_before", settings) == Channel.VOICE
