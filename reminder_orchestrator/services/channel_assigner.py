"""
Delivery channel assignment.

Smart mode texts customers while the due date is still comfortably far
away and calls them once it is close or past.
"""
import re

from reminder_orchestrator.schemas.reminder import Channel
from reminder_orchestrator.schemas.settings import ReminderSettings

SMS_REMINDER_TYPES = frozenset({
    "30_days_before",
    "15_days_before",
    "7_days_before",
    "5_days_before",
})
CUSTOM_BEFORE_PATTERN = re.compile(r"^custom_(\d+)_days_before$")
SMS_MIN_CUSTOM_DAYS = 5


def assign_channel(reminder_type: str, settings: ReminderSettings) -> Channel:
    """
    Pick the channel a reminder will be delivered on.

    Labels are matched exactly; anything unrecognized falls back to voice.
    """
    if not settings.smart_mode:
        return settings.manual_channel

    if reminder_type in SMS_REMINDER_TYPES:
        return Channel.SMS

    match = CUSTOM_BEFORE_PATTERN.match(reminder_type)
    if match and int(match.group(1)) >= SMS_MIN_CUSTOM_DAYS:
        return Channel.SMS

    return Channel.VOICE
