"""
Reminder schedule builder.

Turns an invoice due date and an account's cadence settings into the list of
reminder dates for that invoice. Pure: ``now`` is always passed in.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Tuple, Union

from reminder_orchestrator.schemas.settings import ReminderSettings
from reminder_orchestrator.utils.dates import start_of_day_utc

# (settings attribute, days before due date, reminder type)
STANDARD_CADENCE: Tuple[Tuple[str, int, str], ...] = (
    ("reminder_30_days_before", 30, "30_days_before"),
    ("reminder_15_days_before", 15, "15_days_before"),
    ("reminder_7_days_before", 7, "7_days_before"),
    ("reminder_5_days_before", 5, "5_days_before"),
    ("reminder_3_days_before", 3, "3_days_before"),
    ("reminder_1_day_before", 1, "1_day_before"),
    ("reminder_on_due_date", 0, "on_due_date"),
    ("reminder_1_day_overdue", -1, "1_day_overdue"),
    ("reminder_3_days_overdue", -3, "3_days_overdue"),
    ("reminder_7_days_overdue", -7, "7_days_overdue"),
)


@dataclass(frozen=True)
class ScheduledReminder:
    reminder_type: str
    scheduled_date: datetime
    days_offset: int


def custom_reminder_type(offset: int) -> str:
    if offset > 0:
        return f"custom_{offset}_days_before"
    if offset < 0:
        return f"custom_{abs(offset)}_days_overdue"
    return "custom_on_due_date"


def build_reminder_schedule(
    due_date: Union[date, datetime],
    settings: ReminderSettings,
    now: datetime,
) -> List[ScheduledReminder]:
    """
    Compute every reminder occurrence for one invoice.

    Both ``due_date`` and ``now`` are normalized to midnight UTC. Occurrences
    dated before today are dropped. Custom offsets are emitted alongside the
    standard ones even when both land on the same date.

    Args:
        due_date: Invoice due date
        settings: Validated account settings
        now: Current time

    Returns:
        Reminders sorted by scheduled date, earliest first
    """
    due = start_of_day_utc(due_date)
    today = start_of_day_utc(now)

    reminders: List[ScheduledReminder] = []
    for flag, offset, reminder_type in STANDARD_CADENCE:
        if not getattr(settings, flag):
            continue
        scheduled = due - timedelta(days=offset)
        if scheduled < today:
            continue
        reminders.append(ScheduledReminder(reminder_type, scheduled, offset))

    for offset in settings.custom_reminder_days:
        scheduled = due - timedelta(days=offset)
        if scheduled < today:
            continue
        reminders.append(ScheduledReminder(custom_reminder_type(offset), scheduled, offset))

    reminders.sort(key=lambda r: r.scheduled_date)
    return reminders


def get_max_reminder_days(settings: ReminderSettings) -> int:
    """Largest enabled days-before offset, or 0 when only due/overdue reminders are on."""
    offsets = [offset for flag, offset, _ in STANDARD_CADENCE if getattr(settings, flag)]
    offsets.extend(settings.custom_reminder_days)
    positive = [offset for offset in offsets if offset > 0]
    return max(positive) if positive else 0
