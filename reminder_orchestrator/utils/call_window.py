"""
Call window checks: is ``now`` inside the account's allowed local
day-of-week and time-of-day range?
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from reminder_orchestrator.schemas.settings import ReminderSettings
from reminder_orchestrator.utils.dates import ensure_utc

DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


@dataclass(frozen=True)
class CallWindowCheck:
    can_call: bool
    reason: Optional[str] = None
    next_available_time: Optional[datetime] = None


def _weekday_sunday_first(local: datetime) -> int:
    # datetime.weekday() is Monday=0; settings use Sunday=0
    return (local.weekday() + 1) % 7


def _at_time(local: datetime, hhmmss: str) -> datetime:
    hours, minutes, seconds = (int(part) for part in hhmmss.split(":"))
    return local.replace(hour=hours, minute=minutes, second=seconds, microsecond=0)


def local_time(now: datetime, timezone_name: str) -> datetime:
    return ensure_utc(now).astimezone(ZoneInfo(timezone_name))


def next_available_time(now: datetime, settings: ReminderSettings) -> datetime:
    """First moment at or after ``now`` that falls inside the call window (UTC)."""
    local = local_time(now, settings.call_timezone)
    allowed = set(settings.call_days_of_week)

    if _weekday_sunday_first(local) in allowed:
        start = _at_time(local, settings.call_start_time)
        end = _at_time(local, settings.call_end_time)
        if local < start:
            return start.astimezone(ZoneInfo("UTC"))
        if local.replace(microsecond=0) <= end:
            return ensure_utc(now)

    for days_ahead in range(1, 8):
        candidate = local + timedelta(days=days_ahead)
        if _weekday_sunday_first(candidate) in allowed:
            return _at_time(candidate, settings.call_start_time).astimezone(ZoneInfo("UTC"))

    return ensure_utc(now)


def check_call_window(now: datetime, settings: ReminderSettings) -> CallWindowCheck:
    """
    Decide whether a reminder may be delivered at ``now``.

    The window is inclusive on both ends and evaluated in the account's
    configured timezone, so DST shifts are handled by zoneinfo.
    """
    local = local_time(now, settings.call_timezone)
    day = _weekday_sunday_first(local)

    if day not in settings.call_days_of_week:
        return CallWindowCheck(
            can_call=False,
            reason=f"Calls are not allowed on {DAY_NAMES[day]}",
            next_available_time=next_available_time(now, settings),
        )

    current = local.strftime("%H:%M:%S")
    if not settings.call_start_time <= current <= settings.call_end_time:
        return CallWindowCheck(
            can_call=False,
            reason=(
                f"Current time {current} is outside call window "
                f"({settings.call_start_time} - {settings.call_end_time})"
            ),
            next_available_time=next_available_time(now, settings),
        )

    return CallWindowCheck(can_call=True)
