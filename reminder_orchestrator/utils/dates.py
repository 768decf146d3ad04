"""Date helpers. All persisted timestamps are timezone-aware UTC."""
from datetime import date, datetime, time, timezone
from typing import Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_day_utc(value: Union[date, datetime]) -> datetime:
    """Midnight UTC of the given date (or of the UTC date of a datetime)."""
    if isinstance(value, datetime):
        value = ensure_utc(value).date()
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def parse_date(value: Union[str, date, datetime, None]):
    """Parse ``YYYY-MM-DD`` (or a full ISO timestamp) into a date."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])
