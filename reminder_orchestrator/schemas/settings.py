"""
Per-account reminder settings and their validation rules.

Every default lives in this module. Callers never fill in missing values
themselves; they start from ``DEFAULT_REMINDER_SETTINGS`` or a validated
``ReminderSettings`` instance.
"""
import re
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

from reminder_orchestrator.core.exceptions import SettingsValidationError
from reminder_orchestrator.schemas.reminder import Channel

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d:[0-5]\d$")
SUPPORTED_LANGUAGES = ("en", "hi", "hinglish")
VOICE_GENDERS = ("male", "female")
CUSTOM_DAY_LIMIT = 30


class ReminderSettings(BaseModel):
    """Complete, validated reminder configuration for one account."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    # Standard cadence
    reminder_30_days_before: bool = False
    reminder_15_days_before: bool = False
    reminder_7_days_before: bool = True
    reminder_5_days_before: bool = False
    reminder_3_days_before: bool = True
    reminder_1_day_before: bool = True
    reminder_on_due_date: bool = True
    reminder_1_day_overdue: bool = True
    reminder_3_days_overdue: bool = True
    reminder_7_days_overdue: bool = False

    # Custom offsets: positive = before due date, negative = overdue
    custom_reminder_days: List[int] = Field(default_factory=list)

    # Channel strategy
    smart_mode: bool = True
    manual_channel: Channel = Channel.VOICE

    # Call window
    call_timezone: str = "UTC"
    call_start_time: str = "09:00:00"
    call_end_time: str = "18:00:00"
    call_days_of_week: List[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])

    # Voice persona
    language: str = "en"
    voice_gender: str = "female"

    # Retry policy
    max_retry_attempts: int = 3
    retry_delay_hours: int = 2

    # Accounting organization the account syncs from
    organization_id: Optional[str] = None

    @field_validator("custom_reminder_days")
    @classmethod
    def validate_custom_days(cls, v: List[int]) -> List[int]:
        for day in v:
            if day == 0:
                raise ValueError("Custom reminder days cannot be 0; use the on-due-date reminder")
            if not -CUSTOM_DAY_LIMIT <= day <= CUSTOM_DAY_LIMIT:
                raise ValueError(
                    f"Custom reminder days must be between -{CUSTOM_DAY_LIMIT} and {CUSTOM_DAY_LIMIT}"
                )
        if len(set(v)) != len(v):
            raise ValueError("Custom reminder days must not contain duplicates")
        return v

    @field_validator("call_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Invalid timezone: {v}")
        return v

    @field_validator("call_start_time", "call_end_time")
    @classmethod
    def validate_time_format(cls, v: str) -> str:
        if not TIME_PATTERN.match(v):
            raise ValueError("Time must be in HH:MM:SS format")
        return v

    @field_validator("call_end_time")
    @classmethod
    def validate_time_range(cls, v: str, info: ValidationInfo) -> str:
        start = info.data.get("call_start_time")
        if start is not None and start >= v:
            raise ValueError("Call end time must be after call start time")
        return v

    @field_validator("call_days_of_week")
    @classmethod
    def validate_days_of_week(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("At least one call day must be selected")
        for day in v:
            if not 0 <= day <= 6:
                raise ValueError("Days of week must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(v))

    @field_validator("language")
    @classmethod
    def validate_language(cls, v: str) -> str:
        if v not in SUPPORTED_LANGUAGES:
            raise ValueError(f"Language must be one of: {', '.join(SUPPORTED_LANGUAGES)}")
        return v

    @field_validator("voice_gender")
    @classmethod
    def validate_voice_gender(cls, v: str) -> str:
        if v not in VOICE_GENDERS:
            raise ValueError(f"Voice gender must be one of: {', '.join(VOICE_GENDERS)}")
        return v

    @field_validator("max_retry_attempts")
    @classmethod
    def validate_max_retry_attempts(cls, v: int) -> int:
        if not 0 <= v <= 10:
            raise ValueError("Max retry attempts must be between 0 and 10")
        return v

    @field_validator("retry_delay_hours")
    @classmethod
    def validate_retry_delay_hours(cls, v: int) -> int:
        if not 1 <= v <= 48:
            raise ValueError("Retry delay must be between 1 and 48 hours")
        return v

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


DEFAULT_REMINDER_SETTINGS = ReminderSettings()


def field_errors_from(error: ValidationError) -> Dict[str, str]:
    """Flatten pydantic errors into ``{fieldName: message}``."""
    errors: Dict[str, str] = {}
    for item in error.errors():
        loc = item.get("loc") or ("__root__",)
        field_name = str(loc[0])
        message = item.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.setdefault(field_name, message)
    return errors


def validate_settings(data: Dict[str, Any]) -> ReminderSettings:
    """
    Validate a complete settings candidate.

    Raises:
        SettingsValidationError: With per-field messages keyed by API name
    """
    try:
        return ReminderSettings.model_validate(data)
    except ValidationError as e:
        raise SettingsValidationError(field_errors_from(e))


def merge_settings_update(current: ReminderSettings, update: Dict[str, Any]) -> ReminderSettings:
    """
    Apply a partial update to a complete settings object.

    The update is merged into a full candidate and the candidate is validated
    as a whole, so one bad field rejects the entire update.
    """
    if not isinstance(update, dict):
        raise SettingsValidationError({"__root__": "Settings update must be an object"})

    candidate = current.model_dump(by_alias=True)
    field_names = {
        name: info.alias or name for name, info in ReminderSettings.model_fields.items()
    }
    aliases = set(field_names.values())

    unknown = {}
    for key, value in update.items():
        if key in aliases:
            candidate[key] = value
        elif key in field_names:
            candidate[field_names[key]] = value
        else:
            unknown[key] = "Unknown setting"

    if unknown:
        raise SettingsValidationError(unknown)

    return validate_settings(candidate)
