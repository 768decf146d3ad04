"""
Reminder lifecycle enums and structured reminder fields.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class Channel(str, Enum):
    """Delivery medium for a reminder."""
    SMS = "sms"
    VOICE = "voice"


class ReminderStatus(str, Enum):
    """Reminder state machine states."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATUSES = frozenset(
    {ReminderStatus.COMPLETED, ReminderStatus.FAILED, ReminderStatus.SKIPPED}
)
IN_FLIGHT_STATUSES = (ReminderStatus.IN_PROGRESS, ReminderStatus.PROCESSING)


class CustomerResponse(str, Enum):
    """What the customer said on the call."""
    WILL_PAY_TODAY = "will_pay_today"
    ALREADY_PAID = "already_paid"
    DISPUTE = "dispute"
    NO_ANSWER = "no_answer"


class CallOutcome(BaseModel):
    """Structured result of a voice reminder."""

    connected: bool = False
    duration: int = Field(default=0, ge=0, description="Call duration in seconds")
    customer_response: Optional[CustomerResponse] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    reported_at: Optional[datetime] = None

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
