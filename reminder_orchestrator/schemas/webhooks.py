"""
Inbound delivery-status callback payloads.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from reminder_orchestrator.schemas.reminder import CustomerResponse


class CallEvent(str, Enum):
    """Call progress events reported by the voice agent."""
    CALL_ANSWERED = "call_answered"
    CALL_COMPLETED = "call_completed"
    CALL_FAILED = "call_failed"


class CallOutcomePayload(BaseModel):
    connected: bool = False
    duration: int = Field(default=0, ge=0)
    customer_response: Optional[CustomerResponse] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class CallStatusWebhook(BaseModel):
    """Body of ``POST /api/webhooks/call-status``."""

    model_config = ConfigDict(extra="ignore")

    reminder_id: Optional[str] = None
    call_id: Optional[str] = None
    event_type: CallEvent
    outcome: Optional[CallOutcomePayload] = None
    error: Optional[str] = Field(default=None, max_length=1000)
    timestamp: Optional[datetime] = None

    @model_validator(mode="after")
    def require_reference(self) -> "CallStatusWebhook":
        if not self.reminder_id and not self.call_id:
            raise ValueError("Either reminder_id or call_id is required")
        return self


class SmsStatusWebhook(BaseModel):
    """Twilio message status callback (form-encoded)."""

    model_config = ConfigDict(extra="ignore")

    MessageSid: str
    MessageStatus: str
    ErrorCode: Optional[str] = None
    ErrorMessage: Optional[str] = None
    To: Optional[str] = None
