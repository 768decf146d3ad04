"""
Voice call dispatcher client.

Calls are asynchronous: the dispatcher accepts the call and returns a call
id, and the outcome arrives later through the call-status webhook.
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import BaseModel, Field

from reminder_orchestrator.core.circuit_breaker import CircuitBreakerConfig, ServiceClient
from reminder_orchestrator.core.config import Settings
from reminder_orchestrator.core.exceptions import ExternalServiceError, PermanentDeliveryError
from reminder_orchestrator.utils.phone import is_valid_e164, mask_phone_number

logger = structlog.get_logger(__name__)

SERVICE_NAME = "voice"


class CallContext(BaseModel):
    """Everything the voice agent needs to talk about one invoice."""

    reminder_id: str
    customer_name: str
    invoice_number: str
    original_amount: Decimal
    amount_due: Decimal
    currency_code: str = "USD"
    due_date: date
    days_until_due: int
    payment_methods: List[str] = Field(default_factory=list)
    company_name: str
    support_phone: Optional[str] = None
    language: str = "en"
    voice_gender: str = "female"

    @property
    def is_overdue(self) -> bool:
        return self.days_until_due < 0


def build_agent_prompt(context: CallContext) -> str:
    """Instructions handed to the voice agent for this call."""
    if context.is_overdue:
        timing = f"{abs(context.days_until_due)} days overdue"
    elif context.days_until_due == 0:
        timing = "due today"
    else:
        timing = f"due in {context.days_until_due} days"

    lines = [
        f"You are a professional payment reminder agent calling on behalf of {context.company_name}.",
        "",
        "Customer Information:",
        f"- Name: {context.customer_name}",
        f"- Invoice Number: {context.invoice_number}",
        f"- Amount Due: {context.amount_due:.2f} {context.currency_code}",
        f"- Original Amount: {context.original_amount:.2f} {context.currency_code}",
        f"- Due Date: {context.due_date.isoformat()} ({timing})",
        "",
        "Politely remind the customer about the outstanding invoice and find out when they intend to pay.",
    ]
    if context.payment_methods:
        lines.append(f"Available payment methods: {', '.join(context.payment_methods)}")
    if context.support_phone:
        lines.append(f"For questions, give the support number: {context.support_phone}")
    lines.extend([
        "",
        "Classify the customer's response as one of: will_pay_today, already_paid, dispute, no_answer.",
        "Keep the call brief and courteous.",
    ])
    return "\n".join(lines)


class VoiceClient:
    """HTTP client for the outbound call dispatcher."""

    def __init__(self, config: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.client = ServiceClient(
            service_name=SERVICE_NAME,
            base_url=config.voice_service_url,
            timeout_seconds=config.voice_timeout,
            headers={"Authorization": f"Bearer {config.voice_service_api_key}"},
            circuit_breaker_config=CircuitBreakerConfig(
                failure_threshold=config.circuit_breaker_failure_threshold,
                timeout=config.circuit_breaker_timeout_seconds,
            ),
            transport=transport,
        )

    async def place_voice_call(self, phone_number: str, context: CallContext) -> str:
        """
        Ask the dispatcher to start a call.

        Args:
            phone_number: Destination in E.164 format
            context: Invoice and business details for the agent

        Returns:
            Dispatcher call id

        Raises:
            PermanentDeliveryError: If the number is not valid E.164
            ExternalServiceError: On dispatcher failures (timeouts, 429, 5xx...)
        """
        if not is_valid_e164(phone_number):
            raise PermanentDeliveryError(f"Invalid phone number format: {mask_phone_number(phone_number)}")

        payload: Dict[str, Any] = {
            "phone_number": phone_number,
            "agent_prompt": build_agent_prompt(context),
            "context": context.model_dump(mode="json"),
            "metadata": {"reminder_id": context.reminder_id},
        }
        response = await self.client.post("/calls", json=payload)

        call_id = response.get("call_id")
        if not call_id:
            raise ExternalServiceError(SERVICE_NAME, "Dispatcher response did not include a call_id")

        logger.info(
            "Voice call placed",
            reminder_id=context.reminder_id,
            call_id=call_id,
            phone_number=phone_number,
        )
        return call_id

    async def close(self) -> None:
        await self.client.close()

    def get_circuit_status(self) -> Dict[str, Any]:
        return self.client.get_circuit_status()
