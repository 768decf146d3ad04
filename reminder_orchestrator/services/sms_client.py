"""Twilio SMS client."""

from typing import Any, Dict, Optional

import httpx
import structlog

from reminder_orchestrator.core.circuit_breaker import CircuitBreakerConfig, ServiceClient
from reminder_orchestrator.core.config import Settings
from reminder_orchestrator.core.exceptions import ExternalServiceError, PermanentDeliveryError
from reminder_orchestrator.utils.phone import is_valid_e164, mask_phone_number

logger = structlog.get_logger(__name__)

SERVICE_NAME = "twilio"

# Destination can never receive the message; retrying is pointless
PERMANENT_ERROR_CODES = frozenset({
    21211,  # invalid 'To' number
    21612,  # 'To' number not reachable via SMS
    21614,  # 'To' number is not a mobile number
    30003,  # unreachable handset
    30004,  # message blocked
    30005,  # unknown handset
    30006,  # landline or unreachable carrier
})


def is_permanent_error_code(code: Any) -> bool:
    try:
        return int(code) in PERMANENT_ERROR_CODES
    except (TypeError, ValueError):
        return False


class SmsClient:
    """Sends SMS through the Twilio Messages API."""

    def __init__(self, config: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.account_sid = config.twilio_account_sid
        self.from_number = config.twilio_from_number
        self.status_callback_url = config.sms_status_callback_url
        self.client = ServiceClient(
            service_name=SERVICE_NAME,
            base_url=config.twilio_api_url,
            timeout_seconds=config.sms_timeout,
            auth=httpx.BasicAuth(config.twilio_account_sid, config.twilio_auth_token),
            circuit_breaker_config=CircuitBreakerConfig(
                failure_threshold=config.circuit_breaker_failure_threshold,
                timeout=config.circuit_breaker_timeout_seconds,
            ),
            transport=transport,
        )

    async def send_sms(self, to_number: str, body: str) -> str:
        """
        Submit a message.

        Returns:
            Twilio message SID

        Raises:
            PermanentDeliveryError: Invalid destination (never retried)
            ExternalServiceError: Transient provider failures
        """
        if not is_valid_e164(to_number):
            raise PermanentDeliveryError(f"Invalid phone number format: {mask_phone_number(to_number)}")

        form = {"To": to_number, "From": self.from_number, "Body": body}
        if self.status_callback_url:
            form["StatusCallback"] = self.status_callback_url

        try:
            response = await self.client.post(
                f"/2010-04-01/Accounts/{self.account_sid}/Messages.json",
                data=form,
            )
        except ExternalServiceError as e:
            response_body = e.context.get("response_body") or {}
            code = response_body.get("code") if isinstance(response_body, dict) else None
            if is_permanent_error_code(code):
                logger.warning(
                    "SMS rejected permanently",
                    to=to_number,
                    error_code=code,
                )
                raise PermanentDeliveryError(
                    f"{response_body.get('message', 'Destination rejected')} (code: {code})"
                )
            raise

        sid = response.get("sid")
        if not sid:
            raise ExternalServiceError(SERVICE_NAME, "Twilio response did not include a message sid")

        logger.info("SMS submitted", to=to_number, message_sid=sid, status=response.get("status"))
        return sid

    async def close(self) -> None:
        await self.client.close()

    def get_circuit_status(self) -> Dict[str, Any]:
        return self.client.get_circuit_status()
