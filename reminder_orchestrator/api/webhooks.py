"""
Delivery-status webhooks.

Both endpoints authenticate the caller from the raw request before anything
is parsed, and no reminder is touched unless authentication succeeded.
"""
import json
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Header, Request
from pydantic import ValidationError
import structlog

from reminder_orchestrator.core.dependencies import ServiceContainer, get_container
from reminder_orchestrator.core.exceptions import InvalidPayloadError, WebhookAuthenticationError
from reminder_orchestrator.schemas.webhooks import CallEvent, CallStatusWebhook, SmsStatusWebhook
from reminder_orchestrator.utils.webhook_security import verify_twilio_signature, verify_webhook_signature

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

CALL_EVENTS = {event.value for event in CallEvent}


def _validation_messages(error: ValidationError) -> Dict[str, str]:
    return {
        ".".join(str(part) for part in item.get("loc", ())) or "__root__": item.get("msg", "Invalid value")
        for item in error.errors()
    }


@router.post("/call-status")
async def call_status_webhook(
    request: Request,
    x_webhook_signature: Optional[str] = Header(default=None),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    """
    Receive a call progress event from the voice dispatcher.

    Expects ``x-webhook-signature``: hex HMAC-SHA256 of the raw body keyed
    with the shared webhook secret.

    Raises:
        WebhookAuthenticationError: Missing or invalid signature (401)
        InvalidPayloadError: Bad JSON, unknown event type or invalid fields (400)
        ReminderNotFoundError: No matching reminder (404)
    """
    body = await request.body()

    verification = verify_webhook_signature(container.config.webhook_secret, body, x_webhook_signature)
    if not verification.verified:
        logger.warning(
            "Rejected call-status webhook",
            reason=verification.reason,
            client=request.client.host if request.client else None,
        )
        raise WebhookAuthenticationError(reason=verification.reason)

    try:
        data = json.loads(body)
    except ValueError:
        raise InvalidPayloadError("Request body is not valid JSON")
    if not isinstance(data, dict):
        raise InvalidPayloadError("Request body must be a JSON object")

    event_type = data.get("event_type", data.get("event"))
    if event_type not in CALL_EVENTS:
        logger.warning("Unknown call event type", event_type=event_type)
        raise InvalidPayloadError(f"Unknown event type: {event_type}", allowed=sorted(CALL_EVENTS))

    try:
        payload = CallStatusWebhook.model_validate({**data, "event_type": event_type})
    except ValidationError as e:
        raise InvalidPayloadError("Invalid call-status payload", errors=_validation_messages(e))

    result = container.outcome_handler.handle_call_event(payload)
    return {"success": True, **result}


@router.post("/sms-status")
async def sms_status_webhook(
    request: Request,
    x_twilio_signature: Optional[str] = Header(default=None),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    """
    Receive a Twilio message status callback (form-encoded).

    The ``X-Twilio-Signature`` header is always required; without a Twilio
    auth token configured every callback is rejected.
    """
    body = await request.body()
    params = dict(parse_qsl(body.decode("utf-8"), keep_blank_values=True))

    url = container.config.sms_status_callback_url or str(request.url)
    verification = verify_twilio_signature(container.config.twilio_auth_token, url, params, x_twilio_signature)
    if not verification.verified:
        logger.warning("Rejected Twilio status callback", reason=verification.reason)
        raise WebhookAuthenticationError(reason=verification.reason)

    try:
        payload = SmsStatusWebhook.model_validate(params)
    except ValidationError as e:
        raise InvalidPayloadError("Invalid SMS status payload", errors=_validation_messages(e))

    result = container.outcome_handler.handle_sms_status(payload)
    return {"success": True, **result}
