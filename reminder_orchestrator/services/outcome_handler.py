"""
Reminder outcome handling.

Applies delivery outcomes reported by the voice dispatcher and Twilio to
reminders, schedules retries and recovers reminders whose outcome never
arrived. Every status change is a conditional update on the status the
handler expects, so a late callback can never clobber a newer state.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional

import structlog

from reminder_orchestrator.core.config import Settings
from reminder_orchestrator.core.exceptions import InvalidPayloadError, ReminderNotFoundError
from reminder_orchestrator.core.logging import correlation_context, log_business_event
from reminder_orchestrator.database.reminder_repository import ReminderRepository
from reminder_orchestrator.models import PaymentReminder
from reminder_orchestrator.schemas.reminder import (
    IN_FLIGHT_STATUSES,
    CallOutcome,
    CustomerResponse,
    ReminderStatus,
)
from reminder_orchestrator.schemas.webhooks import CallEvent, CallStatusWebhook, SmsStatusWebhook
from reminder_orchestrator.services.settings_manager import SettingsManager
from reminder_orchestrator.utils.dates import ensure_utc, utcnow

logger = structlog.get_logger(__name__)

STUCK_REASON = "Call outcome not received"
ALREADY_PAID_REASON = "Customer reported invoice already paid"
RETRY_SCHEDULE_READS = 3

SMS_DELIVERED_STATUSES = frozenset({"delivered", "sent"})
SMS_FAILED_STATUSES = frozenset({"failed", "undelivered"})
SMS_PENDING_STATUSES = frozenset({"queued", "sending", "accepted"})

# A receipt may confirm or overturn an SMS already marked completed at submission
SMS_RECEIPT_FROM = (ReminderStatus.IN_PROGRESS, ReminderStatus.PROCESSING, ReminderStatus.COMPLETED)


def max_attempts_reason(max_attempts: int) -> str:
    return f"Maximum retry attempts ({max_attempts}) exceeded"


class OutcomeHandler:
    """Drives reminders from in-flight states to their final state."""

    def __init__(self, repository: ReminderRepository, settings_manager: SettingsManager, config: Settings):
        self.repository = repository
        self.settings_manager = settings_manager
        self.config = config

    def schedule_retry(
        self,
        reminder_id: str,
        expected: Iterable[ReminderStatus],
        reason: str,
        rate_limited: bool = False,
        now: Optional[datetime] = None,
    ) -> Optional[ReminderStatus]:
        """
        Send a reminder back to ``pending`` or fail it when attempts ran out.

        Args:
            reminder_id: Reminder to reschedule
            expected: Statuses the reminder must currently be in
            reason: Why the attempt did not succeed; stored in skip_reason
            rate_limited: Apply the rate-limit backoff multiplier to the delay
            now: Current time

        Returns:
            The new status, or None if the reminder had already moved on
        """
        now = now or utcnow()
        expected = tuple(expected)
        expected_values = {status.value for status in expected}

        # Conditioned on the attempt count read here; re-read if a claim moved it
        for _ in range(RETRY_SCHEDULE_READS):
            reminder = self.repository.get_reminder(reminder_id)
            if reminder is None:
                raise ReminderNotFoundError(reminder_id)
            if reminder.status not in expected_values:
                return None

            settings = self.settings_manager.get_settings(reminder.account_id)
            attempts = reminder.attempt_count or 0

            if attempts >= settings.max_retry_attempts:
                failed = self.repository.transition_reminder(
                    reminder_id,
                    expected,
                    ReminderStatus.FAILED,
                    expected_attempts=attempts,
                    skip_reason=f"{max_attempts_reason(settings.max_retry_attempts)}: {reason}",
                )
                if failed:
                    log_business_event(
                        "reminder_failed",
                        reminder_id=reminder_id,
                        attempt_count=attempts,
                        reason=reason,
                    )
                    return ReminderStatus.FAILED
                continue

            delay_hours = settings.retry_delay_hours
            if rate_limited:
                delay_hours *= self.config.rate_limit_backoff_multiplier ** attempts
            next_attempt = now + timedelta(hours=delay_hours)

            rescheduled = self.repository.transition_reminder(
                reminder_id,
                expected,
                ReminderStatus.PENDING,
                expected_attempts=attempts,
                scheduled_date=next_attempt,
                skip_reason=reason,
            )
            if rescheduled:
                logger.info(
                    "Reminder retry scheduled",
                    reminder_id=reminder_id,
                    attempt_count=attempts,
                    next_attempt=next_attempt.isoformat(),
                    rate_limited=rate_limited,
                    reason=reason,
                )
                return ReminderStatus.PENDING

        logger.warning("Retry not scheduled, reminder kept changing", reminder_id=reminder_id)
        return None

    def _find_call_reminder(self, payload: CallStatusWebhook) -> PaymentReminder:
        reminder = None
        if payload.reminder_id:
            reminder = self.repository.get_reminder(payload.reminder_id)
        if reminder is None and payload.call_id:
            reminder = self.repository.get_reminder_by_external_id(payload.call_id)
        if reminder is None:
            raise ReminderNotFoundError(payload.reminder_id or payload.call_id)
        return reminder

    def handle_call_event(self, payload: CallStatusWebhook, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Apply a call-status callback.

        Raises:
            ReminderNotFoundError: Neither the reminder id nor the call id matched
        """
        now = now or utcnow()
        reminder = self._find_call_reminder(payload)

        with correlation_context(account_id=reminder.account_id, reminder_id=reminder.id):
            logger.info("Call event received", event_type=payload.event_type.value, call_id=payload.call_id)

            if payload.event_type == CallEvent.CALL_ANSWERED:
                applied = self.repository.transition_reminder(
                    reminder.id, (ReminderStatus.IN_PROGRESS,), ReminderStatus.PROCESSING
                )
                new_status = ReminderStatus.PROCESSING if applied else None

            elif payload.event_type == CallEvent.CALL_COMPLETED:
                new_status = self._complete_call(reminder, payload, now)

            else:
                new_status = self.schedule_retry(
                    reminder.id,
                    IN_FLIGHT_STATUSES,
                    payload.error or "Call failed",
                    now=now,
                )

        return {
            "reminder_id": reminder.id,
            "event_type": payload.event_type.value,
            "applied": new_status is not None,
            "status": new_status.value if new_status else None,
        }

    def _complete_call(
        self,
        reminder: PaymentReminder,
        payload: CallStatusWebhook,
        now: datetime,
    ) -> Optional[ReminderStatus]:
        reported = payload.outcome
        outcome = CallOutcome(
            connected=reported.connected if reported else False,
            duration=reported.duration if reported else 0,
            customer_response=reported.customer_response if reported else CustomerResponse.NO_ANSWER,
            notes=reported.notes if reported else None,
            reported_at=ensure_utc(payload.timestamp) if payload.timestamp else now,
        )

        if outcome.customer_response == CustomerResponse.NO_ANSWER:
            return self.schedule_retry(reminder.id, IN_FLIGHT_STATUSES, "Customer did not answer", now=now)

        completed = self.repository.transition_reminder(
            reminder.id,
            IN_FLIGHT_STATUSES,
            ReminderStatus.COMPLETED,
            call_outcome=outcome.to_storage(),
            last_attempt_at=now,
        )
        if not completed:
            return None

        log_business_event(
            "reminder_call_completed",
            reminder_id=reminder.id,
            customer_response=outcome.customer_response.value if outcome.customer_response else None,
            duration=outcome.duration,
        )

        if outcome.customer_response == CustomerResponse.ALREADY_PAID:
            cancelled = self.repository.skip_pending_reminders(reminder.invoice_id, ALREADY_PAID_REASON)
            logger.info("Cancelled remaining reminders after already_paid", cancelled=cancelled)

        return ReminderStatus.COMPLETED

    def handle_sms_status(self, payload: SmsStatusWebhook, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Apply a Twilio message status callback.

        Raises:
            InvalidPayloadError: Unrecognized message status
            ReminderNotFoundError: No reminder carries this message SID
        """
        now = now or utcnow()
        message_status = payload.MessageStatus.strip().lower()
        if message_status not in SMS_DELIVERED_STATUSES | SMS_FAILED_STATUSES | SMS_PENDING_STATUSES:
            raise InvalidPayloadError(f"Unknown message status: {payload.MessageStatus}")

        reminder = self.repository.get_reminder_by_external_id(payload.MessageSid)
        if reminder is None:
            raise ReminderNotFoundError(payload.MessageSid)

        with correlation_context(account_id=reminder.account_id, reminder_id=reminder.id):
            logger.info(
                "SMS status received",
                message_sid=payload.MessageSid,
                message_status=message_status,
                to=payload.To,
                error_code=payload.ErrorCode,
            )

            if message_status in SMS_DELIVERED_STATUSES:
                target = ReminderStatus.COMPLETED
                applied = self.repository.transition_reminder(
                    reminder.id, SMS_RECEIPT_FROM, target, last_attempt_at=now
                )
            elif message_status in SMS_FAILED_STATUSES:
                target = ReminderStatus.FAILED
                detail = payload.ErrorMessage or f"Message {message_status}"
                if payload.ErrorCode:
                    detail = f"{detail} (code: {payload.ErrorCode})"
                applied = self.repository.transition_reminder(
                    reminder.id, SMS_RECEIPT_FROM, target, last_attempt_at=now, skip_reason=detail
                )
            else:
                target = ReminderStatus.IN_PROGRESS
                applied = self.repository.transition_reminder(reminder.id, IN_FLIGHT_STATUSES, target)

        return {
            "reminder_id": reminder.id,
            "message_status": message_status,
            "applied": applied,
            "status": target.value if applied else None,
        }

    def recover_stuck_reminders(self, now: Optional[datetime] = None) -> int:
        """
        Retry or fail in-flight reminders whose outcome never arrived.

        Returns:
            Number of reminders moved out of an in-flight state
        """
        now = now or utcnow()
        cutoff = now - timedelta(minutes=self.config.stuck_reminder_timeout_minutes)
        recovered = 0

        for reminder in self.repository.list_stuck_reminders(cutoff):
            with correlation_context(account_id=reminder.account_id, reminder_id=reminder.id):
                logger.warning(
                    "Reminder outcome timed out",
                    status=reminder.status,
                    last_attempt_at=reminder.last_attempt_at.isoformat() if reminder.last_attempt_at else None,
                )
                if self.schedule_retry(reminder.id, IN_FLIGHT_STATUSES, STUCK_REASON, now=now) is not None:
                    recovered += 1

        if recovered:
            logger.info("Recovered stuck reminders", count=recovered)
        return recovered
