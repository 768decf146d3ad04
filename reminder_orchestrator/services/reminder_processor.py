"""
Reminder processor.

Runs on every processing tick: picks up due reminders, checks the call
window and anti-spam rules, re-verifies the invoice upstream, claims the
reminder atomically and hands it to the voice dispatcher or Twilio.
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional

import structlog

from reminder_orchestrator.core.config import Settings
from reminder_orchestrator.core.exceptions import (
    ExternalServiceError,
    ExternalServiceRateLimitError,
    PermanentDeliveryError,
)
from reminder_orchestrator.core.logging import correlation_context, log_business_event, performance_timing
from reminder_orchestrator.database.reminder_repository import ReminderRepository
from reminder_orchestrator.models import CustomerCache, InvoiceCache, PaymentReminder
from reminder_orchestrator.schemas.jobs import ProcessResult
from reminder_orchestrator.schemas.reminder import Channel, ReminderStatus
from reminder_orchestrator.schemas.settings import ReminderSettings
from reminder_orchestrator.services.accounting_client import AccountingClient
from reminder_orchestrator.services.outcome_handler import OutcomeHandler, max_attempts_reason
from reminder_orchestrator.services.settings_manager import SettingsManager
from reminder_orchestrator.services.sms_client import SmsClient
from reminder_orchestrator.services.sync_engine import is_settled, settled_reason
from reminder_orchestrator.services.voice_client import CallContext, VoiceClient
from reminder_orchestrator.utils.call_window import check_call_window
from reminder_orchestrator.utils.dates import ensure_utc, utcnow
from reminder_orchestrator.utils.phone import mask_phone_number, to_e164
from reminder_orchestrator.utils.sms_formatter import SMSMessageData, format_sms_message

logger = structlog.get_logger(__name__)

DEFAULT_COMPANY_NAME = "Accounts Receivable"


class DispatchOutcome(str, Enum):
    """What happened to one reminder during a tick."""
    SUCCESSFUL = "successful"
    FAILED = "failed"
    SKIPPED = "skipped"
    DEFERRED = "deferred"
    RETRIED = "retried"
    ALREADY_CLAIMED = "already_claimed"


class ReminderProcessor:
    """Dispatches due reminders."""

    def __init__(
        self,
        repository: ReminderRepository,
        settings_manager: SettingsManager,
        outcome_handler: OutcomeHandler,
        accounting_client: AccountingClient,
        voice_client: VoiceClient,
        sms_client: SmsClient,
        config: Settings,
    ):
        self.repository = repository
        self.settings_manager = settings_manager
        self.outcome_handler = outcome_handler
        self.accounting = accounting_client
        self.voice = voice_client
        self.sms = sms_client
        self.config = config

    async def process_reminders(self, now: Optional[datetime] = None) -> ProcessResult:
        """
        Process one batch of due reminders.

        Failures are isolated per reminder and collected in the result.
        Reminder rows are re-read from the store on every tick.
        """
        now = now or utcnow()
        result = ProcessResult()

        with performance_timing("process_reminders"):
            result.timed_out = self.outcome_handler.recover_stuck_reminders(now)

            reminders = self.repository.list_due_reminders(now, limit=self.config.processor_batch_size)
            settings_by_account: Dict[str, ReminderSettings] = {}

            for reminder in reminders:
                account_id = reminder.account_id
                reminder_id = reminder.id
                if account_id not in settings_by_account:
                    settings_by_account[account_id] = self.settings_manager.get_settings(account_id)

                with correlation_context(account_id=account_id, reminder_id=reminder_id):
                    try:
                        outcome = await self.process_reminder(reminder, settings_by_account[account_id], now)
                    except Exception as e:
                        logger.error("Reminder processing failed", error=str(e), exc_info=True)
                        result.processed += 1
                        result.errors.append(f"Reminder {reminder_id}: {e}")
                        continue

                if outcome == DispatchOutcome.ALREADY_CLAIMED:
                    continue
                result.processed += 1
                if outcome == DispatchOutcome.SUCCESSFUL:
                    result.successful += 1
                elif outcome == DispatchOutcome.FAILED:
                    result.failed += 1
                elif outcome == DispatchOutcome.SKIPPED:
                    result.skipped += 1
                elif outcome == DispatchOutcome.DEFERRED:
                    result.deferred += 1
                elif outcome == DispatchOutcome.RETRIED:
                    result.retried += 1

        log_business_event(
            "reminder_tick_completed",
            processed=result.processed,
            successful=result.successful,
            failed=result.failed,
            skipped=result.skipped,
            deferred=result.deferred,
            retried=result.retried,
            timed_out=result.timed_out,
        )
        return result

    async def process_reminder(
        self,
        reminder: PaymentReminder,
        settings: ReminderSettings,
        now: datetime,
    ) -> DispatchOutcome:
        """Run one due reminder through the dispatch pipeline."""
        window = check_call_window(now, settings)
        if not window.can_call:
            logger.info(
                "Outside call window, deferring",
                reason=window.reason,
                next_available_time=window.next_available_time.isoformat() if window.next_available_time else None,
            )
            return DispatchOutcome.DEFERRED

        attempts = reminder.attempt_count or 0
        if attempts > 0 and attempts >= settings.max_retry_attempts:
            failed = self.repository.transition_reminder(
                reminder.id,
                (ReminderStatus.PENDING,),
                ReminderStatus.FAILED,
                skip_reason=max_attempts_reason(settings.max_retry_attempts),
            )
            return DispatchOutcome.FAILED if failed else DispatchOutcome.ALREADY_CLAIMED

        if attempts > 0 and reminder.last_attempt_at is not None:
            elapsed = now - ensure_utc(reminder.last_attempt_at)
            if elapsed < timedelta(hours=settings.retry_delay_hours):
                logger.info("Retry delay not elapsed, deferring", attempt_count=attempts)
                return DispatchOutcome.DEFERRED

        invoice = self.repository.get_invoice(reminder.invoice_id)
        if invoice is None:
            skipped = self.repository.transition_reminder(
                reminder.id, (ReminderStatus.PENDING,), ReminderStatus.SKIPPED, skip_reason="Invoice not found"
            )
            return DispatchOutcome.SKIPPED if skipped else DispatchOutcome.ALREADY_CLAIMED

        verified = await self._verify_invoice(reminder, invoice, settings)
        if verified is not None:
            return verified

        if not self.repository.claim_reminder(reminder.id, now=now):
            return DispatchOutcome.ALREADY_CLAIMED

        customer = self.repository.get_customer(invoice.customer_id)
        phone = to_e164(customer.primary_phone if customer else None)
        if phone is None:
            logger.warning(
                "Reminder has no dialable phone number",
                phone_number=mask_phone_number(customer.primary_phone if customer else None),
            )
            self.repository.transition_reminder(
                reminder.id,
                (ReminderStatus.IN_PROGRESS,),
                ReminderStatus.FAILED,
                skip_reason="INVALID_PHONE_NUMBER: Customer phone number is missing or not in E.164 format",
            )
            return DispatchOutcome.FAILED

        return await self._dispatch(reminder, invoice, customer, phone, settings, now)

    async def _verify_invoice(
        self,
        reminder: PaymentReminder,
        invoice: InvoiceCache,
        settings: ReminderSettings,
    ) -> Optional[DispatchOutcome]:
        """
        Re-check the invoice upstream right before contacting the customer.

        Returns an outcome when the reminder must not go out now, or None to proceed.
        """
        if not settings.organization_id:
            logger.warning("No accounting organization configured, using cached invoice state")
            return None

        try:
            record = await self.accounting.get_invoice_by_id(settings.organization_id, invoice.external_id)
        except ExternalServiceError as e:
            logger.warning("Pre-call verification failed, deferring", error=str(e))
            return DispatchOutcome.DEFERRED

        if is_settled(record):
            reason = settled_reason(record)
            self.repository.update_invoice(
                invoice, status=record.status, amount_due=record.balance, reminders_created=True
            )
            skipped = self.repository.skip_pending_reminders(invoice.id, reason)
            logger.info("Invoice settled before reminder, skipping", reason=reason, skipped=skipped)
            return DispatchOutcome.SKIPPED if skipped else DispatchOutcome.ALREADY_CLAIMED

        if record.status != invoice.status or record.balance != invoice.amount_due:
            self.repository.update_invoice(invoice, status=record.status, amount_due=record.balance)
        return None

    def _company_details(self, account_id: str):
        profile = self.repository.get_business_profile(account_id)
        if profile is None:
            return DEFAULT_COMPANY_NAME, None, []
        return profile.company_name, profile.support_phone, list(profile.payment_methods or [])

    async def _dispatch(
        self,
        reminder: PaymentReminder,
        invoice: InvoiceCache,
        customer: CustomerCache,
        phone: str,
        settings: ReminderSettings,
        now: datetime,
    ) -> DispatchOutcome:
        company_name, support_phone, payment_methods = self._company_details(reminder.account_id)
        days_until_due = (invoice.due_date - now.date()).days
        channel = Channel(reminder.channel)

        try:
            if channel == Channel.VOICE:
                call_id = await self.voice.place_voice_call(
                    phone,
                    CallContext(
                        reminder_id=reminder.id,
                        customer_name=customer.customer_name,
                        invoice_number=invoice.invoice_number,
                        original_amount=invoice.total,
                        amount_due=invoice.amount_due,
                        currency_code=invoice.currency_code,
                        due_date=invoice.due_date,
                        days_until_due=days_until_due,
                        payment_methods=payment_methods,
                        company_name=company_name,
                        support_phone=support_phone,
                        language=settings.language,
                        voice_gender=settings.voice_gender,
                    ),
                )
                self.repository.record_external_id(reminder.id, call_id)
            else:
                body = format_sms_message(
                    SMSMessageData(
                        customer_name=customer.customer_name,
                        invoice_number=invoice.invoice_number,
                        amount=invoice.amount_due,
                        currency_code=invoice.currency_code,
                        due_date=invoice.due_date,
                        company_name=company_name,
                        language=settings.language,
                        is_overdue=days_until_due < 0,
                    )
                )
                message_sid = await self.sms.send_sms(phone, body)
                self.repository.record_external_id(reminder.id, message_sid)
                completed = self.repository.transition_reminder(
                    reminder.id, (ReminderStatus.IN_PROGRESS,), ReminderStatus.COMPLETED
                )
                if not completed:
                    logger.info("SMS reminder already updated by a delivery receipt", message_sid=message_sid)

        except PermanentDeliveryError as e:
            logger.warning("Permanent delivery failure", channel=channel.value, error=str(e))
            failed = self.repository.transition_reminder(
                reminder.id, (ReminderStatus.IN_PROGRESS,), ReminderStatus.FAILED, skip_reason=str(e)
            )
            return DispatchOutcome.FAILED if failed else DispatchOutcome.ALREADY_CLAIMED

        except ExternalServiceError as e:
            logger.warning("Transient delivery failure", channel=channel.value, error=str(e))
            status = self.outcome_handler.schedule_retry(
                reminder.id,
                (ReminderStatus.IN_PROGRESS,),
                str(e),
                rate_limited=isinstance(e, ExternalServiceRateLimitError),
                now=now,
            )
            if status is None:
                return DispatchOutcome.ALREADY_CLAIMED
            return DispatchOutcome.FAILED if status == ReminderStatus.FAILED else DispatchOutcome.RETRIED

        log_business_event(
            "reminder_dispatched",
            reminder_id=reminder.id,
            channel=channel.value,
            reminder_type=reminder.reminder_type,
        )
        return DispatchOutcome.SUCCESSFUL
