"""
Tests for outcome handling and the reminder state machine.
"""
from datetime import timedelta

import pytest

from reminder_orchestrator.core.exceptions import InvalidPayloadError, ReminderNotFoundError
from reminder_orchestrator.schemas.reminder import ReminderStatus
from reminder_orchestrator.schemas.settings import ReminderSettings
from reminder_orchestrator.schemas.webhooks import CallStatusWebhook, SmsStatusWebhook
from reminder_orchestrator.services.outcome_handler import ALREADY_PAID_REASON


@pytest.fixture
def handler(container):
    return container.outcome_handler


@pytest.fixture
def invoice(account_settings, customer_factory, invoice_factory):
    return invoice_factory(customer=customer_factory())


@pytest.fixture
def call_reminder(invoice, reminder_factory, now):
    """Voice reminder dispatched one minute ago."""
    return reminder_factory(
        invoice,
        reminder_type="on_due_date",
        channel="voice",
        status="in_progress",
        attempt_count=1,
        last_attempt_at=now - timedelta(minutes=1),
        external_id="call-123",
    )


def call_event(reminder_id=None, event_type="call_completed", **fields) -> CallStatusWebhook:
    return CallStatusWebhook(reminder_id=reminder_id, event_type=event_type, **fields)


class TestNoAnswerRetry:
    @pytest.mark.asyncio
    async def test_dispatch_then_no_answer(
        self, container, handler, repository, accounting_client, open_invoice_record, invoice, reminder_factory, now
    ):
        """A fresh voice reminder goes out, nobody answers, and it is queued again."""
        accounting_client.get_invoice_by_id.return_value = open_invoice_record
        reminder = reminder_factory(invoice, reminder_type="on_due_date", channel="voice")
        assert reminder.attempt_count == 0

        await container.reminder_processor.process_reminders(now=now)
        result = handler.handle_call_event(
            call_event(reminder.id, outcome={"connected": False, "customer_response": "no_answer"}),
            now=now,
        )

        stored = repository.get_reminder(reminder.id)
        assert result["applied"] is True
        assert result["status"] == "pending"
        assert stored.status == "pending"
        assert stored.attempt_count == 1
        assert stored.scheduled_date == now + timedelta(hours=2)
        assert stored.skip_reason == "Customer did not answer"

    def test_retry_delay_from_settings(self, handler, repository, account_id, organization_id, call_reminder, now):
        repository.save_settings(account_id, ReminderSettings(organization_id=organization_id, retry_delay_hours=6))

        handler.handle_call_event(call_event(call_reminder.id), now=now)

        assert repository.get_reminder(call_reminder.id).scheduled_date == now + timedelta(hours=6)


class TestCallEvents:
    """Call progress transitions."""

    def test_answered(self, handler, repository, call_reminder, now):
        result = handler.handle_call_event(call_event(call_reminder.id, "call_answered"), now=now)

        assert result == {
            "reminder_id": call_reminder.id,
            "event_type": "call_answered",
            "applied": True,
            "status": "processing",
        }
        assert repository.get_reminder(call_reminder.id).status == "processing"

    def test_duplicate_answered_is_ignored(self, handler, call_reminder, now):
        handler.handle_call_event(call_event(call_reminder.id, "call_answered"), now=now)
        result = handler.handle_call_event(call_event(call_reminder.id, "call_answered"), now=now)

        assert result["applied"] is False
        assert result["status"] is None

    def test_completed_with_outcome(self, handler, repository, call_reminder, now):
        handler.handle_call_event(call_event(call_reminder.id, "call_answered"), now=now)
        handler.handle_call_event(
            call_event(
                call_reminder.id,
                outcome={"connected": True, "duration": 95, "customer_response": "will_pay_today", "notes": "Paying by card"},
            ),
            now=now,
        )

        stored = repository.get_reminder(call_reminder.id)
        assert stored.status == "completed"
        assert stored.last_attempt_at == now
        assert stored.call_outcome["customer_response"] == "will_pay_today"
        assert stored.call_outcome["duration"] == 95
        assert stored.call_outcome["connected"] is True
        assert stored.attempt_count == 1

    def test_already_paid_cancels_remaining(self, handler, repository, invoice, call_reminder, reminder_factory, now):
        upcoming = reminder_factory(invoice, reminder_type="1_day_overdue", channel="voice", scheduled_date=now + timedelta(days=1))

        handler.handle_call_event(
            call_event(call_reminder.id, outcome={"connected": True, "customer_response": "already_paid"}),
            now=now,
        )

        assert repository.get_reminder(call_reminder.id).status == "completed"
        stored = repository.get_reminder(upcoming.id)
        assert stored.status == "skipped"
        assert stored.skip_reason == ALREADY_PAID_REASON

    def test_completed_without_outcome_is_no_answer(self, handler, repository, call_reminder, now):
        result = handler.handle_call_event(call_event(call_reminder.id), now=now)

        assert result["status"] == "pending"
        assert repository.get_reminder(call_reminder.id).skip_reason == "Customer did not answer"

    def test_failed_call_retries_with_error(self, handler, repository, call_reminder, now):
        handler.handle_call_event(call_event(call_reminder.id, "call_failed", error="Line busy"), now=now)

        stored = repository.get_reminder(call_reminder.id)
        assert stored.status == "pending"
        assert stored.skip_reason == "Line busy"

    def test_failed_call_at_cap_is_terminal(self, handler, repository, invoice, reminder_factory, now):
        reminder = reminder_factory(invoice, channel="voice", status="in_progress", attempt_count=3, external_id="call-9")

        result = handler.handle_call_event(call_event(reminder.id, "call_failed", error="Line busy"), now=now)

        stored = repository.get_reminder(reminder.id)
        assert result["status"] == "failed"
        assert stored.status == "failed"
        assert stored.skip_reason == "Maximum retry attempts (3) exceeded: Line busy"

    def test_late_callback_does_not_clobber(self, handler, repository, invoice, reminder_factory, now):
        reminder = reminder_factory(invoice, channel="voice", status="completed", attempt_count=1, external_id="call-5")

        result = handler.handle_call_event(call_event(reminder.id, "call_failed", error="Dropped"), now=now)

        assert result["applied"] is False
        assert repository.get_reminder(reminder.id).status == "completed"

    def test_lookup_by_call_id(self, handler, repository, call_reminder, now):
        result = handler.handle_call_event(call_event(call_id="call-123", event_type="call_answered"), now=now)

        assert result["reminder_id"] == call_reminder.id
        assert repository.get_reminder(call_reminder.id).status == "processing"

    def test_unknown_reminder(self, handler, now):
        with pytest.raises(ReminderNotFoundError):
            handler.handle_call_event(call_event("does-not-exist", call_id="call-nope"), now=now)


class TestSmsReceipts:
    """Twilio status callbacks."""

    @pytest.fixture
    def sms_reminder(self, invoice, reminder_factory, now):
        return reminder_factory(
            invoice, channel="sms", status="completed", attempt_count=1, last_attempt_at=now, external_id="SM123"
        )

    def test_delivered_confirms(self, handler, repository, sms_reminder, now):
        result = handler.handle_sms_status(SmsStatusWebhook(MessageSid="SM123", MessageStatus="delivered"), now=now)

        assert result["applied"] is True
        assert repository.get_reminder(sms_reminder.id).status == "completed"

    def test_undelivered_fails_with_provider_error(self, handler, repository, sms_reminder, now):
        result = handler.handle_sms_status(
            SmsStatusWebhook(
                MessageSid="SM123",
                MessageStatus="undelivered",
                ErrorCode="30005",
                ErrorMessage="Unknown destination handset",
            ),
            now=now,
        )

        stored = repository.get_reminder(sms_reminder.id)
        assert result["status"] == "failed"
        assert stored.status == "failed"
        assert stored.skip_reason == "Unknown destination handset (code: 30005)"

    def test_queued_does_not_move_completed_backwards(self, handler, repository, sms_reminder, now):
        result = handler.handle_sms_status(SmsStatusWebhook(MessageSid="SM123", MessageStatus="queued"), now=now)

        assert result["applied"] is False
        assert repository.get_reminder(sms_reminder.id).status == "completed"

    def test_unknown_status(self, handler, sms_reminder, now):
        with pytest.raises(InvalidPayloadError):
            handler.handle_sms_status(SmsStatusWebhook(MessageSid="SM123", MessageStatus="teleported"), now=now)

    def test_unknown_message(self, handler, now):
        with pytest.raises(ReminderNotFoundError):
            handler.handle_sms_status(SmsStatusWebhook(MessageSid="SM-missing", MessageStatus="delivered"), now=now)


class TestScheduleRetry:
    def test_missing_reminder(self, handler):
        with pytest.raises(ReminderNotFoundError):
            handler.schedule_retry("missing", (ReminderStatus.IN_PROGRESS,), "whatever")

    def test_zero_max_attempts_fails_immediately(self, handler, repository, account_id, invoice, reminder_factory, now):
        repository.save_settings(account_id, ReminderSettings(max_retry_attempts=0))
        reminder = reminder_factory(invoice, status="in_progress")

        status = handler.schedule_retry(reminder.id, (ReminderStatus.IN_PROGRESS,), "Call failed", now=now)

        assert status == ReminderStatus.FAILED
        assert repository.get_reminder(reminder.id).skip_reason == "Maximum retry attempts (0) exceeded: Call failed"
