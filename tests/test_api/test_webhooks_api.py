"""
Tests for the delivery-status webhook endpoints.
"""
import json
from datetime import timedelta
from urllib.parse import urlencode

import pytest

from reminder_orchestrator.utils.webhook_security import compute_signature, compute_twilio_signature

CALL_STATUS_URL = "/api/webhooks/call-status"
SMS_STATUS_URL = "/api/webhooks/sms-status"


def signed_post(client, payload, secret: str = "test-webhook-secret", signature: str = None):
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    return client.post(
        CALL_STATUS_URL,
        content=body,
        headers={
            "Content-Type": "application/json",
            "x-webhook-signature": signature if signature is not None else compute_signature(secret, body),
        },
    )


@pytest.fixture
def call_reminder(account_settings, customer_factory, invoice_factory, reminder_factory, now):
    invoice = invoice_factory(customer=customer_factory())
    return reminder_factory(
        invoice,
        reminder_type="on_due_date",
        channel="voice",
        status="in_progress",
        attempt_count=1,
        last_attempt_at=now - timedelta(minutes=1),
        external_id="call-123",
    )


class TestCallStatusAuthentication:
    """Signature checks run before anything else."""

    def test_invalid_signature_leaves_reminder_untouched(self, client, repository, call_reminder):
        payload = {"reminder_id": call_reminder.id, "event_type": "call_answered"}

        response = signed_post(client, payload, secret="wrong-secret")

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid signature"
        assert repository.get_reminder(call_reminder.id).status == "in_progress"

    def test_missing_signature(self, client, call_reminder):
        response = client.post(CALL_STATUS_URL, json={"reminder_id": call_reminder.id, "event_type": "call_answered"})

        assert response.status_code == 401

    def test_unset_secret_rejects(self, client, config, call_reminder):
        config.webhook_secret = ""

        response = signed_post(client, {"reminder_id": call_reminder.id, "event_type": "call_answered"})

        assert response.status_code == 401


class TestCallStatusPayload:
    def test_answered_applied(self, client, repository, call_reminder):
        response = signed_post(client, {"reminder_id": call_reminder.id, "event_type": "call_answered"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["applied"] is True
        assert data["status"] == "processing"
        assert repository.get_reminder(call_reminder.id).status == "processing"

    def test_event_alias_and_call_id_lookup(self, client, repository, call_reminder):
        response = signed_post(client, {"call_id": "call-123", "event": "call_answered"})

        assert response.status_code == 200
        assert response.json()["reminder_id"] == call_reminder.id

    def test_bad_json(self, client):
        response = signed_post(client, b"{not json")

        assert response.status_code == 400

    def test_non_object_body(self, client):
        response = signed_post(client, [1, 2, 3])

        assert response.status_code == 400

    def test_unknown_event(self, client, repository, call_reminder):
        response = signed_post(client, {"reminder_id": call_reminder.id, "event_type": "call_teleported"})

        assert response.status_code == 400
        assert "call_teleported" in response.json()["message"]
        assert repository.get_reminder(call_reminder.id).status == "in_progress"

    def test_missing_reference(self, client):
        response = signed_post(client, {"event_type": "call_answered"})

        assert response.status_code == 400

    def test_unknown_reminder(self, client):
        response = signed_post(client, {"reminder_id": "nope", "event_type": "call_answered"})

        assert response.status_code == 404


class TestSmsStatus:
    """Twilio status callbacks."""

    CALLBACK_URL = "https://reminders.example.com/api/webhooks/sms-status"

    @pytest.fixture
    def sms_reminder(self, account_settings, customer_factory, invoice_factory, reminder_factory, now):
        invoice = invoice_factory(customer=customer_factory())
        return reminder_factory(
            invoice, channel="sms", status="completed", attempt_count=1, last_attempt_at=now, external_id="SM123"
        )

    @pytest.fixture
    def twilio_token(self, config):
        config.twilio_auth_token = "twilio-token"
        config.sms_status_callback_url = self.CALLBACK_URL
        return config.twilio_auth_token

    def form_post(self, client, params, signature=None, token=None):
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if signature is None and token:
            signature = compute_twilio_signature(token, self.CALLBACK_URL, params)
        if signature is not None:
            headers["X-Twilio-Signature"] = signature
        return client.post(SMS_STATUS_URL, content=urlencode(params), headers=headers)

    def test_rejected_when_no_token_configured(self, client, repository, sms_reminder):
        params = {"MessageSid": "SM123", "MessageStatus": "undelivered", "ErrorCode": "30003"}

        response = self.form_post(client, params, signature=compute_twilio_signature("", self.CALLBACK_URL, params))

        assert response.status_code == 401
        assert response.json()["context"]["reason"] == "twilio_auth_token_missing"
        assert repository.get_reminder(sms_reminder.id).status == "completed"

    def test_unsigned_callback_rejected(self, client, repository, twilio_token, sms_reminder):
        response = self.form_post(client, {"MessageSid": "SM123", "MessageStatus": "failed"})

        assert response.status_code == 401
        assert repository.get_reminder(sms_reminder.id).status == "completed"

    def test_valid_twilio_signature(self, client, repository, twilio_token, sms_reminder):
        response = self.form_post(client, {"MessageSid": "SM123", "MessageStatus": "delivered"}, token=twilio_token)

        assert response.status_code == 200
        assert response.json()["applied"] is True

    def test_failure_receipt_applied(self, client, repository, twilio_token, sms_reminder):
        response = self.form_post(
            client,
            {"MessageSid": "SM123", "MessageStatus": "undelivered", "ErrorCode": "30003", "ErrorMessage": "Unreachable"},
            token=twilio_token,
        )

        assert response.status_code == 200
        stored = repository.get_reminder(sms_reminder.id)
        assert stored.status == "failed"
        assert stored.skip_reason == "Unreachable (code: 30003)"

    def test_bad_twilio_signature(self, client, repository, twilio_token, sms_reminder):
        response = self.form_post(
            client, {"MessageSid": "SM123", "MessageStatus": "failed"}, signature="bm90LWEtc2lnbmF0dXJl"
        )

        assert response.status_code == 401
        assert repository.get_reminder(sms_reminder.id).status == "completed"

    def test_missing_fields(self, client, twilio_token):
        response = self.form_post(client, {"MessageStatus": "delivered"}, token=twilio_token)

        assert response.status_code == 400

    def test_unknown_message(self, client, twilio_token):
        response = self.form_post(client, {"MessageSid": "SM-missing", "MessageStatus": "delivered"}, token=twilio_token)

        assert response.status_code == 404
