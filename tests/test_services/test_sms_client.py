"""
Tests for the Twilio SMS client.
"""
from urllib.parse import parse_qs

import httpx
import pytest

from reminder_orchestrator.core.exceptions import ExternalServiceRateLimitError, PermanentDeliveryError
from reminder_orchestrator.services.sms_client import SmsClient, is_permanent_error_code


class TestSmsClient:
    """Test message submission and error mapping."""

    @pytest.fixture
    def requests(self):
        return []

    def client(self, config, requests, response: httpx.Response) -> SmsClient:
        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return response

        return SmsClient(config, transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_send_returns_sid(self, config, requests):
        config.sms_status_callback_url = "https://reminders.example.com/api/webhooks/sms-status"
        client = self.client(config, requests, httpx.Response(201, json={"sid": "SM42", "status": "queued"}))

        sid = await client.send_sms("+14155550123", "Hi Acme Corp, reminder")

        assert sid == "SM42"
        request = requests[0]
        assert request.url.path == "/2010-04-01/Accounts/AC123/Messages.json"
        assert request.headers["Authorization"].startswith("Basic ")
        form = parse_qs(request.content.decode())
        assert form["To"] == ["+14155550123"]
        assert form["From"] == ["+15005550006"]
        assert form["Body"] == ["Hi Acme Corp, reminder"]
        assert form["StatusCallback"] == ["https://reminders.example.com/api/webhooks/sms-status"]

    @pytest.mark.asyncio
    async def test_invalid_destination_code_is_permanent(self, config, requests):
        client = self.client(
            config,
            requests,
            httpx.Response(400, json={"code": 21211, "message": "The 'To' number is not a valid phone number."}),
        )

        with pytest.raises(PermanentDeliveryError) as exc_info:
            await client.send_sms("+14155550123", "Hi")

        assert "21211" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_rate_limit_is_transient(self, config, requests):
        client = self.client(config, requests, httpx.Response(429, headers={"Retry-After": "5"}))

        with pytest.raises(ExternalServiceRateLimitError):
            await client.send_sms("+14155550123", "Hi")

    @pytest.mark.asyncio
    async def test_malformed_number_never_sent(self, config, requests):
        client = self.client(config, requests, httpx.Response(201, json={"sid": "SM1"}))

        with pytest.raises(PermanentDeliveryError):
            await client.send_sms("4155550123", "Hi")

        assert requests == []

    def test_permanent_codes(self):
        assert is_permanent_error_code("30006")
        assert not is_permanent_error_code(20429)
        assert not is_permanent_error_code(None)
