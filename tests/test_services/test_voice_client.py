"""
Tests for the voice call dispatcher client.
"""
import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from reminder_orchestrator.core.exceptions import ExternalServiceError, PermanentDeliveryError
from reminder_orchestrator.services.voice_client import CallContext, VoiceClient, build_agent_prompt


def call_context(**overrides) -> CallContext:
    values = {
        "reminder_id": "rem-1",
        "customer_name": "Acme Corp",
        "invoice_number": "INV-001",
        "original_amount": Decimal("1500.00"),
        "amount_due": Decimal("900.00"),
        "due_date": date(2025, 3, 19),
        "days_until_due": 7,
        "company_name": "Globex",
    }
    values.update(overrides)
    return CallContext(**values)


class TestBuildAgentPrompt:
    def test_upcoming(self):
        prompt = build_agent_prompt(call_context(payment_methods=["card"], support_phone="+14155559999"))

        assert "calling on behalf of Globex" in prompt
        assert "- Amount Due: 900.00 USD" in prompt
        assert "(due in 7 days)" in prompt
        assert "Available payment methods: card" in prompt
        assert "+14155559999" in prompt

    def test_overdue(self):
        context = call_context(days_until_due=-3)
        assert context.is_overdue
        assert "(3 days overdue)" in build_agent_prompt(context)

    def test_due_today(self):
        assert "(due today)" in build_agent_prompt(call_context(days_until_due=0))


class TestVoiceClient:
    """Test call placement."""

    @pytest.mark.asyncio
    async def test_place_call(self, config):
        config.voice_service_api_key = "voice-key"
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(202, json={"call_id": "call-77", "status": "queued"})

        client = VoiceClient(config, transport=httpx.MockTransport(handler))

        call_id = await client.place_voice_call("+14155550123", call_context())

        assert call_id == "call-77"
        request = seen[0]
        payload = json.loads(request.content)
        assert request.url.path == "/calls"
        assert request.headers["Authorization"] == "Bearer voice-key"
        assert payload["phone_number"] == "+14155550123"
        assert payload["metadata"] == {"reminder_id": "rem-1"}
        assert payload["context"]["invoice_number"] == "INV-001"
        assert "Globex" in payload["agent_prompt"]

    @pytest.mark.asyncio
    async def test_missing_call_id(self, config):
        client = VoiceClient(config, transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))

        with pytest.raises(ExternalServiceError):
            await client.place_voice_call("+14155550123", call_context())

    @pytest.mark.asyncio
    async def test_invalid_number(self, config):
        client = VoiceClient(config, transport=httpx.MockTransport(lambda request: httpx.Response(500)))

        with pytest.raises(PermanentDeliveryError):
            await client.place_voice_call("not-a-number", call_context())
