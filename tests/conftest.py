"""
Pytest configuration and fixtures for the Payment Reminder Orchestrator.
"""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from reminder_orchestrator.core.config import Settings
from reminder_orchestrator.core.dependencies import ServiceContainer
from reminder_orchestrator.database import create_db_engine, create_session_factory, init_db
from reminder_orchestrator.database.reminder_repository import ReminderRepository
from reminder_orchestrator.main import create_app
from reminder_orchestrator.models import PaymentReminder
from reminder_orchestrator.schemas.accounting import InvoiceRecord
from reminder_orchestrator.schemas.settings import ReminderSettings
from reminder_orchestrator.services.accounting_client import AccountingClient
from reminder_orchestrator.services.settings_manager import SettingsManager
from reminder_orchestrator.services.sms_client import SmsClient
from reminder_orchestrator.services.voice_client import VoiceClient

# Wednesday, inside the default 09:00-18:00 UTC Monday-Friday call window
FIXED_NOW = datetime(2025, 3, 12, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def account_id() -> str:
    return "acct-1"


@pytest.fixture
def organization_id() -> str:
    return "org-1"


@pytest.fixture
def config() -> Settings:
    """Settings with known secrets and an in-memory database."""
    return Settings(
        database_url="sqlite://",
        webhook_secret="test-webhook-secret",
        cron_secret="test-cron-secret",
        twilio_auth_token="",
        twilio_account_sid="AC123",
        twilio_from_number="+15005550006",
        retry_base_delay_seconds=0.0,
    )


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """Session bound to a fresh in-memory SQLite database."""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    session = create_session_factory(engine)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def repository(db_session: Session) -> ReminderRepository:
    return ReminderRepository(db_session)


@pytest.fixture
def settings_manager(repository: ReminderRepository) -> SettingsManager:
    return SettingsManager(repository)


@pytest.fixture
def account_settings(repository, account_id, organization_id) -> ReminderSettings:
    """Default settings saved for the test account, linked to the test organization."""
    settings = ReminderSettings(organization_id=organization_id)
    return repository.save_settings(account_id, settings)


@pytest.fixture
def accounting_client() -> MagicMock:
    client = MagicMock(spec=AccountingClient)
    client.list_customers = AsyncMock(return_value=[])
    client.list_invoices = AsyncMock(return_value=[])
    client.list_overdue_invoices = AsyncMock(return_value=[])
    client.get_invoice_by_id = AsyncMock()
    client.close = AsyncMock()
    client.get_circuit_status.return_value = {"service": "accounting", "state": "closed"}
    return client


@pytest.fixture
def voice_client() -> MagicMock:
    client = MagicMock(spec=VoiceClient)
    client.place_voice_call = AsyncMock(return_value="call-123")
    client.close = AsyncMock()
    client.get_circuit_status.return_value = {"service": "voice", "state": "closed"}
    return client


@pytest.fixture
def sms_client() -> MagicMock:
    client = MagicMock(spec=SmsClient)
    client.send_sms = AsyncMock(return_value="SM123")
    client.close = AsyncMock()
    client.get_circuit_status.return_value = {"service": "twilio", "state": "closed"}
    return client


@pytest.fixture
def container(config, db_session, accounting_client, voice_client, sms_client) -> ServiceContainer:
    return ServiceContainer(
        config=config,
        session=db_session,
        accounting_client=accounting_client,
        voice_client=voice_client,
        sms_client=sms_client,
    )


@pytest.fixture
def client(config, container) -> Generator[TestClient, None, None]:
    """TestClient for an app wired to the test container."""
    app = create_app(config, container)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def customer_factory(repository, account_id):
    """Insert a cached customer."""

    def make(external_id: str = "cust-1", phone="+14155550123", name: str = "Acme Corp"):
        return repository.insert_customer(
            account_id=account_id,
            external_id=external_id,
            customer_name=name,
            company_name=name,
            primary_phone=phone,
            primary_email=None,
            contact_persons=[],
            sync_hash=f"hash-{external_id}",
        )

    return make


@pytest.fixture
def invoice_factory(repository, account_id, now):
    """Insert a cached invoice."""

    def make(
        customer=None,
        external_id: str = "inv-1",
        invoice_number: str = "INV-001",
        due_date: date = None,
        status: str = "sent",
        amount: Decimal = Decimal("1500.00"),
        reminders_created: bool = True,
    ):
        return repository.insert_invoice(
            account_id=account_id,
            external_id=external_id,
            customer_id=customer.id if customer else None,
            external_customer_id=customer.external_id if customer else None,
            invoice_number=invoice_number,
            total=amount,
            amount_due=amount,
            currency_code="USD",
            due_date=due_date or (now.date() + timedelta(days=7)),
            status=status,
            sync_hash=f"hash-{external_id}",
            reminders_created=reminders_created,
        )

    return make


@pytest.fixture
def reminder_factory(db_session, account_id, now):
    """Insert a payment reminder directly."""

    def make(
        invoice,
        reminder_type: str = "7_days_before",
        channel: str = "sms",
        status: str = "pending",
        scheduled_date: datetime = None,
        attempt_count: int = 0,
        last_attempt_at: datetime = None,
        external_id: str = None,
    ) -> PaymentReminder:
        reminder = PaymentReminder(
            account_id=account_id,
            invoice_id=invoice.id,
            reminder_type=reminder_type,
            channel=channel,
            status=status,
            scheduled_date=scheduled_date or (now - timedelta(hours=1)),
            attempt_count=attempt_count,
            last_attempt_at=last_attempt_at,
            external_id=external_id,
        )
        db_session.add(reminder)
        db_session.commit()
        return reminder

    return make


@pytest.fixture
def open_invoice_record(now) -> InvoiceRecord:
    """Upstream view of ``inv-1`` while still unpaid."""
    return InvoiceRecord(
        invoice_id="inv-1",
        invoice_number="INV-001",
        customer_id="cust-1",
        customer_name="Acme Corp",
        total=Decimal("1500.00"),
        balance=Decimal("1500.00"),
        currency_code="USD",
        due_date=now.date() + timedelta(days=7),
        status="sent",
    )
