"""
Dependency injection for FastAPI application.

A single ``ServiceContainer`` is built when the application is created and
stored on ``app.state``. Route dependencies read components from it, so every
request and every scheduled job share one repository and one set of
provider clients.
"""
import hmac
from typing import Optional

import httpx
from fastapi import Depends, Header, Request
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from reminder_orchestrator.core.config import Settings, get_settings
from reminder_orchestrator.core.exceptions import AuthenticationError
from reminder_orchestrator.database import create_db_engine, create_session_factory, init_db
from reminder_orchestrator.database.reminder_repository import ReminderRepository
from reminder_orchestrator.services.accounting_client import AccountingClient
from reminder_orchestrator.services.outcome_handler import OutcomeHandler
from reminder_orchestrator.services.reminder_processor import ReminderProcessor
from reminder_orchestrator.services.settings_manager import SettingsManager
from reminder_orchestrator.services.sms_client import SmsClient
from reminder_orchestrator.services.sync_engine import SyncEngine
from reminder_orchestrator.services.voice_client import VoiceClient


class ServiceContainer:
    """Wires the repository, provider clients and services together once."""

    def __init__(
        self,
        config: Settings,
        session: Session,
        engine: Optional[Engine] = None,
        accounting_client: Optional[AccountingClient] = None,
        voice_client: Optional[VoiceClient] = None,
        sms_client: Optional[SmsClient] = None,
    ):
        self.config = config
        self.engine = engine
        self.session = session
        self.repository = ReminderRepository(session)

        self.accounting_client = accounting_client or AccountingClient(config)
        self.voice_client = voice_client or VoiceClient(config)
        self.sms_client = sms_client or SmsClient(config)

        self.settings_manager = SettingsManager(self.repository)
        self.outcome_handler = OutcomeHandler(self.repository, self.settings_manager, config)
        self.sync_engine = SyncEngine(self.repository, self.accounting_client, self.settings_manager, config)
        self.reminder_processor = ReminderProcessor(
            repository=self.repository,
            settings_manager=self.settings_manager,
            outcome_handler=self.outcome_handler,
            accounting_client=self.accounting_client,
            voice_client=self.voice_client,
            sms_client=self.sms_client,
            config=config,
        )

    @classmethod
    def from_settings(
        cls,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ServiceContainer":
        """
        Build engine, tables, session and clients from configuration.

        Args:
            config: Application settings (defaults to the global settings)
            transport: Optional httpx transport shared by all provider clients
        """
        config = config or get_settings()
        engine = create_db_engine(config.database_url, echo=config.database_echo)
        init_db(engine)
        session = create_session_factory(engine)()
        return cls(
            config=config,
            session=session,
            engine=engine,
            accounting_client=AccountingClient(config, transport=transport),
            voice_client=VoiceClient(config, transport=transport),
            sms_client=SmsClient(config, transport=transport),
        )

    async def close(self) -> None:
        await self.accounting_client.close()
        await self.voice_client.close()
        await self.sms_client.close()
        self.session.close()
        if self.engine is not None:
            self.engine.dispose()


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_settings_manager(container: ServiceContainer = Depends(get_container)) -> SettingsManager:
    return container.settings_manager


def get_sync_engine(container: ServiceContainer = Depends(get_container)) -> SyncEngine:
    return container.sync_engine


def get_reminder_processor(container: ServiceContainer = Depends(get_container)) -> ReminderProcessor:
    return container.reminder_processor


def verify_cron_secret(
    authorization: Optional[str] = Header(default=None),
    container: ServiceContainer = Depends(get_container),
) -> None:
    """
    Authenticate a scheduled trigger.

    Expects ``Authorization: Bearer <cron_secret>``. An unset secret rejects
    every request.
    """
    secret = container.config.cron_secret
    if not secret:
        raise AuthenticationError(reason="cron_secret_missing")

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), secret):
        raise AuthenticationError(reason="invalid_cron_token")
