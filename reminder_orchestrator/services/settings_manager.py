"""
Reminder settings service.
"""
from typing import Any, Dict

import structlog

from reminder_orchestrator.database.reminder_repository import ReminderRepository
from reminder_orchestrator.schemas.settings import (
    DEFAULT_REMINDER_SETTINGS,
    ReminderSettings,
    merge_settings_update,
)

logger = structlog.get_logger(__name__)


class SettingsManager:
    """Reads and updates per-account reminder settings."""

    def __init__(self, repository: ReminderRepository):
        self.repository = repository

    def get_settings(self, account_id: str) -> ReminderSettings:
        """Stored settings for the account, or the defaults if none were saved."""
        settings = self.repository.get_settings(account_id)
        if settings is None:
            logger.debug("No stored settings, using defaults", account_id=account_id)
            return DEFAULT_REMINDER_SETTINGS
        return settings

    def update_settings(self, account_id: str, update: Dict[str, Any]) -> ReminderSettings:
        """
        Apply a partial update.

        The current settings and the update are merged into one candidate
        that is validated as a whole; nothing is written unless every field
        is valid.

        Raises:
            SettingsValidationError: If any field in the merged candidate is invalid
        """
        current = self.get_settings(account_id)
        try:
            candidate = merge_settings_update(current, update)
        except Exception:
            logger.warning(
                "Rejected reminder settings update",
                account_id=account_id,
                fields=sorted(update) if isinstance(update, dict) else None,
            )
            raise

        saved = self.repository.save_settings(account_id, candidate)
        logger.info(
            "Reminder settings updated",
            account_id=account_id,
            fields=sorted(update),
        )
        return saved
