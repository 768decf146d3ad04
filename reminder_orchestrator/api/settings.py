"""
Reminder settings endpoints.
"""
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
import structlog

from reminder_orchestrator.core.dependencies import get_settings_manager
from reminder_orchestrator.services.settings_manager import SettingsManager

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/reminder-settings", tags=["reminder-settings"])


@router.get("/{account_id}")
async def get_reminder_settings(
    account_id: str,
    settings_manager: SettingsManager = Depends(get_settings_manager),
) -> Dict[str, Any]:
    """Current settings for the account (defaults when none were saved)."""
    settings = settings_manager.get_settings(account_id)
    return {"account_id": account_id, "settings": settings.to_api()}


@router.patch("/{account_id}")
async def update_reminder_settings(
    account_id: str,
    update: Dict[str, Any] = Body(...),
    settings_manager: SettingsManager = Depends(get_settings_manager),
) -> Dict[str, Any]:
    """
    Apply a partial settings update.

    The merged result is validated as a whole; any invalid field rejects
    the entire update with 422 and per-field messages.
    """
    settings = settings_manager.update_settings(account_id, update)
    return {"account_id": account_id, "settings": settings.to_api()}
