"""
Scheduled-trigger endpoints.

Called by an external scheduler: invoice sync daily, reminder processing
every 30 minutes. Both jobs are safe to trigger twice.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends
import structlog

from reminder_orchestrator.core.dependencies import get_reminder_processor, get_sync_engine, verify_cron_secret
from reminder_orchestrator.services.reminder_processor import ReminderProcessor
from reminder_orchestrator.services.sync_engine import SyncEngine

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/api/cron",
    tags=["cron"],
    dependencies=[Depends(verify_cron_secret)],
)


@router.api_route("/sync-invoices", methods=["GET", "POST"])
async def sync_invoices(sync_engine: SyncEngine = Depends(get_sync_engine)) -> Dict[str, Any]:
    """Sync every linked account with the accounting system."""
    logger.info("Invoice sync triggered")
    batch = await sync_engine.sync_all_accounts()
    return {"success": batch.accounts_failed == 0, **batch.model_dump()}


@router.api_route("/process-reminders", methods=["GET", "POST"])
async def process_reminders(processor: ReminderProcessor = Depends(get_reminder_processor)) -> Dict[str, Any]:
    """Dispatch every reminder that is due."""
    logger.info("Reminder processing triggered")
    result = await processor.process_reminders()
    return {"success": not result.errors, **result.model_dump()}
