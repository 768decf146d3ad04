"""
Invoice sync engine.

Pulls customers and invoices from the accounting system into the local
cache, detects changes through content hashes, reconciles paid and
rescheduled invoices and creates the reminder rows for new invoices.
"""
import asyncio
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Set

import structlog

from reminder_orchestrator.core.config import Settings
from reminder_orchestrator.core.exceptions import DatabaseError, ExternalServiceError
from reminder_orchestrator.core.logging import correlation_context, log_business_event, performance_timing
from reminder_orchestrator.database.reminder_repository import ReminderRepository
from reminder_orchestrator.models import InvoiceCache
from reminder_orchestrator.schemas.accounting import CLOSED_STATUSES, CustomerRecord, InvoiceRecord
from reminder_orchestrator.schemas.jobs import SyncBatchResult, SyncResult
from reminder_orchestrator.schemas.settings import ReminderSettings
from reminder_orchestrator.services.accounting_client import AccountingClient
from reminder_orchestrator.services.channel_assigner import assign_channel
from reminder_orchestrator.services.schedule_builder import build_reminder_schedule, get_max_reminder_days
from reminder_orchestrator.services.settings_manager import SettingsManager
from reminder_orchestrator.utils.dates import utcnow
from reminder_orchestrator.utils.hashing import (
    calculate_customer_hash,
    calculate_invoice_hash,
    customer_primary_phone,
    detect_invoice_changes,
)

logger = structlog.get_logger(__name__)

SKIP_REASON_RESCHEDULED = "Invoice rescheduled"
SKIP_REASON_PAID = "Invoice marked as paid"
SKIP_REASON_VOIDED = "Invoice voided"


def is_settled(invoice: InvoiceRecord) -> bool:
    """Closed upstream, or nothing left to collect."""
    return invoice.is_closed or invoice.balance <= 0


def settled_reason(invoice: InvoiceRecord) -> str:
    return SKIP_REASON_VOIDED if invoice.status == "void" else SKIP_REASON_PAID


class SyncEngine:
    """Synchronizes one or all accounts with the accounting system."""

    def __init__(
        self,
        repository: ReminderRepository,
        accounting_client: AccountingClient,
        settings_manager: SettingsManager,
        config: Settings,
    ):
        self.repository = repository
        self.accounting = accounting_client
        self.settings_manager = settings_manager
        self.config = config

    def sync_window(self, settings: ReminderSettings, now: datetime):
        """Due-date range fetched on each sync, as (start, end) dates."""
        today = now.date()
        start = today - timedelta(days=self.config.sync_overlap_days)
        end = today + timedelta(
            days=get_max_reminder_days(settings) + self.config.sync_lookahead_buffer_days
        )
        return start, end

    async def sync_all_accounts(self, now: Optional[datetime] = None) -> SyncBatchResult:
        """
        Sync every account linked to an accounting organization.

        Accounts run concurrently up to ``sync_max_concurrency``; one
        account's failure is recorded and never stops the others.
        """
        now = now or utcnow()
        accounts = self.repository.list_sync_accounts()
        semaphore = asyncio.Semaphore(self.config.sync_max_concurrency)

        async def run(account_id: str, organization_id: str) -> SyncResult:
            async with semaphore:
                try:
                    return await self.sync_invoices_for_user(account_id, organization_id, now=now)
                except Exception as e:
                    logger.error(
                        "Account sync failed",
                        account_id=account_id,
                        error=str(e),
                        exc_info=True,
                    )
                    return SyncResult(account_id=account_id, success=False, errors=[str(e)])

        with performance_timing("sync_all_accounts", accounts=len(accounts)):
            results = await asyncio.gather(*(run(a, o) for a, o in accounts))

        batch = SyncBatchResult(
            accounts_total=len(results),
            accounts_succeeded=sum(1 for r in results if r.success),
            accounts_failed=sum(1 for r in results if not r.success),
            results=list(results),
        )
        log_business_event(
            "sync_batch_completed",
            accounts_total=batch.accounts_total,
            accounts_succeeded=batch.accounts_succeeded,
            accounts_failed=batch.accounts_failed,
        )
        return batch

    async def sync_invoices_for_user(
        self,
        account_id: str,
        organization_id: str,
        now: Optional[datetime] = None,
    ) -> SyncResult:
        """
        Run a full sync for one account.

        Returns a structured result even when the accounting system fails;
        only store failures propagate.
        """
        now = now or utcnow()
        result = SyncResult(account_id=account_id)

        with correlation_context(account_id=account_id):
            settings = self.settings_manager.get_settings(account_id)
            window_start, window_end = self.sync_window(settings, now)
            logger.info(
                "Starting invoice sync",
                organization_id=organization_id,
                window_start=window_start.isoformat(),
                window_end=window_end.isoformat(),
            )

            customers_synced = await self._sync_customers(account_id, organization_id, now, result)

            try:
                invoices = await self._fetch_invoices(organization_id, window_start, window_end)
            except ExternalServiceError as e:
                result.success = False
                result.errors.append(f"Invoice fetch failed: {e}")
                logger.error("Invoice fetch failed", error=str(e))
                self._record_sync(account_id, now, result, customers_synced)
                return result

            result.invoices_fetched = len(invoices)
            for invoice in invoices:
                self._apply_invoice(account_id, invoice, now, result)

            await self._reconcile_stale_invoices(
                account_id, organization_id, window_start, {i.invoice_id for i in invoices}, now, result
            )

            self._create_pending_reminders(account_id, settings, now, result)

            result.invoices_cleaned_up = self.repository.delete_invoices_outside_window(
                account_id, window_start, window_end, sorted(CLOSED_STATUSES)
            )

            self._record_sync(account_id, now, result, customers_synced)

        log_business_event(
            "invoice_sync_completed",
            account_id=account_id,
            invoices_fetched=result.invoices_fetched,
            invoices_inserted=result.invoices_inserted,
            invoices_updated=result.invoices_updated,
            reminders_created=result.reminders_created,
            reminders_cancelled=result.reminders_cancelled,
            errors=len(result.errors),
        )
        return result

    async def _sync_customers(self, account_id: str, organization_id: str, now: datetime, result: SyncResult) -> bool:
        try:
            customers = await self.accounting.list_customers(organization_id)
        except ExternalServiceError as e:
            result.errors.append(f"Customer sync failed: {e}")
            logger.warning("Customer sync failed, continuing with invoices", error=str(e))
            return False

        result.customers_fetched = len(customers)
        for customer in customers:
            self._upsert_customer(account_id, customer, now, result)
        return True

    def _upsert_customer(self, account_id: str, customer: CustomerRecord, now: datetime, result: SyncResult) -> None:
        sync_hash = calculate_customer_hash(customer)
        cached = self.repository.get_customer_by_external_id(account_id, customer.contact_id)
        if cached is not None and cached.sync_hash == sync_hash:
            return

        values = {
            "customer_name": customer.contact_name,
            "company_name": customer.company_name,
            "primary_phone": customer_primary_phone(customer),
            "primary_email": customer.email,
            "contact_persons": [p.model_dump() for p in customer.contact_persons],
            "sync_hash": sync_hash,
            "last_synced_at": now,
        }
        if cached is None:
            self.repository.insert_customer(account_id=account_id, external_id=customer.contact_id, **values)
            result.customers_inserted += 1
        else:
            self.repository.update_customer(cached, **values)
            result.customers_updated += 1

    async def _fetch_invoices(self, organization_id: str, window_start: date, window_end: date) -> List[InvoiceRecord]:
        in_window = await self.accounting.list_invoices(organization_id, window_start, window_end)
        overdue = await self.accounting.list_overdue_invoices(organization_id)

        merged: Dict[str, InvoiceRecord] = {}
        for invoice in in_window + overdue:
            merged.setdefault(invoice.invoice_id, invoice)
        return list(merged.values())

    def _apply_invoice(self, account_id: str, invoice: InvoiceRecord, now: datetime, result: SyncResult) -> None:
        """Insert or update one cached invoice and cancel reminders it invalidated."""
        sync_hash = calculate_invoice_hash(invoice)
        cached = self.repository.get_invoice_by_external_id(account_id, invoice.invoice_id)

        if cached is not None and cached.sync_hash == sync_hash:
            return
        if cached is None and is_settled(invoice):
            return

        customer_id = None
        if invoice.customer_id:
            customer = self.repository.get_customer_by_external_id(account_id, invoice.customer_id)
            customer_id = customer.id if customer else None

        values = {
            "customer_id": customer_id,
            "external_customer_id": invoice.customer_id,
            "invoice_number": invoice.invoice_number,
            "total": invoice.total,
            "amount_due": invoice.balance,
            "currency_code": invoice.currency_code,
            "due_date": invoice.due_date,
            "status": invoice.status,
            "sync_hash": sync_hash,
            "last_synced_at": now,
        }

        if cached is None:
            self.repository.insert_invoice(
                account_id=account_id, external_id=invoice.invoice_id, reminders_created=False, **values
            )
            result.invoices_inserted += 1
            return

        changes = detect_invoice_changes(cached, invoice)
        was_closed = cached.status in CLOSED_STATUSES

        if is_settled(invoice):
            reason = settled_reason(invoice)
            result.reminders_cancelled += self.repository.skip_pending_reminders(cached.id, reason)
            values["reminders_created"] = True
            logger.info("Invoice settled upstream", invoice_id=cached.id, status=invoice.status)
        elif changes.requires_reschedule or was_closed:
            result.reminders_cancelled += self.repository.skip_pending_reminders(cached.id, SKIP_REASON_RESCHEDULED)
            values["reminders_created"] = False
            logger.info(
                "Invoice changed, rescheduling reminders",
                invoice_id=cached.id,
                due_date_changed=changes.due_date_changed,
                amount_changed=changes.amount_changed,
                customer_changed=changes.customer_changed,
                reopened=was_closed,
            )

        self.repository.update_invoice(cached, **values)
        result.invoices_updated += 1

    async def _reconcile_stale_invoices(
        self,
        account_id: str,
        organization_id: str,
        window_start: date,
        seen: Set[str],
        now: datetime,
        result: SyncResult,
    ) -> None:
        """
        Re-check open cached invoices that neither upstream query returned.

        An overdue invoice paid since the last sync drops out of the overdue
        listing, so it has to be looked up by id to notice the payment.
        """
        stale: List[InvoiceCache] = [
            inv
            for inv in self.repository.list_open_invoices(
                account_id, sorted(CLOSED_STATUSES), due_on_or_before=window_start - timedelta(days=1)
            )
            if inv.external_id not in seen
        ]
        for cached in stale:
            try:
                invoice = await self.accounting.get_invoice_by_id(organization_id, cached.external_id)
            except ExternalServiceError as e:
                result.warnings.append(f"Could not reconcile invoice {cached.invoice_number}: {e}")
                continue
            self._apply_invoice(account_id, invoice, now, result)

    def _create_pending_reminders(
        self,
        account_id: str,
        settings: ReminderSettings,
        now: datetime,
        result: SyncResult,
    ) -> None:
        for invoice in self.repository.list_invoices_awaiting_reminders(account_id):
            try:
                self._create_reminders_for_invoice(invoice, settings, now, result)
            except DatabaseError as e:
                result.errors.append(f"Failed to create reminders for invoice {invoice.invoice_number}: {e}")
                logger.error("Failed to create reminders", invoice_id=invoice.id, error=str(e))

    def _create_reminders_for_invoice(
        self,
        invoice: InvoiceCache,
        settings: ReminderSettings,
        now: datetime,
        result: SyncResult,
    ) -> None:
        if invoice.status in CLOSED_STATUSES:
            self.repository.create_reminders_for_invoice(invoice, [])
            return

        customer = self.repository.get_customer(invoice.customer_id)
        if customer is None or not customer.primary_phone:
            self.repository.create_reminders_for_invoice(invoice, [])
            result.warnings.append(f"Invoice {invoice.invoice_number} has no customer phone number")
            logger.warning("No phone number for invoice customer", invoice_id=invoice.id)
            return

        schedule = build_reminder_schedule(invoice.due_date, settings, now)
        rows = [
            {
                "reminder_type": item.reminder_type,
                "scheduled_date": item.scheduled_date,
                "channel": assign_channel(item.reminder_type, settings).value,
            }
            for item in schedule
        ]
        result.reminders_created += self.repository.create_reminders_for_invoice(invoice, rows)

    def _record_sync(self, account_id: str, now: datetime, result: SyncResult, customers_synced: bool) -> None:
        if not result.success:
            status = "failed"
        elif result.errors:
            status = "partial"
        else:
            status = "success"

        values = {
            "last_sync_status": status,
            "last_sync_error": "; ".join(result.errors) or None,
        }
        if result.success:
            values["last_incremental_sync_at"] = now
            values["last_full_sync_at"] = now
        if customers_synced:
            values["last_customer_sync_at"] = now
        self.repository.update_sync_metadata(account_id, **values)
