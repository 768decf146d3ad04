"""
Reminder database repository.

Data access layer shared by the sync engine, the reminder processor and the
outcome handler. Every write is its own short transaction; status changes on
reminders are conditional updates so the processor and the webhook handler
can race safely without in-memory locks.
"""

from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, exists, or_, select, text
from sqlalchemy.orm import Session
import structlog

from reminder_orchestrator.core.exceptions import DatabaseError
from reminder_orchestrator.models import (
    BusinessProfile,
    CustomerCache,
    InvoiceCache,
    PaymentReminder,
    ReminderSettingsRecord,
    SyncMetadata,
)
from reminder_orchestrator.schemas.reminder import IN_FLIGHT_STATUSES, ReminderStatus
from reminder_orchestrator.schemas.settings import ReminderSettings, validate_settings
from reminder_orchestrator.utils.dates import utcnow

logger = structlog.get_logger(__name__)


def _status_values(statuses: Iterable[ReminderStatus]) -> List[str]:
    return [s.value if isinstance(s, ReminderStatus) else str(s) for s in statuses]


class ReminderRepository:
    """
    Repository for reminder orchestration data.

    Handles all database interactions for settings, cached customers and
    invoices, payment reminders and sync watermarks.
    """

    def __init__(self, db: Session):
        """
        Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    def _commit(self, operation: str, **context) -> None:
        try:
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(
                "Database write failed",
                operation=operation,
                error=str(e),
                exc_info=True,
                **context
            )
            raise DatabaseError(f"Failed to {operation}: {str(e)}", operation=operation)

    def _query(self, operation: str, fn):
        try:
            return fn()
        except DatabaseError:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error("Database read failed", operation=operation, error=str(e), exc_info=True)
            raise DatabaseError(f"Failed to {operation}: {str(e)}", operation=operation)

    def health_check(self) -> bool:
        try:
            self.db.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            self.db.rollback()
            return False

    # Settings Operations

    def get_settings(self, account_id: str) -> Optional[ReminderSettings]:
        """
        Load an account's settings.

        Returns:
            Validated settings, or None when the account never saved any
        """
        record = self._query(
            "get reminder settings",
            lambda: self.db.get(ReminderSettingsRecord, account_id),
        )
        if record is None:
            return None
        return validate_settings(record.settings)

    def save_settings(self, account_id: str, settings: ReminderSettings) -> ReminderSettings:
        """Persist a complete, already validated settings object."""
        record = self.db.get(ReminderSettingsRecord, account_id)
        payload = settings.model_dump(mode="json", by_alias=True)
        if record is None:
            record = ReminderSettingsRecord(account_id=account_id, settings=payload)
            self.db.add(record)
        else:
            record.settings = payload
            record.updated_at = utcnow()
        record.organization_id = settings.organization_id
        self._commit("save reminder settings", account_id=account_id)

        logger.info("Reminder settings saved", account_id=account_id)
        return settings

    def list_sync_accounts(self) -> List[Tuple[str, str]]:
        """Accounts linked to an accounting organization, as (account_id, organization_id)."""
        rows = self._query(
            "list sync accounts",
            lambda: self.db.execute(
                select(ReminderSettingsRecord.account_id, ReminderSettingsRecord.organization_id)
                .where(ReminderSettingsRecord.organization_id.isnot(None))
                .order_by(ReminderSettingsRecord.account_id)
            ).all(),
        )
        return [(row[0], row[1]) for row in rows]

    def get_business_profile(self, account_id: str) -> Optional[BusinessProfile]:
        return self._query(
            "get business profile",
            lambda: self.db.get(BusinessProfile, account_id),
        )

    # Customer Operations

    def get_customer(self, customer_id: Optional[str]) -> Optional[CustomerCache]:
        if not customer_id:
            return None
        return self._query("get customer", lambda: self.db.get(CustomerCache, customer_id))

    def get_customer_by_external_id(self, account_id: str, external_id: str) -> Optional[CustomerCache]:
        return self._query(
            "get customer by external id",
            lambda: self.db.execute(
                select(CustomerCache).where(
                    CustomerCache.account_id == account_id,
                    CustomerCache.external_id == external_id,
                )
            ).scalar_one_or_none(),
        )

    def insert_customer(self, **values) -> CustomerCache:
        customer = CustomerCache(**values)
        self.db.add(customer)
        self._commit("insert customer", external_id=values.get("external_id"))
        return customer

    def update_customer(self, customer: CustomerCache, **values) -> CustomerCache:
        for key, value in values.items():
            setattr(customer, key, value)
        customer.updated_at = utcnow()
        self._commit("update customer", customer_id=customer.id)
        return customer

    # Invoice Operations

    def get_invoice(self, invoice_id: str) -> Optional[InvoiceCache]:
        return self._query("get invoice", lambda: self.db.get(InvoiceCache, invoice_id))

    def get_invoice_by_external_id(self, account_id: str, external_id: str) -> Optional[InvoiceCache]:
        return self._query(
            "get invoice by external id",
            lambda: self.db.execute(
                select(InvoiceCache).where(
                    InvoiceCache.account_id == account_id,
                    InvoiceCache.external_id == external_id,
                )
            ).scalar_one_or_none(),
        )

    def insert_invoice(self, **values) -> InvoiceCache:
        invoice = InvoiceCache(**values)
        self.db.add(invoice)
        self._commit("insert invoice", external_id=values.get("external_id"))
        return invoice

    def update_invoice(self, invoice: InvoiceCache, **values) -> InvoiceCache:
        for key, value in values.items():
            setattr(invoice, key, value)
        invoice.updated_at = utcnow()
        self._commit("update invoice", invoice_id=invoice.id)
        return invoice

    def list_invoices_awaiting_reminders(self, account_id: str) -> List[InvoiceCache]:
        """Invoices whose current hash has not been through the schedule builder yet."""
        return self._query(
            "list invoices awaiting reminders",
            lambda: list(
                self.db.execute(
                    select(InvoiceCache)
                    .where(
                        InvoiceCache.account_id == account_id,
                        InvoiceCache.reminders_created.is_(False),
                    )
                    .order_by(InvoiceCache.due_date)
                ).scalars()
            ),
        )

    def list_open_invoices(
        self,
        account_id: str,
        closed_statuses: Sequence[str],
        due_on_or_before: Optional[date] = None,
    ) -> List[InvoiceCache]:
        """Cached invoices that are not in any of ``closed_statuses``."""
        conditions = [
            InvoiceCache.account_id == account_id,
            InvoiceCache.status.notin_(list(closed_statuses)),
        ]
        if due_on_or_before is not None:
            conditions.append(InvoiceCache.due_date <= due_on_or_before)
        return self._query(
            "list open invoices",
            lambda: list(self.db.execute(select(InvoiceCache).where(*conditions)).scalars()),
        )

    def delete_invoices_outside_window(
        self,
        account_id: str,
        window_start: date,
        window_end: date,
        closed_statuses: Sequence[str],
    ) -> int:
        """
        Drop cached invoices that fell out of the sync window.

        Future invoices beyond the window and settled invoices before it are
        removed. Unpaid overdue invoices and invoices that already carry
        reminders are kept, since reminders are never deleted.
        """
        closed = list(closed_statuses)
        has_reminders = exists().where(PaymentReminder.invoice_id == InvoiceCache.id)
        doomed = self._query(
            "select invoices outside window",
            lambda: list(
                self.db.execute(
                    select(InvoiceCache.id).where(
                        InvoiceCache.account_id == account_id,
                        or_(
                            InvoiceCache.due_date > window_end,
                            and_(InvoiceCache.due_date < window_start, InvoiceCache.status.in_(closed)),
                        ),
                        ~has_reminders,
                    )
                ).scalars()
            ),
        )
        if not doomed:
            return 0

        self.db.query(InvoiceCache).filter(InvoiceCache.id.in_(doomed)).delete(synchronize_session=False)
        self._commit("delete invoices outside window", account_id=account_id)

        logger.info("Invoices outside sync window removed", account_id=account_id, count=len(doomed))
        return len(doomed)

    # Reminder Operations

    def create_reminders_for_invoice(self, invoice: InvoiceCache, reminders: List[Dict[str, Any]]) -> int:
        """
        Insert reminders and flag the invoice in one transaction.

        Args:
            invoice: Invoice the reminders belong to
            reminders: Column values per reminder (reminder_type, scheduled_date, channel)

        Returns:
            Number of reminders inserted
        """
        for values in reminders:
            self.db.add(
                PaymentReminder(
                    account_id=invoice.account_id,
                    invoice_id=invoice.id,
                    status=ReminderStatus.PENDING.value,
                    attempt_count=0,
                    **values
                )
            )
        invoice.reminders_created = True
        invoice.updated_at = utcnow()
        self._commit("create reminders", invoice_id=invoice.id, count=len(reminders))
        return len(reminders)

    def get_reminder(self, reminder_id: str) -> Optional[PaymentReminder]:
        return self._query("get reminder", lambda: self.db.get(PaymentReminder, reminder_id))

    def get_reminder_by_external_id(self, external_id: str) -> Optional[PaymentReminder]:
        return self._query(
            "get reminder by external id",
            lambda: self.db.execute(
                select(PaymentReminder)
                .where(PaymentReminder.external_id == external_id)
                .order_by(PaymentReminder.updated_at.desc())
                .limit(1)
            ).scalar_one_or_none(),
        )

    def list_reminders_for_invoice(self, invoice_id: str) -> List[PaymentReminder]:
        return self._query(
            "list reminders for invoice",
            lambda: list(
                self.db.execute(
                    select(PaymentReminder)
                    .where(PaymentReminder.invoice_id == invoice_id)
                    .order_by(PaymentReminder.scheduled_date)
                ).scalars()
            ),
        )

    def list_due_reminders(self, now: datetime, limit: int = 200) -> List[PaymentReminder]:
        """Pending reminders whose scheduled date has arrived, oldest first."""
        return self._query(
            "list due reminders",
            lambda: list(
                self.db.execute(
                    select(PaymentReminder)
                    .where(
                        PaymentReminder.status == ReminderStatus.PENDING.value,
                        PaymentReminder.scheduled_date <= now,
                    )
                    .order_by(PaymentReminder.scheduled_date, PaymentReminder.created_at)
                    .limit(limit)
                ).scalars()
            ),
        )

    def list_stuck_reminders(self, older_than: datetime) -> List[PaymentReminder]:
        """In-flight reminders with no outcome since ``older_than``."""
        return self._query(
            "list stuck reminders",
            lambda: list(
                self.db.execute(
                    select(PaymentReminder).where(
                        PaymentReminder.status.in_(_status_values(IN_FLIGHT_STATUSES)),
                        or_(
                            PaymentReminder.last_attempt_at < older_than,
                            and_(
                                PaymentReminder.last_attempt_at.is_(None),
                                PaymentReminder.updated_at < older_than,
                            ),
                        ),
                    )
                ).scalars()
            ),
        )

    def transition_reminder(
        self,
        reminder_id: str,
        expected: Iterable[ReminderStatus],
        new_status: ReminderStatus,
        increment_attempts: bool = False,
        expected_attempts: Optional[int] = None,
        **values
    ) -> bool:
        """
        Atomically move a reminder between states.

        Executes ``UPDATE ... WHERE id = :id AND status IN (:expected)``, also
        matching ``attempt_count`` when ``expected_attempts`` is given.
        Zero affected rows means another actor changed the reminder first.

        Returns:
            True if this call performed the transition
        """
        expected_values = _status_values(expected)
        updates: Dict[Any, Any] = {
            PaymentReminder.status: new_status.value,
            PaymentReminder.updated_at: utcnow(),
        }
        for key, value in values.items():
            updates[getattr(PaymentReminder, key)] = value
        if increment_attempts:
            updates[PaymentReminder.attempt_count] = PaymentReminder.attempt_count + 1

        conditions = [
            PaymentReminder.id == reminder_id,
            PaymentReminder.status.in_(expected_values),
        ]
        if expected_attempts is not None:
            conditions.append(PaymentReminder.attempt_count == expected_attempts)

        try:
            affected = (
                self.db.query(PaymentReminder)
                .filter(*conditions)
                .update(updates, synchronize_session=False)
            )
        except Exception as e:
            self.db.rollback()
            logger.error(
                "Failed to transition reminder",
                reminder_id=reminder_id,
                new_status=new_status.value,
                error=str(e),
                exc_info=True,
            )
            raise DatabaseError(f"Failed to transition reminder: {str(e)}", operation="transition")

        self._commit("transition reminder", reminder_id=reminder_id)

        if affected == 0:
            logger.info(
                "Reminder transition skipped - state changed concurrently",
                reminder_id=reminder_id,
                expected=expected_values,
                new_status=new_status.value,
            )
            return False

        logger.info(
            "Reminder transitioned",
            reminder_id=reminder_id,
            from_statuses=expected_values,
            new_status=new_status.value,
        )
        return True

    def claim_reminder(self, reminder_id: str, now: Optional[datetime] = None) -> bool:
        """
        Claim a pending reminder for dispatch; False if someone else holds it.

        The claim counts the attempt and clears the previous attempt's provider
        id, so both are stored before any provider call and before any callback
        about it can arrive.
        """
        return self.transition_reminder(
            reminder_id,
            expected=(ReminderStatus.PENDING,),
            new_status=ReminderStatus.IN_PROGRESS,
            increment_attempts=True,
            last_attempt_at=now or utcnow(),
            external_id=None,
        )

    def record_external_id(self, reminder_id: str, external_id: str) -> bool:
        """
        Store the provider id of a dispatched reminder, whatever its status.

        Callbacks may already have moved the reminder on, so only a missing
        id is required. Returns False if an id was already recorded.
        """
        try:
            affected = (
                self.db.query(PaymentReminder)
                .filter(
                    PaymentReminder.id == reminder_id,
                    PaymentReminder.external_id.is_(None),
                )
                .update(
                    {
                        PaymentReminder.external_id: external_id,
                        PaymentReminder.updated_at: utcnow(),
                    },
                    synchronize_session=False,
                )
            )
        except Exception as e:
            self.db.rollback()
            raise DatabaseError(f"Failed to record external id: {str(e)}", operation="record_external_id")

        self._commit("record external id", reminder_id=reminder_id)
        if affected == 0:
            logger.warning("External id already recorded", reminder_id=reminder_id, external_id=external_id)
        return affected > 0

    def skip_pending_reminders(self, invoice_id: str, reason: str) -> int:
        """Move every pending reminder of an invoice to skipped."""
        try:
            affected = (
                self.db.query(PaymentReminder)
                .filter(
                    PaymentReminder.invoice_id == invoice_id,
                    PaymentReminder.status == ReminderStatus.PENDING.value,
                )
                .update(
                    {
                        PaymentReminder.status: ReminderStatus.SKIPPED.value,
                        PaymentReminder.skip_reason: reason,
                        PaymentReminder.updated_at: utcnow(),
                    },
                    synchronize_session=False,
                )
            )
        except Exception as e:
            self.db.rollback()
            raise DatabaseError(f"Failed to skip reminders: {str(e)}", operation="skip_pending")

        self._commit("skip pending reminders", invoice_id=invoice_id)
        if affected:
            logger.info("Pending reminders skipped", invoice_id=invoice_id, count=affected, reason=reason)
        return affected

    # Sync Metadata Operations

    def get_sync_metadata(self, account_id: str) -> Optional[SyncMetadata]:
        return self._query("get sync metadata", lambda: self.db.get(SyncMetadata, account_id))

    def update_sync_metadata(self, account_id: str, **values) -> SyncMetadata:
        metadata = self.db.get(SyncMetadata, account_id)
        if metadata is None:
            metadata = SyncMetadata(account_id=account_id)
            self.db.add(metadata)
        for key, value in values.items():
            setattr(metadata, key, value)
        metadata.updated_at = utcnow()
        self._commit("update sync metadata", account_id=account_id)
        return metadata
