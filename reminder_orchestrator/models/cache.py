"""
Local cache of customers and invoices pulled from the accounting system.
"""
import uuid

from sqlalchemy import Boolean, Column, Date, ForeignKey, Index, JSON, Numeric, String, UniqueConstraint
from sqlalchemy.sql import func

from reminder_orchestrator.database import Base, UTCDateTime


def _uuid() -> str:
    return str(uuid.uuid4())


class CustomerCache(Base):
    """Cached accounting contact, unique per (account_id, external_id)."""

    __tablename__ = "customers_cache"

    id = Column(String(36), primary_key=True, default=_uuid)
    account_id = Column(String(255), nullable=False)
    external_id = Column(String(255), nullable=False)

    customer_name = Column(String(255), nullable=False, default="")
    company_name = Column(String(255), nullable=True)
    primary_phone = Column(String(32), nullable=True)
    primary_email = Column(String(255), nullable=True)
    contact_persons = Column(JSON, nullable=True)

    sync_hash = Column(String(64), nullable=False)
    last_synced_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("account_id", "external_id", name="uq_customers_account_external"),
    )


class InvoiceCache(Base):
    """Cached accounting invoice with its change-detection hash."""

    __tablename__ = "invoices_cache"

    id = Column(String(36), primary_key=True, default=_uuid)
    account_id = Column(String(255), nullable=False)
    external_id = Column(String(255), nullable=False)
    customer_id = Column(String(36), ForeignKey("customers_cache.id", ondelete="SET NULL"), nullable=True)
    external_customer_id = Column(String(255), nullable=True)

    invoice_number = Column(String(100), nullable=False, default="")
    total = Column(Numeric(14, 2), nullable=False, default=0)
    amount_due = Column(Numeric(14, 2), nullable=False, default=0)
    currency_code = Column(String(3), nullable=False, default="USD")
    due_date = Column(Date, nullable=False)
    status = Column(String(30), nullable=False)

    sync_hash = Column(String(64), nullable=False)
    reminders_created = Column(Boolean, nullable=False, default=False)
    last_synced_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("account_id", "external_id", name="uq_invoices_account_external"),
        Index("idx_invoices_account_due_date", "account_id", "due_date"),
        Index("idx_invoices_reminders_created", "account_id", "reminders_created"),
    )
