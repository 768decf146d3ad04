"""
Payment reminder records and their delivery state.
"""
import uuid

from sqlalchemy import Column, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.sql import func

from reminder_orchestrator.database import Base, UTCDateTime
from reminder_orchestrator.schemas.reminder import ReminderStatus


class PaymentReminder(Base):
    """
    One scheduled reminder for one invoice.

    Rows are never deleted; they move through the status state machine
    (pending, in_progress, processing, completed, failed, skipped).
    """

    __tablename__ = "payment_reminders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String(255), nullable=False)
    invoice_id = Column(String(36), ForeignKey("invoices_cache.id", ondelete="CASCADE"), nullable=False)

    reminder_type = Column(String(50), nullable=False)  # 7_days_before, custom_10_days_overdue, ...
    scheduled_date = Column(UTCDateTime, nullable=False)
    channel = Column(String(10), nullable=False)  # sms, voice

    status = Column(String(20), nullable=False, default=ReminderStatus.PENDING.value)
    attempt_count = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(UTCDateTime, nullable=True)
    external_id = Column(String(255), nullable=True)  # provider call id / message sid
    call_outcome = Column(JSON, nullable=True)
    skip_reason = Column(Text, nullable=True)

    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_payment_reminders_status_scheduled", "status", "scheduled_date"),
        Index("idx_payment_reminders_invoice", "invoice_id", "status"),
        Index("idx_payment_reminders_external_id", "external_id"),
    )
