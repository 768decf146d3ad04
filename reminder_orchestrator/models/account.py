"""
Per-account records: reminder settings, sync watermarks and the
business profile used for message context.
"""

from sqlalchemy import Column, JSON, String, Text
from sqlalchemy.sql import func

from reminder_orchestrator.database import Base, UTCDateTime


class ReminderSettingsRecord(Base):
    """Validated reminder settings, stored as one JSON document per account."""

    __tablename__ = "reminder_settings"

    account_id = Column(String(255), primary_key=True)
    organization_id = Column(String(255), nullable=True, index=True)
    settings = Column(JSON, nullable=False)

    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=False)


class SyncMetadata(Base):
    """Sync watermarks bounding the next sync's query window."""

    __tablename__ = "sync_metadata"

    account_id = Column(String(255), primary_key=True)
    last_customer_sync_at = Column(UTCDateTime, nullable=True)
    last_incremental_sync_at = Column(UTCDateTime, nullable=True)
    last_full_sync_at = Column(UTCDateTime, nullable=True)
    last_sync_status = Column(String(20), nullable=True)  # success, partial, failed
    last_sync_error = Column(Text, nullable=True)

    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=False)


class BusinessProfile(Base):
    """Company details quoted in SMS and call context. Managed elsewhere."""

    __tablename__ = "business_profiles"

    account_id = Column(String(255), primary_key=True)
    company_name = Column(String(255), nullable=False)
    support_phone = Column(String(32), nullable=True)
    support_email = Column(String(255), nullable=True)
    payment_methods = Column(JSON, nullable=True)
