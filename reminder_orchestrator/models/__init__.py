"""
Models package for the Payment Reminder Orchestrator.
"""
from .account import BusinessProfile, ReminderSettingsRecord, SyncMetadata
from .cache import CustomerCache, InvoiceCache
from .reminder import PaymentReminder

__all__ = [
    "BusinessProfile",
    "CustomerCache",
    "InvoiceCache",
    "PaymentReminder",
    "ReminderSettingsRecord",
    "SyncMetadata",
]
