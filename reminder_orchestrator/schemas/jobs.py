"""
Summaries returned by the batch jobs and the scheduled-trigger endpoints.
"""
from typing import List

from pydantic import BaseModel, Field


class SyncResult(BaseModel):
    """Outcome of syncing one account."""

    account_id: str
    success: bool = True
    customers_fetched: int = 0
    customers_inserted: int = 0
    customers_updated: int = 0
    invoices_fetched: int = 0
    invoices_inserted: int = 0
    invoices_updated: int = 0
    reminders_created: int = 0
    reminders_cancelled: int = 0
    invoices_cleaned_up: int = 0
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class SyncBatchResult(BaseModel):
    """Outcome of syncing every configured account."""

    accounts_total: int = 0
    accounts_succeeded: int = 0
    accounts_failed: int = 0
    results: List[SyncResult] = Field(default_factory=list)


class ProcessResult(BaseModel):
    """Outcome of one reminder processing tick."""

    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    deferred: int = 0
    retried: int = 0
    timed_out: int = 0
    errors: List[str] = Field(default_factory=list)
