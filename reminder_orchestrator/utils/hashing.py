"""
Change-detection hashes for cached accounting records.

A hash covers only the fields that influence reminder scheduling, so a
matching hash means the cached row and its reminders are still current.
"""
import hashlib
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from reminder_orchestrator.schemas.accounting import CustomerRecord, InvoiceRecord
from reminder_orchestrator.utils.phone import extract_primary_phone, sanitize_phone_number


def _digest(parts) -> str:
    joined = "|".join("" if p is None else str(p) for p in parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def _money(value: Any) -> str:
    return f"{Decimal(str(value or 0)):.2f}"


def calculate_invoice_hash(invoice: InvoiceRecord) -> str:
    return _digest([
        invoice.invoice_number,
        _money(invoice.total),
        _money(invoice.balance),
        invoice.due_date.isoformat(),
        invoice.status,
        invoice.customer_id,
    ])


def customer_primary_phone(customer: CustomerRecord) -> Optional[str]:
    """Primary phone of an accounting contact, sanitized toward E.164."""
    phone = extract_primary_phone(
        [p.model_dump() for p in customer.contact_persons],
        contact_mobile=customer.mobile,
        contact_phone=customer.phone,
    )
    return sanitize_phone_number(phone) or None


def calculate_customer_hash(customer: CustomerRecord) -> str:
    return _digest([
        customer.contact_id,
        customer.contact_name,
        customer.company_name,
        customer_primary_phone(customer),
        customer.email,
        customer.last_modified_time,
    ])


@dataclass(frozen=True)
class InvoiceChanges:
    """Which scheduling-relevant fields differ between cache and upstream."""

    due_date_changed: bool = False
    amount_changed: bool = False
    status_changed: bool = False
    customer_changed: bool = False

    @property
    def requires_reschedule(self) -> bool:
        return self.due_date_changed or self.amount_changed or self.customer_changed


def detect_invoice_changes(cached, invoice: InvoiceRecord) -> InvoiceChanges:
    """
    Compare a cached invoice row with a fresh accounting record.

    Args:
        cached: Invoice cache row (anything with due_date, total, amount_due,
            status and external_customer_id attributes)
        invoice: Record fetched from the accounting system
    """
    return InvoiceChanges(
        due_date_changed=cached.due_date != invoice.due_date,
        amount_changed=(
            _money(cached.total) != _money(invoice.total)
            or _money(cached.amount_due) != _money(invoice.balance)
        ),
        status_changed=(cached.status or "") != invoice.status,
        customer_changed=(cached.external_customer_id or None) != (invoice.customer_id or None),
    )
