"""
Tests for change-detection hashes.
"""
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from reminder_orchestrator.schemas.accounting import ContactPerson, CustomerRecord, InvoiceRecord
from reminder_orchestrator.utils.hashing import (
    InvoiceChanges,
    calculate_customer_hash,
    calculate_invoice_hash,
    customer_primary_phone,
    detect_invoice_changes,
)


def make_invoice(**overrides) -> InvoiceRecord:
    values = {
        "invoice_id": "inv-1",
        "invoice_number": "INV-001",
        "customer_id": "cust-1",
        "total": Decimal("1500.00"),
        "balance": Decimal("1500.00"),
        "due_date": date(2025, 3, 19),
        "status": "sent",
    }
    values.update(overrides)
    return InvoiceRecord(**values)


class TestInvoiceHash:
    """Test invoice hashing."""

    def test_stable_for_equal_amounts(self):
        assert calculate_invoice_hash(make_invoice(total=Decimal("1500"))) == calculate_invoice_hash(
            make_invoice(total=Decimal("1500.00"))
        )

    def test_changes_with_due_date(self):
        assert calculate_invoice_hash(make_invoice()) != calculate_invoice_hash(
            make_invoice(due_date=date(2025, 3, 26))
        )

    def test_changes_with_status(self):
        assert calculate_invoice_hash(make_invoice()) != calculate_invoice_hash(make_invoice(status="paid"))

    def test_ignores_modified_time(self):
        assert calculate_invoice_hash(make_invoice()) == calculate_invoice_hash(
            make_invoice(last_modified_time="2025-03-12T10:00:00+0000")
        )


class TestCustomerHash:
    def test_primary_phone_sanitized(self):
        customer = CustomerRecord(
            contact_id="cust-1",
            contact_name="Acme",
            contact_persons=[ContactPerson(mobile="+1 (415) 555-0123", is_primary_contact=True)],
        )
        assert customer_primary_phone(customer) == "+14155550123"

    def test_phone_change_changes_hash(self):
        before = CustomerRecord(contact_id="cust-1", contact_name="Acme", mobile="+14155550123")
        after = CustomerRecord(contact_id="cust-1", contact_name="Acme", mobile="+14155550999")
        assert calculate_customer_hash(before) != calculate_customer_hash(after)


class TestDetectInvoiceChanges:
    """Test field-level change detection against a cached row."""

    def cached(self, **overrides):
        values = {
            "due_date": date(2025, 3, 19),
            "total": Decimal("1500.00"),
            "amount_due": Decimal("1500.00"),
            "status": "sent",
            "external_customer_id": "cust-1",
        }
        values.update(overrides)
        return SimpleNamespace(**values)

    def test_no_changes(self):
        changes = detect_invoice_changes(self.cached(), make_invoice())
        assert changes == InvoiceChanges()
        assert not changes.requires_reschedule

    def test_partial_payment_requires_reschedule(self):
        changes = detect_invoice_changes(self.cached(), make_invoice(balance=Decimal("500.00")))
        assert changes.amount_changed
        assert changes.requires_reschedule

    def test_status_only_change(self):
        changes = detect_invoice_changes(self.cached(), make_invoice(status="overdue"))
        assert changes.status_changed
        assert not changes.requires_reschedule

    def test_customer_change(self):
        changes = detect_invoice_changes(self.cached(), make_invoice(customer_id="cust-2"))
        assert changes.customer_changed
        assert changes.requires_reschedule
