"""
Records returned by the accounting system (Zoho Books contact and invoice
payloads). Only the fields the orchestrator needs are declared.
"""
from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

CLOSED_STATUSES = frozenset({"paid", "void"})


class ContactPerson(BaseModel):
    model_config = ConfigDict(extra="ignore")

    contact_person_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    mobile: Optional[str] = None
    is_primary_contact: bool = False


class CustomerRecord(BaseModel):
    """A contact as listed by the accounting system."""

    model_config = ConfigDict(extra="ignore")

    contact_id: str
    contact_name: str = ""
    company_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    mobile: Optional[str] = None
    contact_persons: List[ContactPerson] = Field(default_factory=list)
    last_modified_time: Optional[str] = None


class InvoiceRecord(BaseModel):
    """An invoice as listed by the accounting system."""

    model_config = ConfigDict(extra="ignore")

    invoice_id: str
    invoice_number: str = ""
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    total: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    currency_code: str = "USD"
    due_date: date
    status: str = "sent"
    last_modified_time: Optional[str] = None

    @field_validator("status")
    @classmethod
    def normalize_status(cls, v: str) -> str:
        return (v or "").strip().lower()

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES
