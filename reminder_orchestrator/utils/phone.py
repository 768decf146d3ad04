"""
Phone number helpers: extraction from accounting contacts, E.164
sanitization and masking for logs.
"""
import re
from typing import Any, Dict, Iterable, Optional

E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")


def mask_phone_number(phone_number: Optional[str]) -> str:
    """Mask all but the last four digits, e.g. ``+******4567``."""
    if not phone_number or len(phone_number) <= 4:
        return "****"
    return f"+******{phone_number[-4:]}"


def sanitize_phone_number(phone_number: Optional[str]) -> str:
    """Keep only ``+`` and digits and make sure the result starts with ``+``."""
    if not phone_number:
        return ""

    sanitized = re.sub(r"[^\d+]", "", phone_number)
    if not sanitized:
        return ""
    if not sanitized.startswith("+"):
        return f"+{sanitized}"
    return sanitized


def is_valid_e164(phone_number: Optional[str]) -> bool:
    """Check a sanitized number against the E.164 shape."""
    return bool(phone_number) and bool(E164_PATTERN.match(phone_number))


def to_e164(phone_number: Optional[str]) -> Optional[str]:
    """Sanitize and validate; returns None for numbers that cannot be dialled."""
    sanitized = sanitize_phone_number(phone_number)
    return sanitized if is_valid_e164(sanitized) else None


def _usable(value: Optional[str]) -> bool:
    return bool(value and value.strip())


def extract_primary_phone(
    contact_persons: Optional[Iterable[Dict[str, Any]]],
    contact_mobile: Optional[str] = None,
    contact_phone: Optional[str] = None,
) -> Optional[str]:
    """
    Pick the number reminders should go to.

    Priority: contact mobile, contact phone, primary contact person's mobile,
    primary contact person's phone, first contact person's mobile, first
    contact person's phone.
    """
    for candidate in (contact_mobile, contact_phone):
        if _usable(candidate):
            return candidate.strip()

    persons = list(contact_persons or [])
    if not persons:
        return None

    primary = next((p for p in persons if p.get("is_primary_contact") is True), None)
    for person in (primary, persons[0]):
        if person is None:
            continue
        for key in ("mobile", "phone"):
            value = person.get(key)
            if _usable(value):
                return value.strip()

    return None
