"""
Tests for phone number helpers.
"""
import pytest

from reminder_orchestrator.utils.phone import (
    extract_primary_phone,
    is_valid_e164,
    mask_phone_number,
    sanitize_phone_number,
    to_e164,
)


class TestSanitizeAndValidate:
    """Test E.164 sanitization and validation."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("+1 (415) 555-0123", "+14155550123"),
            ("14155550123", "+14155550123"),
            ("+91 98765 43210", "+919876543210"),
            ("", ""),
            (None, ""),
            ("ext.", ""),
        ],
    )
    def test_sanitize(self, raw, expected):
        assert sanitize_phone_number(raw) == expected

    def test_valid_e164(self):
        assert is_valid_e164("+14155550123")
        assert not is_valid_e164("+0123456789")
        assert not is_valid_e164("+123")
        assert not is_valid_e164("4155550123")
        assert not is_valid_e164(None)

    def test_to_e164(self):
        assert to_e164("(415) 555-0123 ") == "+4155550123"
        assert to_e164("555") is None
        assert to_e164(None) is None


class TestMaskPhoneNumber:
    def test_keeps_last_four_digits(self):
        assert mask_phone_number("+14155550123") == "+******0123"

    def test_short_or_missing(self):
        assert mask_phone_number("123") == "****"
        assert mask_phone_number(None) == "****"


class TestExtractPrimaryPhone:
    """Test phone selection priority for accounting contacts."""

    def test_contact_mobile_first(self):
        persons = [{"mobile": "+15550000001", "is_primary_contact": True}]
        assert extract_primary_phone(persons, contact_mobile="+15550000009", contact_phone="+15550000008") == "+15550000009"

    def test_contact_phone_when_no_mobile(self):
        assert extract_primary_phone([], contact_mobile="  ", contact_phone="+15550000008") == "+15550000008"

    def test_primary_contact_person(self):
        persons = [
            {"mobile": "+15550000001", "is_primary_contact": False},
            {"phone": "+15550000002", "is_primary_contact": True},
        ]
        assert extract_primary_phone(persons) == "+15550000002"

    def test_first_person_fallback(self):
        persons = [{"phone": "+15550000003"}, {"mobile": "+15550000004"}]
        assert extract_primary_phone(persons) == "+15550000003"

    def test_nothing_usable(self):
        assert extract_primary_phone(None) is None
        assert extract_primary_phone([{"mobile": "", "phone": None}]) is None
