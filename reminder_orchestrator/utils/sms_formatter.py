"""
SMS reminder templates. Messages are kept to a single 160 character
segment by shortening the customer name, then the company name, then
hard-truncating.
"""
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Union

SMS_CHARACTER_LIMIT = 160
MAX_NAME_LENGTH = 15

CURRENCY_SYMBOLS = {
    "USD": "$",
    "INR": "₹",
    "EUR": "€",
    "GBP": "£",
    "AUD": "A$",
    "CAD": "C$",
    "SGD": "S$",
    "AED": "AED ",
    "JPY": "¥",
}

TEMPLATES = {
    "en": "Hi {name}, reminder: Invoice #{number} for {amount} is due on {date}. - {company}",
    "hi": "नमस्ते {name}, याद दिलाना: चालान #{number} {amount} का {date} को देय है। - {company}",
    "hinglish": "Hi {name}, reminder: Invoice #{number} ka {amount} {date} ko due hai. - {company}",
}

OVERDUE_TEMPLATES = {
    "en": "Hi {name}, Invoice #{number} for {amount} was due on {date} and is now overdue. Please pay at the earliest. - {company}",
    "hi": "नमस्ते {name}, चालान #{number} {amount} का {date} को देय था और अब बकाया है। कृपया जल्द भुगतान करें। - {company}",
    "hinglish": "Hi {name}, Invoice #{number} ka {amount} {date} ko due tha, ab overdue hai. Please jaldi pay karein. - {company}",
}


@dataclass(frozen=True)
class SMSMessageData:
    customer_name: str
    invoice_number: str
    amount: Union[Decimal, float, str]
    currency_code: str
    due_date: date
    company_name: str
    language: str = "en"
    is_overdue: bool = False


def get_currency_symbol(currency_code: str) -> str:
    code = (currency_code or "").upper()
    return CURRENCY_SYMBOLS.get(code, f"{code} " if code else "")


def format_amount(amount: Union[Decimal, float, str], currency_code: str) -> str:
    return f"{get_currency_symbol(currency_code)}{Decimal(str(amount or 0)):,.2f}"


def format_date_short(value: date) -> str:
    """e.g. ``Feb 15``"""
    return f"{value.strftime('%b')} {value.day}"


def _shorten(text: str) -> str:
    if len(text) > MAX_NAME_LENGTH:
        return text[:MAX_NAME_LENGTH] + "..."
    return text


def build_message(data: SMSMessageData) -> str:
    templates = OVERDUE_TEMPLATES if data.is_overdue else TEMPLATES
    template = templates.get(data.language, templates["en"])
    return template.format(
        name=data.customer_name,
        number=data.invoice_number,
        amount=format_amount(data.amount, data.currency_code),
        date=format_date_short(data.due_date),
        company=data.company_name,
    )


def format_sms_message(data: SMSMessageData) -> str:
    """Render the reminder text, never longer than ``SMS_CHARACTER_LIMIT``."""
    message = build_message(data)
    if len(message) <= SMS_CHARACTER_LIMIT:
        return message

    shortened = replace(data, customer_name=_shorten(data.customer_name))
    message = build_message(shortened)
    if len(message) <= SMS_CHARACTER_LIMIT:
        return message

    shortened = replace(shortened, company_name=_shorten(data.company_name))
    message = build_message(shortened)
    if len(message) <= SMS_CHARACTER_LIMIT:
        return message

    return message[:SMS_CHARACTER_LIMIT - 3] + "..."
