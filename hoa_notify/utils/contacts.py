"""Recipient validation and formatting helpers."""

import re
from typing import Optional

from email_validator import EmailNotValidError, validate_email

PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")


def is_valid_email(address: Optional[str]) -> bool:
    """Syntax-only email check (no DNS lookups)."""
    if not address:
        return False
    try:
        validate_email(address, check_deliverability=False)
        return True
    except EmailNotValidError:
        return False


def is_valid_phone(phone: Optional[str]) -> bool:
    """E.164-ish check after stripping spaces, dashes, dots and parentheses."""
    if not phone:
        return False
    return bool(PHONE_PATTERN.match(re.sub(r"[\s\-().]", "", phone)))


def format_e164(phone: str) -> str:
    """Format a phone number as E.164.

    Non-digits are dropped; a bare 10-digit number is assumed to be North
    American and gets a leading ``1``.

    Example:
        >>> format_e164("(555) 123-4567")
        '+15551234567'
    """
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 10:
        digits = "1" + digits
    return "+" + digits


def mask_recipient(recipient: Optional[str]) -> str:
    """Partially hide an address or phone number for log lines."""
    if not recipient:
        return ""
    if "@" in recipient:
        local, _, domain = recipient.partition("@")
        return f"{local[:1]}***@{domain}"
    if len(recipient) <= 4:
        return "***"
    return f"***{recipient[-4:]}"
