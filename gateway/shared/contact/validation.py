"""
Input validation and sanitization for contact submissions.
Covers the abuse filters (honeypot, API key) and the field checks.
"""

import re
from typing import Any, Mapping, Optional

from gateway.shared.contact.errors import AuthError, BotDetected, ClientError


PHONE_PATTERN = re.compile(r'^[\d\s\-+()]+$', re.ASCII)
EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

# Decoy inputs hidden from humans; only bots fill them in
HONEYPOT_FIELDS = ('website', 'url', 'homepage', 'company_website')


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def sanitize_text(value: Any) -> str:
    """
    Trim a field and remove angle brackets.

    This is deliberately minimal hardening, not HTML encoding; downstream
    consumers must still treat the value as untrusted.

    Args:
        value: Raw field value (any JSON type)

    Returns:
        Sanitized string, "" for absent or falsy input
    """
    if not value:
        return ""
    return _as_text(value).replace("<", "").replace(">", "").strip()


def check_honeypot(body: Mapping[str, Any]) -> None:
    """Raise BotDetected if any decoy field carries a non-blank value."""
    for field_name in HONEYPOT_FIELDS:
        value = body.get(field_name)
        if value and _as_text(value).strip() != "":
            raise BotDetected(field_name)


def check_api_key(expected: Optional[str], provided: Optional[str]) -> None:
    """
    Enforce the optional shared secret.

    Args:
        expected: Configured key; None or "" disables the check
        provided: Key sent by the caller via header or query parameter

    Raises:
        AuthError if a key is configured and the caller's does not match exactly
    """
    if not expected:
        return
    if not provided or provided != expected:
        raise AuthError("Invalid or missing API key")


def validate_phone(phone: Any) -> str:
    """
    Validate the required phone number.

    Returns:
        Trimmed phone number

    Raises:
        ClientError if missing, blank or not made of digits, spaces and + - ( )
    """
    if not phone or not _as_text(phone).strip():
        raise ClientError("Phone number is required", error="Validation failed")

    phone = _as_text(phone).strip()
    if not PHONE_PATTERN.match(phone):
        raise ClientError("Invalid phone number format", error="Validation failed")
    return phone


def validate_email(email: Any) -> str:
    """
    Validate the optional email address.

    Returns:
        Trimmed email, or "" when none was given

    Raises:
        ClientError if present but not shaped like local@domain.tld
    """
    if not email or not _as_text(email).strip():
        return ""

    email = _as_text(email).strip()
    if not EMAIL_PATTERN.match(email):
        raise ClientError("Invalid email format", error="Validation failed")
    return email
