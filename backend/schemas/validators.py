"""Shared Pydantic validators.

Keep these small and dependency-free so schema modules can reuse them without
introducing import cycles.
"""

import re
import unicodedata
from typing import Any


# Deliverability is not checked; the address only has to look like one
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+$")

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128


def strip_invisible_edges(value: str) -> str:
    """
    Strip leading/trailing whitespace and Unicode format characters (Cf).

    This prevents visually-identical values like "\\u200bAnna" from slipping
    past length checks.
    """
    if not isinstance(value, str):
        return value
    start = 0
    end = len(value)
    while start < end and (
        value[start].isspace() or unicodedata.category(value[start]) == "Cf"
    ):
        start += 1
    while end > start and (
        value[end - 1].isspace() or unicodedata.category(value[end - 1]) == "Cf"
    ):
        end -= 1
    return value[start:end]


def ensure_utf8_encodable(value: str) -> str:
    """
    Reject strings that cannot be encoded to UTF-8 (e.g., unpaired surrogates).

    Unpaired surrogates can enter via JSON escapes like "\\uD800" and later
    crash hashing and JSON serialization.
    """
    if not isinstance(value, str):
        return value
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        raise ValueError("Text contains invalid Unicode characters")
    return value


def normalize_required_text(value: Any, *, field_name: str = "Field") -> Any:
    """Trim invisible edges, reject blank, enforce UTF-8."""
    if value is None or not isinstance(value, str):
        return value
    text = strip_invisible_edges(value)
    if not text:
        raise ValueError(f"{field_name} cannot be empty")
    return ensure_utf8_encodable(text)


def normalize_email_address(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    email = value.strip().lower()
    if not email:
        raise ValueError("Email cannot be empty")
    if not EMAIL_PATTERN.match(email):
        raise ValueError("Invalid Email Address")
    return ensure_utf8_encodable(email)


def validate_password_strength(value: Any) -> Any:
    """At least one uppercase, one lowercase, one digit and one symbol."""
    if not isinstance(value, str):
        return value
    ensure_utf8_encodable(value)
    if not (
        any(c.isupper() for c in value)
        and any(c.islower() for c in value)
        and any(c.isdigit() for c in value)
        and any(not c.isalnum() and not c.isspace() for c in value)
    ):
        raise ValueError(
            "Password must contain at least 1 uppercase, 1 lowercase, 1 number, and 1 symbol"
        )
    return value
