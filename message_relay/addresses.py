"""Recipient address formats shared by message validation and providers."""

import re

PHONE_FORMAT_ERROR = "Invalid phone number format. Must be in E.164 format (e.g., +1234567890)"
EMAIL_FORMAT_ERROR = "Invalid email format"
EMAIL_MAX_LENGTH = 320

_PHONE_SEPARATORS_RE = re.compile(r"[\s\-()]")
_PHONE_PATTERNS = (
    re.compile(r"^\+[1-9]\d{1,14}$"),  # E.164
    re.compile(r"^1[2-9]\d{9}$"),  # North American with country code
    re.compile(r"^[2-9]\d{9}$"),  # North American ten digit
)
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def strip_phone_separators(value: str) -> str:
    return _PHONE_SEPARATORS_RE.sub("", value)


def is_valid_phone(value: object) -> bool:
    if not isinstance(value, str):
        return False
    cleaned = strip_phone_separators(value)
    return any(pattern.match(cleaned) for pattern in _PHONE_PATTERNS)


def is_valid_email(value: object) -> bool:
    if not isinstance(value, str) or len(value) > EMAIL_MAX_LENGTH:
        return False
    return bool(_EMAIL_RE.match(value))


def is_valid_address(value: object, message_type: str) -> bool:
    if message_type == "email":
        return is_valid_email(value)
    return is_valid_phone(value)


def address_error(message_type: str) -> str:
    return EMAIL_FORMAT_ERROR if message_type == "email" else PHONE_FORMAT_ERROR
