"""
Phone number and identifier validation shared by webhook boundaries.
"""

import re

from leadcatcher.shared.exceptions import InvalidPhoneNumberError

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")
UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_valid_e164(value: str | None) -> bool:
    return bool(value) and E164_PATTERN.match(value) is not None


def is_valid_uuid(value: str | None) -> bool:
    return bool(value) and UUID_PATTERN.match(value) is not None


def normalize_phone_number(phone: str) -> str:
    """Normalize a North American or E.164 phone number.

    Args:
        phone: Raw phone number string, e.g. "(555) 123-4567".

    Returns:
        The number in E.164 format.

    Raises:
        InvalidPhoneNumberError: If the number cannot be normalized.
    """
    if not phone:
        raise InvalidPhoneNumberError(phone)

    cleaned = re.sub(r"[^\d+]", "", phone.strip())
    digits = cleaned.lstrip("+")

    if cleaned.startswith("+") and E164_PATTERN.match("+" + digits):
        return "+" + digits
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"

    raise InvalidPhoneNumberError(phone)


def mask_phone(phone: str | None) -> str:
    """Mask all but the last four digits."""
    if not phone:
        return ""
    if len(phone) <= 4:
        return "*" * len(phone)
    return "*" * (len(phone) - 4) + phone[-4:]
