"""Phone number normalisation to the canonical 2547XXXXXXXX form."""
import re

from .exceptions import PhoneValidationError

COUNTRY_CODE = "254"

_WHITESPACE = re.compile(r"\s+")
_NON_DIGIT = re.compile(r"\D")
_LOCAL_NINE_DIGITS = re.compile(r"^\d{9}$")
_CANONICAL = re.compile(r"^2547\d{8}$")


def normalize_phone(raw_phone: str) -> str:
    """
    Normalise a phone number to 2547XXXXXXXX.

    Accepts 07XXXXXXXX, +2547XXXXXXXX, 2547XXXXXXXX and 7XXXXXXXX, with any
    whitespace or punctuation.

    Raises:
        PhoneValidationError: If the number does not resolve to the canonical form
    """
    phone = _WHITESPACE.sub("", (raw_phone or "").strip())

    if phone.startswith("07"):
        phone = COUNTRY_CODE + phone[1:]
    elif phone.startswith("+" + COUNTRY_CODE):
        phone = phone[1:]
    elif _LOCAL_NINE_DIGITS.match(phone):
        phone = COUNTRY_CODE + phone

    phone = _NON_DIGIT.sub("", phone)

    if not _CANONICAL.match(phone):
        raise PhoneValidationError(raw_phone, phone)
    return phone


def mask_phone(phone: str) -> str:
    """Mask all but the last three digits for logging."""
    if len(phone) <= 3:
        return "***"
    return "*" * (len(phone) - 3) + phone[-3:]
