import re

from django.conf import settings

DEFAULT_COUNTRY_CODE = '351'
MIN_PHONE_DIGITS = 7


def _clean_digits(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def normalize_phone(phone_value: str, default_country_code: str = None) -> str:
    """Return a normalized international phone number with a leading +.

    Local numbers (nine digits or fewer) get the configured country code,
    ``PHONE_COUNTRY_CODE`` in settings. Input that already starts with "+" or
    "00" keeps its own country code.
    """
    raw_value = (phone_value or "").strip()
    digits = _clean_digits(raw_value)

    if not digits:
        return ''

    if raw_value.startswith('+'):
        return f"+{digits}"

    if raw_value.startswith('00'):
        return f"+{digits[2:]}"

    if len(digits) <= 9:
        country_code = default_country_code or getattr(settings, 'PHONE_COUNTRY_CODE', DEFAULT_COUNTRY_CODE)
        return f"+{_clean_digits(country_code) or DEFAULT_COUNTRY_CODE}{digits}"

    return f"+{digits}"


def is_valid_phone_input(phone_value: str) -> bool:
    """Check that a phone-like value contains enough digits to be a real number."""
    return len(_clean_digits(phone_value)) >= MIN_PHONE_DIGITS
