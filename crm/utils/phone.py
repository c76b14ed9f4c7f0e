"""
Phone number normalization for client records.

Uses phonenumbers library to build a stable identity key from a client's
country code and local number, so imports can skip clients already on file.
"""

import re
import phonenumbers
from typing import Optional

from crm.config import settings


_NON_DIGITS = re.compile(r'\D+')


def _digits(value: Optional[str]) -> str:
    return _NON_DIGITS.sub('', value or '')


def normalize_phone(
    country_code: Optional[str],
    phone_number: Optional[str],
    region: Optional[str] = None
) -> str:
    """
    Normalize a country code and local number into a comparable key.

    Parses "<country code><number>" with phonenumbers and returns the E164
    form when the result is a valid number. Falls back to "+<digits>" built
    from the raw input when phonenumbers cannot validate it, so two records
    typed identically still compare equal.

    Args:
        country_code: Dialing prefix such as "+54" (default from settings)
        phone_number: Local number as typed by the user
        region: Region hint for numbers typed in national format

    Returns:
        Normalized phone key, or an empty string if there are no digits
    """
    code_digits = _digits(country_code or settings.default_country_code)
    number_digits = _digits(phone_number)

    if not number_digits:
        return ''

    candidate = f"+{code_digits}{number_digits}"

    try:
        parsed = phonenumbers.parse(candidate, region or settings.default_phone_region)
        if phonenumbers.is_valid_number(parsed):
            return phonenumbers.format_number(
                parsed,
                phonenumbers.PhoneNumberFormat.E164
            )
    except phonenumbers.NumberParseException:
        pass

    return candidate
