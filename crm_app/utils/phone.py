"""
Phone number normalization for imported records.

Imported phone cells arrive in every shape a spreadsheet can produce
("(415) 555-1234", "+44 20 7946 1234", "n/a"). Normalization keeps digits and
the plus sign and accepts the result only when it looks like a full number.
"""

import re
from typing import Any, Optional
import logging

logger = logging.getLogger(__name__)

MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15

_DISALLOWED_CHARS = re.compile(r"[^\d+]")


def normalize_phone(
    value: Any,
    *,
    min_digits: int = MIN_PHONE_DIGITS,
    max_digits: int = MAX_PHONE_DIGITS,
) -> Optional[str]:
    """
    Strip a phone value down to digits and ``+``.

    Args:
        value: Raw cell value
        min_digits: Fewest digits accepted (inclusive)
        max_digits: Most digits accepted (inclusive)

    Returns:
        The cleaned number, or None when empty or the digit count is out of range.

    Examples:
        >>> normalize_phone("(415) 555-1234")
        '4155551234'
        >>> normalize_phone("+44 20 7946 1234")
        '+442079461234'
        >>> normalize_phone("abc") is None
        True
    """
    if value is None:
        return None

    text = str(value).strip()
    if not text:
        return None

    cleaned = _DISALLOWED_CHARS.sub("", text)
    digit_count = sum(1 for char in cleaned if char.isdigit())

    if digit_count < min_digits or digit_count > max_digits:
        logger.debug("Dropping phone value with %d digits", digit_count)
        return None

    return cleaned


def phone_digits(value: Any) -> str:
    """Digits only, used for dialing-prefix lookups."""
    if value is None:
        return ""
    return re.sub(r"\D", "", str(value))
