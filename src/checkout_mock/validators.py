"""Structural checks for card fields and one-time codes.

These run on both sides of the protocol: the client uses them to fail fast,
the gateway re-runs them because it is the authority.
"""

import re

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_DIGITS_RE = re.compile(r"^[0-9]+$")


def _digits(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not _DIGITS_RE.match(value):
        return None
    return value


def normalize_card_number(card_number: str) -> str:
    return re.sub(r"\s", "", card_number or "")


def is_valid_card_number(card_number: str) -> bool:
    if not isinstance(card_number, str):
        return False
    value = _digits(normalize_card_number(card_number))
    return value is not None and 13 <= len(value) <= 19


def is_valid_expiry(month: str, year: str) -> bool:
    """Month 1-12, year as YY or YYYY. Expired dates are accepted in this simulation."""
    month_digits = _digits(month)
    year_digits = _digits(year)
    if month_digits is None or year_digits is None:
        return False
    if len(month_digits) > 2 or not 1 <= int(month_digits) <= 12:
        return False
    if len(year_digits) == 2:
        return True
    return len(year_digits) == 4 and 2000 <= int(year_digits) <= 2099


def is_valid_cvv(cvv: str) -> bool:
    value = _digits(cvv)
    return value is not None and 3 <= len(value) <= 4


def is_valid_challenge_code(code: str) -> bool:
    value = _digits(code)
    return value is not None and value == code and len(value) == 6


def is_valid_email(email: str) -> bool:
    return isinstance(email, str) and bool(_EMAIL_RE.match(email.strip()))


def mask_card(card_number: str) -> str:
    value = normalize_card_number(card_number)
    if len(value) >= 10:
        return f"{value[:6]}{'*' * (len(value) - 10)}{value[-4:]}"
    if len(value) >= 4:
        return f"{value[:2]}{'*' * (len(value) - 4)}{value[-2:]}"
    return "*" * len(value)


def card_info(card_bin: str | None, last_four: str | None) -> str | None:
    """Display string kept on a payment, e.g. ``450803****4509``."""
    if not card_bin or not last_four:
        return None
    return f"{card_bin}****{last_four}"
