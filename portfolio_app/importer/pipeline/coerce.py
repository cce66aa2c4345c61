"""
Text coercion helpers shared by validation rules and the entity resolver.

Staging ``mapped_data`` values arrive as strings (or ``None``); these helpers
turn them into the typed values the domain models store.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%Y/%m/%d",
    "%m-%d-%Y",
    "%d-%b-%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%Y%m%d",
)

_NON_DIGITS = re.compile(r"\D")
_CURRENCY_NOISE = re.compile(r"[\s$,]")


def coerce_str(value: object | None) -> str:
    if value is None:
        return ""
    return str(value).strip()


def optional_str(value: object | None) -> str | None:
    text = coerce_str(value)
    return text or None


def digits_only(value: object | None) -> str:
    return _NON_DIGITS.sub("", coerce_str(value))


def parse_decimal(value: object | None) -> Decimal | None:
    """
    Parse a monetary amount such as ``"1,234.50"`` or ``"$99"``.

    Returns ``None`` for empty or unparseable input; NaN and infinities are
    treated as unparseable.
    """
    text = _CURRENCY_NOISE.sub("", coerce_str(value))
    if not text:
        return None
    if text.startswith("(") and text.endswith(")"):
        text = f"-{text[1:-1]}"
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount


def parse_date(value: object | None) -> date | None:
    """Parse a calendar date from the formats spreadsheets commonly produce."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = coerce_str(value)
    if not text:
        return None
    if text[:4].isdigit() and ("T" in text or " " in text):
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None
