"""Utility functions for the plate billing engine.

This module provides helpers for parsing user input into Python data types and
for handling dates: parsing ISO day strings into ``datetime.date`` instances,
counting whole days between dates and formatting bill numbers.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation, getcontext
import re
from typing import Optional, Union

getcontext().prec = 28  # increase decimal precision to avoid rounding errors

BILL_NUMBER_PREFIX = "BILL-"
_BILL_NUMBER_RE = re.compile(r"(\d+)$")


def parse_date(value: Union[date, str, None]) -> date:
    """Parse a ``YYYY-MM-DD`` string (or pass through a ``date``).

    Timestamps such as ``"2024-03-01T10:00:00"`` are accepted and truncated to
    the day, since store rows sometimes carry a time component.

    Raises
    ------
    ValueError
        If the value is missing or not a valid calendar date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        raise ValueError(f"Invalid date: {value!r}")
    text = value.strip()
    # Only a time part may follow the day.
    if len(text) > 10 and text[10] not in "T ":
        raise ValueError(f"Invalid date: {value!r}")
    try:
        return date.fromisoformat(text[:10])
    except ValueError as exc:
        raise ValueError(f"Invalid date: {value!r}") from exc


def days_between(start: date, end: date) -> int:
    """Return ``end - start`` in whole days (negative if ``end`` is earlier)."""
    return (end - start).days


def day_before(dt: date) -> date:
    return dt - timedelta(days=1)


def next_day(dt: date) -> date:
    return dt + timedelta(days=1)


def decimal_from_str(value: str) -> Decimal:
    """Convert a numeric string into a ``Decimal``.

    The function strips any commas and handles both integer and float-like
    strings. It raises ``ValueError`` if conversion fails or the value is not
    finite (``NaN``, ``Infinity``).
    """
    try:
        cleaned = str(value).replace(",", "").strip()
        result = Decimal(cleaned)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Invalid numeric value: {value}") from exc
    if not result.is_finite():
        raise ValueError(f"Invalid numeric value: {value}")
    return result


def next_bill_number(last_number: Optional[str]) -> str:
    """Return the bill number following ``last_number``.

    Numbers look like ``BILL-0001``. When there is no previous bill, or its
    number has no trailing digits, numbering starts again at 1.
    """
    next_value = 1
    if last_number:
        match = _BILL_NUMBER_RE.search(last_number)
        if match:
            next_value = int(match.group(1)) + 1
    return f"{BILL_NUMBER_PREFIX}{next_value:04d}"
