"""Merge challans and returns into one ordered event stream."""

from __future__ import annotations

from datetime import date
from typing import Iterable, List, Optional, Sequence, Union

from .data_models import EventKind, RawIssue, RawLineItem, RawReturn, TransactionEvent
from .errors import InvalidTransactionData
from .utils import parse_date

OPENING_DOCUMENT = "OPENING"

# An opening balance sorts first, then issues before returns on the same day.
_KIND_PRIORITY = {EventKind.OPENING: 0, EventKind.ISSUE: 1, EventKind.RETURN: 2}


def _quantity(value, document_number: str, field_name: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidTransactionData(
            f"{document_number}: {field_name} must be a whole number, got {value!r}"
        )
    if value < 0:
        raise InvalidTransactionData(
            f"{document_number}: {field_name} cannot be negative ({value})"
        )
    return value


def _plate_count(items: Sequence[RawLineItem], document_number: str) -> int:
    total = 0
    for item in items:
        if item.quantity is None:
            raise InvalidTransactionData(f"{document_number}: line item has no quantity")
        total += _quantity(item.quantity, document_number, "quantity")
        total += _quantity(item.partner_quantity, document_number, "partner quantity")
        # Reported only, never added to the balance.
        _quantity(item.damaged_quantity, document_number, "damaged quantity")
        _quantity(item.lost_quantity, document_number, "lost quantity")
    return total


def _to_event(record: Union[RawIssue, RawReturn], kind: EventKind) -> TransactionEvent:
    try:
        event_date = parse_date(record.date)
    except ValueError as exc:
        raise InvalidTransactionData(f"{record.document_number}: {exc}") from exc
    return TransactionEvent(
        date=event_date,
        kind=kind,
        plate_count=_plate_count(record.items, record.document_number),
        document_number=record.document_number,
    )


def normalize(
    issues: Iterable[RawIssue],
    returns: Iterable[RawReturn],
    opening: Optional[TransactionEvent] = None,
) -> List[TransactionEvent]:
    """Return issues and returns as a single chronologically ordered list.

    Each record becomes one event whose ``plate_count`` is the sum of its
    line items, partner stock included. Events are ordered by date, issues
    before returns on the same date; otherwise input order is kept. An
    ``opening`` event (plates carried over from an earlier bill) is placed
    ahead of everything on its date.

    Raises ``InvalidTransactionData`` for the first malformed record; no
    partial list is returned.
    """
    events = [_to_event(r, EventKind.ISSUE) for r in issues]
    events.extend(_to_event(r, EventKind.RETURN) for r in returns)
    if opening is not None:
        events.insert(0, opening)
    return sorted(events, key=lambda e: (e.date, _KIND_PRIORITY[e.kind]))


def opening_event(plate_count: int, on: Union[date, str]) -> TransactionEvent:
    """Build the event that carries an outstanding balance into a new bill."""
    try:
        event_date = parse_date(on)
    except ValueError as exc:
        raise InvalidTransactionData(f"Opening balance: {exc}") from exc
    return TransactionEvent(
        date=event_date,
        kind=EventKind.OPENING,
        plate_count=_quantity(plate_count, "Opening balance", "plate count"),
        document_number=OPENING_DOCUMENT,
    )


def count_damaged_and_lost(returns: Iterable[RawReturn]) -> int:
    """Total damaged and lost plates reported on returns (display only)."""
    return sum(
        _quantity(item.damaged_quantity, record.document_number, "damaged quantity")
        + _quantity(item.lost_quantity, record.document_number, "lost quantity")
        for record in returns
        for item in record.items
    )
