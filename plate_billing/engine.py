"""Core calculation engine for plate rental billing.

This module implements the ledger logic that turns a client's issues (udhar)
and returns (jama) into billed date ranges. Events are walked in order while
a running plate balance is maintained; each event is billed for the days
until the next event, and the last one up to and including the bill date.
Results are priced by ``charges.aggregate`` and returned as a ``BillResult``.

The engine is pure: it keeps no state between calls, performs no I/O and
does not log. Data fetching, numbering and persistence belong to the caller.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Union

from .charges import aggregate
from .data_models import (
    BillResult,
    ChargeLine,
    Client,
    DateRange,
    EventKind,
    LedgerEntry,
    NegativeBalanceClamped,
    Payment,
    RateConfig,
    RawIssue,
    RawReturn,
    ReturnDayRule,
    TransactionEvent,
)
from .errors import InvalidChargeLine, InvalidRateConfig, InvalidTransactionData
from .normalizer import count_damaged_and_lost, normalize, opening_event
from .utils import day_before, days_between, parse_date

ACCOUNT_CLOSURE_OPTIONS = ("continue", "close")


def _billable_days(
    event: TransactionEvent,
    next_event: Optional[TransactionEvent],
    bill_date: date,
    return_day_rule: ReturnDayRule,
) -> int:
    if next_event is not None:
        days = days_between(event.date, next_event.date)
    else:
        # The bill date itself is billed.
        days = days_between(event.date, bill_date) + 1
    # Jama effective next day: the return day is not billed at the new balance.
    if return_day_rule is ReturnDayRule.NEXT_DAY and event.kind is EventKind.RETURN and days > 0:
        days -= 1
    return max(0, days)


def partition(
    events: Sequence[TransactionEvent],
    bill_date: date,
    daily_rate: Decimal = Decimal("1"),
    return_day_rule: ReturnDayRule = ReturnDayRule.NEXT_DAY,
) -> List[LedgerEntry]:
    """Walk the ordered events and build the billing ledger.

    Parameters
    ----------
    events: Sequence[TransactionEvent]
        Events as returned by ``normalizer.normalize`` (date ascending, issues
        before returns on the same day).
    bill_date: date
        Last day covered by the bill.
    daily_rate: Decimal
        Rent per plate per day.
    return_day_rule: ReturnDayRule
        ``NEXT_DAY`` bills a return entry for one day less than the gap.

    Returns
    -------
    List[LedgerEntry]
        One entry per event. A return larger than the outstanding balance
        clamps the balance to zero; use ``clamp_warnings`` to report those.
        Entries with zero days or zero balance carry zero rent.
    """
    daily_rate = Decimal(str(daily_rate))
    entries: List[LedgerEntry] = []
    balance = 0
    for index, event in enumerate(events):
        balance_before = balance
        if event.kind is EventKind.RETURN:
            balance = max(0, balance - event.plate_count)
        else:
            balance += event.plate_count

        next_event = events[index + 1] if index + 1 < len(events) else None
        days = _billable_days(event, next_event, bill_date, return_day_rule)

        rent = Decimal("0")
        if days > 0 and balance > 0:
            rent = Decimal(balance) * Decimal(days) * daily_rate

        entries.append(
            LedgerEntry(
                date=event.date,
                kind=event.kind,
                document_number=event.document_number,
                plate_count=event.plate_count,
                balance_before=balance_before,
                balance_after=balance,
                effective_days=days,
                rent_amount=rent,
            )
        )
    return entries


def clamp_warnings(ledger: Iterable[LedgerEntry]) -> List[NegativeBalanceClamped]:
    """Return a warning for every return that took back more than was out."""
    return [
        NegativeBalanceClamped(
            date=entry.date,
            document_number=entry.document_number,
            requested=entry.plate_count,
            available=entry.balance_before,
        )
        for entry in ledger
        if entry.kind is EventKind.RETURN and entry.plate_count > entry.balance_before
    ]


def build_date_ranges(ledger: Sequence[LedgerEntry], bill_date: date) -> List[DateRange]:
    """Return the display ranges of the ledger entries that accrued rent.

    A range starts on the entry date and ends the day before the next entry
    (or on the bill date for the last entry).
    """
    ranges: List[DateRange] = []
    for index, entry in enumerate(ledger):
        if entry.rent_amount <= 0:
            continue
        if index + 1 < len(ledger):
            end_date = day_before(ledger[index + 1].date)
        else:
            end_date = bill_date
        ranges.append(
            DateRange(
                start_date=entry.date,
                end_date=end_date,
                plate_balance=entry.balance_after,
                days=entry.effective_days,
                amount=entry.rent_amount,
            )
        )
    return ranges


def audit_ledger(ledger: Sequence[LedgerEntry]) -> List[str]:
    """Check a ledger for internal consistency.

    Returns a list of problems; an empty list means the ledger is sound.
    The conservation check (issued minus returned equals the final balance)
    is skipped when a return was clamped, since clamping breaks it on purpose.
    """
    problems: List[str] = []
    for previous, current in zip(ledger, ledger[1:]):
        if current.date < previous.date:
            problems.append("Entry dates are not in ascending order")
            break
    if any(e.effective_days < 0 for e in ledger):
        problems.append("Negative day counts found")
    if any(e.balance_after < 0 for e in ledger):
        problems.append("Plate balance went negative")
    if ledger and not clamp_warnings(ledger):
        issued = sum(e.plate_count for e in ledger if e.kind is not EventKind.RETURN)
        returned = sum(e.plate_count for e in ledger if e.kind is EventKind.RETURN)
        if issued - returned != ledger[-1].balance_after:
            problems.append(
                f"Issued ({issued}) minus returned ({returned}) does not match "
                f"final balance ({ledger[-1].balance_after})"
            )
    return problems


def validate_rates(rates: RateConfig) -> None:
    """Raise ``InvalidRateConfig`` if any rate or charge is negative."""
    for name in (
        "daily_rate",
        "service_charge_rate",
        "service_charge_percent",
        "service_charge_fixed",
        "worker_charge",
        "lost_plate_penalty",
    ):
        value = getattr(rates, name)
        if not value.is_finite():
            raise InvalidRateConfig(f"{name} must be a finite number ({value})")
        if value < 0:
            raise InvalidRateConfig(f"{name} cannot be negative ({value})")


def validate_charge_lines(lines: Iterable[ChargeLine], label: str) -> None:
    for index, line in enumerate(lines, start=1):
        if not line.note or not line.note.strip():
            raise InvalidChargeLine(f"{label} {index}: note is required")
        if not (line.quantity.is_finite() and line.unit_price.is_finite() and line.total.is_finite()):
            raise InvalidChargeLine(f"{label} {index}: amounts must be finite numbers")
        if line.quantity <= 0:
            raise InvalidChargeLine(f"{label} {index}: item count must be greater than 0")
        if line.unit_price == 0:
            raise InvalidChargeLine(f"{label} {index}: price cannot be zero")


def validate_payments(payments: Iterable[Payment]) -> None:
    for index, payment in enumerate(payments, start=1):
        if not payment.note or not payment.note.strip():
            raise InvalidChargeLine(f"Payment {index}: note is required")
        if not payment.amount.is_finite() or payment.amount <= 0:
            raise InvalidChargeLine(f"Payment {index}: amount must be greater than 0")


def calculate_bill(
    client: Client,
    issues: Iterable[RawIssue],
    returns: Iterable[RawReturn],
    bill_date: Union[date, str],
    rates: Optional[RateConfig] = None,
    advance_paid: Decimal = Decimal("0"),
    extras: Iterable[ChargeLine] = (),
    discounts: Iterable[ChargeLine] = (),
    payments: Iterable[Payment] = (),
    *,
    service_charge_override: Optional[Decimal] = None,
    account_closure: str = "continue",
    opening_balance: int = 0,
    opening_date: Union[date, str, None] = None,
) -> BillResult:
    """Compute a complete bill for one client.

    Runs the three stages in order: normalize the raw challans and returns,
    partition them into a ledger, then aggregate charges and payments.
    Inputs are validated up front and the first problem raises a
    ``BillingError`` subclass; nothing is partially computed. The bill number
    is left empty for the caller to assign.

    ``opening_balance`` plates (see ``carried_balance``) are billed from
    ``opening_date`` as if issued that morning, so a bill that continues an
    earlier one keeps charging for plates still out. They are not counted as
    issued for the service charge.
    """
    rates = rates or RateConfig()
    validate_rates(rates)
    extras = list(extras)
    discounts = list(discounts)
    payments = list(payments)
    validate_charge_lines(extras, "Extra charge")
    validate_charge_lines(discounts, "Discount")
    validate_payments(payments)
    advance_paid = Decimal(str(advance_paid))
    if not advance_paid.is_finite():
        raise InvalidChargeLine(f"Advance paid must be a finite number ({advance_paid})")
    if advance_paid < 0:
        raise InvalidChargeLine(f"Advance paid cannot be negative ({advance_paid})")
    if account_closure not in ACCOUNT_CLOSURE_OPTIONS:
        raise InvalidChargeLine(f"Account closure must be 'continue' or 'close'; got {account_closure}")
    if service_charge_override is not None:
        service_charge_override = Decimal(str(service_charge_override))
        if not service_charge_override.is_finite() or service_charge_override < 0:
            raise InvalidRateConfig(f"Service charge override must be a non-negative number ({service_charge_override})")

    try:
        bill_day = parse_date(bill_date)
    except ValueError as exc:
        raise InvalidTransactionData(f"Bill date: {exc}") from exc

    opening = None
    if opening_balance:
        if opening_date is None:
            raise InvalidTransactionData("Opening balance needs an opening date")
        opening = opening_event(opening_balance, opening_date)

    returns = list(returns)
    events = normalize(issues, returns, opening)
    ledger = partition(events, bill_day, rates.daily_rate, rates.return_day_rule)

    return aggregate(
        ledger,
        rates,
        extras,
        discounts,
        payments,
        advance_paid,
        client=client,
        bill_date=bill_day,
        date_ranges=build_date_ranges(ledger, bill_day),
        warnings=clamp_warnings(ledger),
        service_charge_override=service_charge_override,
        account_closure=account_closure,
        damaged_and_lost_reported=count_damaged_and_lost(returns),
    )


def carried_balance(issues: Iterable[RawIssue], returns: Iterable[RawReturn]) -> int:
    """Return the plates still out after every given challan and return.

    Used to open a bill that continues from an earlier one. Over-returns
    clamp to zero exactly as they do in ``partition``.
    """
    balance = 0
    for event in normalize(issues, returns):
        if event.kind is EventKind.RETURN:
            balance = max(0, balance - event.plate_count)
        else:
            balance += event.plate_count
    return balance
