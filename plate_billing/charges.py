"""Charge aggregation for the plate billing engine.

This module prices a partitioned ledger into a bill: it adds the rent of
every ledger entry, layers the service charge, worker charge and lost-plate
penalty on top, applies ad-hoc extra charges and discounts and finally
deducts the advance and itemized payments. The result is returned as a
``BillResult`` that carries the full audit trail.

The aggregator assumes validated, non-negative inputs; ``engine.calculate_bill``
performs that validation before calling ``aggregate``.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

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
    ServiceChargeMode,
)

ZERO = Decimal("0")


def compute_service_charge(rates: RateConfig, total_rent: Decimal, plates_issued: int) -> Decimal:
    """Return the service charge for the configured mode.

    ``PER_PLATE`` charges ``service_charge_rate`` for every plate issued,
    ``PERCENTAGE`` takes ``service_charge_percent`` percent of the rent,
    ``FIXED`` adds ``service_charge_fixed`` once and ``DISABLED`` adds nothing.
    """
    mode = rates.service_charge_mode
    if mode is ServiceChargeMode.PER_PLATE:
        return Decimal(plates_issued) * rates.service_charge_rate
    if mode is ServiceChargeMode.PERCENTAGE:
        return total_rent * rates.service_charge_percent / Decimal(100)
    if mode is ServiceChargeMode.FIXED:
        return rates.service_charge_fixed
    return ZERO


def split_extras(extras: Iterable[ChargeLine]) -> Tuple[List[ChargeLine], List[ChargeLine]]:
    """Separate negative-priced extra lines (discounts) from real charges."""
    charges: List[ChargeLine] = []
    discounts: List[ChargeLine] = []
    for line in extras:
        if line.total < 0:
            discounts.append(line)
        else:
            charges.append(line)
    return charges, discounts


def plate_totals(ledger: Sequence[LedgerEntry]) -> Tuple[int, int]:
    """Return ``(plates issued, plates returned)`` over the ledger."""
    issued = sum(e.plate_count for e in ledger if e.kind is EventKind.ISSUE)
    returned = sum(e.plate_count for e in ledger if e.kind is EventKind.RETURN)
    return issued, returned


def aggregate(
    ledger: Sequence[LedgerEntry],
    rates: RateConfig,
    extras: Iterable[ChargeLine] = (),
    discounts: Iterable[ChargeLine] = (),
    payments: Iterable[Payment] = (),
    advance_paid: Decimal = ZERO,
    *,
    client: Client,
    bill_date: date,
    date_ranges: Sequence[DateRange] = (),
    warnings: Iterable[NegativeBalanceClamped] = (),
    service_charge_override: Optional[Decimal] = None,
    account_closure: str = "continue",
    damaged_and_lost_reported: int = 0,
) -> BillResult:
    """Combine the priced ledger with charges and payments into a bill.

    Parameters
    ----------
    ledger: Sequence[LedgerEntry]
        Output of ``engine.partition``.
    rates: RateConfig
        Validated rate configuration.
    extras, discounts: Iterable[ChargeLine]
        Ad-hoc lines. Negative-priced extras are moved to the discounts.
        Discounts always reduce the total by the magnitude of their total.
    payments: Iterable[Payment]
        Itemized payments deducted from the total.
    advance_paid: Decimal
        Advance deducted from the total.
    service_charge_override: Optional[Decimal]
        When given, replaces the computed service charge (manual edit).

    Returns
    -------
    BillResult
        ``final_due`` when money is owed, otherwise ``balance_carry_forward``
        holding the credit for the next bill.
    """
    advance_paid = Decimal(str(advance_paid))
    extra_lines, negative_extras = split_extras(extras)
    discount_lines = list(discounts) + negative_extras
    payment_lines = list(payments)

    total_rent = sum((e.rent_amount for e in ledger), ZERO)
    issued, returned = plate_totals(ledger)
    opening_balance = sum(e.plate_count for e in ledger if e.kind is EventKind.OPENING)

    if service_charge_override is not None:
        service_charge = Decimal(str(service_charge_override))
    else:
        service_charge = compute_service_charge(rates, total_rent, issued)
    worker_charge = rates.worker_charge
    lost_plates_count = max(0, opening_balance + issued - returned)
    lost_plate_penalty = Decimal(lost_plates_count) * rates.lost_plate_penalty

    core_total = total_rent + service_charge + worker_charge + lost_plate_penalty
    extra_charges_total = sum((line.total for line in extra_lines), ZERO)
    discounts_total = sum((abs(line.total) for line in discount_lines), ZERO)
    adjusted_total = core_total + extra_charges_total - discounts_total

    payments_total = sum((p.amount for p in payment_lines), ZERO)
    paid = advance_paid + payments_total
    final_due = max(ZERO, adjusted_total - paid)
    balance_carry_forward = max(ZERO, paid - adjusted_total)

    period_start = ledger[0].date if ledger else bill_date

    return BillResult(
        client=client,
        bill_date=bill_date,
        period_start=period_start,
        rates=rates,
        ledger_entries=list(ledger),
        date_ranges=list(date_ranges),
        extra_charges=extra_lines,
        discounts=discount_lines,
        payments=payment_lines,
        total_plates_issued=issued,
        total_plates_returned=returned,
        opening_balance=opening_balance,
        lost_plates_count=lost_plates_count,
        total_rent=total_rent,
        service_charge=service_charge,
        worker_charge=worker_charge,
        lost_plate_penalty=lost_plate_penalty,
        core_total=core_total,
        extra_charges_total=extra_charges_total,
        discounts_total=discounts_total,
        adjusted_total=adjusted_total,
        payments_total=payments_total,
        advance_paid=advance_paid,
        final_due=final_due,
        balance_carry_forward=balance_carry_forward,
        warnings=list(warnings),
        damaged_and_lost_reported=damaged_and_lost_reported,
        account_closure=account_closure,
    )
