"""Output helpers for the plate billing engine.

This module provides simple functions to render bills, ledgers and date
ranges in a tabular text format, plus ``bill_to_dict`` which turns a
``BillResult`` into the JSON-serialisable display record consumed by the
export commands, the web API and invoice renderers. We rely only on built-in
printing and string formatting here.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable

from .data_models import BillResult, DateRange, EventKind, LedgerEntry

CENT = Decimal("0.01")


def money(value: Decimal) -> str:
    """Format an amount with two decimal places (half-up rounding)."""
    return str(Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))


def format_date(value: date) -> str:
    return value.strftime("%d/%m/%Y")


def format_date_range(start: date, end: date) -> str:
    """Return ``dd/mm/yyyy`` for a single day, else ``start – end``."""
    if start == end:
        return format_date(start)
    return f"{format_date(start)} – {format_date(end)}"


def print_summary(bill: BillResult) -> None:
    """Print the totals of a bill in a human-readable format."""
    print("Summary")
    print("-" * 72)
    if bill.bill_number:
        print(f"Bill number        : {bill.bill_number}")
    print(f"Client             : {bill.client.name}")
    print(f"Period             : {format_date_range(bill.period_start, bill.bill_date)}")
    if bill.opening_balance:
        print(f"Opening balance    : {bill.opening_balance}")
    print(f"Plates issued      : {bill.total_plates_issued}")
    print(f"Plates returned    : {bill.total_plates_returned}")
    print(f"Total rent         : {money(bill.total_rent)}")
    if bill.service_charge:
        print(f"Service charge     : {money(bill.service_charge)}")
    if bill.worker_charge:
        print(f"Worker charge      : {money(bill.worker_charge)}")
    if bill.lost_plate_penalty:
        print(
            f"Lost plates        : {bill.lost_plates_count} "
            f"(penalty {money(bill.lost_plate_penalty)})"
        )
    print(f"Core total         : {money(bill.core_total)}")
    if bill.extra_charges_total:
        print(f"Extra charges      : {money(bill.extra_charges_total)}")
    if bill.discounts_total:
        print(f"Discounts          : -{money(bill.discounts_total)}")
    print(f"Adjusted total     : {money(bill.adjusted_total)}")
    if bill.advance_paid:
        print(f"Advance paid       : {money(bill.advance_paid)}")
    if bill.payments_total:
        print(f"Payments           : {money(bill.payments_total)}")
    print(f"Final due          : {money(bill.final_due)}")
    if bill.balance_carry_forward:
        print(f"Carry forward      : {money(bill.balance_carry_forward)}")
    for warning in bill.warnings:
        print(f"WARNING            : {warning}")
    print("-" * 72)


def print_ledger(ledger: Iterable[LedgerEntry]) -> None:
    """Print the ledger entries as a simple table."""
    headers = ["Date", "Doc", "Plates", "Udhar", "Jama", "Balance", "Days", "Rent"]
    print("\t".join(headers))
    for entry in ledger:
        is_issue = entry.kind is not EventKind.RETURN
        row = [
            format_date(entry.date),
            entry.document_number,
            str(entry.balance_before),
            str(entry.plate_count) if is_issue else "-",
            "-" if is_issue else str(entry.plate_count),
            str(entry.balance_after),
            str(entry.effective_days),
            money(entry.rent_amount),
        ]
        print("\t".join(row))


def print_date_ranges(ranges: Iterable[DateRange]) -> None:
    print(f"{'Range':28s} {'Plates':>8s} {'Days':>6s} {'Amount':>12s}")
    for r in ranges:
        label = format_date_range(r.start_date, r.end_date)
        print(f"{label:28s} {r.plate_balance:8d} {r.days:6d} {money(r.amount):>12s}")


def print_comparison(s1: Dict[str, Any], s2: Dict[str, Any], labels=("Scenario1", "Scenario2")) -> None:
    """Print two bill summaries side by side.

    The difference column is ``second - first``; a negative difference means
    the second scenario bills less.
    """
    print("Comparison")
    print("=" * 72)
    keys = ["total_rent", "core_total", "adjusted_total", "final_due"]
    print(f"{'Metric':20s} {labels[0]:>15s} {labels[1]:>15s} {'Difference':>15s}")
    for key in keys:
        v1 = Decimal(s1[key])
        v2 = Decimal(s2[key])
        print(f"{key:20s} {money(v1):>15s} {money(v2):>15s} {money(v2 - v1):>15s}")
    print("=" * 72)


def _line_to_dict(line) -> Dict[str, Any]:
    return {
        "note": line.note,
        "quantity": str(line.quantity),
        "unit_price": money(line.unit_price),
        "total": money(line.total),
    }


def bill_to_dict(bill: BillResult) -> Dict[str, Any]:
    """Convert a bill into a JSON-serialisable display record.

    Dates are ISO strings and amounts are strings with two decimals so no
    precision is lost on the way to a renderer.
    """
    return {
        "bill_number": bill.bill_number,
        "client": {
            "id": bill.client.id,
            "name": bill.client.name,
            "site": bill.client.site,
            "mobile_number": bill.client.mobile_number,
        },
        "bill_date": bill.bill_date.isoformat(),
        "period_start": bill.period_start.isoformat(),
        "return_day_rule": bill.rates.return_day_rule.value,
        "service_charge_mode": bill.rates.service_charge_mode.value,
        "daily_rate": money(bill.rates.daily_rate),
        "ledger_entries": [
            {
                "date": e.date.isoformat(),
                "kind": e.kind.value,
                "document_number": e.document_number,
                "plate_count": e.plate_count,
                "balance_before": e.balance_before,
                "balance_after": e.balance_after,
                "days": e.effective_days,
                "rent_amount": money(e.rent_amount),
            }
            for e in bill.ledger_entries
        ],
        "date_ranges": [
            {
                "start_date": r.start_date.isoformat(),
                "end_date": r.end_date.isoformat(),
                "display": format_date_range(r.start_date, r.end_date),
                "plate_balance": r.plate_balance,
                "days": r.days,
                "amount": money(r.amount),
            }
            for r in bill.date_ranges
        ],
        "extra_charges": [_line_to_dict(line) for line in bill.extra_charges],
        "discounts": [_line_to_dict(line) for line in bill.discounts],
        "payments": [{"note": p.note, "amount": money(p.amount)} for p in bill.payments],
        "opening_balance": bill.opening_balance,
        "total_plates_issued": bill.total_plates_issued,
        "total_plates_returned": bill.total_plates_returned,
        "lost_plates_count": bill.lost_plates_count,
        "damaged_and_lost_reported": bill.damaged_and_lost_reported,
        "total_rent": money(bill.total_rent),
        "service_charge": money(bill.service_charge),
        "worker_charge": money(bill.worker_charge),
        "lost_plate_penalty": money(bill.lost_plate_penalty),
        "core_total": money(bill.core_total),
        "extra_charges_total": money(bill.extra_charges_total),
        "discounts_total": money(bill.discounts_total),
        "adjusted_total": money(bill.adjusted_total),
        "payments_total": money(bill.payments_total),
        "advance_paid": money(bill.advance_paid),
        "final_due": money(bill.final_due),
        "balance_carry_forward": money(bill.balance_carry_forward),
        "account_closure": bill.account_closure,
        "warnings": [str(w) for w in bill.warnings],
    }
