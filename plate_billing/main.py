"""Command-line interface for the plate billing engine.

This module uses the ``click`` library to implement a multi-command
interface. Users can compute a full bill from a transactions file, print only
the ledger with its consistency audit, or compare the two return-day rules on
the same data. Results can be printed to the terminal or exported to
JSON/CSV files.

The transactions file is JSON of the form::

    {
      "client": {"id": "c1", "name": "Ramesh", "site": "Navrangpura"},
      "issues": [{"number": "CH-1", "date": "2024-01-01",
                  "items": [{"plate_size": "2 X 3", "quantity": 100}]}],
      "returns": [{"number": "RT-1", "date": "2024-01-11",
                   "items": [{"plate_size": "2 X 3", "quantity": 40}]}]
    }
"""

from __future__ import annotations

import csv
import json
import logging
from dataclasses import replace
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click

from .data_models import (
    ChargeLine,
    Client,
    Payment,
    RateConfig,
    RawIssue,
    RawLineItem,
    RawReturn,
    ReturnDayRule,
    ServiceChargeMode,
    RATE_PRESETS,
)
from .engine import audit_ledger, calculate_bill
from .errors import BillingError
from .formatter import (
    bill_to_dict,
    money,
    print_comparison,
    print_date_ranges,
    print_ledger,
    print_summary,
)
from .utils import decimal_from_str

logger = logging.getLogger(__name__)


def parse_amount(value: str) -> Decimal:
    """Parse a numeric string with an optional ``k`` suffix.

    Accepts plain numbers ("1500", "1,500.50") and shorthand such as "2k"
    meaning 2000. Returns a Decimal.
    """
    value = value.strip().lower().replace(",", "")
    factor = Decimal(1)
    if value.endswith("k"):
        factor = Decimal(1000)
        value = value[:-1]
    try:
        return decimal_from_str(value) * factor
    except ValueError:
        raise click.BadParameter(f"Invalid amount: {value}")


def parse_charge_strings(values: Tuple[str, ...], label: str) -> List[ChargeLine]:
    lines: List[ChargeLine] = []
    for item in values:
        parts = item.rsplit(":", 2)
        if len(parts) != 3:
            raise click.BadParameter(f"{label} must be in NOTE:QTY:PRICE format; got {item}")
        note, qty_str, price_str = parts
        lines.append(
            ChargeLine(note=note.strip(), quantity=parse_amount(qty_str), unit_price=parse_amount(price_str))
        )
    return lines


def parse_payment_strings(values: Tuple[str, ...]) -> List[Payment]:
    payments: List[Payment] = []
    for item in values:
        parts = item.rsplit(":", 1)
        if len(parts) != 2:
            raise click.BadParameter(f"Payment must be in NOTE:AMOUNT format; got {item}")
        note, amount_str = parts
        payments.append(Payment(note=note.strip(), amount=parse_amount(amount_str)))
    return payments


def build_rates_from_options(
    preset: Optional[str],
    daily_rate: Optional[str],
    service_mode: Optional[str],
    service_rate: Optional[str],
    worker_charge: Optional[str],
    lost_penalty: Optional[str],
    return_rule: Optional[str],
) -> RateConfig:
    rates = RateConfig.preset(preset) if preset else RateConfig()
    changes: Dict[str, Any] = {}
    if daily_rate is not None:
        changes["daily_rate"] = parse_amount(daily_rate)
    if service_mode is not None:
        changes["service_charge_mode"] = ServiceChargeMode(service_mode)
    if service_rate is not None:
        mode = changes.get("service_charge_mode", rates.service_charge_mode)
        field_name = {
            ServiceChargeMode.PER_PLATE: "service_charge_rate",
            ServiceChargeMode.PERCENTAGE: "service_charge_percent",
            ServiceChargeMode.FIXED: "service_charge_fixed",
        }.get(mode)
        if field_name is None:
            raise click.BadParameter("--service-rate needs a service mode other than 'disabled'")
        changes[field_name] = parse_amount(service_rate)
    if worker_charge is not None:
        changes["worker_charge"] = parse_amount(worker_charge)
    if lost_penalty is not None:
        changes["lost_plate_penalty"] = parse_amount(lost_penalty)
    if return_rule is not None:
        changes["return_day_rule"] = ReturnDayRule(return_rule)
    return replace(rates, **changes) if changes else rates


def _parse_items(raw_items: List[Dict[str, Any]]) -> List[RawLineItem]:
    return [
        RawLineItem(
            plate_size=str(item.get("plate_size", "")),
            quantity=item.get("quantity"),
            partner_quantity=item.get("partner_quantity", 0),
            damaged_quantity=item.get("damaged_quantity", 0),
            lost_quantity=item.get("lost_quantity", 0),
        )
        for item in raw_items
    ]


def load_transactions(path: Path) -> Tuple[Client, List[RawIssue], List[RawReturn]]:
    """Read a transactions JSON file into a client and raw records."""
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise click.BadParameter(f"Cannot read transactions file {path}: {exc}")
    client_data = data.get("client") or {}
    client = Client(
        id=str(client_data.get("id", "")),
        name=client_data.get("name", "Unknown client"),
        site=client_data.get("site", ""),
        mobile_number=client_data.get("mobile_number", ""),
    )
    issues = [
        RawIssue(document_number=r.get("number", ""), date=r.get("date"), items=_parse_items(r.get("items", [])))
        for r in data.get("issues", [])
    ]
    returns = [
        RawReturn(document_number=r.get("number", ""), date=r.get("date"), items=_parse_items(r.get("items", [])))
        for r in data.get("returns", [])
    ]
    logger.debug("Loaded %d issues and %d returns from %s", len(issues), len(returns), path)
    return client, issues, returns


def export_to_json(path: Path, data: Dict[str, Any]) -> None:
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def export_to_csv(path: Path, data: Dict[str, Any]) -> None:
    """Export the ledger of a bill to a CSV file."""
    header = ["Date", "Kind", "Document", "Plates", "Balance_Before", "Balance_After", "Days", "Rent"]
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        for e in data["ledger_entries"]:
            writer.writerow(
                [
                    e["date"],
                    e["kind"],
                    e["document_number"],
                    e["plate_count"],
                    e["balance_before"],
                    e["balance_after"],
                    e["days"],
                    e["rent_amount"],
                ]
            )


def _run(client: Client, *args, **kwargs):
    try:
        return calculate_bill(client, *args, **kwargs)
    except BillingError as exc:
        logger.error("Bill calculation failed for client %s: %s", client.name, exc)
        raise click.ClickException(
            f"bill calculation failed for client {client.name} - check transaction data: {exc}"
        )


def rate_options(func):
    """Attach the shared rate options to a command."""
    options = [
        click.option("--preset", type=click.Choice(sorted(RATE_PRESETS)), help="Start from a named rate preset"),
        click.option("--daily-rate", "daily_rate", help="Rent per plate per day"),
        click.option(
            "--service-mode",
            "service_mode",
            type=click.Choice([m.value for m in ServiceChargeMode]),
            help="How the service charge is computed",
        ),
        click.option("--service-rate", "service_rate", help="Per-plate rate, percentage or fixed amount for the service mode"),
        click.option("--worker-charge", "worker_charge", help="Flat worker charge per bill"),
        click.option("--lost-penalty", "lost_penalty", help="Penalty per plate not returned"),
        click.option(
            "--return-rule",
            "return_rule",
            type=click.Choice([r.value for r in ReturnDayRule]),
            help="Whether a return stops billing the next day or the same day",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Rent billing for centering-plate clients."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument("transactions", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--bill-date", "-b", "bill_date", required=True, help="Bill date (YYYY-MM-DD)")
@rate_options
@click.option("--extra", "extra", multiple=True, help="Extra charge in NOTE:QTY:PRICE format")
@click.option("--discount", "discount", multiple=True, help="Discount in NOTE:QTY:PRICE format")
@click.option("--payment", "payment", multiple=True, help="Payment in NOTE:AMOUNT format")
@click.option("--advance", "advance", default="0", help="Advance already paid")
@click.option("--service-override", "service_override", help="Use this service charge instead of the computed one")
@click.option("--bill-number", "bill_number", default="", help="Bill number to print on the bill")
@click.option("--close-account", is_flag=True, help="Mark the account as closed on this bill")
@click.option("--output", "output", type=str, help="Output file path (.json or .csv)")
def calculate(
    transactions: Path,
    bill_date: str,
    preset: Optional[str],
    daily_rate: Optional[str],
    service_mode: Optional[str],
    service_rate: Optional[str],
    worker_charge: Optional[str],
    lost_penalty: Optional[str],
    return_rule: Optional[str],
    extra: Tuple[str, ...],
    discount: Tuple[str, ...],
    payment: Tuple[str, ...],
    advance: str,
    service_override: Optional[str],
    bill_number: str,
    close_account: bool,
    output: Optional[str],
) -> None:
    """Compute and print a full bill."""
    client, issues, returns = load_transactions(transactions)
    rates = build_rates_from_options(
        preset, daily_rate, service_mode, service_rate, worker_charge, lost_penalty, return_rule
    )
    bill = _run(
        client,
        issues,
        returns,
        bill_date,
        rates,
        parse_amount(advance),
        parse_charge_strings(extra, "Extra charge"),
        parse_charge_strings(discount, "Discount"),
        parse_payment_strings(payment),
        service_charge_override=parse_amount(service_override) if service_override else None,
        account_closure="close" if close_account else "continue",
    )
    bill.bill_number = bill_number
    for warning in bill.warnings:
        logger.warning("%s", warning)

    if output:
        path = Path(output)
        data = bill_to_dict(bill)
        if path.suffix.lower() == ".json":
            export_to_json(path, data)
        elif path.suffix.lower() == ".csv":
            export_to_csv(path, data)
        else:
            raise click.BadParameter("Unsupported output format; use .json or .csv")
        click.echo(f"Bill exported to {path}")
    else:
        print_summary(bill)
        print_ledger(bill.ledger_entries)
        print()
        print_date_ranges(bill.date_ranges)


@cli.command()
@click.argument("transactions", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--bill-date", "-b", "bill_date", required=True, help="Bill date (YYYY-MM-DD)")
@rate_options
def ledger(
    transactions: Path,
    bill_date: str,
    preset: Optional[str],
    daily_rate: Optional[str],
    service_mode: Optional[str],
    service_rate: Optional[str],
    worker_charge: Optional[str],
    lost_penalty: Optional[str],
    return_rule: Optional[str],
) -> None:
    """Print only the ledger and check it for consistency."""
    client, issues, returns = load_transactions(transactions)
    rates = build_rates_from_options(
        preset, daily_rate, service_mode, service_rate, worker_charge, lost_penalty, return_rule
    )
    bill = _run(client, issues, returns, bill_date, rates)
    print_ledger(bill.ledger_entries)
    click.echo(f"Total rent: {money(bill.total_rent)}")
    for warning in bill.warnings:
        click.echo(f"WARNING: {warning}")
    problems = audit_ledger(bill.ledger_entries)
    if problems:
        for problem in problems:
            click.echo(f"PROBLEM: {problem}")
        raise click.ClickException(f"ledger audit found {len(problems)} problem(s)")
    click.echo("Ledger OK")


@cli.command("compare-rules")
@click.argument("transactions", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--bill-date", "-b", "bill_date", required=True, help="Bill date (YYYY-MM-DD)")
@click.option("--preset", type=click.Choice(sorted(RATE_PRESETS)), help="Start from a named rate preset")
@click.option("--daily-rate", "daily_rate", help="Rent per plate per day")
def compare_rules(transactions: Path, bill_date: str, preset: Optional[str], daily_rate: Optional[str]) -> None:
    """Compare next-day and same-day return billing on the same data."""
    client, issues, returns = load_transactions(transactions)
    base = build_rates_from_options(preset, daily_rate, None, None, None, None, None)
    next_day = _run(client, issues, returns, bill_date, replace(base, return_day_rule=ReturnDayRule.NEXT_DAY))
    same_day = _run(client, issues, returns, bill_date, replace(base, return_day_rule=ReturnDayRule.SAME_DAY))
    print_comparison(bill_to_dict(next_day), bill_to_dict(same_day), labels=("NextDay", "SameDay"))


if __name__ == "__main__":
    cli()
