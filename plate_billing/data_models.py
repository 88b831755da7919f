"""Data models for the plate billing engine.

This module defines dataclasses representing the different entities used by
the billing engine: raw challans and returns as they come out of the store,
normalized transaction events, ledger entries, date ranges, charge lines,
payments, the rate configuration and the final bill. Using dataclasses makes
it easy to construct, inspect and serialize these structures.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import List, Optional, Union

from .errors import InvalidRateConfig


class EventKind(str, Enum):
    """Direction of a plate movement."""

    ISSUE = "udhar"
    RETURN = "jama"
    OPENING = "opening"  # balance carried over from the previous bill


class ServiceChargeMode(str, Enum):
    PER_PLATE = "per_plate"
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    DISABLED = "disabled"


class ReturnDayRule(str, Enum):
    """How the day of a return is billed.

    ``NEXT_DAY`` means a return stops billing from the following day, so a
    return entry is billed for one day less than an issue over the same gap.
    ``SAME_DAY`` bills both kinds of entry for the full gap.
    """

    NEXT_DAY = "next_day"
    SAME_DAY = "same_day"


@dataclass
class RawLineItem:
    """One plate size line on a challan or a return.

    Attributes
    ----------
    plate_size: str
        Display label of the plate size, e.g. ``"2 X 3"``.
    quantity: int
        Plates moved from the depot's own stock.
    partner_quantity: int
        Plates moved from borrowed (partner) stock. Counted in the total.
    damaged_quantity, lost_quantity: int
        Reported on returns only. They are informational and do not change
        the plate balance.
    """

    plate_size: str
    quantity: int
    partner_quantity: int = 0
    damaged_quantity: int = 0
    lost_quantity: int = 0


@dataclass
class RawIssue:
    """A delivery challan (udhar) as fetched from the store."""

    document_number: str
    date: Union[date, str, None]
    items: List[RawLineItem] = field(default_factory=list)


@dataclass
class RawReturn:
    """A return challan (jama) as fetched from the store."""

    document_number: str
    date: Union[date, str, None]
    items: List[RawLineItem] = field(default_factory=list)


@dataclass(frozen=True)
class TransactionEvent:
    date: date
    kind: EventKind
    plate_count: int
    document_number: str


@dataclass(frozen=True)
class LedgerEntry:
    """One processed event in the billing ledger.

    ``effective_days`` is the number of days the resulting balance is billed
    for before the next event (or up to and including the bill date for the
    last entry). ``rent_amount`` is zero whenever either the days or the
    balance are zero; such entries are still kept for the audit trail.
    """

    date: date
    kind: EventKind
    document_number: str
    plate_count: int
    balance_before: int
    balance_after: int
    effective_days: int
    rent_amount: Decimal


@dataclass(frozen=True)
class DateRange:
    start_date: date
    end_date: date
    plate_balance: int
    days: int
    amount: Decimal


@dataclass
class ChargeLine:
    """An extra charge or a discount line.

    ``total`` defaults to ``quantity * unit_price``. A discount may be given
    either as a positive line in the discount list or as a negative-priced
    line among the extras; either way it reduces the bill by ``abs(total)``.
    """

    note: str
    quantity: Decimal
    unit_price: Decimal
    total: Optional[Decimal] = None

    def __post_init__(self) -> None:
        self.quantity = Decimal(str(self.quantity))
        self.unit_price = Decimal(str(self.unit_price))
        if self.total is None:
            self.total = self.quantity * self.unit_price
        else:
            self.total = Decimal(str(self.total))


@dataclass
class Payment:
    note: str
    amount: Decimal

    def __post_init__(self) -> None:
        self.amount = Decimal(str(self.amount))


@dataclass
class Client:
    id: str
    name: str
    site: str = ""
    mobile_number: str = ""


@dataclass(frozen=True)
class RateConfig:
    """Rates and rules used to price a bill.

    Every monetary value must be non-negative; ``validate_rates`` in the
    engine rejects anything else before aggregation begins.
    """

    daily_rate: Decimal = Decimal("1")
    service_charge_mode: ServiceChargeMode = ServiceChargeMode.DISABLED
    service_charge_rate: Decimal = Decimal("0")  # per plate issued
    service_charge_percent: Decimal = Decimal("0")  # percent of total rent
    service_charge_fixed: Decimal = Decimal("0")
    worker_charge: Decimal = Decimal("0")
    lost_plate_penalty: Decimal = Decimal("0")  # per plate not returned
    return_day_rule: ReturnDayRule = ReturnDayRule.NEXT_DAY

    def __post_init__(self) -> None:
        # Plain numbers and enum values are coerced.
        for name in _MONEY_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                try:
                    value = Decimal(str(value))
                except InvalidOperation:
                    raise InvalidRateConfig(f"{name} must be a number, got {value!r}") from None
                object.__setattr__(self, name, value)
            if not value.is_finite():
                raise InvalidRateConfig(f"{name} must be a finite number, got {value}")
        object.__setattr__(self, "service_charge_mode", ServiceChargeMode(self.service_charge_mode))
        object.__setattr__(self, "return_day_rule", ReturnDayRule(self.return_day_rule))

    @classmethod
    def preset(cls, name: str, **overrides) -> "RateConfig":
        """Return one of the named rate presets, optionally overridden.

        The presets reproduce the rate models the depot has billed with:
        ``standard`` (per-plate service charge, returns billed on the same
        day), ``gujarati`` (worker charge and lost-plate penalty, no service
        charge), ``comprehensive`` (per-plate service charge of 10) and
        ``dynamic`` (service charge as a percentage of rent).
        """
        try:
            base = RATE_PRESETS[name.lower()]
        except KeyError:
            raise ValueError(f"Unknown rate preset: {name}") from None
        return replace(base, **overrides) if overrides else base


_MONEY_FIELDS = (
    "daily_rate",
    "service_charge_rate",
    "service_charge_percent",
    "service_charge_fixed",
    "worker_charge",
    "lost_plate_penalty",
)


RATE_PRESETS = {
    "standard": RateConfig(
        daily_rate=Decimal("1.00"),
        service_charge_mode=ServiceChargeMode.PER_PLATE,
        service_charge_rate=Decimal("0.50"),
        return_day_rule=ReturnDayRule.SAME_DAY,
    ),
    "gujarati": RateConfig(
        daily_rate=Decimal("1.00"),
        service_charge_mode=ServiceChargeMode.DISABLED,
        worker_charge=Decimal("100.00"),
        lost_plate_penalty=Decimal("250.00"),
    ),
    "comprehensive": RateConfig(
        daily_rate=Decimal("1.00"),
        service_charge_mode=ServiceChargeMode.PER_PLATE,
        service_charge_rate=Decimal("10.00"),
    ),
    "dynamic": RateConfig(
        daily_rate=Decimal("1.00"),
        service_charge_mode=ServiceChargeMode.PERCENTAGE,
        service_charge_percent=Decimal("10"),
    ),
}


@dataclass(frozen=True)
class NegativeBalanceClamped:
    """Warning raised when a return exceeds the outstanding balance.

    The balance is clamped to zero instead of going negative. This usually
    points to a data-entry error (a return recorded for plates that were
    never issued), so it is reported alongside the bill rather than hidden.
    """

    date: date
    document_number: str
    requested: int
    available: int

    def __str__(self) -> str:
        return (
            f"Return {self.document_number} on {self.date.isoformat()} takes back "
            f"{self.requested} plates but only {self.available} were outstanding"
        )


@dataclass
class BillResult:
    """The full outcome of one billing calculation.

    Holds the audit trail (ledger entries and date ranges), the itemized
    charge, discount and payment lists and every computed total. Exactly one
    of ``final_due`` and ``balance_carry_forward`` is non-zero unless both
    are zero.
    """

    client: Client
    bill_date: date
    period_start: date
    rates: RateConfig
    ledger_entries: List[LedgerEntry]
    date_ranges: List[DateRange]
    extra_charges: List[ChargeLine]
    discounts: List[ChargeLine]
    payments: List[Payment]
    total_plates_issued: int  # excludes the opening balance
    total_plates_returned: int
    lost_plates_count: int
    total_rent: Decimal
    service_charge: Decimal
    worker_charge: Decimal
    lost_plate_penalty: Decimal
    core_total: Decimal
    extra_charges_total: Decimal
    discounts_total: Decimal
    adjusted_total: Decimal
    payments_total: Decimal
    advance_paid: Decimal
    final_due: Decimal
    balance_carry_forward: Decimal
    warnings: List[NegativeBalanceClamped] = field(default_factory=list)
    damaged_and_lost_reported: int = 0
    opening_balance: int = 0
    account_closure: str = "continue"  # 'continue' or 'close'
    bill_number: str = ""

    @property
    def final_balance(self) -> int:
        return self.ledger_entries[-1].balance_after if self.ledger_entries else 0
