"""Rent billing engine for a centering-plate rental depot."""

from .data_models import BillResult, ChargeLine, Client, Payment, RateConfig, RawIssue, RawLineItem, RawReturn
from .engine import calculate_bill

__all__ = [
    "BillResult",
    "ChargeLine",
    "Client",
    "Payment",
    "RateConfig",
    "RawIssue",
    "RawLineItem",
    "RawReturn",
    "calculate_bill",
]
