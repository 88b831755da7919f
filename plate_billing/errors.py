"""Exceptions raised by the billing engine.

All of them derive from ``ValueError`` so callers that only care about bad
input can catch that, while the web API and the CLI can tell the kinds apart.
The non-fatal "balance clamped" condition is not an exception; see
``data_models.NegativeBalanceClamped``.
"""


class BillingError(ValueError):
    """Base class for billing calculation failures."""


class InvalidTransactionData(BillingError):
    """A challan or return has a missing/unparseable date or a bad quantity."""


class InvalidRateConfig(BillingError):
    """A rate or charge value in the configuration is negative."""


class InvalidChargeLine(BillingError):
    """An extra charge, discount or payment line is incomplete or non-positive."""
