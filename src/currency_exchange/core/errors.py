"""
Error taxonomy for exchange and settlement operations.

Validation and balance errors are raised before any state is created.
Settlement failures are raised after the record has been marked failed.
Persistence errors mean the operation must not be assumed committed.
"""

from decimal import Decimal
from typing import Optional


class ExchangeError(Exception):
    """Base class for all errors raised by the exchange core."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ValidationError(ExchangeError):
    """Bad amount, same-currency pair, or unsupported currency."""


class InsufficientBalanceError(ExchangeError):
    """The requested amount exceeds the available balance."""

    def __init__(self, currency: str, requested: Decimal, available: Decimal) -> None:
        super().__init__(
            f"Insufficient {currency} balance: requested {requested}, available {available}"
        )
        self.currency = currency
        self.requested = requested
        self.available = available


class ExternalUnavailableError(ExchangeError):
    """An external collaborator (price feed, venue) could not be reached."""


class SettlementFailure(ExchangeError):
    """The external leg of a settlement was rejected; the record is failed."""

    def __init__(self, reason: str, record_id: Optional[int] = None) -> None:
        super().__init__(reason)
        self.record_id = record_id


class PersistenceError(ExchangeError):
    """Storage layer failure."""


class InvalidStatusTransition(PersistenceError):
    """A record was asked to leave a terminal status."""
