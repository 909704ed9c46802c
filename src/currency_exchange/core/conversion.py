"""
Fee and received-amount arithmetic for currency conversions.
"""

from dataclasses import dataclass
from decimal import Decimal

from ..api.models import Currency
from .errors import ValidationError


def to_decimal(value) -> Decimal:
    """Coerce an int, float, str or Decimal to Decimal without binary float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


@dataclass(frozen=True)
class Conversion:
    """Result of converting an amount at a given rate."""

    amount: Decimal
    from_currency: Currency
    to_currency: Currency
    rate: Decimal
    fee: Decimal
    net_sent: Decimal
    received: Decimal


def convert(
    amount: Decimal,
    from_currency: Currency,
    to_currency: Currency,
    rate: Decimal,
    fee_rate: Decimal,
) -> Conversion:
    """
    Compute the fee, net amount sent and amount received.

    The fee is charged in the source currency and deducted before the rate
    is applied. No rounding is performed; display precision is left to the
    presentation layer.

    Args:
        amount: Amount of from_currency being sold
        from_currency: Currency being sold
        to_currency: Currency being bought
        rate: 1 from_currency = rate to_currency
        fee_rate: Commission as a fraction in [0, 1)

    Returns:
        A Conversion with full-precision amounts.

    Raises:
        ValidationError: If amount or rate are not positive or fee_rate is out of range
    """
    amount = to_decimal(amount)
    rate = to_decimal(rate)
    fee_rate = to_decimal(fee_rate)

    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be a positive number")
    if not rate.is_finite() or rate <= 0:
        raise ValidationError("Rate must be a positive number")
    if not fee_rate.is_finite() or not (0 <= fee_rate < 1):
        raise ValidationError("Fee rate must be within [0, 1)")

    fee = amount * fee_rate
    net_sent = amount - fee
    return Conversion(
        amount=amount,
        from_currency=from_currency,
        to_currency=to_currency,
        rate=rate,
        fee=fee,
        net_sent=net_sent,
        received=net_sent * rate,
    )
