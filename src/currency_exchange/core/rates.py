"""
Exchange rate resolution over a (possibly incomplete) rate table.
"""

import logging
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, Iterable, Mapping, Optional, Tuple

from ..api.models import Currency

ONE = Decimal("1")

logger = logging.getLogger(__name__)

# (base, quote) -> rate, meaning "1 base = rate quote"
RateTable = Dict[Tuple[Currency, Currency], Decimal]


class RateSource(str, Enum):
    """How a resolved rate was obtained."""

    IDENTITY = "identity"
    DIRECT = "direct"
    INVERSE = "inverse"
    TRIANGULATED = "triangulated"
    FALLBACK = "fallback"


def _lookup(base: Currency, quote: Currency, table: Mapping) -> Optional[Tuple[Decimal, RateSource]]:
    """Direct-or-inverse lookup of a single leg."""
    rate = table.get((base, quote))
    if rate:
        return rate, RateSource.DIRECT
    inverse = table.get((quote, base))
    if inverse:
        return ONE / inverse, RateSource.INVERSE
    return None


def find_rate_path(
    from_currency: Currency,
    to_currency: Currency,
    table: Mapping[Tuple[Currency, Currency], Decimal],
    pivot: Currency = Currency.USDT,
) -> Tuple[Decimal, RateSource]:
    """
    Resolve the rate for a pair and report how it was found.

    Lookup order: identity, direct entry, inverse entry, then triangulation
    through the pivot when neither side is the pivot. A missing triangulation
    leg counts as 1. When no path exists at all the rate is 1 and the source
    is FALLBACK; such a rate must not be trusted for settlement on its own.

    Args:
        from_currency: Currency being sold
        to_currency: Currency being bought
        table: Rate table keyed by (base, quote)
        pivot: Intermediate currency used for triangulation

    Returns:
        Tuple of (rate, RateSource)
    """
    if from_currency == to_currency:
        return ONE, RateSource.IDENTITY

    found = _lookup(from_currency, to_currency, table)
    if found is not None:
        return found

    if from_currency != pivot and to_currency != pivot:
        first = _lookup(from_currency, pivot, table)
        second = _lookup(pivot, to_currency, table)
        if first is None and second is None:
            return ONE, RateSource.FALLBACK
        first_rate = first[0] if first else ONE
        second_rate = second[0] if second else ONE
        return first_rate * second_rate, RateSource.TRIANGULATED

    return ONE, RateSource.FALLBACK


def resolve_rate(
    from_currency: Currency,
    to_currency: Currency,
    table: Mapping[Tuple[Currency, Currency], Decimal],
    pivot: Currency = Currency.USDT,
) -> Decimal:
    """Resolve the rate for a pair. Never raises; falls back to 1."""
    rate, _ = find_rate_path(from_currency, to_currency, table, pivot)
    return rate


def parse_pair(pair: str) -> Tuple[Currency, Currency]:
    """Parse a dash-separated pair such as "USDT-BTC"."""
    base, _, quote = pair.partition("-")
    return Currency(base.upper()), Currency(quote.upper())


def split_symbol(symbol: str, currencies: Iterable[Currency]) -> Optional[Tuple[Currency, Currency]]:
    """
    Split a concatenated ticker symbol such as "BTCUSDT" into (base, quote).

    Returns None when the symbol does not consist of two known currencies.
    """
    known = {c.value: c for c in currencies}
    for code, currency in known.items():
        if symbol.startswith(code):
            quote = known.get(symbol[len(code):])
            if quote is not None and quote != currency:
                return currency, quote
    return None


def build_rate_table(
    default_rates: Mapping[str, Decimal],
    prices: Optional[Mapping[str, Decimal]] = None,
    currencies: Iterable[Currency] = tuple(Currency),
) -> RateTable:
    """
    Build a rate table from configured pairs overlaid with ticker prices.

    Args:
        default_rates: Dash-separated pair -> rate, e.g. {"USDT-BTC": 0.000025}
        prices: Concatenated symbol -> price, e.g. {"BTCUSDT": 45000}
        currencies: Currencies used to split ticker symbols

    Returns:
        A RateTable; non-positive or unparseable entries are skipped.
    """
    currencies = list(currencies)
    table: RateTable = {}

    for pair, value in default_rates.items():
        try:
            key = parse_pair(pair)
            rate = Decimal(str(value))
        except (ValueError, InvalidOperation):
            logger.warning("Skipping invalid configured rate %s=%s", pair, value)
            continue
        if rate.is_finite() and rate > 0:
            table[key] = rate

    for symbol, value in (prices or {}).items():
        key = split_symbol(symbol, currencies)
        if key is None:
            continue
        try:
            rate = Decimal(str(value))
        except InvalidOperation:
            continue
        if rate.is_finite() and rate > 0:
            table[key] = rate

    return table
