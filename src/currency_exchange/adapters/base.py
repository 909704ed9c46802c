"""
Base class for price source adapters.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from itertools import permutations
from typing import Any, Dict, Mapping, Optional

import aiohttp

ONE = Decimal("1")


def derive_pairs(quote_prices: Mapping[str, Decimal], quote_asset: str) -> Dict[str, Decimal]:
    """
    Expand quote-denominated prices into both directions and cross rates.

    Args:
        quote_prices: Base asset -> price in quote_asset, e.g. {"BTC": 45000}
        quote_asset: Pivot asset the prices are expressed in, e.g. "USDT"

    Returns:
        Symbol -> price containing BASEQUOTE, QUOTEBASE (reciprocal) and
        BASE1BASE2 for every ordered pair of distinct base assets.
    """
    prices: Dict[str, Decimal] = {}
    usable = {base: price for base, price in quote_prices.items() if price > 0}

    for base, price in usable.items():
        prices[f"{base}{quote_asset}"] = price
        prices[f"{quote_asset}{base}"] = ONE / price

    for first, second in permutations(usable, 2):
        prices[f"{first}{second}"] = usable[first] / usable[second]

    return prices


class BasePriceSource(ABC):
    """Base class for price sources that always yield a usable price table."""

    def __init__(self) -> None:
        self._session: Optional[aiohttp.ClientSession] = None
        self.last_source: Optional[str] = None  # "live" or "synthetic"

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get the aiohttp session, creating it if necessary."""
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=30)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    @abstractmethod
    async def fetch_prices(self) -> Dict[str, Decimal]:
        """
        Fetch the current symbol -> price mapping.

        Implementations never raise; on failure they return synthetic prices.
        """

    async def fetch_order_book(self, symbol: str, limit: int = 10) -> Optional[Dict[str, Any]]:
        """Top of the order book for a symbol, or None when the source has no depth."""
        return None

    async def close(self) -> None:
        """Close the aiohttp session if one was opened."""
        if self._session is not None:
            await self._session.close()
            self._session = None
