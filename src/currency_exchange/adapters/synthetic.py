"""
Synthetic price source used when the live venue is unavailable.
"""

import random
from decimal import Decimal
from typing import Dict, Optional

from .base import BasePriceSource, derive_pairs
from .config import BYBIT_CONFIG, PriceSourceConfig


class SyntheticPriceSource(BasePriceSource):
    """Generates plausible prices as base value plus bounded random jitter."""

    def __init__(
        self, config: Optional[PriceSourceConfig] = None, rng: Optional[random.Random] = None
    ) -> None:
        """
        Initialize the synthetic source.

        Args:
            config: Optional configuration, uses BYBIT_CONFIG if not provided
            rng: Optional random generator, for reproducible prices in tests
        """
        super().__init__()
        self.config = config or BYBIT_CONFIG
        self.rng = rng or random.Random()

    def generate(self) -> Dict[str, Decimal]:
        """Build one internally consistent synthetic price table."""
        quote_prices: Dict[str, Decimal] = {}
        for base in self.config.base_assets:
            if base not in self.config.synthetic_prices:
                continue
            center, jitter = self.config.synthetic_prices[base]
            offset = Decimal(repr(self.rng.uniform(-1.0, 1.0))) * jitter
            quote_prices[base] = center + offset
        return derive_pairs(quote_prices, self.config.quote_asset)

    async def fetch_prices(self) -> Dict[str, Decimal]:
        self.last_source = "synthetic"
        return self.generate()
