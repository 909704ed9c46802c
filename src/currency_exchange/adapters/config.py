"""
Configuration classes for price source adapters.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Tuple


@dataclass
class EndpointConfig:
    """Base URL of one venue environment."""

    base_url: str


@dataclass
class PriceSourceConfig:
    """Price source configuration with mainnet/testnet support."""

    mainnet: EndpointConfig
    testnet: EndpointConfig
    tickers_path: str
    order_book_path: str
    category: str = "spot"
    quote_asset: str = "USDT"
    base_assets: Tuple[str, ...] = ("BTC", "ETH", "BNB", "SOL")
    request_timeout: float = 10.0
    # Synthetic fallback: base price and maximum absolute jitter per asset
    synthetic_prices: Dict[str, Tuple[Decimal, Decimal]] = field(default_factory=dict)

    def get_base_url(self, is_testnet: bool = False) -> str:
        """
        Get the REST base URL for the selected environment.

        Args:
            is_testnet: Whether to use testnet endpoints

        Returns:
            Base URL without trailing slash
        """
        endpoint = self.testnet if is_testnet else self.mainnet
        return endpoint.base_url.rstrip("/")

    @property
    def symbols(self) -> list[str]:
        """Ticker symbols requested from the venue, e.g. BTCUSDT."""
        return [f"{base}{self.quote_asset}" for base in self.base_assets]


# ============================
# Price Source Configuration Constants
# ============================

BYBIT_CONFIG = PriceSourceConfig(
    mainnet=EndpointConfig(base_url="https://api.bybit.com"),
    testnet=EndpointConfig(base_url="https://api-testnet.bybit.com"),
    tickers_path="/v5/market/tickers",
    order_book_path="/v5/market/orderbook",
    category="spot",
    quote_asset="USDT",
    base_assets=("BTC", "ETH", "BNB", "SOL"),
    request_timeout=10.0,
    synthetic_prices={
        "BTC": (Decimal("45000"), Decimal("500")),
        "ETH": (Decimal("2500"), Decimal("50")),
        "BNB": (Decimal("320"), Decimal("5")),
        "SOL": (Decimal("110"), Decimal("2.5")),
    },
)
