"""
Deployment configuration for the exchange core.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, FrozenSet, Optional

from ..api.models import Currency

DEFAULT_CURRENCIES = frozenset({
    Currency.USDT, Currency.BTC, Currency.ETH, Currency.RUB, Currency.SOL, Currency.BNB,
})

DEFAULT_RATES = {
    "USDT-ETH": Decimal("0.0004"),
    "USDT-BTC": Decimal("0.000025"),
    "ETH-BTC": Decimal("0.062"),
    "RUB-USDT": Decimal("0.011"),
}


@dataclass
class ExchangeConfig:
    """Fee, currency set and timing configuration for settlement."""

    fee_rate: Decimal = Decimal("0.005")
    pivot_currency: Currency = Currency.USDT
    supported_currencies: FrozenSet[Currency] = DEFAULT_CURRENCIES
    depositable_currencies: Optional[FrozenSet[Currency]] = None  # None means all supported
    withdrawable_currencies: Optional[FrozenSet[Currency]] = None
    default_rates: Dict[str, Decimal] = field(default_factory=lambda: dict(DEFAULT_RATES))
    reject_fallback_rates: bool = False
    price_cache_ttl: float = 5.0
    price_poll_interval: float = 5.0
    confirmation_timeout: float = 30.0

    def can_deposit(self, currency: Currency) -> bool:
        allowed = self.depositable_currencies or self.supported_currencies
        return currency in allowed and currency in self.supported_currencies

    def can_withdraw(self, currency: Currency) -> bool:
        allowed = self.withdrawable_currencies or self.supported_currencies
        return currency in allowed and currency in self.supported_currencies


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class ServiceConfig:
    """Configuration for the price feed and settlement collaborators."""

    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    use_live_prices: bool = True
    use_testnet: bool = False
    order_delay: float = 0.0
    confirmation_delay: float = 2.0

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        """Build a config from EXCHANGE_* environment variables."""
        exchange = ExchangeConfig()
        if fee_rate := os.environ.get("EXCHANGE_FEE_RATE"):
            exchange.fee_rate = Decimal(fee_rate)
        return cls(
            exchange=exchange,
            use_live_prices=_env_flag("EXCHANGE_LIVE_PRICES", True),
            use_testnet=_env_flag("EXCHANGE_USE_TESTNET", False),
        )
