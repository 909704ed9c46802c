"""
Bybit price source adapter.
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import aiohttp

from ..core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitOpenError
from ..core.errors import ExternalUnavailableError
from .base import BasePriceSource, derive_pairs
from .config import BYBIT_CONFIG, PriceSourceConfig
from .synthetic import SyntheticPriceSource

logger = logging.getLogger(__name__)


class BybitPriceSource(BasePriceSource):
    """Fetches last-traded spot prices from Bybit, falling back to synthetic prices."""

    def __init__(
        self,
        config: Optional[PriceSourceConfig] = None,
        is_testnet: bool = False,
        fallback: Optional[BasePriceSource] = None,
    ) -> None:
        """
        Initialize the Bybit price source.

        Args:
            config: Optional configuration, uses BYBIT_CONFIG if not provided
            is_testnet: Whether to use testnet endpoints (default: False)
            fallback: Source used when Bybit is unavailable (default: synthetic)
        """
        super().__init__()
        self.config = config or BYBIT_CONFIG
        self.is_testnet = is_testnet
        self.fallback = fallback or SyntheticPriceSource(self.config)
        self.request_timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
        self._circuit_breaker = CircuitBreaker(
            name="Bybit",
            config=CircuitBreakerConfig(failure_threshold=3, success_threshold=1, cooldown=30.0),
        )

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    @property
    def tickers_url(self) -> str:
        return f"{self.config.get_base_url(self.is_testnet)}{self.config.tickers_path}"

    @staticmethod
    def _ticker_list(raw: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Unwrap the ticker list from a Bybit envelope; raises on a non-zero retCode."""
        if raw.get("retCode") != 0:
            error_msg = raw.get("retMsg", "Unknown error")
            raise ExternalUnavailableError(f"Bybit API error: {error_msg}")
        result = raw.get("result") or {}
        return result.get("list") or []

    def _prices_from_tickers(self, tickers: List[Dict[str, Any]]) -> Dict[str, Decimal]:
        """
        Turn Bybit tickers into a price table.

        Args:
            tickers: Ticker objects as found under ``result.list``.

        Returns:
            Symbol -> price including reciprocal and cross rates.

        Raises:
            ExternalUnavailableError: When no requested symbol carries a
                usable last price.
        """
        wanted = set(self.config.symbols)
        quote = self.config.quote_asset
        quote_prices: Dict[str, Decimal] = {}

        for ticker in tickers:
            symbol = ticker.get("symbol")
            if symbol not in wanted:
                continue
            try:
                price = Decimal(str(ticker["lastPrice"]))
            except (KeyError, InvalidOperation):
                logger.warning("Skipping malformed Bybit ticker: %s", ticker)
                continue
            if not price.is_finite() or price <= 0:
                continue
            quote_prices[symbol[: -len(quote)]] = price

        if not quote_prices:
            raise ExternalUnavailableError("Bybit response contained no usable tickers")

        return derive_pairs(quote_prices, quote)

    async def _fetch_ticker(self, symbol: str) -> List[Dict[str, Any]]:
        async with self.session.get(
            self.tickers_url,
            params={"category": self.config.category, "symbol": symbol},
            timeout=self.request_timeout,
        ) as resp:
            resp.raise_for_status()
            raw_data: Dict[str, Any] = await resp.json()
        return self._ticker_list(raw_data)

    async def _fetch_tickers(self) -> List[Dict[str, Any]]:
        """
        Request each configured symbol in parallel.

        Bybit answers a request without ``symbol`` with every spot ticker it
        lists, so only the configured symbols are asked for. Symbols that
        fail are logged and skipped; if all of them fail the first error is
        raised.
        """
        symbols = self.config.symbols
        results = await asyncio.gather(
            *(self._fetch_ticker(symbol) for symbol in symbols), return_exceptions=True
        )

        tickers: List[Dict[str, Any]] = []
        errors: List[BaseException] = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, BaseException):
                logger.warning("Bybit ticker fetch failed for %s: %s", symbol, result)
                errors.append(result)
            else:
                tickers.extend(result)

        if errors and len(errors) == len(symbols):
            raise errors[0]
        return tickers

    async def fetch_prices(self) -> Dict[str, Decimal]:
        """
        Fetch last-traded prices for the configured symbols in a single attempt.

        Transport errors, error envelopes, malformed bodies and an open
        circuit all fall back to synthetic prices. Nothing is raised.
        """
        if not self.circuit_breaker.is_available:
            logger.info("Bybit circuit breaker is open, serving synthetic prices")
            return await self._fallback()

        try:
            async with self.circuit_breaker:
                tickers = await self._fetch_tickers()
                prices = self._prices_from_tickers(tickers)
        except CircuitOpenError:
            logger.info("Bybit circuit breaker opened, serving synthetic prices")
            return await self._fallback()
        except Exception as e:
            logger.error("Bybit price fetch failed: %s", e)
            return await self._fallback()

        self.last_source = "live"
        logger.debug("Fetched %d Bybit prices", len(prices))
        return prices

    async def _fallback(self) -> Dict[str, Decimal]:
        prices = await self.fallback.fetch_prices()
        self.last_source = "synthetic"
        return prices

    async def fetch_order_book(self, symbol: str, limit: int = 10) -> Optional[Dict[str, Any]]:
        """
        Fetch the top of the order book for a symbol.

        Returns:
            The raw ``result`` object, or None on any failure.
        """
        url = f"{self.config.get_base_url(self.is_testnet)}{self.config.order_book_path}"
        params = {"category": self.config.category, "symbol": symbol, "limit": str(limit)}
        try:
            async with self.session.get(url, params=params, timeout=self.request_timeout) as resp:
                resp.raise_for_status()
                raw_data: Dict[str, Any] = await resp.json()
        except Exception as e:
            logger.error("Bybit order book fetch failed for %s: %s", symbol, e)
            return None
        if raw_data.get("retCode") != 0:
            logger.error("Bybit order book error for %s: %s", symbol, raw_data.get("retMsg"))
            return None
        return raw_data.get("result")
