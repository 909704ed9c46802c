"""
Test fixtures for the currency exchange service.
"""

import random
from decimal import Decimal
from typing import Any, Dict, Generator, Optional

import pytest
from fastapi.testclient import TestClient

from currency_exchange.adapters.base import BasePriceSource, derive_pairs
from currency_exchange.adapters.gateway import SimulatedGateway
from currency_exchange.adapters.synthetic import SyntheticPriceSource
from currency_exchange.api.app import create_app
from currency_exchange.api.models import Currency
from currency_exchange.core.config import ExchangeConfig, ServiceConfig
from currency_exchange.core.ledger import BalanceLedger
from currency_exchange.core.rates import build_rate_table
from currency_exchange.core.records import InMemoryRecordStore
from currency_exchange.core.service import ExchangeService
from currency_exchange.core.settlement import SettlementOrchestrator


@pytest.fixture
def exchange_config() -> ExchangeConfig:
    """Default fee and currency configuration with a short confirmation timeout."""
    return ExchangeConfig(confirmation_timeout=1.0)


@pytest.fixture
def rate_table(exchange_config):
    """Rate table built from the configured default pairs only."""
    return build_rate_table(exchange_config.default_rates)


@pytest.fixture
def ledger() -> BalanceLedger:
    """Ledger where alice holds 1000 USDT and 1 ETH."""
    return BalanceLedger({"alice": {Currency.USDT: Decimal("1000"), Currency.ETH: Decimal("1")}})


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def gateway() -> SimulatedGateway:
    """Gateway that approves everything almost immediately."""
    return SimulatedGateway(order_delay=0.0, confirmation_delay=0.01)


@pytest.fixture
def orchestrator(ledger, store, gateway, rate_table, exchange_config) -> SettlementOrchestrator:
    """Orchestrator wired to the in-memory fixtures and the static rate table."""

    async def provider():
        return rate_table

    return SettlementOrchestrator(
        ledger=ledger,
        store=store,
        gateway=gateway,
        rate_provider=provider,
        config=exchange_config,
    )


@pytest.fixture
def synthetic_source() -> SyntheticPriceSource:
    """Synthetic price source with a seeded generator."""
    return SyntheticPriceSource(rng=random.Random(42))


@pytest.fixture
def exchange_service(synthetic_source, gateway) -> ExchangeService:
    """Service using synthetic prices, a fast gateway and a funded account for alice."""
    config = ServiceConfig(
        exchange=ExchangeConfig(confirmation_timeout=1.0, price_poll_interval=60.0),
        use_live_prices=False,
    )
    return ExchangeService(
        config=config,
        price_source=synthetic_source,
        gateway=gateway,
        ledger=BalanceLedger({"alice": {Currency.USDT: Decimal("1000")}}),
    )


@pytest.fixture
def test_client(exchange_service) -> Generator[TestClient, None, None]:
    """
    Fixture to create a FastAPI test client.

    Yields:
        A FastAPI TestClient instance.
    """
    with TestClient(create_app(service=exchange_service)) as client:
        yield client


class FixedPriceSource(BasePriceSource):
    """Price source quoting BTC at 40000 USDT and ETH at 2500 USDT."""

    def __init__(self) -> None:
        super().__init__()
        self.quotes = {"BTC": Decimal("40000"), "ETH": Decimal("2500")}

    async def fetch_prices(self) -> Dict[str, Decimal]:
        self.last_source = "live"
        return derive_pairs(self.quotes, "USDT")

    async def fetch_order_book(self, symbol: str, limit: int = 10) -> Optional[Dict[str, Any]]:
        if symbol != "BTCUSDT":
            return None
        book = {"s": symbol, "b": [["39999", "1.5"], ["39998", "2"]], "a": [["40001", "0.7"]]}
        return {**book, "b": book["b"][:limit], "a": book["a"][:limit]}


@pytest.fixture
def fixed_price_service(gateway) -> ExchangeService:
    """Service whose rates come from FixedPriceSource."""
    config = ServiceConfig(
        exchange=ExchangeConfig(confirmation_timeout=1.0, price_poll_interval=60.0),
        use_live_prices=False,
    )
    return ExchangeService(
        config=config,
        price_source=FixedPriceSource(),
        gateway=gateway,
        ledger=BalanceLedger({"alice": {Currency.USDT: Decimal("1000")}}),
    )


@pytest.fixture
def fixed_price_client(fixed_price_service) -> Generator[TestClient, None, None]:
    with TestClient(create_app(service=fixed_price_service)) as client:
        yield client


@pytest.fixture
def mock_session(mocker):
    """Fixture providing a mock aiohttp ClientSession whose get() yields `response`."""
    session = mocker.MagicMock()
    session.closed = False
    session.close = mocker.AsyncMock()

    response = mocker.MagicMock()
    response.raise_for_status = mocker.MagicMock()
    response.json = mocker.AsyncMock(return_value={})

    get_context = mocker.MagicMock()
    get_context.__aenter__.return_value = response
    get_context.__aexit__.return_value = False
    session.get.return_value = get_context

    session.response = response
    return session


@pytest.fixture
def bybit_tickers_data():
    """Sample Bybit v5 spot tickers REST API response."""
    return {
        "retCode": 0,
        "retMsg": "OK",
        "result": {
            "category": "spot",
            "list": [
                {"symbol": "BTCUSDT", "lastPrice": "40000", "bid1Price": "39999.9"},
                {"symbol": "ETHUSDT", "lastPrice": "2000", "bid1Price": "1999.9"},
                {"symbol": "BNBUSDT", "lastPrice": "300"},
                {"symbol": "SOLUSDT", "lastPrice": "100"},
                {"symbol": "XRPUSDT", "lastPrice": "0.5"},
            ],
        },
        "time": 1700000000000,
    }
