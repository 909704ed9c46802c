"""Tests for the Bybit price source."""

import json
from decimal import Decimal

import aiohttp
import pytest

from currency_exchange.adapters.bybit import BybitPriceSource
from currency_exchange.core.circuit_breaker import CircuitState
from currency_exchange.core.errors import ExternalUnavailableError


@pytest.fixture
def bybit_source(mock_session, synthetic_source):
    """Bybit source wired to the mock session and a seeded synthetic fallback."""
    source = BybitPriceSource(is_testnet=True, fallback=synthetic_source)
    source._session = mock_session
    return source


def test_bybit_source_initialization():
    """Test that the Bybit source targets the right environment."""
    assert BybitPriceSource().tickers_url == "https://api.bybit.com/v5/market/tickers"
    assert (
        BybitPriceSource(is_testnet=True).tickers_url
        == "https://api-testnet.bybit.com/v5/market/tickers"
    )


def test_bybit_tickers_to_prices(bybit_tickers_data):
    """Test conversion of Bybit tickers into direct, inverse and cross prices."""
    source = BybitPriceSource(is_testnet=True)
    prices = source._prices_from_tickers(bybit_tickers_data["result"]["list"])
    assert prices["BTCUSDT"] == Decimal("40000")
    assert prices["USDTBTC"] == Decimal("1") / Decimal("40000")
    assert prices["BTCETH"] == Decimal("20")
    assert prices["ETHBTC"] == Decimal("0.05")
    assert prices["SOLBNB"] == Decimal("100") / Decimal("300")
    assert "XRPUSDT" not in prices


def test_bybit_error_handling():
    """Test that Bybit error envelopes are surfaced as unavailable."""
    source = BybitPriceSource(is_testnet=True)
    error_data = {"retCode": 10001, "retMsg": "Invalid symbol"}

    with pytest.raises(ExternalUnavailableError) as exc_info:
        source._ticker_list(error_data)
    assert "Bybit API error" in str(exc_info.value)
    assert "Invalid symbol" in str(exc_info.value)


def test_bybit_skips_malformed_tickers():
    source = BybitPriceSource(is_testnet=True)
    data = {
        "retCode": 0,
        "result": {
            "list": [
                {"symbol": "BTCUSDT", "lastPrice": "not-a-number"},
                {"symbol": "ETHUSDT"},
                {"symbol": "BNBUSDT", "lastPrice": "0"},
                {"symbol": "SOLUSDT", "lastPrice": "100"},
            ]
        },
    }
    assert source._prices_from_tickers(source._ticker_list(data)) == {
        "SOLUSDT": Decimal("100"),
        "USDTSOL": Decimal("0.01"),
    }


def test_bybit_rejects_empty_result():
    source = BybitPriceSource(is_testnet=True)
    with pytest.raises(ExternalUnavailableError):
        source._prices_from_tickers(source._ticker_list({"retCode": 0, "result": {"list": []}}))


def _response_context(mocker, payload):
    response = mocker.MagicMock()
    response.raise_for_status = mocker.MagicMock()
    response.json = mocker.AsyncMock(return_value=payload)
    context = mocker.MagicMock()
    context.__aenter__.return_value = response
    context.__aexit__.return_value = False
    return context


@pytest.fixture
def per_symbol_tickers(mocker, mock_session, bybit_tickers_data):
    """Answer each tickers request with only the ticker named in its params."""
    by_symbol = {ticker["symbol"]: ticker for ticker in bybit_tickers_data["result"]["list"]}

    def get(url, params=None, timeout=None):
        ticker = by_symbol[params["symbol"]]
        payload = {"retCode": 0, "retMsg": "OK", "result": {"category": "spot", "list": [ticker]}}
        return _response_context(mocker, payload)

    mock_session.get.side_effect = get
    return by_symbol


@pytest.mark.asyncio
async def test_fetch_prices_live(bybit_source, mock_session, per_symbol_tickers):
    """Test a successful fetch marks the prices as live."""
    prices = await bybit_source.fetch_prices()

    assert prices["ETHUSDT"] == Decimal("2000")
    assert prices["BTCETH"] == Decimal("20")
    assert bybit_source.last_source == "live"


@pytest.mark.asyncio
async def test_fetch_prices_requests_only_configured_symbols(bybit_source, mock_session, per_symbol_tickers):
    await bybit_source.fetch_prices()

    calls = mock_session.get.call_args_list
    assert {call.args[0] for call in calls} == {"https://api-testnet.bybit.com/v5/market/tickers"}
    assert sorted(call.kwargs["params"]["symbol"] for call in calls) == sorted(bybit_source.config.symbols)
    assert all(call.kwargs["params"]["category"] == "spot" for call in calls)


@pytest.mark.asyncio
async def test_fetch_prices_skips_failed_symbol(bybit_source, mock_session, per_symbol_tickers):
    """Test that one unreachable symbol does not discard the others."""
    answer = mock_session.get.side_effect

    def get(url, params=None, timeout=None):
        if params["symbol"] == "SOLUSDT":
            raise aiohttp.ClientConnectionError("connection reset")
        return answer(url, params=params, timeout=timeout)

    mock_session.get.side_effect = get

    prices = await bybit_source.fetch_prices()

    assert bybit_source.last_source == "live"
    assert "SOLUSDT" not in prices
    assert prices["BNBUSDT"] == Decimal("300")
    assert bybit_source.circuit_breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_fetch_prices_falls_back_on_error_envelope(bybit_source, mock_session):
    """Test that an error envelope yields synthetic prices instead of raising."""
    mock_session.response.json.return_value = {"retCode": 10006, "retMsg": "Too many visits"}

    prices = await bybit_source.fetch_prices()

    assert bybit_source.last_source == "synthetic"
    assert set(prices) >= {"BTCUSDT", "USDTBTC", "ETHBTC"}


@pytest.mark.asyncio
async def test_fetch_prices_falls_back_on_transport_error(bybit_source, mock_session):
    mock_session.get.side_effect = aiohttp.ClientConnectionError("connection refused")

    prices = await bybit_source.fetch_prices()

    assert bybit_source.last_source == "synthetic"
    assert prices["BTCUSDT"] > 0


@pytest.mark.asyncio
async def test_fetch_prices_falls_back_on_malformed_body(bybit_source, mock_session):
    mock_session.response.json.side_effect = json.JSONDecodeError("Expecting value", "<html>", 0)

    await bybit_source.fetch_prices()

    assert bybit_source.last_source == "synthetic"


@pytest.mark.asyncio
async def test_open_circuit_skips_network(bybit_source, mock_session):
    """Test that repeated failures open the breaker and stop hitting Bybit."""
    mock_session.get.side_effect = aiohttp.ClientConnectionError("connection refused")

    requests_per_fetch = len(bybit_source.config.symbols)
    for _ in range(3):
        await bybit_source.fetch_prices()
    assert bybit_source.circuit_breaker.state == CircuitState.OPEN
    assert mock_session.get.call_count == 3 * requests_per_fetch

    await bybit_source.fetch_prices()

    assert mock_session.get.call_count == 3 * requests_per_fetch
    assert bybit_source.last_source == "synthetic"


@pytest.mark.asyncio
async def test_fetch_order_book(bybit_source, mock_session):
    book = {"s": "BTCUSDT", "b": [["39999", "1.2"]], "a": [["40001", "0.8"]], "ts": 1700000000000}
    mock_session.response.json.return_value = {"retCode": 0, "retMsg": "OK", "result": book}

    assert await bybit_source.fetch_order_book("BTCUSDT", limit=1) == book
    _, kwargs = mock_session.get.call_args
    assert kwargs["params"] == {"category": "spot", "symbol": "BTCUSDT", "limit": "1"}


@pytest.mark.asyncio
async def test_fetch_order_book_error(bybit_source, mock_session):
    mock_session.response.json.return_value = {"retCode": 10001, "retMsg": "params error"}
    assert await bybit_source.fetch_order_book("DOGEUSDT") is None


@pytest.mark.asyncio
async def test_close_closes_session(bybit_source, mock_session):
    await bybit_source.close()
    mock_session.close.assert_awaited_once()
    assert bybit_source._session is None
