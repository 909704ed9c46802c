"""Integration test configuration."""

import pytest

from currency_exchange.adapters.bybit import BybitPriceSource


def pytest_configure(config):
    """Register custom markers for pytest."""
    config.addinivalue_line("markers", "integration: mark test as integration test")


@pytest.fixture
def integration_timeout():
    """
    Timeout for integration tests in seconds.

    Returns:
        Timeout value in seconds for integration tests
    """
    return 30


@pytest.fixture
async def live_bybit_source():
    """Bybit price source against mainnet public market data, closed after the test."""
    source = BybitPriceSource(is_testnet=False)
    yield source
    await source.close()
