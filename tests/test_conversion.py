"""Tests for the conversion arithmetic."""

from decimal import Decimal

import pytest

from currency_exchange.api.models import Currency
from currency_exchange.core.conversion import convert, to_decimal
from currency_exchange.core.errors import ValidationError


class TestConvert:
    """Test fee, net and received amounts."""

    def test_fee_net_and_received(self):
        """Test convert(100, rate=2, fee=0.5%) = fee 0.5, net 99.5, received 199."""
        result = convert(100, Currency.USDT, Currency.ETH, rate=2, fee_rate=0.005)
        assert result.fee == Decimal("0.5")
        assert result.net_sent == Decimal("99.5")
        assert result.received == Decimal("199.0")

    def test_usdt_to_btc_keeps_full_precision(self):
        result = convert(
            Decimal("100"), Currency.USDT, Currency.BTC, Decimal("0.000025"), Decimal("0.005")
        )
        assert result.fee == Decimal("0.5")
        assert result.net_sent == Decimal("99.5")
        assert result.received == Decimal("0.0024875")

    def test_zero_fee(self):
        result = convert(Decimal("10"), Currency.BTC, Currency.USDT, Decimal("40000"), Decimal("0"))
        assert result.fee == 0
        assert result.received == Decimal("400000")

    def test_result_carries_inputs(self):
        result = convert(Decimal("1"), Currency.ETH, Currency.BTC, Decimal("0.062"), Decimal("0.005"))
        assert result.amount == Decimal("1")
        assert result.from_currency == Currency.ETH
        assert result.to_currency == Currency.BTC
        assert result.rate == Decimal("0.062")

    @pytest.mark.parametrize("amount", [0, -1, Decimal("NaN"), Decimal("Infinity")])
    def test_rejects_non_positive_amount(self, amount):
        with pytest.raises(ValidationError):
            convert(amount, Currency.USDT, Currency.BTC, Decimal("1"), Decimal("0.005"))

    @pytest.mark.parametrize("rate", [0, Decimal("-2")])
    def test_rejects_non_positive_rate(self, rate):
        with pytest.raises(ValidationError):
            convert(Decimal("1"), Currency.USDT, Currency.BTC, rate, Decimal("0.005"))

    @pytest.mark.parametrize("fee_rate", [Decimal("1"), Decimal("-0.1"), Decimal("1.5")])
    def test_rejects_fee_rate_out_of_range(self, fee_rate):
        with pytest.raises(ValidationError, match="Fee rate"):
            convert(Decimal("1"), Currency.USDT, Currency.BTC, Decimal("1"), fee_rate)


class TestToDecimal:
    """Test float-safe Decimal coercion."""

    def test_float_uses_shortest_repr(self):
        assert to_decimal(0.005) == Decimal("0.005")

    def test_passthrough(self):
        value = Decimal("1.23")
        assert to_decimal(value) is value

    def test_string_and_int(self):
        assert to_decimal("2.5") == Decimal("2.5")
        assert to_decimal(3) == Decimal("3")
