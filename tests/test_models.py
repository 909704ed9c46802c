"""Tests for currency exchange models."""

import json
from decimal import Decimal

import pytest
from pydantic import ValidationError

from currency_exchange.api.models import (
    Currency,
    ExchangeRequest,
    ExchangeResult,
    Payment,
    PaymentMethod,
    RecordStatus,
    Transaction,
    TransactionType,
    WithdrawRequest,
)


class TestCurrency:
    """Test Currency enum."""

    def test_currency_members(self):
        """Test that Currency has the seven supported codes."""
        assert [c.value for c in Currency] == ["USDT", "BTC", "ETH", "RUB", "TON", "SOL", "BNB"]

    def test_fiat_flag_and_decimals(self):
        """Test that RUB is the only fiat currency and is shown with 2 decimals."""
        assert Currency.RUB.is_fiat is True
        assert Currency.RUB.decimals == 2
        assert Currency.BTC.is_fiat is False
        assert Currency.BTC.decimals == 8


class TestRecordStatus:
    """Test RecordStatus enum."""

    def test_terminal_statuses(self):
        assert RecordStatus.PENDING.is_terminal is False
        assert RecordStatus.COMPLETED.is_terminal is True
        assert RecordStatus.FAILED.is_terminal is True


class TestTransaction:
    """Test Transaction model."""

    def test_exchange_transaction_defaults(self):
        """Test that a new transaction is pending and has no completion time."""
        tx = Transaction(
            id=1,
            user_id="alice",
            type=TransactionType.EXCHANGE,
            from_currency=Currency.USDT,
            to_currency=Currency.BTC,
            from_amount=Decimal("100"),
            to_amount=Decimal("0.0024875"),
        )

        assert tx.status == RecordStatus.PENDING
        assert tx.rate == Decimal("1")
        assert tx.fee == Decimal("0")
        assert tx.created_at.tzinfo is not None
        assert tx.completed_at is None
        assert tx.failure_reason is None

    def test_decimals_serialize_as_strings(self):
        """Test that JSON output keeps exact decimal amounts."""
        tx = Transaction(
            id=1,
            user_id="alice",
            type=TransactionType.DEPOSIT,
            from_currency=Currency.RUB,
            from_amount=Decimal("5000.00"),
            to_amount=Decimal("5000.00"),
        )

        data = json.loads(tx.model_dump_json())

        assert data["from_amount"] == "5000.00"
        assert data["type"] == "deposit"
        assert data["to_currency"] is None


class TestPayment:
    """Test Payment model."""

    def test_payment_details_default_empty(self):
        payment = Payment(
            id=1,
            user_id="alice",
            type=TransactionType.WITHDRAW,
            currency=Currency.ETH,
            amount=Decimal("0.5"),
            method=PaymentMethod.CRYPTO,
        )
        assert payment.details == {}
        assert payment.status == RecordStatus.PENDING


class TestRequests:
    """Test request and response models."""

    def test_exchange_request_parses_strings(self):
        request = ExchangeRequest.model_validate(
            {"from_currency": "USDT", "to_currency": "BTC", "from_amount": "100"}
        )
        assert request.from_currency == Currency.USDT
        assert request.from_amount == Decimal("100")

    def test_exchange_request_forbids_rate(self):
        with pytest.raises(ValidationError):
            ExchangeRequest.model_validate(
                {"from_currency": "USDT", "to_currency": "BTC", "from_amount": "100", "rate": "1000000"}
            )

    def test_unknown_currency_rejected(self):
        with pytest.raises(ValidationError):
            ExchangeRequest(from_currency="DOGE", to_currency="BTC", from_amount=Decimal("1"))

    def test_withdraw_request_defaults(self):
        request = WithdrawRequest(currency=Currency.BTC, amount=Decimal("0.1"))
        assert request.method == PaymentMethod.CRYPTO
        assert request.wallet_address is None

    def test_exchange_result_success_flag(self):
        result = ExchangeResult(
            transaction_id=1,
            rate=Decimal("0.000025"),
            fee=Decimal("0.5"),
            received=Decimal("0.0024875"),
            status=RecordStatus.COMPLETED,
        )
        assert result.success is True
