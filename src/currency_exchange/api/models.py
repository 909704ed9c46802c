"""
Data models for the currency exchange service.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class Currency(str, Enum):
    """Enumeration for currencies known to the exchange."""

    USDT = "USDT"
    BTC = "BTC"
    ETH = "ETH"
    RUB = "RUB"
    TON = "TON"
    SOL = "SOL"
    BNB = "BNB"

    @property
    def is_fiat(self) -> bool:
        return self in FIAT_CURRENCIES

    @property
    def decimals(self) -> int:
        """Display precision; fiat is shown with 2 decimals, crypto with 8."""
        return 2 if self.is_fiat else 8


FIAT_CURRENCIES = frozenset({Currency.RUB})


class TransactionType(str, Enum):
    """Enumeration for ledger-affecting operation types."""

    EXCHANGE = "exchange"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


class RecordStatus(str, Enum):
    """Lifecycle status shared by transactions and payments."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not RecordStatus.PENDING


class PaymentMethod(str, Enum):
    """Enumeration for deposit/withdraw channels."""

    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    CRYPTO = "crypto"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Transaction(BaseModel):
    """Record of an exchange, deposit or withdraw operation."""

    id: int
    user_id: str
    type: TransactionType
    from_currency: Currency
    to_currency: Optional[Currency] = None
    from_amount: Decimal
    to_amount: Decimal
    rate: Decimal = Decimal("1")
    fee: Decimal = Decimal("0")
    status: RecordStatus = RecordStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None


class Payment(BaseModel):
    """Record of the external side of a deposit or withdraw."""

    id: int
    user_id: str
    type: TransactionType
    currency: Currency
    amount: Decimal
    method: PaymentMethod
    status: RecordStatus = RecordStatus.PENDING
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


class LedgerEntry(BaseModel):
    """A single journaled balance mutation."""

    reference: str
    user_id: str
    currency: Currency
    delta: Decimal
    balance_after: Decimal
    created_at: datetime = Field(default_factory=utcnow)


class StatusChange(BaseModel):
    """Published whenever a transaction or payment reaches a terminal status."""

    kind: str  # "transaction" or "payment"
    record_id: int
    user_id: str
    status: RecordStatus


class PriceSnapshot(BaseModel):
    """Symbol -> last price mapping captured at a point in time."""

    timestamp: int  # Unix timestamp ms
    source: str  # "live" or "synthetic"
    prices: Dict[str, Decimal]


# ============================
# Request / response models
# ============================


class ExchangeRequest(BaseModel):
    """Exchange order; the rate is always resolved server-side."""

    model_config = ConfigDict(extra="forbid")

    from_currency: Currency
    to_currency: Currency
    from_amount: Decimal


class QuoteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    from_currency: Currency
    to_currency: Currency
    from_amount: Decimal


class DepositRequest(BaseModel):
    currency: Currency
    amount: Decimal
    method: PaymentMethod = PaymentMethod.CARD


class WithdrawRequest(BaseModel):
    currency: Currency
    amount: Decimal
    method: PaymentMethod = PaymentMethod.CRYPTO
    wallet_address: Optional[str] = None


class QuoteResponse(BaseModel):
    from_currency: Currency
    to_currency: Currency
    from_amount: Decimal
    rate: Decimal
    rate_source: str
    fee: Decimal
    net_sent: Decimal
    received: Decimal


class ExchangeResult(BaseModel):
    success: bool = True
    transaction_id: int
    rate: Decimal
    fee: Decimal
    received: Decimal
    status: RecordStatus


class PaymentResult(BaseModel):
    success: bool = True
    payment_id: int
    currency: Currency
    amount: Decimal
    status: RecordStatus


class RateResponse(BaseModel):
    from_currency: Currency
    to_currency: Currency
    rate: Decimal
    source: str


class AccountSummary(BaseModel):
    user_id: str
    balances: Dict[Currency, Decimal]


class PlatformStats(BaseModel):
    total_users: int
    total_balances: Dict[Currency, Decimal]
    total_transactions: int
    total_fees: Dict[Currency, Decimal]


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    transaction_id: Optional[int] = None
