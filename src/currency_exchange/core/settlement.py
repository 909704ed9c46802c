"""
Settlement orchestration for exchanges, deposits and withdrawals.

Every operation follows the same lifecycle::

    PENDING ──► COMPLETED
       │
       └──────► FAILED

Validation happens before any record exists. Once a record is created it
moves to exactly one terminal status, and the ledger is only mutated in
step with that transition. Withdrawals reserve funds up front and credit
them back if the external leg fails or never confirms.
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set, Tuple

from ..adapters.gateway import SettlementGateway
from ..api.models import (
    Currency,
    ExchangeResult,
    Payment,
    PaymentMethod,
    PaymentResult,
    RecordStatus,
    StatusChange,
    Transaction,
    TransactionType,
)
from ..utils.logging import get_account_logger, log_settlement_event
from .config import ExchangeConfig
from .conversion import Conversion, convert, to_decimal
from .errors import ExchangeError, InsufficientBalanceError, SettlementFailure, ValidationError
from .event_bus import EventBus
from .ledger import BalanceLedger
from .rates import RateSource, find_rate_path
from .records import RecordStore

logger = logging.getLogger(__name__)

RateTableProvider = Callable[[], Awaitable[Mapping[Tuple[Currency, Currency], Decimal]]]

CONFIRMATION_TIMED_OUT = "confirmation timed out"


def transaction_ref(transaction_id: int) -> str:
    return f"transaction:{transaction_id}"


def payment_ref(payment_id: int) -> str:
    return f"payment:{payment_id}"


class SettlementOrchestrator:
    """Coordinates rate resolution, conversion, record lifecycle and ledger mutation."""

    def __init__(
        self,
        ledger: BalanceLedger,
        store: RecordStore,
        gateway: SettlementGateway,
        rate_provider: RateTableProvider,
        config: Optional[ExchangeConfig] = None,
        events: Optional[EventBus[StatusChange]] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            ledger: Balance ledger to mutate
            store: Transaction and payment record store
            gateway: External order/payment collaborator
            rate_provider: Coroutine returning the current rate table
            config: Fee and currency configuration
            events: Optional bus receiving every terminal status change
        """
        self.ledger = ledger
        self.store = store
        self.gateway = gateway
        self.rate_provider = rate_provider
        self.config = config or ExchangeConfig()
        self.events: EventBus[StatusChange] = events or EventBus("settlement")
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # validation
    # ------------------------------------------------------------------

    def _require_supported(self, currency: Currency) -> None:
        if currency not in self.config.supported_currencies:
            raise ValidationError(f"Currency {currency.value} is not supported")

    @staticmethod
    def _positive_amount(amount: Any) -> Decimal:
        try:
            value = to_decimal(amount)
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError("Amount must be a number") from None
        if not value.is_finite() or value <= 0:
            raise ValidationError("Amount must be greater than zero")
        return value

    def _require_balance(self, user_id: str, currency: Currency, amount: Decimal) -> None:
        available = self.ledger.get_balance(user_id, currency)
        if available < amount:
            raise InsufficientBalanceError(currency.value, amount, available)

    # ------------------------------------------------------------------
    # exchange
    # ------------------------------------------------------------------

    async def quote(
        self, from_currency: Currency, to_currency: Currency, amount: Any
    ) -> Tuple[Conversion, RateSource]:
        """
        Price a conversion without touching balances or records.

        Raises:
            ValidationError: Same-currency pair, unsupported currency or bad amount
        """
        if from_currency == to_currency:
            raise ValidationError("Cannot exchange a currency for itself")
        self._require_supported(from_currency)
        self._require_supported(to_currency)
        value = self._positive_amount(amount)

        table = await self.rate_provider()
        rate, source = find_rate_path(from_currency, to_currency, table, self.config.pivot_currency)
        return convert(value, from_currency, to_currency, rate, self.config.fee_rate), source

    async def exchange(
        self,
        user_id: str,
        from_currency: Currency,
        to_currency: Currency,
        amount: Any,
        rate: Optional[Any] = None,
    ) -> ExchangeResult:
        """
        Convert part of a user's balance from one currency to another.

        Args:
            user_id: Authenticated account owner
            from_currency: Currency being sold
            to_currency: Currency being bought
            amount: Amount of from_currency, fee included
            rate: Pre-agreed rate for internal callers; resolved from the rate table if omitted

        Returns:
            ExchangeResult of the completed transaction.

        Raises:
            ValidationError: Rejected before any record was created
            InsufficientBalanceError: Balance too low, checked before and at commit
            SettlementFailure: The order was rejected; the transaction is failed
        """
        if from_currency == to_currency:
            raise ValidationError("Cannot exchange a currency for itself")
        self._require_supported(from_currency)
        self._require_supported(to_currency)
        value = self._positive_amount(amount)
        self._require_balance(user_id, from_currency, value)

        if rate is None:
            table = await self.rate_provider()
            rate, source = find_rate_path(
                from_currency, to_currency, table, self.config.pivot_currency
            )
            if source == RateSource.FALLBACK and self.config.reject_fallback_rates:
                raise ValidationError(
                    f"No exchange rate available for {from_currency.value}/{to_currency.value}"
                )
        conversion = convert(value, from_currency, to_currency, rate, self.config.fee_rate)

        transaction = self.store.create_transaction(
            user_id=user_id,
            type=TransactionType.EXCHANGE,
            from_currency=from_currency,
            to_currency=to_currency,
            from_amount=conversion.amount,
            to_amount=conversion.received,
            rate=conversion.rate,
            fee=conversion.fee,
        )
        account_log = get_account_logger(user_id)
        log_settlement_event(
            account_log, logging.INFO, "Exchange created", transaction.id, transaction.status,
            pair=f"{from_currency.value}/{to_currency.value}", amount=value,
        )

        try:
            receipt = await self.gateway.place_order(transaction)
            if not receipt.success:
                raise SettlementFailure(receipt.message or "Order rejected", transaction.id)
            await self.ledger.transfer(
                user_id,
                from_currency,
                -conversion.amount,
                to_currency,
                conversion.received,
                reference=transaction_ref(transaction.id),
            )
        except ExchangeError as exc:
            self._fail_transaction(transaction, exc.reason)
            raise
        except Exception as exc:
            self._fail_transaction(transaction, "Order placement failed")
            raise SettlementFailure("Order placement failed", transaction.id) from exc

        completed = self.store.finish_transaction(transaction.id, RecordStatus.COMPLETED)
        self._publish_transaction(completed)
        log_settlement_event(
            account_log, logging.INFO, "Exchange completed", completed.id, completed.status,
            received=completed.to_amount,
        )
        return ExchangeResult(
            transaction_id=completed.id,
            rate=completed.rate,
            fee=completed.fee,
            received=completed.to_amount,
            status=completed.status,
        )

    def _fail_transaction(self, transaction: Transaction, reason: str) -> None:
        failed = self.store.finish_transaction(transaction.id, RecordStatus.FAILED, failure_reason=reason)
        self._publish_transaction(failed)
        log_settlement_event(
            get_account_logger(transaction.user_id), logging.WARNING, "Exchange failed",
            failed.id, failed.status, reason=reason,
        )

    def _publish_transaction(self, transaction: Transaction) -> None:
        self.events.publish(
            StatusChange(
                kind="transaction",
                record_id=transaction.id,
                user_id=transaction.user_id,
                status=transaction.status,
            )
        )

    # ------------------------------------------------------------------
    # deposit / withdraw
    # ------------------------------------------------------------------

    async def deposit(
        self,
        user_id: str,
        currency: Currency,
        amount: Any,
        method: PaymentMethod = PaymentMethod.CARD,
    ) -> PaymentResult:
        """
        Register a deposit; the ledger is credited once the payment confirms.

        Returns:
            PaymentResult with status pending.

        Raises:
            ValidationError: Currency not depositable or bad amount
        """
        if not self.config.can_deposit(currency):
            raise ValidationError(f"Deposits in {currency.value} are not available")
        value = self._positive_amount(amount)

        payment = self.store.create_payment(
            user_id=user_id,
            type=TransactionType.DEPOSIT,
            currency=currency,
            amount=value,
            method=method,
        )
        log_settlement_event(
            get_account_logger(user_id), logging.INFO, "Deposit created", payment.id,
            payment.status, currency=currency, amount=value,
        )
        self._spawn(self._settle_deposit(payment))
        return PaymentResult(
            payment_id=payment.id, currency=currency, amount=value, status=payment.status
        )

    async def withdraw(
        self,
        user_id: str,
        currency: Currency,
        amount: Any,
        method: PaymentMethod = PaymentMethod.CRYPTO,
        wallet_address: Optional[str] = None,
    ) -> PaymentResult:
        """
        Reserve funds and register a withdrawal.

        The amount leaves the spendable balance immediately. If the external
        leg is rejected or does not confirm in time it is credited back.

        Returns:
            PaymentResult with status pending.

        Raises:
            ValidationError: Currency not withdrawable, bad amount or missing wallet
            InsufficientBalanceError: Balance too low; no payment is created
        """
        if not self.config.can_withdraw(currency):
            raise ValidationError(f"Withdrawals in {currency.value} are not available")
        value = self._positive_amount(amount)
        if method == PaymentMethod.CRYPTO and not (wallet_address or "").strip():
            raise ValidationError("A wallet address is required for crypto withdrawals")
        self._require_balance(user_id, currency, value)

        details: Dict[str, Any] = {}
        if wallet_address:
            details["wallet_address"] = wallet_address.strip()

        # Debit before recording: a lost race raises with no payment created
        payment_id = self.store.reserve_payment_id()
        reference = payment_ref(payment_id)
        await self.ledger.apply_delta(user_id, currency, -value, reference=reference)
        try:
            payment = self.store.create_payment(
                payment_id=payment_id,
                user_id=user_id,
                type=TransactionType.WITHDRAW,
                currency=currency,
                amount=value,
                method=method,
                details=details,
            )
        except Exception:
            logger.error("Payment %s could not be recorded; releasing reservation", payment_id)
            await self.ledger.apply_delta(user_id, currency, value, reference=reference)
            raise

        log_settlement_event(
            get_account_logger(user_id), logging.INFO, "Withdrawal reserved", payment.id,
            payment.status, currency=currency, amount=value,
        )
        self._spawn(self._settle_withdraw(payment))
        return PaymentResult(
            payment_id=payment.id, currency=currency, amount=value, status=payment.status
        )

    async def _await_confirmation(self, payment: Payment) -> Tuple[bool, str]:
        """Wait for the gateway, bounded by the configured confirmation timeout."""
        try:
            receipt = await asyncio.wait_for(
                self.gateway.confirm_payment(payment), timeout=self.config.confirmation_timeout
            )
        except asyncio.TimeoutError:
            return False, CONFIRMATION_TIMED_OUT
        except Exception as e:
            logger.error("Payment %s confirmation failed: %s", payment.id, e)
            return False, "confirmation failed"
        return receipt.success, receipt.message or ("confirmed" if receipt.success else "rejected")

    async def _settle_deposit(self, payment: Payment) -> None:
        confirmed, message = await self._await_confirmation(payment)
        if not confirmed:
            self._finish_payment(payment, RecordStatus.FAILED, {"failure_reason": message})
            return

        await self.ledger.apply_delta(
            payment.user_id, payment.currency, payment.amount, reference=payment_ref(payment.id)
        )
        self._finish_payment(payment, RecordStatus.COMPLETED, {"confirmation": message})

    async def _settle_withdraw(self, payment: Payment) -> None:
        confirmed, message = await self._await_confirmation(payment)
        if confirmed:
            self._finish_payment(payment, RecordStatus.COMPLETED, {"confirmation": message})
            return

        await self.ledger.apply_delta(
            payment.user_id, payment.currency, payment.amount, reference=payment_ref(payment.id)
        )
        self._finish_payment(
            payment, RecordStatus.FAILED, {"failure_reason": message, "reversed": True}
        )

    def _finish_payment(self, payment: Payment, status: RecordStatus, details: Dict[str, Any]) -> Payment:
        finished = self.store.finish_payment(payment.id, status, details)
        self.events.publish(
            StatusChange(kind="payment", record_id=finished.id, user_id=finished.user_id, status=status)
        )
        level = logging.INFO if status == RecordStatus.COMPLETED else logging.WARNING
        log_settlement_event(
            get_account_logger(finished.user_id), level,
            f"{finished.type.value.capitalize()} {status.value}", finished.id, status.value,
            **details,
        )
        return finished

    # ------------------------------------------------------------------
    # background task management
    # ------------------------------------------------------------------

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Settlement task failed", exc_info=task.exception())

    @property
    def pending_settlements(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every pending confirmation has resolved."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel outstanding confirmations; their payments stay pending."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()
