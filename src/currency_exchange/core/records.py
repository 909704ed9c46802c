"""
Storage for transaction and payment records.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..api.models import Payment, RecordStatus, Transaction, utcnow
from .errors import InvalidStatusTransition, PersistenceError

logger = logging.getLogger(__name__)


class RecordStore(ABC):
    """
    Storage interface for transaction and payment records.

    Records are created pending and move to a terminal status exactly once.
    Implementations must refuse any transition out of a terminal status.
    """

    @abstractmethod
    def create_transaction(self, **fields: Any) -> Transaction:
        """Persist a new pending transaction and return it with its id."""

    @abstractmethod
    def get_transaction(self, transaction_id: int) -> Transaction:
        """Return a transaction; raises PersistenceError if unknown."""

    @abstractmethod
    def list_transactions(self, user_id: Optional[str] = None, limit: Optional[int] = 50) -> List[Transaction]:
        """Return the newest transactions first; limit=None returns all."""

    @abstractmethod
    def finish_transaction(
        self, transaction_id: int, status: RecordStatus, failure_reason: Optional[str] = None
    ) -> Transaction:
        """Move a pending transaction to a terminal status."""

    @abstractmethod
    def reserve_payment_id(self) -> int:
        """Allocate a payment id ahead of the record being created."""

    @abstractmethod
    def create_payment(self, payment_id: Optional[int] = None, **fields: Any) -> Payment:
        """Persist a new pending payment, under a reserved id when one is given."""

    @abstractmethod
    def get_payment(self, payment_id: int) -> Payment:
        """Return a payment; raises PersistenceError if unknown."""

    @abstractmethod
    def list_payments(self, user_id: Optional[str] = None) -> List[Payment]:
        """Return payments, newest first."""

    @abstractmethod
    def finish_payment(
        self, payment_id: int, status: RecordStatus, details: Optional[Dict[str, Any]] = None
    ) -> Payment:
        """Move a pending payment to a terminal status, merging extra details."""


class InMemoryRecordStore(RecordStore):
    """Record store backed by process memory, with sequential integer ids."""

    def __init__(self) -> None:
        self._transactions: Dict[int, Transaction] = {}
        self._payments: Dict[int, Payment] = {}
        self._transaction_ids = itertools.count(1)
        self._payment_ids = itertools.count(1)

    def create_transaction(self, **fields: Any) -> Transaction:
        transaction = Transaction(id=next(self._transaction_ids), **fields)
        self._transactions[transaction.id] = transaction
        return transaction

    def get_transaction(self, transaction_id: int) -> Transaction:
        try:
            return self._transactions[transaction_id]
        except KeyError:
            raise PersistenceError(f"Transaction {transaction_id} not found") from None

    def list_transactions(self, user_id: Optional[str] = None, limit: Optional[int] = 50) -> List[Transaction]:
        records = [
            tx for tx in reversed(self._transactions.values())
            if user_id is None or tx.user_id == user_id
        ]
        return records[:limit]

    def finish_transaction(
        self, transaction_id: int, status: RecordStatus, failure_reason: Optional[str] = None
    ) -> Transaction:
        current = self.get_transaction(transaction_id)
        _check_transition("Transaction", transaction_id, current.status, status)
        updated = current.model_copy(
            update={"status": status, "completed_at": utcnow(), "failure_reason": failure_reason}
        )
        self._transactions[transaction_id] = updated
        return updated

    def reserve_payment_id(self) -> int:
        return next(self._payment_ids)

    def create_payment(self, payment_id: Optional[int] = None, **fields: Any) -> Payment:
        if payment_id is None:
            payment_id = self.reserve_payment_id()
        elif payment_id in self._payments:
            raise PersistenceError(f"Payment {payment_id} already exists")
        payment = Payment(id=payment_id, **fields)
        self._payments[payment.id] = payment
        return payment

    def get_payment(self, payment_id: int) -> Payment:
        try:
            return self._payments[payment_id]
        except KeyError:
            raise PersistenceError(f"Payment {payment_id} not found") from None

    def list_payments(self, user_id: Optional[str] = None) -> List[Payment]:
        return [
            payment for payment in reversed(self._payments.values())
            if user_id is None or payment.user_id == user_id
        ]

    def finish_payment(
        self, payment_id: int, status: RecordStatus, details: Optional[Dict[str, Any]] = None
    ) -> Payment:
        current = self.get_payment(payment_id)
        _check_transition("Payment", payment_id, current.status, status)
        updated = current.model_copy(
            update={
                "status": status,
                "completed_at": utcnow(),
                "details": {**current.details, **(details or {})},
            }
        )
        self._payments[payment_id] = updated
        return updated


def _check_transition(kind: str, record_id: int, current: RecordStatus, target: RecordStatus) -> None:
    """Only pending -> terminal transitions are allowed."""
    if current.is_terminal or not target.is_terminal:
        logger.error("%s %s: refused transition %s -> %s", kind, record_id, current.value, target.value)
        raise InvalidStatusTransition(
            f"{kind} {record_id} cannot move from {current.value} to {target.value}"
        )
