"""
In-memory balance ledger with per-account locking and a mutation journal.
"""

import asyncio
import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Tuple

from ..api.models import Currency, LedgerEntry
from .errors import InsufficientBalanceError, ValidationError

ZERO = Decimal("0")

logger = logging.getLogger(__name__)

AccountKey = Tuple[str, Currency]


class BalanceLedger:
    """
    Authoritative store of per-user, per-currency balances.

    Every mutation is serialized by an asyncio lock per (user, currency), so
    operations on different users never contend. Locks are only held for the
    read-validate-write window; no external call happens under a lock.
    """

    def __init__(
        self, opening_balances: Optional[Mapping[str, Mapping[Currency, Decimal]]] = None
    ) -> None:
        """
        Initialize the ledger.

        Args:
            opening_balances: Optional user -> currency -> amount starting balances
        """
        self._balances: Dict[AccountKey, Decimal] = {}
        self._locks: Dict[AccountKey, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._journal: List[LedgerEntry] = []

        for user_id, balances in (opening_balances or {}).items():
            for currency, amount in balances.items():
                currency = Currency(currency)
                amount = Decimal(str(amount))
                if amount < 0:
                    raise ValidationError(f"Opening balance for {user_id}/{currency.value} is negative")
                self._balances[(user_id, currency)] = amount

    def get_balance(self, user_id: str, currency: Currency) -> Decimal:
        """Return the balance of one currency, zero for unknown accounts."""
        return self._balances.get((user_id, currency), ZERO)

    def get_balances(self, user_id: str) -> Dict[Currency, Decimal]:
        """Return all balances held by a user."""
        return {
            currency: amount
            for (owner, currency), amount in self._balances.items()
            if owner == user_id
        }

    def users(self) -> List[str]:
        """Return every user that has ever held a balance, in first-seen order."""
        return list(dict.fromkeys(owner for owner, _ in self._balances))

    def totals(self) -> Dict[Currency, Decimal]:
        """Sum balances per currency across all users."""
        totals: Dict[Currency, Decimal] = defaultdict(lambda: ZERO)
        for (_, currency), amount in self._balances.items():
            totals[currency] += amount
        return dict(totals)

    def journal(self, reference: Optional[str] = None) -> List[LedgerEntry]:
        """Return journal entries, optionally filtered by record reference."""
        if reference is None:
            return list(self._journal)
        return [entry for entry in self._journal if entry.reference == reference]

    async def apply_delta(
        self, user_id: str, currency: Currency, delta: Decimal, reference: str
    ) -> Decimal:
        """
        Apply a single signed delta to one balance.

        Args:
            user_id: Account owner
            currency: Balance currency
            delta: Amount to add (negative to debit)
            reference: Id of the transaction or payment causing the mutation

        Returns:
            The balance after the mutation.

        Raises:
            InsufficientBalanceError: If the result would be negative; nothing is applied
        """
        async with self._locks[(user_id, currency)]:
            return self._commit([(user_id, currency, delta)], reference)[0]

    async def transfer(
        self,
        user_id: str,
        from_currency: Currency,
        from_delta: Decimal,
        to_currency: Currency,
        to_delta: Decimal,
        reference: str,
    ) -> Tuple[Decimal, Decimal]:
        """
        Apply two deltas to one user's balances as a single unit.

        Both deltas are applied or neither is. Locks are acquired in a fixed
        order so concurrent transfers on the same pair cannot deadlock.

        Returns:
            Tuple of (from balance after, to balance after).

        Raises:
            ValidationError: If both legs name the same currency
            InsufficientBalanceError: If either leg would go negative
        """
        if from_currency == to_currency:
            raise ValidationError("Transfer legs must use different currencies")

        first, second = sorted((from_currency, to_currency), key=lambda c: c.value)
        async with self._locks[(user_id, first)], self._locks[(user_id, second)]:
            after = self._commit(
                [(user_id, from_currency, from_delta), (user_id, to_currency, to_delta)],
                reference,
            )
        return after[0], after[1]

    def _commit(self, legs: List[Tuple[str, Currency, Decimal]], reference: str) -> List[Decimal]:
        """Validate every leg, then apply all of them. Caller holds the locks."""
        results: List[Decimal] = []
        for user_id, currency, delta in legs:
            current = self.get_balance(user_id, currency)
            new_balance = current + delta
            if new_balance < 0:
                raise InsufficientBalanceError(currency.value, -delta, current)
            results.append(new_balance)

        for (user_id, currency, delta), new_balance in zip(legs, results):
            self._balances[(user_id, currency)] = new_balance
            self._journal.append(
                LedgerEntry(
                    reference=reference,
                    user_id=user_id,
                    currency=currency,
                    delta=delta,
                    balance_after=new_balance,
                )
            )
            logger.debug(
                "Ledger %s %s %s%s -> %s", reference, user_id, delta, currency.value, new_balance
            )
        return results
