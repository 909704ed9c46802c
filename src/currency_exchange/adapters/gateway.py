"""
External settlement collaborators: order placement and payment confirmation.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

from ..api.models import Payment, Transaction

logger = logging.getLogger(__name__)


@dataclass
class GatewayReceipt:
    success: bool
    reference: str
    message: Optional[str] = None


class SettlementGateway(ABC):
    """Asynchronous venue/payment-processor interface: submit, then eventually resolve."""

    @abstractmethod
    async def place_order(self, transaction: Transaction) -> GatewayReceipt:
        """Place the order backing an exchange transaction."""

    @abstractmethod
    async def confirm_payment(self, payment: Payment) -> GatewayReceipt:
        """Wait for the external leg of a deposit or withdraw to settle."""


class SimulatedGateway(SettlementGateway):
    """Stand-in venue that approves everything after a fixed delay."""

    def __init__(
        self,
        order_delay: float = 0.0,
        confirmation_delay: float = 2.0,
        reject_orders: bool = False,
        reject_payments: bool = False,
    ) -> None:
        self.order_delay = order_delay
        self.confirmation_delay = confirmation_delay
        self.reject_orders = reject_orders
        self.reject_payments = reject_payments

    async def place_order(self, transaction: Transaction) -> GatewayReceipt:
        if self.order_delay:
            await asyncio.sleep(self.order_delay)
        if self.reject_orders:
            return GatewayReceipt(False, f"sim-{uuid4()}", "Order rejected by venue")
        logger.debug("Simulated order placed for transaction %s", transaction.id)
        return GatewayReceipt(True, f"sim-{uuid4()}", "Simulated order filled")

    async def confirm_payment(self, payment: Payment) -> GatewayReceipt:
        await asyncio.sleep(self.confirmation_delay)
        if self.reject_payments:
            return GatewayReceipt(False, f"sim-{uuid4()}", "Payment rejected by processor")
        return GatewayReceipt(True, f"sim-{uuid4()}", "Simulated payment confirmed")
