"""
Service layer wiring the price feed, ledger, record store and settlement.
"""

import asyncio
import logging
from collections import defaultdict
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..adapters.base import BasePriceSource
from ..adapters.bybit import BybitPriceSource
from ..adapters.gateway import SettlementGateway, SimulatedGateway
from ..adapters.state import PriceState
from ..adapters.synthetic import SyntheticPriceSource
from ..api.models import (
    AccountSummary,
    Currency,
    Payment,
    PlatformStats,
    PriceSnapshot,
    RecordStatus,
    StatusChange,
)
from .config import ServiceConfig
from .event_bus import EventBus
from .ledger import BalanceLedger
from .price_cache import PriceCache
from .rates import RateSource, RateTable, build_rate_table, find_rate_path
from .records import InMemoryRecordStore, RecordStore
from .settlement import SettlementOrchestrator

logger = logging.getLogger(__name__)


class ExchangeService:
    """
    Owns one instance of every collaborator and exposes the operations
    the HTTP layer needs. No state lives outside this object.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        price_source: Optional[BasePriceSource] = None,
        gateway: Optional[SettlementGateway] = None,
        ledger: Optional[BalanceLedger] = None,
        store: Optional[RecordStore] = None,
    ) -> None:
        """
        Initialize collaborators, defaulting each one from the config.

        Args:
            config: Optional ServiceConfig
            price_source: Override for the price feed
            gateway: Override for the settlement gateway
            ledger: Override for the balance ledger
            store: Override for the record store
        """
        self.config = config or ServiceConfig()
        if price_source is None:
            if self.config.use_live_prices:
                price_source = BybitPriceSource(is_testnet=self.config.use_testnet)
            else:
                price_source = SyntheticPriceSource()
        self.price_source = price_source
        self.prices = PriceCache(price_source, ttl=self.config.exchange.price_cache_ttl)
        self.price_state = PriceState()
        self.ledger = ledger or BalanceLedger()
        self.store = store or InMemoryRecordStore()
        self.gateway = gateway or SimulatedGateway(
            order_delay=self.config.order_delay,
            confirmation_delay=self.config.confirmation_delay,
        )
        self._price_bus: EventBus[PriceSnapshot] = EventBus("prices")
        self.settlement_events: EventBus[StatusChange] = EventBus("settlement")
        self.orchestrator = SettlementOrchestrator(
            ledger=self.ledger,
            store=self.store,
            gateway=self.gateway,
            rate_provider=self.rate_table,
            config=self.config.exchange,
            events=self.settlement_events,
        )
        self._poll_task: Optional[asyncio.Task] = None

    def subscribe_prices(self, callback: Callable[[PriceSnapshot], None]) -> Callable[[], None]:
        """
        Subscribe to changed price snapshots.

        Returns:
            An unsubscribe function that removes the callback.
        """
        return self._price_bus.subscribe(callback)

    async def start(self) -> None:
        """Start polling the price feed in the background."""
        if self._poll_task is None:
            self._poll_task = asyncio.create_task(self._poll_prices())

    async def stop(self) -> None:
        """Stop polling, cancel pending confirmations and close the price feed."""
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        await self.orchestrator.close()
        await self.price_source.close()

    async def _poll_prices(self) -> None:
        """Refresh prices every poll interval and publish snapshots that changed."""
        while True:
            try:
                await self.refresh_prices()
            except Exception as e:
                logger.error("Price poll failed: %s", e)
            await asyncio.sleep(self.config.exchange.price_poll_interval)

    async def refresh_prices(self) -> Optional[PriceSnapshot]:
        """Fetch (or reuse cached) prices; publish and return them if they changed."""
        snapshot = await self.prices.get()
        if changed := self.price_state.update(snapshot):
            self._price_bus.publish(changed)
            logger.info("Published %s price snapshot", changed.source)
        return changed

    async def get_prices(self) -> Dict[str, Decimal]:
        return await self.prices.prices()

    async def rate_table(self) -> RateTable:
        """Configured default rates overlaid with the current prices."""
        exchange = self.config.exchange
        prices = await self.prices.prices()
        return build_rate_table(exchange.default_rates, prices, exchange.supported_currencies)

    async def get_rate(self, from_currency: Currency, to_currency: Currency) -> Tuple[Decimal, RateSource]:
        table = await self.rate_table()
        return find_rate_path(from_currency, to_currency, table, self.config.exchange.pivot_currency)

    async def get_order_book(self, symbol: str, limit: int = 10) -> Optional[Dict[str, Any]]:
        """Order book depth from the price source; None if it has none for the symbol."""
        return await self.price_source.fetch_order_book(symbol.upper(), limit=limit)

    def list_payments(self, user_id: str) -> List[Payment]:
        return self.store.list_payments(user_id=user_id)

    def list_accounts(self) -> List[AccountSummary]:
        return [
            AccountSummary(user_id=user_id, balances=self.ledger.get_balances(user_id))
            for user_id in self.ledger.users()
        ]

    def get_stats(self) -> PlatformStats:
        """Platform totals: users, balances, completed transactions and fees collected."""
        completed = [
            tx for tx in self.store.list_transactions(limit=None)
            if tx.status == RecordStatus.COMPLETED
        ]
        fees: Dict[Currency, Decimal] = defaultdict(Decimal)
        for tx in completed:
            fees[tx.from_currency] += tx.fee
        return PlatformStats(
            total_users=len(self.ledger.users()),
            total_balances=self.ledger.totals(),
            total_transactions=len(completed),
            total_fees=dict(fees),
        )
