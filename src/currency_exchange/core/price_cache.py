"""
Time-bounded cache in front of a price source.
"""

import asyncio
import time
from decimal import Decimal
from typing import Dict, Optional

from ..adapters.base import BasePriceSource
from ..api.models import PriceSnapshot


class PriceCache:
    """
    Serves the last fetched price table for up to `ttl` seconds.

    Concurrent callers arriving while a fetch is in flight wait for that
    fetch instead of starting their own, so the venue sees at most one
    request per period.
    """

    def __init__(self, source: BasePriceSource, ttl: float) -> None:
        """
        Initialize the cache.

        Args:
            source: Price source to fetch from on a miss.
            ttl: Time period in seconds a fetched table stays fresh.
        """
        self.source = source
        self.ttl = ttl
        self._snapshot: Optional[PriceSnapshot] = None
        self._fetched_at: Optional[float] = None
        self.lock = asyncio.Lock()

    @property
    def snapshot(self) -> Optional[PriceSnapshot]:
        """The most recently fetched snapshot, fresh or not."""
        return self._snapshot

    def _is_fresh(self) -> bool:
        return self._fetched_at is not None and time.monotonic() - self._fetched_at < self.ttl

    async def get(self) -> PriceSnapshot:
        """Return a fresh snapshot, fetching from the source if the cached one expired."""
        async with self.lock:
            if self._snapshot is None or not self._is_fresh():
                await self._refresh()
            return self._snapshot

    async def prices(self) -> Dict[str, Decimal]:
        return (await self.get()).prices

    async def _refresh(self) -> None:
        prices = await self.source.fetch_prices()
        self._snapshot = PriceSnapshot(
            timestamp=int(time.time() * 1000),
            source=self.source.last_source or "unknown",
            prices=prices,
        )
        self._fetched_at = time.monotonic()
