"""
Change tracking for published price snapshots.
"""

import logging
from typing import Optional

from deepdiff import DeepDiff

from ..api.models import PriceSnapshot

logger = logging.getLogger(__name__)


class PriceState:
    """Keeps the last published snapshot and reports whether a new one differs."""

    def __init__(self, significant_digits: int = 8) -> None:
        """
        Initialize the price state.

        Args:
            significant_digits: Price digits compared when looking for changes
        """
        self.significant_digits = significant_digits
        self._current: Optional[PriceSnapshot] = None

    @property
    def current(self) -> Optional[PriceSnapshot]:
        return self._current

    def update(self, snapshot: PriceSnapshot) -> Optional[PriceSnapshot]:
        """
        Record a new snapshot.

        Args:
            snapshot: Freshly fetched prices

        Returns:
            The snapshot if its prices or source changed, None otherwise
        """
        if self._current is None:
            self._current = snapshot
            return snapshot

        diff = DeepDiff(
            {"source": self._current.source, "prices": self._current.prices},
            {"source": snapshot.source, "prices": snapshot.prices},
            significant_digits=self.significant_digits,
            ignore_numeric_type_changes=True,
        )
        if not diff:
            return None

        logger.debug("Price snapshot changed: %s", list(diff.keys()))
        self._current = snapshot
        return snapshot
