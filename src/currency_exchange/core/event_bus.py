"""
In-process pub/sub used to fan out price snapshots and settlement status changes.
"""

import logging
from typing import Callable, Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class EventBus(Generic[T]):
    """Broadcasts published values to every current subscriber."""

    def __init__(self, name: str = "events") -> None:
        self.name = name
        self._subscribers: list[Callable[[T], None]] = []

    def __len__(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """
        Register a callback.

        Args:
            callback: Called synchronously with each published value.

        Returns:
            A function that removes the callback; calling it twice is harmless.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, value: T) -> None:
        """
        Deliver a value to all subscribers.

        A failing subscriber is logged and skipped; it never prevents delivery
        to the others or propagates to the publisher.
        """
        for callback in list(self._subscribers):
            try:
                callback(value)
            except Exception:
                logger.exception("Subscriber of %s bus failed", self.name)
