"""
Circuit breaker guarding calls to the external price feed.

While the circuit is open the price source skips the network entirely and
serves synthetic prices, so a dead venue costs one timeout per cooldown
instead of one per request.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import ExternalUnavailableError

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # calls go through
    OPEN = "open"            # calls rejected until cooldown elapses
    HALF_OPEN = "half_open"  # one probe call allowed


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""
    failure_threshold: int = 3        # consecutive failures before opening
    success_threshold: int = 1        # probe successes needed to close
    cooldown: float = 30.0            # seconds before a probe is allowed


class CircuitOpenError(ExternalUnavailableError):
    """Raised when the circuit is open and the call is rejected."""


class CircuitBreaker:
    """
    Tracks consecutive failures of an external dependency.

    Use as an async context manager around the guarded call; an exception
    leaving the block counts as a failure and is re-raised.
    """

    def __init__(self, name: str, config: Optional[CircuitBreakerConfig] = None):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._probe_successes = 0
        self._opened_at: Optional[float] = None
        self._probing = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    def _cooldown_elapsed(self) -> bool:
        return self._opened_at is not None and time.monotonic() - self._opened_at >= self.config.cooldown

    @property
    def is_available(self) -> bool:
        """Whether a call would currently be let through."""
        if self._state == CircuitState.CLOSED:
            return True
        if self._state == CircuitState.OPEN:
            return self._cooldown_elapsed()
        return not self._probing

    async def __aenter__(self):
        async with self._lock:
            if self._state == CircuitState.OPEN:
                if not self._cooldown_elapsed():
                    raise CircuitOpenError(f"Circuit breaker '{self.name}' is open")
                self._state = CircuitState.HALF_OPEN
                self._probe_successes = 0
                self._probing = False

            if self._state == CircuitState.HALF_OPEN:
                if self._probing:
                    raise CircuitOpenError(f"Circuit breaker '{self.name}' is probing")
                self._probing = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        async with self._lock:
            if exc_type is None:
                self._on_success()
            else:
                self._on_failure()
        return False

    def _on_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._probing = False
            self._probe_successes += 1
            if self._probe_successes >= self.config.success_threshold:
                logger.info("Circuit breaker '%s' closed", self.name)
                self.reset()
        else:
            self._failures = 0

    def _on_failure(self) -> None:
        self._failures += 1
        if self._state == CircuitState.HALF_OPEN or self._failures >= self.config.failure_threshold:
            if self._state != CircuitState.OPEN:
                logger.warning(
                    "Circuit breaker '%s' opened after %d failures", self.name, self._failures
                )
            self._state = CircuitState.OPEN
            self._opened_at = time.monotonic()
            self._probing = False

    def reset(self) -> None:
        """Return to the closed state and forget past failures."""
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._probe_successes = 0
        self._opened_at = None
        self._probing = False
