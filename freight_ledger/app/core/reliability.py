"""
Reliability Utilities.

Circuit Breaker guarding calls to external feeds (exchange rates), so a
dead feed is not hammered on every refresh.
"""

import logging
import time
from typing import Callable, Any

from freight_ledger.app.core.config import settings

logger = logging.getLogger(__name__)


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    After 'failure_threshold' consecutive failures the circuit opens and
    rejects calls for 'reset_timeout' seconds; the next call after that is
    a HALF_OPEN probe that closes the circuit on success or reopens it.
    """

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"

    def __init__(self, name: str, failure_threshold: int = 5, reset_timeout: int = 60):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.opened_at = 0.0
        self.state = self.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state == self.OPEN and not self._cooldown_elapsed()

    def _cooldown_elapsed(self) -> bool:
        return time.monotonic() - self.opened_at >= self.reset_timeout

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == self.OPEN:
            if not self._cooldown_elapsed():
                raise CircuitOpenError(f"Circuit '{self.name}' is OPEN")
            self.state = self.HALF_OPEN

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise

        self.record_success()
        return result

    def record_failure(self):
        self.failures += 1
        if self.state == self.HALF_OPEN or self.failures >= self.failure_threshold:
            if self.state != self.OPEN:
                logger.warning("Circuit '%s' opened after %d failures", self.name, self.failures)
            self.state = self.OPEN
            self.opened_at = time.monotonic()

    def record_success(self):
        if self.state != self.CLOSED:
            logger.info("Circuit '%s' closed", self.name)
        self.failures = 0
        self.state = self.CLOSED


# Shared instance for the exchange rate feed
rate_feed_circuit_breaker = CircuitBreaker(
    "rate_feed",
    failure_threshold=settings.rate_feed_failure_threshold,
    reset_timeout=settings.rate_feed_reset_timeout,
)
