"""
Circuit Breaker for notification publishing.

After a run of failed publishes the breaker opens and publish_event()
returns immediately, so an order mutation never waits on a dead Redis.
Once ``recovery_timeout`` has passed a single publish is let through; its
outcome closes or re-opens the breaker.
"""

from __future__ import annotations

import random
import threading
import time
from enum import Enum

from pos_shared.config.settings import settings
from pos_shared.config.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"  # One trial publish in flight


class EventCircuitBreaker:
    """Thread-safe breaker shared by every publisher of the process."""

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 30.0):
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def can_execute(self) -> bool:
        """True if a publish may be attempted now."""
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.OPEN and time.monotonic() - self._opened_at >= self._recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                return True
            return False

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN or self._failure_count >= self._failure_threshold:
                if self._state != CircuitState.OPEN:
                    logger.error(
                        "Notification circuit breaker OPEN",
                        failure_count=self._failure_count,
                        threshold=self._failure_threshold,
                    )
                self._state = CircuitState.OPEN
                self._opened_at = time.monotonic()

    def record_success(self) -> None:
        with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.info("Notification circuit breaker CLOSED")
            self._state = CircuitState.CLOSED
            self._failure_count = 0


_event_circuit_breaker: EventCircuitBreaker | None = None
_circuit_breaker_lock = threading.Lock()


def get_event_circuit_breaker() -> EventCircuitBreaker:
    """Process-wide breaker; opens after one publish more than its retries allow."""
    global _event_circuit_breaker
    with _circuit_breaker_lock:
        if _event_circuit_breaker is None:
            _event_circuit_breaker = EventCircuitBreaker(
                failure_threshold=settings.redis_publish_max_retries + 2,
            )
        return _event_circuit_breaker


def calculate_retry_delay_with_jitter(attempt: int, base_delay: float = 0.1) -> float:
    """Exponential backoff (attempt is 0-indexed) with jitter, capped at 2 seconds."""
    exp_delay = min(base_delay * (2 ** attempt), 2.0)
    return random.uniform(base_delay, max(base_delay, exp_delay))
