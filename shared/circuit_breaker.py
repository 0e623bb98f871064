"""
Circuit breaker for calls to optional infrastructure.

The cache adapter consults the breaker before each backend call so that a dead
cache is skipped immediately instead of costing a timeout on every request.
"""

import time
from enum import Enum
from typing import Dict, Any, Callable

from shared.logging import get_logger


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Failing, calls skipped
    HALF_OPEN = "half_open"  # Probing whether the dependency recovered


class CircuitBreaker:
    """Failure counting breaker with a single half-open probe."""

    def __init__(self,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 30.0,
                 name: str = "default",
                 clock: Callable[[], float] = time.monotonic):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self.logger = get_logger(f"orders.circuit_breaker.{name}")
        self._clock = clock

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    def allow(self) -> bool:
        """Return True when a call may be attempted now."""
        if self._state == CircuitBreakerState.CLOSED:
            return True

        if self._state == CircuitBreakerState.OPEN:
            if self._clock() - self._opened_at < self.recovery_timeout:
                return False
            self._state = CircuitBreakerState.HALF_OPEN
            self._probe_in_flight = False
            self.logger.info("Circuit breaker half-open, probing")

        # Half-open: let exactly one probe through
        if self._probe_in_flight:
            return False
        self._probe_in_flight = True
        return True

    def record_success(self):
        """Close the breaker after a successful call."""
        if self._state != CircuitBreakerState.CLOSED:
            self.logger.info("Circuit breaker closed after successful probe")
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._probe_in_flight = False

    def record_failure(self):
        """Count a failure and open the breaker at the threshold."""
        self._failure_count += 1
        self._probe_in_flight = False

        if self._state == CircuitBreakerState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            if self._state != CircuitBreakerState.OPEN:
                self.logger.warning(
                    "Circuit breaker opened",
                    failure_count=self._failure_count,
                    threshold=self.failure_threshold
                )
            self._state = CircuitBreakerState.OPEN
            self._opened_at = self._clock()

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout
        }

    def is_open(self) -> bool:
        """Check if circuit breaker is in OPEN state."""
        return self._state == CircuitBreakerState.OPEN
