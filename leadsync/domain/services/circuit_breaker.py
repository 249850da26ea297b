"""
Circuit Breaker
Three-state guard around the queue's backing store
"""
import logging
import time
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Store failing, hold off
    HALF_OPEN = "half_open"  # Cool-down elapsed, next call is a probe


class CircuitBreaker:
    """
    Circuit breaker that stops the queue hammering an unavailable store.

    Transitions:
    - CLOSED -> OPEN: failure_threshold consecutive store errors
    - OPEN -> HALF_OPEN: recovery_timeout elapsed, one probe allowed
    - HALF_OPEN -> CLOSED: probe succeeded
    - HALF_OPEN -> OPEN: probe failed, cool-down restarts
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 1,
        recovery_timeout: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.recovery_timeout = recovery_timeout
        self._clock = clock or time.time
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self.state = CircuitState.CLOSED

    def allow_request(self) -> bool:
        """Whether a store call may be attempted now."""
        if self.state == CircuitState.OPEN:
            if self.opened_at is not None and self._clock() - self.opened_at >= self.recovery_timeout:
                logger.info(f"Circuit breaker {self.name} entering HALF_OPEN state")
                self.state = CircuitState.HALF_OPEN
                return True
            return False
        return True

    def record_success(self) -> None:
        """Reset circuit breaker on successful call."""
        if self.state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit breaker {self.name} recovered, entering CLOSED state")
        self.failure_count = 0
        self.opened_at = None
        self.state = CircuitState.CLOSED

    def record_failure(self) -> None:
        """Count a store failure and open the circuit when warranted."""
        self.failure_count += 1

        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self.trip()

    def trip(self) -> None:
        """Force the circuit open, restarting the cool-down."""
        if self.state != CircuitState.OPEN:
            logger.error(
                f"Circuit breaker {self.name} OPEN after {self.failure_count} failure(s), "
                f"cooling down for {self.recovery_timeout:.0f}s"
            )
        self.state = CircuitState.OPEN
        self.opened_at = self._clock()

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def snapshot(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "opened_at": self.opened_at,
        }
