"""
Circuit Breaker for the code sandbox

After too many consecutive sandbox failures the breaker opens and code nodes
fail fast (as a retriable SandboxError) instead of piling more requests onto
a provider that is down.

States:
- CLOSED: calls go through
- OPEN: calls rejected until ``timeout`` seconds have passed
- HALF_OPEN: a limited number of probe calls allowed

Example:
    if sandbox_circuit_breaker.is_open():
        raise SandboxError("Sandbox circuit breaker is OPEN")
    try:
        result = run_in_sandbox(code)
        sandbox_circuit_breaker.record_success()
    except SandboxError:
        sandbox_circuit_breaker.record_failure()
        raise
"""

import logging
import threading
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)


class CircuitBreakerState:
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    def __init__(self, name: str, failure_threshold: int = 5, timeout: int = 300, half_open_max_calls: int = 1):
        """
        Args:
            name: Used in log lines
            failure_threshold: Consecutive failures before opening
            timeout: Seconds to stay OPEN before probing
            half_open_max_calls: Probe calls allowed while HALF_OPEN
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.half_open_max_calls = half_open_max_calls

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[datetime] = None
        self._half_open_calls = 0
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    def is_open(self) -> bool:
        """True when the next call must be rejected."""
        with self._lock:
            if self._state == CircuitBreakerState.OPEN:
                elapsed = (datetime.utcnow() - self._opened_at).total_seconds() if self._opened_at else 0
                if elapsed < self.timeout:
                    return True
                logger.info(f"CircuitBreaker[{self.name}]: OPEN -> HALF_OPEN")
                self._state = CircuitBreakerState.HALF_OPEN
                self._half_open_calls = 0

            if self._state == CircuitBreakerState.HALF_OPEN:
                if self._half_open_calls >= self.half_open_max_calls:
                    return True
                self._half_open_calls += 1

            return False

    def record_success(self) -> None:
        with self._lock:
            if self._state != CircuitBreakerState.CLOSED:
                logger.info(f"CircuitBreaker[{self.name}]: {self._state} -> CLOSED")
            self._state = CircuitBreakerState.CLOSED
            self._failure_count = 0
            self._opened_at = None
            self._half_open_calls = 0

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1

            if self._state == CircuitBreakerState.HALF_OPEN or self._failure_count >= self.failure_threshold:
                if self._state != CircuitBreakerState.OPEN:
                    logger.error(
                        f"CircuitBreaker[{self.name}]: {self._state} -> OPEN "
                        f"({self._failure_count} consecutive failures, retry in {self.timeout}s)"
                    )
                self._state = CircuitBreakerState.OPEN
                self._opened_at = datetime.utcnow()
            else:
                logger.warning(
                    f"CircuitBreaker[{self.name}]: failure {self._failure_count}/{self.failure_threshold}"
                )

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitBreakerState.CLOSED
            self._failure_count = 0
            self._opened_at = None
            self._half_open_calls = 0

    def get_status(self) -> dict:
        with self._lock:
            return {
                "name": self.name,
                "state": self._state,
                "failure_count": self._failure_count,
                "failure_threshold": self.failure_threshold,
                "opened_at": self._opened_at.isoformat() if self._opened_at else None,
                "timeout_seconds": self.timeout,
            }


# Shared breaker for every code node in this process
sandbox_circuit_breaker = CircuitBreaker("sandbox", failure_threshold=5, timeout=300)
