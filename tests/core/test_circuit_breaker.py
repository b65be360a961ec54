"""
Unit Tests for Circuit Breaker

Tests cover:
- State transitions (CLOSED → OPEN → HALF_OPEN → CLOSED)
- Failure threshold behavior
- Timeout and recovery
- Status reporting
"""

import pytest
import threading
from datetime import datetime, timedelta

from chainly.core.circuit_breaker import CircuitBreaker, CircuitBreakerState


def expire(breaker: CircuitBreaker) -> None:
    """Pretend the breaker opened long enough ago to probe again."""
    breaker._opened_at = datetime.utcnow() - timedelta(seconds=breaker.timeout + 1)


# ============================================================================
# BASIC FUNCTIONALITY TESTS
# ============================================================================

@pytest.mark.unit
def test_circuit_breaker_initial_state():
    """Test circuit breaker starts in CLOSED state"""
    breaker = CircuitBreaker("sandbox", failure_threshold=3, timeout=60)

    assert breaker.state == CircuitBreakerState.CLOSED
    assert not breaker.is_open()


@pytest.mark.unit
def test_circuit_breaker_opens_after_threshold():
    """Test circuit opens after reaching failure threshold"""
    breaker = CircuitBreaker("sandbox", failure_threshold=3, timeout=60)

    breaker.record_failure()
    breaker.record_failure()
    assert breaker.state == CircuitBreakerState.CLOSED

    breaker.record_failure()

    assert breaker.state == CircuitBreakerState.OPEN
    assert breaker.is_open()


@pytest.mark.unit
def test_circuit_breaker_success_resets_failures():
    """Test success resets failure counter"""
    breaker = CircuitBreaker("sandbox", failure_threshold=3, timeout=60)

    breaker.record_failure()
    breaker.record_failure()
    breaker.record_success()
    breaker.record_failure()
    breaker.record_failure()

    assert breaker.state == CircuitBreakerState.CLOSED


# ============================================================================
# RECOVERY TESTS
# ============================================================================

@pytest.mark.unit
def test_circuit_breaker_open_to_half_open_after_timeout():
    breaker = CircuitBreaker("sandbox", failure_threshold=1, timeout=60)
    breaker.record_failure()

    expire(breaker)

    assert not breaker.is_open()
    assert breaker.state == CircuitBreakerState.HALF_OPEN


@pytest.mark.unit
def test_circuit_breaker_half_open_limits_probe_calls():
    """Test only half_open_max_calls probes are let through"""
    breaker = CircuitBreaker("sandbox", failure_threshold=1, timeout=60, half_open_max_calls=1)
    breaker.record_failure()
    expire(breaker)

    assert not breaker.is_open()
    assert breaker.is_open()


@pytest.mark.unit
def test_circuit_breaker_half_open_to_closed_on_success():
    breaker = CircuitBreaker("sandbox", failure_threshold=1, timeout=60)
    breaker.record_failure()
    expire(breaker)
    breaker.is_open()

    breaker.record_success()

    assert breaker.state == CircuitBreakerState.CLOSED
    assert not breaker.is_open()


@pytest.mark.unit
def test_circuit_breaker_half_open_to_open_on_failure():
    """Test a failed probe re-opens the circuit immediately"""
    breaker = CircuitBreaker("sandbox", failure_threshold=5, timeout=60)
    for _ in range(5):
        breaker.record_failure()
    expire(breaker)
    breaker.is_open()

    breaker.record_failure()

    assert breaker.state == CircuitBreakerState.OPEN
    assert breaker.is_open()


@pytest.mark.unit
def test_circuit_breaker_manual_reset():
    breaker = CircuitBreaker("sandbox", failure_threshold=1, timeout=60)
    breaker.record_failure()

    breaker.reset()

    assert breaker.state == CircuitBreakerState.CLOSED
    assert breaker.get_status()["failure_count"] == 0


# ============================================================================
# STATUS TESTS
# ============================================================================

@pytest.mark.unit
def test_circuit_breaker_get_status():
    breaker = CircuitBreaker("sandbox", failure_threshold=2, timeout=30)
    breaker.record_failure()

    status = breaker.get_status()

    assert status == {
        "name": "sandbox",
        "state": CircuitBreakerState.CLOSED,
        "failure_count": 1,
        "failure_threshold": 2,
        "opened_at": None,
        "timeout_seconds": 30,
    }


@pytest.mark.unit
def test_circuit_breaker_status_when_open():
    breaker = CircuitBreaker("sandbox", failure_threshold=1, timeout=30)
    breaker.record_failure()

    status = breaker.get_status()

    assert status["state"] == CircuitBreakerState.OPEN
    assert status["opened_at"] is not None


@pytest.mark.unit
def test_circuit_breaker_concurrent_failures():
    """Test concurrent failures are all counted"""
    breaker = CircuitBreaker("sandbox", failure_threshold=100, timeout=60)

    threads = [threading.Thread(target=breaker.record_failure) for _ in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert breaker.get_status()["failure_count"] == 50
    assert breaker.state == CircuitBreakerState.CLOSED
