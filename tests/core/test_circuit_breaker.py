"""
Unit Tests for Circuit Breaker

Tests cover:
- State transitions (CLOSED → OPEN → HALF_OPEN → CLOSED)
- Failure threshold behavior
- Single probe call in HALF_OPEN
- guard() context manager
- Per-function registry
"""

import pytest
import threading

from leadflow.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerState,
    get_all_breaker_status,
    get_circuit_breaker,
    reset_all_breakers,
)
from leadflow.core.exceptions import CollaboratorError, CollaboratorUnavailableError


class Ticker:
    """Fake monotonic clock"""

    def __init__(self):
        self.seconds = 1000.0

    def __call__(self):
        return self.seconds


@pytest.fixture
def ticker():
    return Ticker()


@pytest.fixture
def open_breaker(ticker):
    """sms-messaging breaker opened by two failures, 60 second cool-down"""
    breaker = CircuitBreaker("sms-messaging", failure_threshold=2, timeout=60, clock=ticker)
    breaker.record_failure()
    breaker.record_failure()
    return breaker


# ============================================================================
# BASIC FUNCTIONALITY TESTS
# ============================================================================

@pytest.mark.unit
def test_circuit_breaker_initial_state():
    """Test circuit breaker starts in CLOSED state"""
    breaker = CircuitBreaker("sms-messaging", failure_threshold=3, timeout=60)

    assert breaker.state == CircuitBreakerState.CLOSED
    assert breaker.is_closed()
    assert not breaker.is_open()
    assert not breaker.is_half_open()


@pytest.mark.unit
def test_circuit_breaker_opens_after_threshold():
    """Test circuit opens after reaching failure threshold"""
    breaker = CircuitBreaker("sms-messaging", failure_threshold=3, timeout=60)

    breaker.record_failure()
    breaker.record_failure()
    assert breaker.is_closed()

    breaker.record_failure()

    assert breaker.is_open()
    assert breaker.state == CircuitBreakerState.OPEN


@pytest.mark.unit
def test_circuit_breaker_success_resets_failures():
    """Failures must be consecutive to open the circuit"""
    breaker = CircuitBreaker("sms-messaging", failure_threshold=3, timeout=60)

    breaker.record_failure()
    breaker.record_failure()
    breaker.record_success()

    breaker.record_failure()
    breaker.record_failure()
    assert breaker.is_closed()

    breaker.record_failure()
    assert breaker.is_open()


@pytest.mark.unit
def test_circuit_breaker_default_policy():
    """Defaults: 5 failures, 300 second cool-down, 1 probe"""
    breaker = CircuitBreaker("outbound-calling")

    assert breaker.failure_threshold == 5
    assert breaker.timeout == 300
    assert breaker.half_open_max_calls == 1


# ============================================================================
# STATE TRANSITION TESTS
# ============================================================================

@pytest.mark.unit
def test_circuit_breaker_blocks_during_cool_down(open_breaker, ticker):
    ticker.seconds += 59.9

    assert open_breaker.is_open()
    assert open_breaker.state == CircuitBreakerState.OPEN


@pytest.mark.unit
def test_circuit_breaker_half_open_after_timeout(open_breaker, ticker):
    """After the cool-down the first check is allowed through as the probe"""
    ticker.seconds += 60

    assert not open_breaker.is_open()  # is_open() triggers transition
    assert open_breaker.is_half_open()


@pytest.mark.unit
def test_circuit_breaker_half_open_allows_single_probe(open_breaker, ticker):
    """A second caller is blocked while the probe is in flight"""
    ticker.seconds += 60

    assert not open_breaker.is_open()  # Probe
    assert open_breaker.is_open()  # Everyone else waits for the probe result


@pytest.mark.unit
def test_circuit_breaker_probe_success_closes(open_breaker, ticker):
    ticker.seconds += 60
    assert not open_breaker.is_open()

    open_breaker.record_success()

    assert open_breaker.is_closed()
    assert not open_breaker.is_open()


@pytest.mark.unit
def test_circuit_breaker_probe_failure_restarts_cool_down(open_breaker, ticker):
    ticker.seconds += 60
    assert not open_breaker.is_open()

    open_breaker.record_failure()

    assert open_breaker.state == CircuitBreakerState.OPEN
    ticker.seconds += 30
    assert open_breaker.is_open()
    ticker.seconds += 30
    assert not open_breaker.is_open()


# ============================================================================
# GUARD TESTS
# ============================================================================

@pytest.mark.unit
def test_guard_records_success(ticker):
    breaker = CircuitBreaker("sms-messaging", failure_threshold=2, timeout=60, clock=ticker)
    breaker.record_failure()

    with breaker.guard():
        pass

    assert breaker.get_status()["failure_count"] == 0


@pytest.mark.unit
def test_guard_records_failure_and_reraises(ticker):
    breaker = CircuitBreaker("sms-messaging", failure_threshold=2, timeout=60, clock=ticker)

    for _ in range(2):
        with pytest.raises(CollaboratorError):
            with breaker.guard():
                raise CollaboratorError("sms-messaging returned 502", service="sms-messaging", status_code=502)

    assert breaker.is_open()


@pytest.mark.unit
def test_guard_fails_fast_while_open(open_breaker):
    calls = []

    with pytest.raises(CollaboratorUnavailableError) as exc_info:
        with open_breaker.guard():
            calls.append("attempted")

    assert calls == []
    assert exc_info.value.service == "sms-messaging"


# ============================================================================
# RESET & STATUS TESTS
# ============================================================================

@pytest.mark.unit
def test_circuit_breaker_manual_reset(open_breaker):
    open_breaker.reset()

    assert open_breaker.is_closed()
    assert open_breaker.get_status()["failure_count"] == 0


@pytest.mark.unit
def test_circuit_breaker_get_status():
    """Test get_status returns correct information"""
    breaker = CircuitBreaker("ai-sms-processor", failure_threshold=3, timeout=60)
    breaker.record_failure()

    status = breaker.get_status()

    assert status["name"] == "ai-sms-processor"
    assert status["state"] == CircuitBreakerState.CLOSED
    assert status["failure_count"] == 1
    assert status["failure_threshold"] == 3
    assert status["last_failure"] is not None
    assert status["timeout_seconds"] == 60
    assert status["retry_in_seconds"] is None


@pytest.mark.unit
def test_open_status_reports_time_to_probe(open_breaker, ticker):
    ticker.seconds += 45

    assert open_breaker.get_status()["retry_in_seconds"] == 15.0


# ============================================================================
# REGISTRY TESTS
# ============================================================================

@pytest.mark.unit
def test_registry_returns_same_breaker_per_name():
    """One breaker per collaborator function"""
    assert get_circuit_breaker("outbound-calling") is get_circuit_breaker("outbound-calling")
    assert get_circuit_breaker("outbound-calling") is not get_circuit_breaker("sms-messaging")


@pytest.mark.unit
def test_registry_breakers_are_independent():
    """An open SMS breaker does not block calls"""
    sms = get_circuit_breaker("sms-messaging")
    for _ in range(sms.failure_threshold):
        sms.record_failure()

    assert sms.is_open()
    assert not get_circuit_breaker("outbound-calling").is_open()


@pytest.mark.unit
def test_registry_reads_policy_from_env(monkeypatch):
    monkeypatch.setenv("CIRCUIT_BREAKER_FAILURE_THRESHOLD", "2")
    monkeypatch.setenv("CIRCUIT_BREAKER_TIMEOUT_SECONDS", "30")

    breaker = get_circuit_breaker("webhook-test-env-policy")

    assert breaker.failure_threshold == 2
    assert breaker.timeout == 30


@pytest.mark.unit
def test_registry_status_and_reset():
    """Registry reports every breaker and resets them together"""
    breaker = get_circuit_breaker("sms-messaging")
    for _ in range(breaker.failure_threshold):
        breaker.record_failure()

    status = get_all_breaker_status()
    assert status["sms-messaging"]["state"] == CircuitBreakerState.OPEN

    reset_all_breakers()

    assert get_all_breaker_status()["sms-messaging"]["state"] == CircuitBreakerState.CLOSED


# ============================================================================
# THREAD SAFETY TESTS (basic)
# ============================================================================

@pytest.mark.unit
def test_circuit_breaker_concurrent_access():
    """Test circuit breaker handles concurrent access"""
    breaker = CircuitBreaker("sms-messaging", failure_threshold=10, timeout=60)

    def record_failures():
        for _ in range(5):
            breaker.record_failure()

    threads = [threading.Thread(target=record_failures) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert breaker.get_status()["failure_count"] == 15
    assert breaker.is_open()
