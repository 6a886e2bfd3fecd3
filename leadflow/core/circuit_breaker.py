"""
Circuit Breaker Pattern for Collaborator Functions

Stops hammering a hosted function (call placement, SMS, AI SMS) that keeps
failing: after too many consecutive failures calls fail fast until a cool-down
passes, then a single probe call decides whether the function is back.

States:
- CLOSED: Normal operation, requests go through
- OPEN: Too many failures, blocking requests (fast-fail)
- HALF_OPEN: Testing if service recovered (allows 1 request)

Example:
    with get_circuit_breaker("sms-messaging").guard():
        response = session.post(url, json=payload)
        response.raise_for_status()

Environment Variables:
    CIRCUIT_BREAKER_FAILURE_THRESHOLD: Consecutive failures before opening (default: 5)
    CIRCUIT_BREAKER_TIMEOUT_SECONDS: Cool-down before the probe (default: 300)
"""

import os
import threading
import logging
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterator, Optional

from .exceptions import CollaboratorUnavailableError

logger = logging.getLogger(__name__)


class CircuitBreakerState:
    """Circuit breaker states"""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitBreaker:
    """
    Circuit breaker for one named collaborator function.

    Cool-downs are measured with clock (time.monotonic by default), so wall
    clock changes never reopen or close a breaker.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        timeout: float = 300,
        half_open_max_calls: int = 1,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            name: Collaborator function name, used in logs and status output
            failure_threshold: Number of consecutive failures before opening
            timeout: Seconds to wait before allowing the probe (HALF_OPEN)
            half_open_max_calls: Number of probe calls allowed in HALF_OPEN state
            clock: Seconds counter used for the cool-down
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.half_open_max_calls = half_open_max_calls
        self._clock = clock

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._last_failure_at: Optional[datetime] = None
        self._half_open_calls = 0

        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    def is_open(self) -> bool:
        """
        True when a call must not be attempted.

        Also admits the probe: the first check after the cool-down moves the
        breaker to HALF_OPEN and returns False; further checks return True
        until the probe reports back.
        """
        with self._lock:
            if self._state == CircuitBreakerState.OPEN:
                if self._clock() - self._opened_at < self.timeout:
                    return True
                logger.info(f"CircuitBreaker[{self.name}]: OPEN → HALF_OPEN (cool-down passed)")
                self._state = CircuitBreakerState.HALF_OPEN
                self._half_open_calls = 0

            if self._state == CircuitBreakerState.HALF_OPEN:
                if self._half_open_calls >= self.half_open_max_calls:
                    return True
                self._half_open_calls += 1

            return False

    def is_closed(self) -> bool:
        return self.state == CircuitBreakerState.CLOSED

    def is_half_open(self) -> bool:
        return self.state == CircuitBreakerState.HALF_OPEN

    def record_success(self) -> None:
        with self._lock:
            previous_state = self._state
            self._state = CircuitBreakerState.CLOSED
            self._failure_count = 0
            self._opened_at = None
            self._half_open_calls = 0

            if previous_state != CircuitBreakerState.CLOSED:
                logger.info(f"CircuitBreaker[{self.name}]: {previous_state.upper()} → CLOSED (success)")

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_at = datetime.utcnow()

            if self._state == CircuitBreakerState.HALF_OPEN:
                # The probe failed: another full cool-down
                self._open()
                logger.warning(
                    f"CircuitBreaker[{self.name}]: HALF_OPEN → OPEN "
                    f"(probe failed, next probe in {self.timeout}s)"
                )
            elif self._state == CircuitBreakerState.CLOSED and self._failure_count >= self.failure_threshold:
                self._open()
                logger.error(
                    f"CircuitBreaker[{self.name}]: CLOSED → OPEN "
                    f"({self._failure_count} consecutive failures, next probe in {self.timeout}s)"
                )
            else:
                logger.warning(
                    f"CircuitBreaker[{self.name}]: failure {self._failure_count}/{self.failure_threshold}"
                )

    @contextmanager
    def guard(self) -> Iterator[None]:
        """
        Run one collaborator call under the breaker.

        Raises CollaboratorUnavailableError without running the block while
        the breaker is open. Any exception from the block counts as a failure
        and is re-raised; a clean exit counts as a success.
        """
        if self.is_open():
            logger.warning(f"CircuitBreaker[{self.name}]: call blocked (breaker open)")
            raise CollaboratorUnavailableError(self.name)

        try:
            yield
        except Exception:
            self.record_failure()
            raise
        self.record_success()

    def reset(self) -> None:
        """Manually reset circuit breaker to CLOSED state"""
        with self._lock:
            self._state = CircuitBreakerState.CLOSED
            self._failure_count = 0
            self._opened_at = None
            self._last_failure_at = None
            self._half_open_calls = 0

    def get_status(self) -> dict:
        """Get circuit breaker status (for monitoring)"""
        with self._lock:
            retry_in = None
            if self._state == CircuitBreakerState.OPEN:
                retry_in = max(0.0, round(self.timeout - (self._clock() - self._opened_at), 1))

            return {
                "name": self.name,
                "state": self._state,
                "failure_count": self._failure_count,
                "failure_threshold": self.failure_threshold,
                "last_failure": self._last_failure_at.isoformat() if self._last_failure_at else None,
                "timeout_seconds": self.timeout,
                "retry_in_seconds": retry_in,
            }

    def _open(self) -> None:
        self._state = CircuitBreakerState.OPEN
        self._opened_at = self._clock()
        self._half_open_calls = 0


# ============================================================================
# PER-FUNCTION REGISTRY
# ============================================================================

_breakers: Dict[str, CircuitBreaker] = {}
_registry_lock = threading.Lock()


def get_circuit_breaker(name: str) -> CircuitBreaker:
    """
    Get (or create) the circuit breaker for a collaborator function.

    New breakers read CIRCUIT_BREAKER_FAILURE_THRESHOLD and
    CIRCUIT_BREAKER_TIMEOUT_SECONDS (5 failures, 300 seconds) and allow a
    single probe.
    """
    with _registry_lock:
        breaker = _breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                name=name,
                failure_threshold=int(os.getenv("CIRCUIT_BREAKER_FAILURE_THRESHOLD", "5")),
                timeout=float(os.getenv("CIRCUIT_BREAKER_TIMEOUT_SECONDS", "300")),
            )
            _breakers[name] = breaker
            logger.info(
                f"CircuitBreaker[{name}] created: threshold={breaker.failure_threshold}, "
                f"timeout={breaker.timeout}s"
            )
        return breaker


def get_all_breaker_status() -> Dict[str, dict]:
    """Status of every breaker created so far, keyed by function name"""
    with _registry_lock:
        breakers = list(_breakers.values())
    return {breaker.name: breaker.get_status() for breaker in breakers}


def reset_all_breakers() -> None:
    with _registry_lock:
        breakers = list(_breakers.values())
    for breaker in breakers:
        breaker.reset()
