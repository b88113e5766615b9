"""
Circuit breaker pattern implementation for resilient service calls.
"""

import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

from shared.errors import AccessLayerException
from shared.logging import get_logger


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, requests blocked
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreakerOpenException(AccessLayerException):
    """Exception raised when circuit breaker is open."""

    def __init__(self, name: str, open_until: Optional[float] = None):
        self.name = name
        self.open_until = open_until
        super().__init__(
            "CIRCUIT_OPEN",
            f"Circuit breaker '{name}' is OPEN - blocking call",
            {"circuit_breaker": name, "open_until": open_until},
        )


class CircuitBreaker:
    """Consecutive-failure circuit breaker.

    Callers drive it explicitly: ``before_call()`` ahead of each attempt
    returns a ticket, then exactly one of ``record_success(ticket)``,
    ``record_failure(ticket)``, ``record_neutral(ticket)`` or
    ``release_trial(ticket)`` once the attempt settles.
    Half-open admits a single trial; everyone else is rejected until the
    trial settles.

    Every state change starts a new generation. An outcome whose ticket
    belongs to an earlier generation is ignored, so only the trial decides
    how half-open ends.
    """

    def __init__(self,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 30.0,
                 name: str = "default",
                 clock: Callable[[], float] = time.monotonic):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self.logger = get_logger(f"circuit_breaker.{name}")
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._open_until = 0.0
        self._trial_in_flight = False
        self._generation = 0

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def before_call(self) -> int:
        """Admit a call and return its ticket, or raise ``CircuitBreakerOpenException``."""
        with self._lock:
            if self._state == CircuitBreakerState.CLOSED:
                return self._generation
            if self._state == CircuitBreakerState.OPEN:
                if self._clock() < self._open_until:
                    raise CircuitBreakerOpenException(self.name, self._open_until)
                self._state = CircuitBreakerState.HALF_OPEN
                self.logger.info("Circuit breaker transitioning to half-open", breaker=self.name)
            elif self._trial_in_flight:
                raise CircuitBreakerOpenException(self.name, self._open_until)
            self._trial_in_flight = True
            self._generation += 1
            return self._generation

    def record_success(self, ticket: int) -> None:
        """Record a successful call."""
        with self._lock:
            if self._is_stale(ticket, "success"):
                return
            if self._state == CircuitBreakerState.HALF_OPEN:
                self._close()
                self.logger.info("Circuit breaker reset to CLOSED after successful call", breaker=self.name)
            else:
                self._failure_count = 0

    def record_failure(self, ticket: int) -> None:
        """Record a qualifying failure and update state."""
        with self._lock:
            if self._is_stale(ticket, "failure"):
                return
            if self._state == CircuitBreakerState.HALF_OPEN:
                self._open()
                self.logger.warning("Circuit breaker trial failed, reopening", breaker=self.name,
                                    open_for=self.recovery_timeout)
                return

            self._failure_count += 1
            if self._failure_count >= self.failure_threshold:
                self._open()
                self.logger.error(
                    "Circuit breaker opened due to failures",
                    breaker=self.name,
                    failure_count=self._failure_count,
                    threshold=self.failure_threshold,
                    open_for=self.recovery_timeout
                )

    def record_neutral(self, ticket: int) -> None:
        """Record an outcome that says nothing about the dependency's health.

        The closed-state counter is left as is. A half-open trial that gets
        any answer closes the circuit.
        """
        with self._lock:
            if self._is_stale(ticket, "neutral"):
                return
            if self._state == CircuitBreakerState.HALF_OPEN:
                self._close()
                self.logger.info("Circuit breaker reset to CLOSED after trial response", breaker=self.name)

    def release_trial(self, ticket: int) -> None:
        """Free the half-open trial slot without deciding the outcome."""
        with self._lock:
            if self._state == CircuitBreakerState.HALF_OPEN and ticket == self._generation:
                self._trial_in_flight = False

    def _is_stale(self, ticket: int, outcome: str) -> bool:
        if ticket == self._generation:
            return False
        self.logger.debug("Ignoring outcome of a call admitted before the last transition",
                          breaker=self.name, outcome=outcome, state=self._state.value)
        return True

    def _open(self) -> None:
        self._state = CircuitBreakerState.OPEN
        self._open_until = self._clock() + self.recovery_timeout
        self._trial_in_flight = False
        self._generation += 1

    def _close(self) -> None:
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._trial_in_flight = False
        self._generation += 1

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state."""
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "open_until": self._open_until,
                "failure_threshold": self.failure_threshold,
                "recovery_timeout": self.recovery_timeout
            }

    def is_open(self) -> bool:
        """Check if circuit breaker is in OPEN state."""
        return self._state == CircuitBreakerState.OPEN
