"""
Circuit breaker for calls to external services.

State lives in Django's cache backend (Redis in deployments) so every web
worker and Celery worker sees the same circuit. When a provider keeps timing
out, callers fail fast instead of each waiting out its own timeout.

States:
    - CLOSED: Normal operation, calls pass through
    - OPEN: Provider is failing, calls fail fast with CircuitOpenError
    - HALF_OPEN: Recovery timeout elapsed, one trial call is let through

Usage:
    from core.circuit_breaker import CircuitBreaker

    chat_circuit = CircuitBreaker("stream-chat", failure_threshold=5)

    with chat_circuit.call(trip_on=(GatewayUnavailableError,)):
        adapter.create_channel(...)

Only exceptions listed in ``trip_on`` count as failures. A provider that
answers "bad request" is up, and should not open the circuit.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING

from django.core.cache import cache

from core.exceptions import ExternalServiceError

if TYPE_CHECKING:
    from collections.abc import Generator

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(ExternalServiceError):
    """
    Raised when a call is refused because the circuit is open.

    No request was sent, so the caller's local state is untouched and the
    same call may be retried once the provider recovers.
    """

    default_error_code = "CIRCUIT_OPEN"
    is_retryable = True


class CircuitBreaker:
    """
    Distributed circuit breaker using the Django cache backend.

    Attributes:
        name: Unique identifier, also the cache key prefix
        failure_threshold: Consecutive failures before opening
        recovery_timeout: Seconds the circuit stays open before a trial call
    """

    cache_ttl = 3600

    def __init__(self, name: str, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout

        self._state_key = f"circuit:{name}:state"
        self._failures_key = f"circuit:{name}:failures"
        self._opened_at_key = f"circuit:{name}:opened_at"

    @property
    def state(self) -> CircuitState:
        try:
            return CircuitState(cache.get(self._state_key, CircuitState.CLOSED.value))
        except ValueError:
            return CircuitState.CLOSED

    def is_available(self) -> bool:
        """
        Check if the circuit lets a call through.

        An open circuit whose recovery timeout has elapsed moves to
        half-open and admits the caller as the trial call.
        """
        state = self.state
        if state == CircuitState.CLOSED:
            return True

        opened_at = cache.get(self._opened_at_key)
        recovered = opened_at is None or time.time() - opened_at >= self.recovery_timeout
        if not recovered:
            # OPEN and cooling down, or HALF_OPEN with a trial call in flight
            return False

        # Restamp so a trial call that never reports back is retried after
        # another recovery_timeout instead of wedging the circuit.
        self._set_state(CircuitState.HALF_OPEN)
        cache.set(self._opened_at_key, time.time(), timeout=self.cache_ttl)
        if state == CircuitState.OPEN:
            logger.info(
                "Circuit breaker half-open, probing provider",
                extra={"circuit": self.name},
            )
        return True

    def record_success(self) -> None:
        if self.state != CircuitState.CLOSED:
            logger.info(
                "Circuit breaker closed after successful trial call",
                extra={"circuit": self.name},
            )
            self._set_state(CircuitState.CLOSED)
        cache.set(self._failures_key, 0, timeout=self.cache_ttl)

    def record_failure(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self._open()
            logger.warning(
                "Circuit breaker reopened after failed trial call",
                extra={"circuit": self.name},
            )
            return

        try:
            failures = cache.incr(self._failures_key)
        except ValueError:
            cache.set(self._failures_key, 1, timeout=self.cache_ttl)
            failures = 1

        if failures >= self.failure_threshold:
            self._open()
            logger.warning(
                f"Circuit breaker opened after {failures} failures",
                extra={
                    "circuit": self.name,
                    "failure_count": failures,
                    "threshold": self.failure_threshold,
                },
            )

    @contextmanager
    def call(
        self, trip_on: tuple[type[BaseException], ...] = (Exception,)
    ) -> Generator[None, None, None]:
        """
        Guard a block of code with the circuit.

        Raises:
            CircuitOpenError: Circuit is open, the block did not run
        """
        if not self.is_available():
            raise CircuitOpenError(
                f"Circuit '{self.name}' is open",
                service_name=self.name,
            )
        try:
            yield
        except trip_on:
            self.record_failure()
            raise
        self.record_success()

    def reset(self) -> None:
        """Force the circuit closed (admin action and tests)."""
        self._set_state(CircuitState.CLOSED)
        cache.delete_many([self._failures_key, self._opened_at_key])

    def _set_state(self, state: CircuitState) -> None:
        cache.set(self._state_key, state.value, timeout=self.cache_ttl)

    def _open(self) -> None:
        self._set_state(CircuitState.OPEN)
        cache.set(self._opened_at_key, time.time(), timeout=self.cache_ttl)

    def __repr__(self) -> str:
        return f"CircuitBreaker(name={self.name!r}, state={self.state.value})"
