"""
Tests for the CircuitBreaker class.

These tests verify:
- State transitions (closed -> open -> half-open -> closed)
- Failure counting and threshold detection
- Context manager usage with selective tripping
- Shared state between instances via the cache backend
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from django.core.cache import cache

from core.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState


class ProviderDown(Exception):
    pass


class ProviderRejected(Exception):
    pass


@pytest.fixture(autouse=True)
def clear_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def circuit():
    return CircuitBreaker(name="test-provider", failure_threshold=3, recovery_timeout=5)


def open_circuit(circuit: CircuitBreaker) -> float:
    for _ in range(circuit.failure_threshold):
        circuit.record_failure()
    return cache.get(circuit._opened_at_key)


class TestCircuitBreakerStates:
    def test_starts_closed(self, circuit):
        assert circuit.state == CircuitState.CLOSED
        assert circuit.is_available() is True

    def test_failures_below_threshold_keep_circuit_closed(self, circuit):
        circuit.record_failure()
        circuit.record_failure()

        assert circuit.state == CircuitState.CLOSED
        assert circuit.is_available() is True

    def test_reaching_threshold_opens_circuit(self, circuit):
        open_circuit(circuit)

        assert circuit.state == CircuitState.OPEN
        assert circuit.is_available() is False

    def test_success_resets_failure_count(self, circuit):
        circuit.record_failure()
        circuit.record_failure()
        circuit.record_success()
        circuit.record_failure()

        assert circuit.state == CircuitState.CLOSED


class TestCircuitBreakerRecovery:
    def test_admits_one_trial_call_after_recovery_timeout(self, circuit):
        opened_at = open_circuit(circuit)

        with patch("core.circuit_breaker.time.time", return_value=opened_at + 6):
            assert circuit.is_available() is True
            assert circuit.state == CircuitState.HALF_OPEN
            # Second caller waits for the trial call
            assert circuit.is_available() is False

    def test_successful_trial_call_closes_circuit(self, circuit):
        opened_at = open_circuit(circuit)

        with patch("core.circuit_breaker.time.time", return_value=opened_at + 6):
            circuit.is_available()
            circuit.record_success()

        assert circuit.state == CircuitState.CLOSED
        assert circuit.is_available() is True

    def test_failed_trial_call_reopens_circuit(self, circuit):
        opened_at = open_circuit(circuit)

        with patch("core.circuit_breaker.time.time", return_value=opened_at + 6):
            circuit.is_available()
            circuit.record_failure()
            assert circuit.state == CircuitState.OPEN
            assert circuit.is_available() is False

    def test_lost_trial_call_is_retried_after_another_timeout(self, circuit):
        opened_at = open_circuit(circuit)

        with patch("core.circuit_breaker.time.time", return_value=opened_at + 6):
            assert circuit.is_available() is True

        with patch("core.circuit_breaker.time.time", return_value=opened_at + 12):
            assert circuit.is_available() is True


class TestCircuitBreakerContextManager:
    def test_records_success(self, circuit):
        circuit.record_failure()

        with circuit.call():
            pass

        circuit.record_failure()
        circuit.record_failure()
        assert circuit.state == CircuitState.CLOSED

    def test_trip_exception_counts_as_failure(self, circuit):
        for _ in range(3):
            with pytest.raises(ProviderDown):
                with circuit.call(trip_on=(ProviderDown,)):
                    raise ProviderDown()

        assert circuit.state == CircuitState.OPEN

    def test_other_exceptions_propagate_without_tripping(self, circuit):
        for _ in range(5):
            with pytest.raises(ProviderRejected):
                with circuit.call(trip_on=(ProviderDown,)):
                    raise ProviderRejected()

        assert circuit.state == CircuitState.CLOSED

    def test_open_circuit_refuses_call(self, circuit):
        open_circuit(circuit)
        ran = []

        with pytest.raises(CircuitOpenError) as exc_info:
            with circuit.call():
                ran.append(True)

        assert ran == []
        assert exc_info.value.is_retryable is True
        assert "test-provider" in str(exc_info.value)


class TestCircuitBreakerSharedState:
    def test_state_shared_across_instances(self):
        first = CircuitBreaker(name="shared", failure_threshold=2)
        second = CircuitBreaker(name="shared", failure_threshold=2)

        first.record_failure()
        first.record_failure()

        assert second.is_available() is False

    def test_different_circuits_are_independent(self):
        a = CircuitBreaker(name="provider-a", failure_threshold=1)
        b = CircuitBreaker(name="provider-b", failure_threshold=1)

        a.record_failure()

        assert a.is_available() is False
        assert b.is_available() is True

    def test_reset_closes_circuit(self, circuit):
        open_circuit(circuit)

        circuit.reset()

        assert circuit.state == CircuitState.CLOSED
        assert circuit.is_available() is True
