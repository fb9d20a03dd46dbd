"""
Circuit breaker guarding generation requests to the inference service.
The breaker is a pybreaker.CircuitBreaker owned by one gateway and shared by
every caller of that gateway.
"""

from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional

import pybreaker

from docrank.models.ranking import CircuitBreakerConfig
from docrank.utils.logger import LoggerMixin
from .base import CircuitOpenError, InferenceGatewayError


class CircuitState(str, Enum):
    """Circuit breaker states as reported by health endpoints."""
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


_STATE_NAMES = {
    pybreaker.STATE_CLOSED: CircuitState.CLOSED,
    pybreaker.STATE_OPEN: CircuitState.OPEN,
    pybreaker.STATE_HALF_OPEN: CircuitState.HALF_OPEN,
}


class BreakerLogListener(pybreaker.CircuitBreakerListener, LoggerMixin):
    """Logs breaker transitions and failed calls."""

    def state_change(self, cb, old_state, new_state):
        old_name = getattr(old_state, "name", old_state)
        new_name = getattr(new_state, "name", new_state)
        if new_name == pybreaker.STATE_OPEN:
            self.logger.warning(
                f"Circuit breaker '{cb.name}' moving from {old_name} to OPEN "
                f"after {cb.fail_counter} consecutive failures"
            )
        else:
            self.logger.info(f"Circuit breaker '{cb.name}' moving from {old_name} to {new_name}")

    def failure(self, cb, exc):
        self.logger.debug(f"Circuit breaker '{cb.name}' recorded failure {cb.fail_counter}: {exc}")


def _is_ignored_error(error: BaseException) -> bool:
    """Only gateway errors count as breaker failures."""
    return not isinstance(error, InferenceGatewayError)


def create_circuit_breaker(
    config: Optional[CircuitBreakerConfig] = None,
    name: str = "ollama-generation"
) -> pybreaker.CircuitBreaker:
    """
    Factory function to create the breaker guarding generation.

    CLOSED -> OPEN after failure_threshold consecutive failures.
    OPEN -> HALF_OPEN once reset_timeout has elapsed since the circuit opened.
    HALF_OPEN -> CLOSED on a success, HALF_OPEN -> OPEN on a failure.

    Args:
        config: Threshold and reset timeout
        name: Breaker name used in log messages

    Returns:
        pybreaker.CircuitBreaker instance
    """
    config = config or CircuitBreakerConfig()
    return pybreaker.CircuitBreaker(
        fail_max=config.failure_threshold,
        reset_timeout=config.reset_timeout,
        exclude=[_is_ignored_error],
        listeners=[BreakerLogListener()],
        throw_new_error_on_trip=False,
        name=name
    )


def circuit_state(breaker: pybreaker.CircuitBreaker) -> CircuitState:
    """Current state of a breaker."""
    return _STATE_NAMES[breaker.current_state]


@contextmanager
def guarded_call(breaker: pybreaker.CircuitBreaker) -> Iterator[None]:
    """
    Run the enclosed block through the breaker.

    The block's own exception is re-raised unchanged after it has been
    recorded.

    Raises:
        CircuitOpenError: If the circuit is open and the reset timeout has not elapsed
    """
    try:
        with breaker.calling():
            yield
    except pybreaker.CircuitBreakerError as e:
        raise CircuitOpenError(
            "Inference service is temporarily unavailable due to repeated failures "
            "(circuit breaker open)."
        ) from e
