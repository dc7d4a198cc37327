"""
Circuit breakers for upstream calls (pybreaker).
State is process-local; the gateway is the only protected dependency.
"""
import logging

import pybreaker

from checkout.core.config import settings
from checkout.utils.metrics import circuit_breaker_state


logger = logging.getLogger("circuit_breaker")


class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Listener for circuit breaker events (logging/metrics)."""

    def __init__(self, name: str) -> None:
        self.name = name

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        old_name = getattr(old_state, "name", old_state)
        new_name = getattr(new_state, "name", new_state)
        circuit_breaker_state.labels(name=self.name).set(1 if new_name == pybreaker.STATE_OPEN else 0)
        logger.warning(
            "circuit_breaker_state_change",
            extra={
                "breaker_name": self.name,
                "old_state": old_name,
                "new_state": new_name,
            },
        )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: BaseException) -> None:
        logger.warning(
            "circuit_breaker_failure",
            extra={
                "breaker_name": self.name,
                "error": type(exc).__name__,
            },
        )


_breakers: dict[str, pybreaker.CircuitBreaker] = {}


def get_circuit_breaker(name: str, exclude: list | None = None) -> pybreaker.CircuitBreaker:
    """Get or create a circuit breaker by name."""
    if name not in _breakers:
        _breakers[name] = pybreaker.CircuitBreaker(
            fail_max=settings.cb_failure_threshold,
            reset_timeout=settings.cb_open_seconds,
            exclude=exclude or [],
            listeners=[CircuitBreakerListener(name)],
            name=name,
        )
    return _breakers[name]
