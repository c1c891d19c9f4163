"""
Per-operation circuit breakers for the retry engine, built on pybreaker.

Each operation name owns one ``pybreaker.CircuitBreaker`` and follows its
three-state machine:

- Closed (initial): calls execute; each failed retry cycle increments the
  failure counter and reaching ``fail_max`` opens the breaker.
- Open: calls are rejected with ``CircuitBreakerOpenError`` without invoking
  the operation until ``reset_timeout`` seconds have passed since the last
  failure.
- Half-open: once the timeout has elapsed the counter is zeroed and the next
  call is a trial. A failed trial reopens the breaker immediately; a
  successful one closes it.

pybreaker only wraps synchronous callables, so the outcome of each async retry
cycle is replayed through ``CircuitBreaker.call`` and the timeout is checked
against the registry clock. A listener publishes state changes to the
breaker gauge and stamps failure times. ``snapshot()`` returns copies.
"""

import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

import pybreaker
import structlog

from .exceptions import CircuitBreakerOpenError

logger = structlog.get_logger(__name__)

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RESET_TIMEOUT = 60.0


@dataclass
class CircuitBreakerState:
    """Failure bookkeeping for one named operation; times are monotonic seconds."""

    failures: int = 0
    last_failure: Optional[float] = None
    is_open: bool = False
    half_open: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class _FailedCycle(Exception):
    """Stand-in raised inside the breaker for a failed async retry cycle."""


def _succeed() -> None:
    return None


def _fail() -> None:
    raise _FailedCycle()


class _RegistryListener(pybreaker.CircuitBreakerListener):
    """Routes pybreaker notifications back to the owning registry."""

    def __init__(self, registry: 'CircuitBreakerRegistry'):
        self._registry = registry

    def failure(self, cb: pybreaker.CircuitBreaker, exc: BaseException) -> None:
        self._registry._failure_times[cb.name] = self._registry._clock()

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state: Any, new_state: Any) -> None:
        old_name = getattr(old_state, 'name', None)
        logger.debug(
            "Circuit breaker state changed",
            operation_name=cb.name,
            from_state=old_name,
            to_state=new_state.name,
            failures=cb.fail_counter
        )
        self._registry._publish(cb.name, new_state.name == pybreaker.STATE_OPEN)


class CircuitBreakerRegistry:
    """
    Owner of every breaker used by one retry engine.

    Args:
        clock: Monotonic time source in seconds, used for the reset timeout
        metrics: Optional ``PaymentMetrics`` receiving state changes and rejections
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, metrics: Any = None):
        self._clock = clock
        self._metrics = metrics
        self._listener = _RegistryListener(self)
        self._breakers: Dict[str, pybreaker.CircuitBreaker] = {}
        self._storages: Dict[str, pybreaker.CircuitMemoryStorage] = {}
        self._failure_times: Dict[str, float] = {}

    def before_call(self, operation_name: str, reset_timeout: float) -> bool:
        """
        Gate a call to ``operation_name``.

        Returns:
            True when an open breaker was just moved to its half-open trial

        Raises:
            CircuitBreakerOpenError: If the breaker is open and the timeout has not elapsed
        """
        breaker = self._breakers.get(operation_name)
        if breaker is None or breaker.current_state != pybreaker.STATE_OPEN:
            return False

        breaker.reset_timeout = reset_timeout
        elapsed = self._clock() - self._failure_times.get(operation_name, 0.0)
        if elapsed < reset_timeout:
            if self._metrics is not None:
                self._metrics.record_circuit_rejection(operation_name)
            logger.warning(
                "Circuit breaker rejected call",
                operation_name=operation_name,
                failures=breaker.fail_counter,
                time_until_reset=reset_timeout - elapsed
            )
            raise CircuitBreakerOpenError(operation_name, time_until_reset=reset_timeout - elapsed)

        self._storages[operation_name].reset_counter()
        breaker.half_open()
        return True

    def record_success(self, operation_name: str) -> None:
        breaker = self._breaker(operation_name)
        if breaker.current_state == pybreaker.STATE_OPEN:
            breaker.close()
            return
        breaker.call(_succeed)

    def record_failure(self, operation_name: str, failure_threshold: int) -> bool:
        """
        Count a failed cycle for ``operation_name``.

        Returns:
            True when this failure opened the breaker
        """
        breaker = self._breaker(operation_name)
        breaker.fail_max = failure_threshold

        if breaker.current_state == pybreaker.STATE_OPEN:
            self._storages[operation_name].increment_counter()
            self._failure_times[operation_name] = self._clock()
            return False

        try:
            breaker.call(_fail)
        except (_FailedCycle, pybreaker.CircuitBreakerError):
            # pybreaker re-raises the recorded failure, or its own error on a trip
            pass
        return breaker.current_state == pybreaker.STATE_OPEN

    def get_breaker(self, operation_name: str) -> Optional[pybreaker.CircuitBreaker]:
        return self._breakers.get(operation_name)

    def get_state(self, operation_name: str) -> Optional[CircuitBreakerState]:
        breaker = self._breakers.get(operation_name)
        return self._state_of(operation_name, breaker) if breaker is not None else None

    def snapshot(self) -> Dict[str, CircuitBreakerState]:
        """Read-only copy of every breaker keyed by operation name."""
        return {name: self._state_of(name, breaker) for name, breaker in self._breakers.items()}

    def reset(self, operation_name: Optional[str] = None) -> bool:
        """
        Forget breaker state for one operation, or for all when no name is given.

        Returns:
            True if any state was removed
        """
        names = list(self._breakers) if operation_name is None else [operation_name]
        removed = False
        for name in names:
            if self._breakers.pop(name, None) is None:
                continue
            self._storages.pop(name, None)
            self._failure_times.pop(name, None)
            self._publish(name, False)
            removed = True
        return removed

    def _breaker(self, operation_name: str) -> pybreaker.CircuitBreaker:
        breaker = self._breakers.get(operation_name)
        if breaker is None:
            storage = pybreaker.CircuitMemoryStorage(pybreaker.STATE_CLOSED)
            breaker = pybreaker.CircuitBreaker(
                fail_max=DEFAULT_FAILURE_THRESHOLD,
                reset_timeout=DEFAULT_RESET_TIMEOUT,
                state_storage=storage,
                listeners=[self._listener],
                name=operation_name
            )
            self._breakers[operation_name] = breaker
            self._storages[operation_name] = storage
        return breaker

    def _state_of(self, operation_name: str, breaker: pybreaker.CircuitBreaker) -> CircuitBreakerState:
        current = breaker.current_state
        return CircuitBreakerState(
            failures=breaker.fail_counter,
            last_failure=self._failure_times.get(operation_name),
            is_open=current == pybreaker.STATE_OPEN,
            half_open=current == pybreaker.STATE_HALF_OPEN
        )

    def _publish(self, operation_name: str, is_open: bool) -> None:
        if self._metrics is not None:
            self._metrics.set_circuit_state(operation_name, is_open)
