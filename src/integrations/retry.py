"""
Retry engine using tenacity for exponential backoff with jitter and circuit breaking.

This module executes caller-supplied asynchronous operations under a bounded
retry policy and, optionally, a per-operation circuit breaker. It is the single
place where transient-failure policy for payment calls is enforced.

Key Features:
- ``RetryConfig`` with max attempts, base/max delay, backoff multiplier, jitter,
  retry predicate and ``on_retry`` / ``on_max_attempts_reached`` callbacks
- Exponential backoff ``base * multiplier ** (attempt - 1)`` clamped to the
  maximum and jittered by at most +/-10 %, driven by tenacity ``AsyncRetrying``
- Result objects from ``execute_with_retry`` (never raises); exception-raising
  specialisations for payment and idempotent network operations
- Per-operation circuit breakers that reject calls while open
- Prometheus counters for retried attempts and cycle outcomes

All delays and durations are in seconds.
"""

import asyncio
import functools
import random
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from src.monitoring.logging import StructuredLogger

from .circuit_breaker import CircuitBreakerRegistry, CircuitBreakerState
from .error_handler import ErrorCategory, ErrorHandler, extract_error_message

# Initialize structured logger for retry operations
logger = structlog.get_logger(__name__)

Operation = Callable[[], Awaitable[Any]]

JITTER_RATIO = 0.1

RETRYABLE_ERROR_CODES = ('NETWORK_ERROR', 'ECONNABORTED')
RETRYABLE_MESSAGES = (
    'network error',
    'timeout',
    'connection failed',
    'server error',
    'gateway error',
    'service unavailable',
)
NON_RETRYABLE_PAYMENT_MESSAGES = (
    'signature verification failed',
    'invalid signature',
    'authentication failed',
    'payment declined',
    'insufficient funds',
)


def _status_code_of(error: BaseException) -> Optional[int]:
    status = getattr(error, 'status_code', None)
    if status is None:
        response = getattr(error, 'response', None)
        status = getattr(response, 'status_code', None)
    return status if isinstance(status, int) else None


def default_retry_condition(error: BaseException) -> bool:
    """
    Retry on transport failures, 5xx responses and transient error messages.

    Args:
        error: Exception raised by the operation

    Returns:
        True if another attempt may succeed
    """
    if getattr(error, 'code', None) in RETRYABLE_ERROR_CODES:
        return True
    if isinstance(error, httpx.TransportError):
        return True

    status = _status_code_of(error)
    if status is not None and status >= 500:
        return True

    message = extract_error_message(error).lower()
    return any(fragment in message for fragment in RETRYABLE_MESSAGES)


def payment_retry_condition(error: BaseException) -> bool:
    """Default predicate minus declines, signature and authentication failures."""
    message = extract_error_message(error).lower()
    if any(fragment in message for fragment in NON_RETRYABLE_PAYMENT_MESSAGES):
        return False
    return default_retry_condition(error)


@dataclass
class RetryConfig:
    """
    Retry policy for one call.

    Raises:
        ValueError: If ``max_attempts`` is below 1 or a delay is negative
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: bool = True
    retry_condition: Callable[[BaseException], bool] = default_retry_condition
    on_retry: Optional[Callable[[int, BaseException], None]] = None
    on_max_attempts_reached: Optional[Callable[[BaseException], None]] = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must not be negative")

    def with_overrides(self, **changes: Any) -> 'RetryConfig':
        return replace(self, **changes)


@dataclass
class RetryResult:
    """Outcome of ``execute_with_retry``; ``total_time`` is in seconds."""

    success: bool
    result: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0
    total_time: float = 0.0


def compute_delay(
    attempt: int,
    config: RetryConfig,
    rand: Callable[[], float] = random.random
) -> float:
    """
    Backoff delay in seconds to wait after failed ``attempt`` (1-based).

    The exponential delay is clamped to ``max_delay`` and then, with jitter on,
    moved by at most ``JITTER_RATIO`` of itself in either direction. The result
    is never negative.
    """
    delay = config.base_delay * config.backoff_multiplier ** (attempt - 1)
    delay = min(delay, config.max_delay)
    if config.jitter:
        delay += (rand() - 0.5) * 2 * JITTER_RATIO * delay
    return max(delay, 0.0)


class BackoffWait(wait_base):
    """tenacity wait strategy delegating to ``compute_delay``."""

    def __init__(self, config: RetryConfig, rand: Callable[[], float]):
        self.config = config
        self.rand = rand

    def __call__(self, retry_state) -> float:
        return compute_delay(retry_state.attempt_number, self.config, self.rand)


class RetryMechanism:
    """
    Executes operations with retry and optional circuit breaking.

    Args:
        structured_logger: Logger for retry lifecycle events
        error_handler: Receives the last error of every failed cycle
        default_config: Policy used when a call passes none
        breakers: Circuit breaker registry (one is created when omitted)
        metrics: Optional ``PaymentMetrics``
        sleep: Awaitable sleep used between attempts
        clock: Monotonic time source in seconds
        rng: Random source for jitter
        failure_threshold: Default breaker failure threshold
        reset_timeout: Default breaker reset timeout in seconds
    """

    def __init__(
        self,
        structured_logger: StructuredLogger,
        error_handler: ErrorHandler,
        default_config: Optional[RetryConfig] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        metrics: Any = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0
    ):
        self.logger = structured_logger
        self.error_handler = error_handler
        self.default_config = default_config or RetryConfig()
        self.metrics = metrics
        self.breakers = breakers or CircuitBreakerRegistry(clock=clock, metrics=metrics)
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()

    async def execute_with_retry(
        self,
        operation: Operation,
        config: Optional[RetryConfig] = None,
        context: Optional[Mapping[str, Any]] = None,
        error_category: ErrorCategory = ErrorCategory.NETWORK
    ) -> RetryResult:
        """
        Run ``operation`` until it succeeds, fails non-retryably or exhausts attempts.

        Args:
            operation: Zero-argument coroutine function
            config: Retry policy (defaults to the engine's default policy)
            context: ``operation_name``, ``order_id`` and ``payment_id`` for logging
            error_category: Category used when routing the final error to the error handler

        Returns:
            RetryResult describing success or the last error; never raises
            (task cancellation still propagates)
        """
        config = config or self.default_config
        context = context or {}
        operation_name = context.get('operation_name') or 'unknown'
        correlation = {
            'orderId': context.get('order_id'),
            'paymentId': context.get('payment_id'),
        }
        start = self._clock()
        attempts = 0

        self.logger.debug('RETRY', f"Starting operation with retry: {operation_name}", {
            'maxAttempts': config.max_attempts,
            'baseDelay': config.base_delay,
            'maxDelay': config.max_delay,
            **correlation
        })

        retrying = AsyncRetrying(
            stop=stop_after_attempt(config.max_attempts),
            wait=BackoffWait(config, self._rng.random),
            retry=retry_if_exception(
                lambda error: self._should_retry(error, config, operation_name, correlation)
            ),
            before_sleep=lambda retry_state: self._before_sleep(
                retry_state, config, operation_name, correlation
            ),
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    self.logger.debug(
                        'RETRY',
                        f"Attempt {attempts}/{config.max_attempts} for {operation_name}",
                        correlation
                    )
                    result = await operation()
        except Exception as exc:
            last_error = exc
        else:
            total_time = self._clock() - start
            self.logger.info('RETRY', f"Operation {operation_name} succeeded on attempt {attempts}", {
                'attempts': attempts,
                'totalTime': total_time,
                **correlation
            })
            if self.metrics is not None:
                self.metrics.record_retry_outcome(operation_name, True)
            return RetryResult(success=True, result=result, attempts=attempts, total_time=total_time)

        total_time = self._clock() - start
        self.logger.error('RETRY', f"All retry attempts failed for {operation_name}", last_error, {
            'attempts': attempts,
            'totalTime': total_time,
            **correlation
        })

        self.error_handler.handle_error(last_error, error_category, {
            'order_id': correlation['orderId'],
            'payment_id': correlation['paymentId'],
            'component': 'RetryMechanism',
            'action': operation_name,
            'additional_data': {'attempts': attempts, 'totalTime': total_time},
        })

        if config.on_max_attempts_reached is not None:
            config.on_max_attempts_reached(last_error)
        if self.metrics is not None:
            self.metrics.record_retry_outcome(operation_name, False)

        return RetryResult(success=False, error=last_error, attempts=attempts, total_time=total_time)

    async def retry_payment_operation(
        self,
        operation: Operation,
        order_id: str,
        operation_name: str,
        payment_id: Optional[str] = None
    ) -> Any:
        """
        Retry a payment API call; declines and signature failures are never retried.

        Raises:
            Exception: The last error once the policy gives up
        """
        correlation = {'operationName': operation_name, 'orderId': order_id, 'paymentId': payment_id}

        def on_retry(attempt: int, error: BaseException) -> None:
            self.logger.warn('PAYMENT_RETRY', f"Payment operation retry attempt {attempt}", {
                **correlation,
                'error': extract_error_message(error),
            })

        def on_max_attempts_reached(error: BaseException) -> None:
            self.logger.error(
                'PAYMENT_RETRY', 'Payment operation failed after all retries',
                error if isinstance(error, BaseException) else None,
                correlation
            )

        config = RetryConfig(
            max_attempts=3,
            base_delay=2.0,
            max_delay=10.0,
            backoff_multiplier=self.default_config.backoff_multiplier,
            jitter=self.default_config.jitter,
            retry_condition=payment_retry_condition,
            on_retry=on_retry,
            on_max_attempts_reached=on_max_attempts_reached,
        )

        result = await self.execute_with_retry(
            operation,
            config,
            {'operation_name': operation_name, 'order_id': order_id, 'payment_id': payment_id},
            error_category=ErrorCategory.PAYMENT
        )
        if result.success:
            return result.result
        raise result.error

    async def retry_network_operation(
        self,
        operation: Operation,
        operation_name: str,
        max_attempts: int = 5
    ) -> Any:
        """
        Retry an idempotent read with a gentler 1.5x backoff.

        Raises:
            Exception: The last error once the policy gives up
        """
        config = RetryConfig(
            max_attempts=max_attempts,
            base_delay=1.0,
            max_delay=15.0,
            backoff_multiplier=1.5,
            jitter=self.default_config.jitter,
            retry_condition=default_retry_condition,
        )
        result = await self.execute_with_retry(operation, config, {'operation_name': operation_name})
        if result.success:
            return result.result
        raise result.error

    async def execute_with_circuit_breaker(
        self,
        operation: Operation,
        operation_name: str,
        failure_threshold: Optional[int] = None,
        reset_timeout: Optional[float] = None,
        retry_config: Optional[RetryConfig] = None
    ) -> Any:
        """
        Run ``operation`` with retry behind the named circuit breaker.

        Raises:
            CircuitBreakerOpenError: If the breaker is open; the operation is not called
            Exception: The last error of a failed retry cycle
        """
        threshold = failure_threshold if failure_threshold is not None else self.failure_threshold
        timeout = reset_timeout if reset_timeout is not None else self.reset_timeout

        if self.breakers.before_call(operation_name, timeout):
            self.logger.info('CIRCUIT_BREAKER', f"Circuit breaker reset for {operation_name}")

        result = await self.execute_with_retry(
            operation, retry_config, {'operation_name': operation_name}
        )
        if result.success:
            self.breakers.record_success(operation_name)
            return result.result

        if self.breakers.record_failure(operation_name, threshold):
            state = self.breakers.get_state(operation_name)
            self.logger.error(
                'CIRCUIT_BREAKER', f"Circuit breaker opened for {operation_name}",
                result.error,
                {'failures': state.failures, 'threshold': threshold}
            )
            logger.warning(
                "Circuit breaker opened",
                operation_name=operation_name,
                failures=state.failures,
                threshold=threshold
            )
        raise result.error

    def create_retry_wrapper(
        self,
        fn: Callable[..., Awaitable[Any]],
        config: Optional[RetryConfig] = None,
        operation_name: Optional[str] = None
    ) -> Callable[..., Awaitable[Any]]:
        """
        Wrap ``fn`` so every call is retried and failures raise the underlying error.

        Example:
            fetch_status = retry_mechanism.create_retry_wrapper(client.get_status)
            status = await fetch_status(order_id)
        """
        name = operation_name or getattr(fn, '__name__', 'anonymous')

        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            result = await self.execute_with_retry(
                lambda: fn(*args, **kwargs), config, {'operation_name': name}
            )
            if result.success:
                return result.result
            raise result.error

        return wrapper

    def get_circuit_breaker_states(self) -> Dict[str, CircuitBreakerState]:
        return self.breakers.snapshot()

    def reset_circuit_breaker(self, operation_name: Optional[str] = None) -> bool:
        reset = self.breakers.reset(operation_name)
        if reset:
            logger.info("Circuit breaker manually reset", operation_name=operation_name or 'all')
        return reset

    def _should_retry(
        self,
        error: BaseException,
        config: RetryConfig,
        operation_name: str,
        correlation: Dict[str, Any]
    ) -> bool:
        # Cancellation and interpreter exits are never retried
        if not isinstance(error, Exception):
            return False

        message = extract_error_message(error)
        self.logger.warn('RETRY', f"Attempt failed for {operation_name}", {
            'error': message,
            **correlation
        })

        if not config.retry_condition(error):
            self.logger.info('RETRY', f"Error not retryable for {operation_name}", {
                'error': message,
                **correlation
            })
            return False
        return True

    def _before_sleep(
        self,
        retry_state,
        config: RetryConfig,
        operation_name: str,
        correlation: Dict[str, Any]
    ) -> None:
        attempt = retry_state.attempt_number
        error = retry_state.outcome.exception()
        delay = getattr(retry_state.next_action, 'sleep', 0.0)

        self.logger.debug(
            'RETRY',
            f"Waiting {delay:.3f}s before retry {attempt + 1} for {operation_name}",
            correlation
        )
        if self.metrics is not None:
            self.metrics.record_retry_attempt(operation_name)
        if config.on_retry is not None:
            config.on_retry(attempt, error)
