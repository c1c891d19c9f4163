"""
Unit tests for the retry engine: backoff computation, retry predicates,
callbacks, final error routing and the payment and network presets.

Delays are recorded by ``FakeSleep``; jitter is disabled unless a test turns
it on with a fixed random source.
"""

import asyncio

import httpx
import pytest

from src.integrations.error_handler import ErrorCategory
from src.integrations.exceptions import NetworkRequestError, PaymentApiError
from src.integrations.retry import (
    RetryConfig,
    compute_delay,
    default_retry_condition,
    payment_retry_condition,
)


class FlakyOperation:
    """Raises the queued errors in order, then returns ``result``."""

    def __init__(self, *errors, result='ok'):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def network_error(message='Network Error'):
    return NetworkRequestError(message, code='NETWORK_ERROR')


class TestComputeDelay:
    """Exponential backoff with cap and bounded jitter."""

    @pytest.mark.unit
    def test_exponential_without_jitter(self):
        config = RetryConfig(base_delay=1.0, max_delay=30.0, backoff_multiplier=2.0, jitter=False)
        assert [compute_delay(attempt, config) for attempt in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 16.0]

    @pytest.mark.unit
    def test_delay_is_capped(self):
        config = RetryConfig(base_delay=2.0, max_delay=10.0, jitter=False)
        assert compute_delay(4, config) == 10.0
        assert compute_delay(10, config) == 10.0

    @pytest.mark.unit
    def test_jitter_bounds(self):
        config = RetryConfig(base_delay=1.0, max_delay=30.0, jitter=True)
        assert compute_delay(2, config, rand=lambda: 1.0) == pytest.approx(2.2)
        assert compute_delay(2, config, rand=lambda: 0.0) == pytest.approx(1.8)
        assert compute_delay(2, config, rand=lambda: 0.5) == pytest.approx(2.0)

    @pytest.mark.unit
    def test_jitter_applies_after_cap(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=True)
        assert compute_delay(10, config, rand=lambda: 1.0) == pytest.approx(5.5)

    @pytest.mark.unit
    def test_zero_base_delay(self):
        assert compute_delay(3, RetryConfig(base_delay=0.0, jitter=True), rand=lambda: 0.0) == 0.0

    @pytest.mark.unit
    def test_invalid_config(self):
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)
        with pytest.raises(ValueError):
            RetryConfig(base_delay=-1)

    @pytest.mark.unit
    def test_with_overrides(self):
        config = RetryConfig().with_overrides(max_attempts=7)
        assert config.max_attempts == 7
        assert config.base_delay == 1.0


class TestRetryConditions:
    """Default and payment retry predicates."""

    @pytest.mark.unit
    @pytest.mark.parametrize('error,expected', [
        (NetworkRequestError('boom', code='NETWORK_ERROR'), True),
        (NetworkRequestError('Request timeout after 30000ms', code='ECONNABORTED'), True),
        (NetworkRequestError('Request failed with status code 503', status_code=503), True),
        (NetworkRequestError('Request failed with status code 404', code='HTTP_ERROR', status_code=404), False),
        (httpx.ConnectError('refused'), True),
        (RuntimeError('Service unavailable, try later'), True),
        (RuntimeError('Gateway error'), True),
        (ValueError('Invalid quantity'), False),
    ])
    def test_default_condition(self, error, expected):
        assert default_retry_condition(error) is expected

    @pytest.mark.unit
    @pytest.mark.parametrize('message', [
        'Signature verification failed',
        'Invalid signature',
        'Authentication failed',
        'Payment declined',
        'Insufficient funds',
    ])
    def test_payment_condition_refuses_final_failures(self, message):
        error = NetworkRequestError(message, status_code=502)
        assert default_retry_condition(error) is True
        assert payment_retry_condition(error) is False

    @pytest.mark.unit
    def test_payment_condition_allows_transient_failures(self):
        assert payment_retry_condition(network_error()) is True


class TestExecuteWithRetry:
    """Core retry loop."""

    @pytest.mark.unit
    async def test_success_on_first_attempt(self, retry_mechanism, fake_sleep):
        operation = FlakyOperation(result={'id': 'order_1'})
        result = await retry_mechanism.execute_with_retry(operation, context={'operation_name': 'create'})

        assert result.success is True
        assert result.result == {'id': 'order_1'}
        assert result.attempts == 1
        assert result.error is None
        assert fake_sleep.delays == []

    @pytest.mark.unit
    async def test_retries_until_success(self, retry_mechanism, fake_sleep, metrics):
        retries = []
        config = RetryConfig(jitter=False, on_retry=lambda attempt, error: retries.append((attempt, str(error))))
        operation = FlakyOperation(network_error(), network_error('timeout'))

        result = await retry_mechanism.execute_with_retry(operation, config, {'operation_name': 'create'})

        assert result.success is True
        assert result.attempts == 3
        assert operation.calls == 3
        assert fake_sleep.delays == [1.0, 2.0]
        assert result.total_time == pytest.approx(3.0)
        assert retries == [(1, 'Network Error'), (2, 'timeout')]
        assert metrics.registry.get_sample_value(
            'payment_retry_attempts_total', {'operation': 'create'}) == 2
        assert metrics.registry.get_sample_value(
            'payment_retry_outcomes_total', {'operation': 'create', 'outcome': 'success'}) == 1

    @pytest.mark.unit
    async def test_exhausted_attempts(self, retry_mechanism, fake_sleep, error_handler, structured_logger):
        exhausted = []
        config = RetryConfig(max_attempts=3, jitter=False, on_max_attempts_reached=exhausted.append)
        last = network_error('third failure')
        operation = FlakyOperation(network_error(), network_error(), last)

        result = await retry_mechanism.execute_with_retry(
            operation, config, {'operation_name': 'status', 'order_id': 'order_1'}
        )

        assert result.success is False
        assert result.error is last
        assert result.attempts == 3
        assert fake_sleep.delays == [1.0, 2.0]
        assert exhausted == [last]

        stats = error_handler.get_error_stats()
        assert stats['errors_by_category'] == {'NETWORK': 1}
        recent = stats['recent_errors'][0]
        assert recent['context']['component'] == 'RetryMechanism'
        assert recent['context']['action'] == 'status'
        assert recent['context']['orderId'] == 'order_1'
        assert recent['context']['additionalData']['attempts'] == 3

        failures = [e for e in structured_logger.get_logs(category='RETRY') if e.level.name == 'ERROR']
        assert failures[0].message == 'All retry attempts failed for status'

    @pytest.mark.unit
    async def test_non_retryable_error_stops_immediately(self, retry_mechanism, fake_sleep):
        exhausted = []
        config = RetryConfig(jitter=False, on_max_attempts_reached=exhausted.append)
        error = ValueError('Invalid quantity')
        operation = FlakyOperation(error)

        result = await retry_mechanism.execute_with_retry(operation, config)

        assert result.success is False
        assert result.attempts == 1
        assert operation.calls == 1
        assert fake_sleep.delays == []
        assert exhausted == [error]

    @pytest.mark.unit
    async def test_single_attempt_config(self, retry_mechanism, fake_sleep):
        result = await retry_mechanism.execute_with_retry(
            FlakyOperation(network_error()), RetryConfig(max_attempts=1)
        )
        assert result.attempts == 1
        assert fake_sleep.delays == []

    @pytest.mark.unit
    async def test_custom_category_for_final_error(self, retry_mechanism, error_handler):
        await retry_mechanism.execute_with_retry(
            FlakyOperation(ValueError('x')), RetryConfig(max_attempts=1), error_category=ErrorCategory.SYSTEM
        )
        assert error_handler.get_error_stats()['errors_by_category'] == {'SYSTEM': 1}

    @pytest.mark.unit
    async def test_cancellation_propagates(self, retry_mechanism):
        async def cancelled():
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await retry_mechanism.execute_with_retry(cancelled)

    @pytest.mark.unit
    async def test_default_config_is_used(self, retry_mechanism, fake_sleep):
        result = await retry_mechanism.execute_with_retry(
            FlakyOperation(network_error(), network_error(), network_error())
        )
        assert result.attempts == retry_mechanism.default_config.max_attempts
        assert fake_sleep.delays == [1.0, 2.0]


class TestPresets:
    """Payment and network retry presets."""

    @pytest.mark.unit
    async def test_payment_operation_retries_with_payment_backoff(
        self, retry_mechanism, fake_sleep, structured_logger, error_handler
    ):
        operation = FlakyOperation(
            NetworkRequestError('Request failed with status code 503', status_code=503),
            NetworkRequestError('Request failed with status code 503', status_code=503),
            NetworkRequestError('Request failed with status code 503', status_code=503),
        )

        with pytest.raises(NetworkRequestError):
            await retry_mechanism.retry_payment_operation(operation, 'order_1', 'create order')

        assert operation.calls == 3
        assert fake_sleep.delays == [2.0, 4.0]
        retry_entries = structured_logger.get_logs(category='PAYMENT_RETRY')
        assert [entry.message for entry in retry_entries] == [
            'Payment operation retry attempt 1',
            'Payment operation retry attempt 2',
            'Payment operation failed after all retries',
        ]
        assert error_handler.get_error_stats()['errors_by_category'] == {'PAYMENT': 1}

    @pytest.mark.unit
    async def test_payment_operation_does_not_retry_signature_failures(self, retry_mechanism, fake_sleep):
        operation = FlakyOperation(PaymentApiError('Invalid signature'))

        with pytest.raises(PaymentApiError):
            await retry_mechanism.retry_payment_operation(operation, 'order_1', 'verify payment', 'pay_1')

        assert operation.calls == 1
        assert fake_sleep.delays == []

    @pytest.mark.unit
    async def test_payment_operation_returns_result(self, retry_mechanism):
        operation = FlakyOperation(network_error(), result='order_created')
        assert await retry_mechanism.retry_payment_operation(operation, 'order_1', 'create order') == 'order_created'

    @pytest.mark.unit
    async def test_network_operation_uses_gentle_backoff(self, retry_mechanism, fake_sleep):
        operation = FlakyOperation(*[network_error() for _ in range(5)])

        with pytest.raises(NetworkRequestError):
            await retry_mechanism.retry_network_operation(operation, 'fetch status')

        assert operation.calls == 5
        assert fake_sleep.delays == [1.0, 1.5, 2.25, 3.375]

    @pytest.mark.unit
    async def test_network_operation_attempt_override(self, retry_mechanism):
        operation = FlakyOperation(network_error(), network_error())

        with pytest.raises(NetworkRequestError):
            await retry_mechanism.retry_network_operation(operation, 'fetch status', max_attempts=2)
        assert operation.calls == 2


class TestRetryWrapper:
    """create_retry_wrapper."""

    @pytest.mark.unit
    async def test_wrapper_passes_arguments_and_retries(self, retry_mechanism, fake_sleep):
        calls = []

        async def fetch_status(order_id, *, verbose=False):
            calls.append((order_id, verbose))
            if len(calls) < 2:
                raise network_error()
            return f"status of {order_id}"

        wrapped = retry_mechanism.create_retry_wrapper(fetch_status)

        assert await wrapped('order_1', verbose=True) == 'status of order_1'
        assert calls == [('order_1', True), ('order_1', True)]
        assert wrapped.__name__ == 'fetch_status'

    @pytest.mark.unit
    async def test_wrapper_raises_last_error(self, retry_mechanism):
        async def always_invalid():
            raise ValueError('Invalid quantity')

        wrapped = retry_mechanism.create_retry_wrapper(always_invalid, operation_name='validate')
        with pytest.raises(ValueError, match='Invalid quantity'):
            await wrapped()
