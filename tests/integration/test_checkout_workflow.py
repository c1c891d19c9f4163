"""
End-to-end checkout workflows through one service container: pricing, script
loading, order creation, the payment sheet and verification, plus the
degraded paths that surface in the diagnostics endpoints.
"""

from decimal import Decimal

import httpx
import pytest

from src.integrations.exceptions import CheckoutError, CircuitBreakerOpenError, PaymentServiceError
from src.integrations.payment_client import CREATE_ORDER_PATH, VERIFY_PAYMENT_PATH
from src.integrations.retry import RetryConfig

from tests.fixtures import echo_order, payment_response, verification_data

CART = [{'product_id': '3', 'quantity': 2}, {'product_id': '8', 'quantity': 1}]
CART_TOTAL = Decimal('27730')


class TestSuccessfulCheckout:
    """Happy path from cart to verified payment."""

    @pytest.mark.integration
    async def test_full_flow(self, services, gateway, client):
        gateway.queue('POST', CREATE_ORDER_PATH, echo_order('order_flow_1'))
        gateway.queue('POST', VERIFY_PAYMENT_PATH, verification_data())
        checkout = services.checkout

        session = await checkout.prepare_checkout(CART, CART_TOTAL, customer={'contact': '9876543210'})
        widget = checkout.open_checkout(session)
        result = await checkout.verify_payment(payment_response(), amount=session.pricing.summary.total_amount)

        assert session.order.amount == 2773000
        assert session.options['prefill'] == {'contact': '9876543210'}
        assert widget.is_open is True
        assert result.success is True

        health = client.get('/health/payments').get_json()
        assert health['script_loader'] == {'is_loaded': True, 'is_loading': False, 'error': None}
        assert health['errors']['total_errors'] == 0

        categories = {entry['category'] for entry in client.get('/health/logs').get_json()['entries']}
        assert {'PRICING_VALIDATION', 'PAYMENT', 'PAYMENT_VERIFICATION', 'CHECKOUT'} <= categories

    @pytest.mark.integration
    async def test_transient_gateway_failure_is_absorbed(self, services, gateway, fake_sleep, client):
        gateway.queue(
            'POST', CREATE_ORDER_PATH,
            {'success': False, 'error': {'message': 'Gateway error, please retry'}},
            echo_order('order_flow_2'),
        )

        session = await services.checkout.prepare_checkout(CART, CART_TOTAL)

        assert session.order_id == 'order_flow_2'
        assert fake_sleep.delays == [2.0]
        metrics_text = client.get('/metrics').get_data(as_text=True)
        assert 'payment_retry_attempts_total{operation="create Razorpay order"} 1.0' in metrics_text


class TestDegradedCheckout:
    """Failures recorded by the error handler and visible in diagnostics."""

    @pytest.mark.integration
    async def test_tampered_amount_never_reaches_gateway(self, services, gateway, client):
        with pytest.raises(CheckoutError) as exc_info:
            await services.checkout.prepare_checkout(CART, 100)

        assert exc_info.value.stage == 'pricing'
        assert gateway.requests == []
        logs = client.get('/health/logs?category=PRICING_VALIDATION&level=error').get_json()
        assert logs['entries'][0]['message'] == 'Payment amount mismatch detected'

    @pytest.mark.integration
    async def test_gateway_outage_opens_breaker(self, services, gateway, fake_sleep, client):
        gateway.queue('GET', '/api/payments/status/order_flow_3', httpx.Response(
            503, json={'success': False, 'error': {'message': 'Service unavailable'}}
        ))
        retry_mechanism = services.retry_mechanism
        single_attempt = RetryConfig(max_attempts=1, jitter=False)

        async def fetch_status():
            return await services.payment_client.get_payment_status('order_flow_3')

        for _ in range(2):
            with pytest.raises(PaymentServiceError):
                await retry_mechanism.execute_with_circuit_breaker(
                    fetch_status, 'payment status', failure_threshold=2, retry_config=single_attempt
                )
        with pytest.raises(CircuitBreakerOpenError):
            await retry_mechanism.execute_with_circuit_breaker(
                fetch_status, 'payment status', failure_threshold=2, retry_config=single_attempt
            )

        response = client.get('/health/payments')
        assert response.status_code == 503
        assert response.get_json()['open_circuit_breakers'] == ['payment status']
        assert response.get_json()['errors']['total_errors'] > 0

    @pytest.mark.integration
    async def test_failed_verification_is_audited(self, services, gateway, client):
        gateway.queue('POST', VERIFY_PAYMENT_PATH, verification_data(success=False, message='Invalid signature'))

        with pytest.raises(CheckoutError):
            await services.checkout.verify_payment(payment_response())

        security = client.get('/health/logs?category=SECURITY').get_json()['entries']
        assert [entry['action'] for entry in security] == ['payment_verification']
        assert security[0]['riskLevel'] == 'high'
        assert 'a3f1c2e4b5d6a7f8e9d0c1b2a3f4e5d6' not in client.get('/health/logs').get_data(as_text=True)
