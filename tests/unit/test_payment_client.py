"""
Unit tests for the payment API client.

Requests go through ``httpx.MockTransport`` backed by ``GatewayStub``; retry
backoff is recorded by ``FakeSleep`` instead of waited.
"""

import json
import re
from decimal import Decimal

import httpx
import pytest

from src.business.models import CreateOrderRequest, OrderStatus, PaymentConfig, PaymentState
from src.integrations.error_handler import ErrorCategory
from src.integrations.exceptions import PaymentServiceError
from src.integrations.payment_client import (
    CREATE_ORDER_PATH,
    INVALID_CONFIGURATION_MESSAGE,
    VERIFY_PAYMENT_PATH,
    PaymentGatewayClient,
)

from tests.fixtures import TEST_API_BASE_URL, echo_order, order_data, payment_response, verification_data

ORDER_REQUEST = {
    'amount': 5310000,
    'currency': 'INR',
    'receipt': 'order_1718000000000_abc123',
    'notes': {'item_count': '1', 'total_amount': '53100'},
}


def failure(status, message=None, code=None):
    body = {'success': False}
    if message is not None:
        body['error'] = {'message': message, 'code': code}
    return httpx.Response(status, json=body)


class TestCreateOrder:
    """Order creation with retry and classification."""

    @pytest.mark.unit
    async def test_success(self, payment_client, gateway, structured_logger):
        gateway.queue('POST', CREATE_ORDER_PATH, echo_order())

        order = await payment_client.create_order(ORDER_REQUEST)

        assert order.id == 'order_NXgP1Y2Z3a4b5c'
        assert order.amount == 5310000
        assert order.status is OrderStatus.CREATED
        assert order.notes == ORDER_REQUEST['notes']

        request = gateway.requests[0]
        assert str(request.url) == f"{TEST_API_BASE_URL}{CREATE_ORDER_PATH}"
        assert request.headers['content-type'] == 'application/json'
        assert json.loads(request.content) == ORDER_REQUEST

        started = structured_logger.get_logs(category='PAYMENT')[0]
        assert started.message == 'Payment process initiated'
        assert started.order_id == 'order_1718000000000_abc123'
        assert started.data['amount'] == 53100.0

    @pytest.mark.unit
    async def test_accepts_request_model(self, payment_client, gateway):
        gateway.queue('POST', CREATE_ORDER_PATH, echo_order('order_model'))

        order = await payment_client.create_order(CreateOrderRequest(**ORDER_REQUEST))

        assert order.id == 'order_model'

    @pytest.mark.unit
    async def test_empty_notes_list_is_normalised(self, payment_client, gateway):
        gateway.queue('POST', CREATE_ORDER_PATH, {'success': True, 'data': order_data()})

        order = await payment_client.create_order(ORDER_REQUEST)

        assert order.notes == {}

    @pytest.mark.unit
    async def test_server_error_is_retried(self, payment_client, gateway, fake_sleep, structured_logger):
        gateway.queue(
            'POST', CREATE_ORDER_PATH,
            failure(503),
            {'success': True, 'data': order_data()},
        )

        order = await payment_client.create_order(ORDER_REQUEST)

        assert order.id == 'order_NXgP1Y2Z3a4b5c'
        assert gateway.calls('POST', CREATE_ORDER_PATH) == 2
        assert fake_sleep.delays == [2.0]
        retries = structured_logger.get_logs(category='PAYMENT_RETRY')
        assert [entry.message for entry in retries] == ['Payment operation retry attempt 1']
        assert retries[0].data['error'] == 'Request failed with status code 503'

    @pytest.mark.unit
    async def test_client_error_is_not_retried(self, payment_client, gateway, fake_sleep, error_handler):
        gateway.queue('POST', CREATE_ORDER_PATH, failure(400, 'Invalid amount', 'BAD_REQUEST_ERROR'))

        with pytest.raises(PaymentServiceError) as exc_info:
            await payment_client.create_order(ORDER_REQUEST)

        error = exc_info.value
        assert str(error) == 'Network error occurred. Please check your connection and try again.'
        assert error.error_code == 'BAD_REQUEST_ERROR'
        assert error.processed_error.category is ErrorCategory.NETWORK
        assert error.__cause__.status_code == 400
        assert gateway.calls('POST', CREATE_ORDER_PATH) == 1
        assert fake_sleep.delays == []
        assert error_handler.get_error_stats()['errors_by_category'] == {'PAYMENT': 1, 'NETWORK': 1}

    @pytest.mark.unit
    async def test_timeout(self, payment_client, gateway, fake_sleep, structured_logger):
        gateway.queue('POST', CREATE_ORDER_PATH, httpx.ReadTimeout('timed out'))

        with pytest.raises(PaymentServiceError) as exc_info:
            await payment_client.create_order(ORDER_REQUEST)

        error = exc_info.value
        assert str(error) == 'Request timed out. Please check your internet connection and try again.'
        assert error.error_code == 'ECONNABORTED'
        assert str(error.__cause__) == 'Request timeout after 30000ms'
        assert gateway.calls('POST', CREATE_ORDER_PATH) == 3
        assert fake_sleep.delays == [2.0, 4.0]

        failed = [entry for entry in structured_logger.get_logs(category='PAYMENT')
                  if entry.message == 'Payment failed']
        assert failed[0].data['stage'] == 'order_creation'
        assert failed[0].error == str(error)

    @pytest.mark.unit
    async def test_connection_refused(self, payment_client, gateway):
        gateway.queue('POST', CREATE_ORDER_PATH, httpx.ConnectError('Connection refused'))

        with pytest.raises(PaymentServiceError) as exc_info:
            await payment_client.create_order(ORDER_REQUEST)

        assert str(exc_info.value) == 'You appear to be offline. Please check your internet connection.'
        assert exc_info.value.error_code == 'NETWORK_ERROR'
        assert gateway.calls('POST', CREATE_ORDER_PATH) == 3

    @pytest.mark.unit
    async def test_envelope_failure(self, payment_client, gateway, fake_sleep):
        gateway.queue('POST', CREATE_ORDER_PATH, failure(200, 'Order limit reached', 'LIMIT_EXCEEDED'))

        with pytest.raises(PaymentServiceError) as exc_info:
            await payment_client.create_order(ORDER_REQUEST)

        error = exc_info.value
        assert str(error) == 'Payment processing failed. Please try again or use a different payment method.'
        assert error.error_code == 'LIMIT_EXCEEDED'
        assert error.processed_error.category is ErrorCategory.PAYMENT
        assert fake_sleep.delays == []

    @pytest.mark.unit
    async def test_missing_data(self, payment_client, gateway):
        gateway.queue('POST', CREATE_ORDER_PATH, {'success': True})

        with pytest.raises(PaymentServiceError) as exc_info:
            await payment_client.create_order(ORDER_REQUEST)

        assert str(exc_info.value.__cause__) == 'Failed to create order'

    @pytest.mark.unit
    async def test_invalid_configuration(
        self, gateway, structured_logger, error_handler, retry_mechanism
    ):
        client = PaymentGatewayClient(
            TEST_API_BASE_URL, PaymentConfig(key_id=''), structured_logger,
            error_handler, retry_mechanism, transport=gateway.transport
        )

        with pytest.raises(PaymentServiceError) as exc_info:
            await client.create_order(ORDER_REQUEST)

        assert str(exc_info.value) == INVALID_CONFIGURATION_MESSAGE
        assert exc_info.value.error_code == 'INVALID_CONFIGURATION'
        assert gateway.requests == []
        failed = structured_logger.get_logs(category='PAYMENT')[-1]
        assert failed.data['reason'] == 'invalid_configuration'


class TestVerifyPayment:
    """Signature verification."""

    @pytest.mark.unit
    async def test_success(self, payment_client, gateway, structured_logger):
        gateway.queue('POST', VERIFY_PAYMENT_PATH, verification_data())

        result = await payment_client.verify_payment(payment_response())

        assert result.success is True
        assert result.order_id == 'order_NXgP1Y2Z3a4b5c'
        assert result.transaction_id == 'txn_1718000000'
        assert json.loads(gateway.requests[0].content) == payment_response()

        messages = [entry.message for entry in structured_logger.get_logs(category='PAYMENT_VERIFICATION')]
        assert messages == ['Payment verification started', 'Payment verification successful']

    @pytest.mark.unit
    async def test_rejected_signature(self, payment_client, gateway, fake_sleep, structured_logger):
        gateway.queue('POST', VERIFY_PAYMENT_PATH, verification_data(success=False, message='Invalid signature'))

        with pytest.raises(PaymentServiceError) as exc_info:
            await payment_client.verify_payment(payment_response())

        error = exc_info.value
        assert str(error) == (
            'Payment verification failed. If money was deducted, it will be refunded within 5-7 business days.'
        )
        assert error.error_code == 'VERIFICATION_FAILED'
        assert error.processed_error.is_retryable is False
        assert fake_sleep.delays == []

        security = structured_logger.get_logs(category='SECURITY')
        assert [entry.action for entry in security] == ['payment_verification']
        assert security[0].level.name == 'ERROR'
        assert security[0].data == {'orderId': 'order_NXgP1Y2Z3a4b5c', 'paymentId': 'pay_NXgQ9R8S7T6U5V'}

    @pytest.mark.unit
    async def test_signature_is_redacted_in_logs(self, payment_client, gateway, structured_logger):
        gateway.queue('POST', VERIFY_PAYMENT_PATH, verification_data())

        await payment_client.verify_payment(payment_response())

        exported = structured_logger.export_logs()
        assert payment_response()['razorpay_signature'] not in exported

    @pytest.mark.unit
    async def test_missing_fields_are_rejected_before_sending(self, payment_client, gateway):
        with pytest.raises(ValueError):
            await payment_client.verify_payment({'razorpay_order_id': 'order_1'})
        assert gateway.requests == []


class TestPaymentStatus:
    """Status lookups."""

    @pytest.mark.unit
    async def test_status(self, payment_client, gateway):
        gateway.queue('GET', '/api/payments/status/order_1', {
            'success': True,
            'data': {'orderId': 'order_1', 'status': 'paid', 'paymentId': 'pay_1', 'amount': 53100},
        })

        status = await payment_client.get_payment_status('order_1')

        assert status.order_id == 'order_1'
        assert status.status is PaymentState.PAID
        assert status.payment_id == 'pay_1'
        assert status.amount == Decimal('53100')

    @pytest.mark.unit
    async def test_unknown_order(self, payment_client, gateway, structured_logger):
        with pytest.raises(PaymentServiceError):
            await payment_client.get_payment_status('order_missing')

        assert gateway.calls('GET', '/api/payments/status/order_missing') == 1
        failed = [entry for entry in structured_logger.get_logs(category='PAYMENT_SERVICE')
                  if entry.message == 'Failed to get payment status']
        assert failed[0].data == {'orderId': 'order_missing'}


class TestHelpers:
    """Amount conversion, formatting and request validation."""

    @pytest.mark.unit
    def test_paisa_conversion(self):
        assert PaymentGatewayClient.convert_to_paisa(531.5) == 53150
        assert PaymentGatewayClient.convert_to_paisa(Decimal('53100')) == 5310000
        assert PaymentGatewayClient.convert_from_paisa(53150) == Decimal('531.5')

    @pytest.mark.unit
    def test_format_amount(self):
        assert PaymentGatewayClient.format_amount(53100) == '₹53,100.00'

    @pytest.mark.unit
    def test_receipt_id(self):
        assert re.fullmatch(r'rcpt_\d{13}_[0-9a-z]{6}', PaymentGatewayClient.generate_receipt_id())

    @pytest.mark.unit
    def test_validate_order_data(self):
        assert PaymentGatewayClient.validate_order_data(ORDER_REQUEST) == {'is_valid': True, 'errors': []}
        assert PaymentGatewayClient.validate_order_data(
            {'amount': 50, 'currency': 'INR', 'receipt': 'rcpt_1'}
        ) == {'is_valid': False, 'errors': ['Minimum amount is ₹1']}
        assert PaymentGatewayClient.validate_order_data({'amount': 0})['errors'] == [
            'Amount must be greater than 0',
            'Minimum amount is ₹1',
            'Currency is required',
            'Receipt ID is required',
        ]

    @pytest.mark.unit
    def test_validate_order_model(self):
        result = PaymentGatewayClient.validate_order_data(CreateOrderRequest(amount=100))
        assert result['errors'] == ['Receipt ID is required']

    @pytest.mark.unit
    async def test_config_updates(self, payment_client):
        snapshot = payment_client.get_config()
        updated = payment_client.update_config(timeout=5, theme_color='#000000')

        assert updated.timeout == 5
        assert payment_client.client.timeout.read == 5
        assert snapshot.timeout == 30
        assert payment_client.validate_config() is True
