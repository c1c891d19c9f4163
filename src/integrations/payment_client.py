"""
Async client for the payment backend REST API.

Every call goes through ``RetryMechanism.retry_payment_operation``: transport
failures and 5xx responses are retried with backoff, while declines and
signature failures are not. Once a call finally fails, the error is
classified by the ``ErrorHandler`` (network category for HTTP and transport
errors, payment category otherwise) and re-raised as ``PaymentServiceError``
carrying only the user-safe message.

Endpoints (JSON envelope ``{success, data, error: {code, message}}``):
- ``POST /api/payments/create-order``
- ``POST /api/payments/verify``
- ``GET /api/payments/status/<order_id>``
"""

from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Union

import httpx
import structlog

from src.business.models import (
    CreateOrderRequest, GatewayOrder, PaymentConfig, PaymentStatusInfo,
    PaymentVerificationResult, VerifyPaymentRequest,
)
from src.business.utils import NumericType, format_inr, from_minor_units, to_minor_units
from src.monitoring.logging import StructuredLogger
from src.utils.identifiers import generate_identifier

from .error_handler import ErrorHandler
from .exceptions import NetworkRequestError, PaymentApiError, PaymentServiceError
from .retry import RetryMechanism

logger = structlog.get_logger(__name__)

CREATE_ORDER_PATH = '/api/payments/create-order'
VERIFY_PAYMENT_PATH = '/api/payments/verify'
PAYMENT_STATUS_PATH = '/api/payments/status/{order_id}'

MIN_ORDER_AMOUNT_PAISA = 100
RECEIPT_SUFFIX_LENGTH = 6

INVALID_CONFIGURATION_MESSAGE = (
    'Payment configuration is invalid. Please check your Razorpay credentials.'
)


class PaymentGatewayClient:
    """
    Payment API client with retry, error classification and payment event logging.

    Args:
        base_url: API root, e.g. ``https://shop.example.com``
        config: Public checkout settings (key id, currency, branding, timeout)
        structured_logger: Receives ``PAYMENT_SERVICE`` and payment lifecycle events
        error_handler: Classifies failures into user-safe messages
        retry_mechanism: Retry engine used for every API call
        transport: Optional httpx transport (``httpx.MockTransport`` in tests)
    """

    def __init__(
        self,
        base_url: str,
        config: PaymentConfig,
        structured_logger: StructuredLogger,
        error_handler: ErrorHandler,
        retry_mechanism: RetryMechanism,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.config = config
        self.logger = structured_logger
        self.error_handler = error_handler
        self.retry = retry_mechanism
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazily created shared ``httpx.AsyncClient``."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.config.timeout),
                headers={'Content-Type': 'application/json'},
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    def get_config(self) -> PaymentConfig:
        return self.config.model_copy()

    def update_config(self, **changes: Any) -> PaymentConfig:
        """Replace configuration fields; the HTTP client is rebuilt on next use."""
        self.config = PaymentConfig.model_validate({**self.config.model_dump(), **changes})
        self._client = None
        return self.config

    def validate_config(self) -> bool:
        if not self.config.key_id:
            logger.error("Razorpay key id is not configured")
            return False
        return True

    # ------------------------------------------------------------------
    # API operations
    # ------------------------------------------------------------------

    async def create_order(
        self,
        order_data: Union[CreateOrderRequest, Mapping[str, Any]]
    ) -> GatewayOrder:
        """
        Create a gateway order for an amount in paisa.

        Args:
            order_data: Amount (paisa), currency, receipt and notes

        Returns:
            The created gateway order

        Raises:
            PaymentServiceError: On invalid configuration or when the API call fails
        """
        request = _coerce(CreateOrderRequest, order_data)
        order_id = request.receipt

        self.logger.payment_started(order_id, float(self.convert_from_paisa(request.amount)), {
            'currency': request.currency,
            'notes': request.notes,
        })

        if not self.validate_config():
            error = PaymentServiceError(INVALID_CONFIGURATION_MESSAGE, error_code='INVALID_CONFIGURATION')
            self.logger.payment_failed(order_id, error, {'reason': 'invalid_configuration'})
            raise error

        async def operation() -> GatewayOrder:
            self.logger.debug('PAYMENT_SERVICE', 'Creating Razorpay order', {
                'orderId': order_id,
                'amount': request.amount,
                'currency': request.currency,
            })
            data = await self._request(
                'POST', CREATE_ORDER_PATH, 'Failed to create order',
                json=request.model_dump(),
            )
            return GatewayOrder.model_validate(data)

        try:
            order = await self._call(operation, 'create Razorpay order', order_id=order_id)
        except PaymentServiceError as exc:
            self.logger.payment_failed(order_id, exc, {
                'stage': 'order_creation',
                'amount': request.amount,
                'currency': request.currency,
            })
            raise

        self.logger.info('PAYMENT_SERVICE', 'Razorpay order created successfully', {
            'orderId': order_id,
            'razorpayOrderId': order.id,
            'amount': order.amount,
            'currency': order.currency,
            'status': order.status.value,
        })
        return order

    async def verify_payment(
        self,
        verification_data: Union[VerifyPaymentRequest, Mapping[str, Any]]
    ) -> PaymentVerificationResult:
        """
        Ask the backend to verify the payment signature.

        Raises:
            PaymentServiceError: When verification fails or the API call fails
        """
        request = _coerce(VerifyPaymentRequest, verification_data)
        order_id = request.razorpay_order_id
        payment_id = request.razorpay_payment_id

        self.logger.payment_verification_started(order_id, payment_id)

        async def operation() -> PaymentVerificationResult:
            self.logger.debug('PAYMENT_SERVICE', 'Verifying payment signature', {
                'orderId': order_id,
                'paymentId': payment_id,
            })
            data = await self._request(
                'POST', VERIFY_PAYMENT_PATH, 'Payment verification failed',
                json=request.model_dump(),
            )
            return PaymentVerificationResult.model_validate(data)

        try:
            result = await self._call(
                operation, 'verify payment', order_id=order_id, payment_id=payment_id
            )
            if not result.success:
                self._raise_processed(
                    PaymentApiError(result.message or 'Payment verification failed',
                                    error_code='VERIFICATION_FAILED', operation='verify payment'),
                    'verify payment', order_id=order_id, payment_id=payment_id
                )
        except PaymentServiceError as exc:
            self.logger.payment_verification_failed(order_id, payment_id, exc)
            raise

        self.logger.payment_verification_success(order_id, payment_id)
        self.logger.info('PAYMENT_SERVICE', 'Payment verification successful', {
            'orderId': order_id,
            'paymentId': payment_id,
            'transactionId': result.transaction_id,
        })
        return result

    async def get_payment_status(self, order_id: str) -> PaymentStatusInfo:
        """
        Fetch the backend's view of an order's payment.

        Raises:
            PaymentServiceError: When the API call fails
        """
        self.logger.debug('PAYMENT_SERVICE', 'Fetching payment status', {'orderId': order_id})

        async def operation() -> PaymentStatusInfo:
            data = await self._request(
                'GET', PAYMENT_STATUS_PATH.format(order_id=order_id), 'Failed to get payment status'
            )
            return PaymentStatusInfo.model_validate(data)

        try:
            status = await self._call(operation, 'get payment status', order_id=order_id)
        except PaymentServiceError as exc:
            self.logger.error('PAYMENT_SERVICE', 'Failed to get payment status', exc, {'orderId': order_id})
            raise

        self.logger.info('PAYMENT_SERVICE', 'Payment status retrieved successfully', {
            'orderId': order_id,
            'status': status.status.value,
            'amount': float(status.amount),
            'paymentId': status.payment_id,
        })
        return status

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def convert_to_paisa(amount: NumericType) -> int:
        return to_minor_units(amount)

    @staticmethod
    def convert_from_paisa(paisa: int) -> Decimal:
        return from_minor_units(paisa)

    @staticmethod
    def format_amount(amount: NumericType, currency: str = 'INR') -> str:
        return format_inr(amount, currency)

    @staticmethod
    def generate_receipt_id(prefix: str = 'rcpt') -> str:
        return generate_identifier(prefix, RECEIPT_SUFFIX_LENGTH)

    @staticmethod
    def validate_order_data(order_data: Union[CreateOrderRequest, Mapping[str, Any]]) -> Dict[str, Any]:
        """
        Check an order request before it is sent.

        Returns:
            ``{'is_valid': bool, 'errors': [...]}``
        """
        if isinstance(order_data, CreateOrderRequest):
            order_data = order_data.model_dump()
        errors: List[str] = []
        amount = order_data.get('amount') or 0

        if amount <= 0:
            errors.append('Amount must be greater than 0')
        if amount < MIN_ORDER_AMOUNT_PAISA:
            errors.append('Minimum amount is ₹1')
        if not order_data.get('currency'):
            errors.append('Currency is required')
        if not order_data.get('receipt'):
            errors.append('Receipt ID is required')

        return {'is_valid': not errors, 'errors': errors}

    async def _request(
        self,
        method: str,
        path: str,
        default_error: str,
        json: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Send one request and unwrap the response envelope.

        Raises:
            NetworkRequestError: On transport failures and non-2xx responses
            PaymentApiError: When the envelope reports failure or has no data
        """
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            raise NetworkRequestError(
                f"Request timeout after {int(self.config.timeout * 1000)}ms",
                code='ECONNABORTED', url=url, method=method
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkRequestError(
                f"Network Error: {exc}", code='NETWORK_ERROR', url=url, method=method
            ) from exc

        envelope = _parse_envelope(response)
        error_info = envelope.get('error') or {}

        if response.is_error:
            raise NetworkRequestError(
                error_info.get('message') or f"Request failed with status code {response.status_code}",
                code=error_info.get('code'),
                status_code=response.status_code,
                url=url,
                method=method,
            )

        if not envelope.get('success') or not envelope.get('data'):
            raise PaymentApiError(
                error_info.get('message') or default_error,
                error_code=error_info.get('code'),
                operation=path,
            )
        return envelope['data']

    async def _call(
        self,
        operation,
        operation_name: str,
        order_id: Optional[str] = None,
        payment_id: Optional[str] = None
    ):
        try:
            return await self.retry.retry_payment_operation(
                operation, order_id or 'unknown', operation_name, payment_id
            )
        except PaymentServiceError:
            raise
        except Exception as exc:
            self._raise_processed(exc, operation_name, order_id=order_id, payment_id=payment_id)

    def _raise_processed(
        self,
        error: BaseException,
        operation_name: str,
        order_id: Optional[str] = None,
        payment_id: Optional[str] = None
    ) -> None:
        context = {
            'component': 'PaymentService',
            'action': operation_name,
            'order_id': order_id,
            'payment_id': payment_id,
        }
        if isinstance(error, (NetworkRequestError, httpx.HTTPError)):
            processed = self.error_handler.handle_network_error(error, context)
        else:
            processed = self.error_handler.handle_payment_error(error, context)

        self.logger.error(
            'PAYMENT_SERVICE', f"Payment service error during {operation_name}", error,
            {
                'processedErrorId': processed.id,
                'userMessage': processed.user_message,
                'isRetryable': processed.is_retryable,
            },
            {'order_id': order_id, 'payment_id': payment_id}
        )
        raise PaymentServiceError(
            processed.user_message, processed, error_code=getattr(error, 'error_code', None)
        ) from error


def _coerce(model, data):
    if isinstance(data, model):
        return data
    return model.model_validate(dict(data))


def _parse_envelope(response: httpx.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}
