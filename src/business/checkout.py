"""
Checkout orchestration: one resilient attempt to charge a validated amount.

``CheckoutService.prepare_checkout`` runs the stages in order and stops at the
first failure with a ``CheckoutError`` whose message is safe to show:

1. pricing: recompute the cart from the catalog, apply any discount code and
   compare with the amount the client expects to pay
2. script_load: make sure the checkout widget script is loaded
3. configuration: the public checkout key must be present
4. order_validation: sanity checks on the order payload
5. order_creation: create the gateway order through the retrying API client

The resulting ``CheckoutSession`` carries the widget options. After the
customer pays, ``verify_payment`` confirms the signature with the backend.
"""

from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

from src.integrations.exceptions import (
    CheckoutError, PaymentServiceError, PricingValidationError, ScriptLoadError,
)
from src.integrations.payment_client import INVALID_CONFIGURATION_MESSAGE, PaymentGatewayClient
from src.integrations.script_loader import CheckoutScriptLoader
from src.monitoring.logging import StructuredLogger

from .models import (
    CheckoutSession, CreateOrderRequest, CustomerPrefill, PaymentVerificationResult,
    VerifyPaymentRequest,
)
from .pricing import CartInput, PricingValidator
from .utils import NumericType

SCRIPT_UNAVAILABLE_MESSAGE = 'Payment system is not ready. Please wait and try again.'

# Options the caller may not override
PROTECTED_OPTIONS = ('key', 'amount', 'currency', 'order_id')


class CheckoutService:
    """
    Composes pricing, script loading and the payment API into a checkout flow.

    Args:
        pricing_validator: Authoritative cart pricing
        script_loader: Loader for the checkout widget script
        payment_client: Payment API client
        structured_logger: Receives ``CHECKOUT`` events
    """

    def __init__(
        self,
        pricing_validator: PricingValidator,
        script_loader: CheckoutScriptLoader,
        payment_client: PaymentGatewayClient,
        structured_logger: StructuredLogger
    ):
        self.pricing = pricing_validator
        self.script_loader = script_loader
        self.payment_client = payment_client
        self.logger = structured_logger

    async def prepare_checkout(
        self,
        cart_items: Iterable[CartInput],
        expected_amount: NumericType,
        discount_code: Optional[str] = None,
        customer: Optional[Union[CustomerPrefill, Mapping[str, Any]]] = None,
        extra_options: Optional[Mapping[str, Any]] = None
    ) -> CheckoutSession:
        """
        Validate the cart and create a gateway order ready to be paid.

        Args:
            cart_items: Cart lines
            expected_amount: Rupee amount shown to the customer
            discount_code: Optional discount code
            customer: Optional prefill details for the payment sheet
            extra_options: Additional widget options; key, amount, currency and
                order id cannot be overridden

        Returns:
            CheckoutSession with the order, authoritative pricing and widget options

        Raises:
            CheckoutError: At the first failing stage
        """
        items = list(cart_items)
        validation = self.pricing.validate_before_payment(items, expected_amount, discount_code)
        if not validation.is_valid or validation.pricing is None:
            self.logger.warn('CHECKOUT', 'Checkout rejected by pricing validation', {
                'errors': validation.errors,
                'expectedAmount': str(expected_amount),
            })
            raise CheckoutError(
                '; '.join(validation.errors), stage='pricing', error_code='PRICING_INVALID'
            ) from PricingValidationError(
                'Cart pricing validation failed', validation.errors, validation.warnings
            )
        pricing = validation.pricing

        try:
            await self.script_loader.load()
        except ScriptLoadError as exc:
            raise CheckoutError(
                SCRIPT_UNAVAILABLE_MESSAGE, stage='script_load', error_code='SCRIPT_UNAVAILABLE'
            ) from exc

        if not self.payment_client.validate_config():
            raise CheckoutError(
                INVALID_CONFIGURATION_MESSAGE, stage='configuration', error_code='INVALID_CONFIGURATION'
            )

        payload = self.pricing.format_for_razorpay(pricing)
        order_check = self.payment_client.validate_order_data(payload.model_dump())
        if not order_check['is_valid']:
            raise CheckoutError(
                f"Invalid order data: {', '.join(order_check['errors'])}",
                stage='order_validation',
                error_code='INVALID_ORDER',
            )

        try:
            order = await self.payment_client.create_order(
                CreateOrderRequest.model_validate(payload.model_dump())
            )
        except PaymentServiceError as exc:
            raise CheckoutError(
                exc.user_message, stage='order_creation', error_code=exc.error_code
            ) from exc

        options = self._build_options(order, payload.notes, customer, extra_options)
        self.logger.info('CHECKOUT', 'Checkout session prepared', {
            'orderId': order.id,
            'receipt': order.receipt,
            'amount': order.amount,
            'warningCount': len(validation.warnings),
        }, {'order_id': order.receipt})

        return CheckoutSession(
            order=order,
            pricing=pricing,
            warnings=validation.warnings,
            options=options,
        )

    def open_checkout(
        self,
        session: CheckoutSession,
        on_payment_failed: Optional[Callable[[Any], None]] = None
    ):
        """
        Open the payment sheet through the loaded widget global.

        Returns:
            The opened widget; ``payment.failed`` events are logged and passed to
            ``on_payment_failed`` with the failure description

        Raises:
            CheckoutError: If the checkout script is not loaded
        """
        if not self.script_loader.is_loaded():
            raise CheckoutError(SCRIPT_UNAVAILABLE_MESSAGE, stage='script_load',
                                error_code='SCRIPT_UNAVAILABLE')

        widget_class = self.script_loader.document.get_global(self.script_loader.global_name)
        widget = widget_class(session.options)
        widget.on('payment.failed', lambda response: self._on_payment_failed(
            session, response, on_payment_failed
        ))
        widget.open()
        return widget

    async def verify_payment(
        self,
        response: Union[VerifyPaymentRequest, Mapping[str, Any]],
        amount: Optional[NumericType] = None
    ) -> PaymentVerificationResult:
        """
        Verify the widget's payment response with the backend.

        Raises:
            CheckoutError: When verification fails
        """
        request = (response if isinstance(response, VerifyPaymentRequest)
                   else VerifyPaymentRequest.model_validate(dict(response)))
        try:
            result = await self.payment_client.verify_payment(request)
        except PaymentServiceError as exc:
            raise CheckoutError(
                exc.user_message, stage='verification', error_code=exc.error_code
            ) from exc

        self.logger.payment_success(
            request.razorpay_order_id, request.razorpay_payment_id,
            str(amount) if amount is not None else None,
            {'transactionId': result.transaction_id},
        )
        return result

    def _build_options(
        self,
        order,
        notes: Mapping[str, str],
        customer: Optional[Union[CustomerPrefill, Mapping[str, Any]]],
        extra_options: Optional[Mapping[str, Any]]
    ) -> Dict[str, Any]:
        config = self.payment_client.config
        options: Dict[str, Any] = {
            'name': config.company_name,
            'description': f"Payment for Order #{order.receipt}",
            'notes': dict(notes),
            'theme': {'color': config.theme_color},
        }
        if config.company_logo:
            options['image'] = config.company_logo
        if customer is not None:
            prefill = (customer if isinstance(customer, CustomerPrefill)
                       else CustomerPrefill.model_validate(dict(customer)))
            options['prefill'] = prefill.model_dump(exclude_none=True)

        options.update({
            key: value for key, value in (extra_options or {}).items()
            if key not in PROTECTED_OPTIONS
        })
        options.update({
            'key': config.key_id,
            'amount': order.amount,
            'currency': order.currency,
            'order_id': order.id,
        })
        return options

    def _on_payment_failed(self, session: CheckoutSession, response: Any, callback) -> None:
        error = (response or {}).get('error') or {}
        description = error.get('description') or 'Payment failed'
        self.logger.warn('CHECKOUT', 'Payment failed in checkout widget', {
            'orderId': session.order_id,
            'code': error.get('code'),
            'description': description,
        }, {'order_id': session.receipt})
        if callback is not None:
            callback(description)
