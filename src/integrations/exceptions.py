"""
Custom exception classes for payment integration failures.

This module provides the exception hierarchy raised by the payment resilience
layer: HTTP and transport failures from the payment API, circuit breaker
rejections, checkout script load failures, payment service errors carrying a
user-safe message, and checkout orchestration failures.

Every exception exposes ``error_code`` and ``context`` and can be rendered with
``to_dict()`` for structured logging and JSON error responses.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class PaymentIntegrationError(Exception):
    """
    Base exception class for all payment integration failures.

    Attributes:
        error_code: Machine-readable error code
        context: Additional context information about the error
        timestamp: When the error occurred (UTC)
    """

    default_code = 'PAYMENT_INTEGRATION_ERROR'

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for logging and API responses.

        Returns:
            Dictionary containing all error details for structured logging
        """
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'error_code': self.error_code,
            'context': self.context,
            'timestamp': self.timestamp.isoformat(),
        }


class NetworkRequestError(PaymentIntegrationError):
    """
    HTTP or transport failure talking to the payment API.

    ``code`` mirrors transport error codes (``NETWORK_ERROR``, ``ECONNABORTED``)
    and ``status_code`` carries the HTTP status when a response was received;
    both feed the default retry predicate.
    """

    default_code = 'NETWORK_ERROR'

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        method: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code=code, context=context)
        self.code = code
        self.status_code = status_code
        self.url = url
        self.method = method
        self.context.update({
            'status_code': status_code,
            'url': url,
            'method': method,
        })


class PaymentApiError(PaymentIntegrationError):
    """Payment API answered, but the envelope reported failure or carried no data."""

    default_code = 'PAYMENT_API_ERROR'

    def __init__(self, message: str, error_code: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message, error_code=error_code, context={'operation': operation})
        self.operation = operation


class CircuitBreakerOpenError(PaymentIntegrationError):
    """Raised without calling the operation while its circuit breaker is open."""

    default_code = 'CIRCUIT_BREAKER_OPEN'

    def __init__(self, operation_name: str, time_until_reset: Optional[float] = None):
        super().__init__(
            f"Circuit breaker is open for {operation_name}. Try again later.",
            context={'operation_name': operation_name, 'time_until_reset': time_until_reset}
        )
        self.operation_name = operation_name
        self.time_until_reset = time_until_reset


class ScriptLoadError(PaymentIntegrationError):
    """Checkout widget script failed to load, initialise or finish in time."""

    default_code = 'SCRIPT_LOAD_ERROR'

    def __init__(self, message: str, reason: str, url: Optional[str] = None):
        super().__init__(message, context={'reason': reason, 'url': url})
        self.reason = reason
        self.url = url


class PaymentServiceError(PaymentIntegrationError):
    """
    Payment API operation failed after classification by the error handler.

    ``str(error)`` is the user-safe message; the raw cause stays on
    ``processed_error`` and ``__cause__``.
    """

    default_code = 'PAYMENT_SERVICE_ERROR'

    def __init__(
        self,
        user_message: str,
        processed_error: Any = None,
        error_code: Optional[str] = None
    ):
        context = {}
        if processed_error is not None:
            context = {
                'error_id': processed_error.id,
                'category': processed_error.category.value,
                'severity': processed_error.severity.value,
                'is_retryable': processed_error.is_retryable,
            }
        super().__init__(user_message, error_code=error_code, context=context)
        self.user_message = user_message
        self.processed_error = processed_error


class PricingValidationError(PaymentIntegrationError):
    """Cart pricing failed validation or reconciliation before payment."""

    default_code = 'PRICING_VALIDATION_ERROR'

    def __init__(self, message: str, errors: List[str], warnings: Optional[List[str]] = None):
        super().__init__(message, context={'errors': errors, 'warnings': warnings or []})
        self.errors = errors
        self.warnings = warnings or []


class CheckoutError(PaymentIntegrationError):
    """Checkout could not be prepared; ``user_message`` is safe to display."""

    default_code = 'CHECKOUT_ERROR'

    def __init__(self, user_message: str, stage: str, error_code: Optional[str] = None):
        super().__init__(user_message, error_code=error_code, context={'stage': stage})
        self.user_message = user_message
        self.stage = stage
