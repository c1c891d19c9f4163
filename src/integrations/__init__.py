"""
Integration layer for the payment resilience stack.

Key Features:
- Error classification, user-facing messages and spike detection (error_handler)
- Exponential backoff retries with per-operation circuit breakers (retry, circuit_breaker)
- Idempotent loading of the checkout widget script (script_loader)
- Payment API client for order creation, verification and status (payment_client)

Import order matters: ``error_handler`` has to be loaded before
``payment_client``, which pulls in ``src.business`` models.
"""

from .exceptions import (
    CheckoutError,
    CircuitBreakerOpenError,
    NetworkRequestError,
    PaymentApiError,
    PaymentIntegrationError,
    PaymentServiceError,
    PricingValidationError,
    ScriptLoadError,
)
from .error_handler import (
    ErrorCategory,
    ErrorContext,
    ErrorHandler,
    ErrorSeverity,
    ProcessedError,
)
from .circuit_breaker import CircuitBreakerRegistry, CircuitBreakerState
from .retry import RetryConfig, RetryMechanism, RetryResult
from .script_loader import CheckoutScriptLoader, HttpScriptDocument, ScriptDocument
from .payment_client import PaymentGatewayClient

__all__ = [
    'CheckoutError',
    'CircuitBreakerOpenError',
    'NetworkRequestError',
    'PaymentApiError',
    'PaymentIntegrationError',
    'PaymentServiceError',
    'PricingValidationError',
    'ScriptLoadError',
    'ErrorCategory',
    'ErrorContext',
    'ErrorHandler',
    'ErrorSeverity',
    'ProcessedError',
    'CircuitBreakerRegistry',
    'CircuitBreakerState',
    'RetryConfig',
    'RetryMechanism',
    'RetryResult',
    'CheckoutScriptLoader',
    'HttpScriptDocument',
    'ScriptDocument',
    'PaymentGatewayClient',
]
