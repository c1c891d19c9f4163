"""
Business logic package: catalog, pricing reconciliation and checkout.

Package Components:
    Business Data Models (models.py):
        - Pydantic models for products, cart lines, pricing breakdowns,
          gateway orders and checkout sessions
    Money Utilities (utils.py):
        - Decimal rounding, paisa conversion and Indian rupee formatting
    Product Catalog (catalog.py):
        - Authoritative product prices, stock and quantity limits
    Pricing Validator (pricing.py):
        - Cart recomputation, discounts, shipping quotes, amount reconciliation
    Checkout Service (checkout.py):
        - Pricing, script loading and order creation in one flow
    Service Container (services.py):
        - Per-process wiring of every payment component

``checkout`` and ``services`` depend on ``src.integrations`` and are imported
by module path, e.g. ``from src.business.services import create_payment_services``.
"""

from .catalog import GST_RATE, ProductCatalog, SAMPLE_PRODUCTS, calculate_tax_amount
from .models import (
    CartItem,
    CheckoutSession,
    CreateOrderRequest,
    CustomerPrefill,
    DiscountCode,
    DiscountResult,
    GatewayOrder,
    OrderStatus,
    PaymentConfig,
    PaymentState,
    PaymentStatusInfo,
    PaymentVerificationResult,
    PricingBreakdown,
    PricingLineItem,
    PricingSummary,
    PricingValidationResult,
    Product,
    RazorpayOrderPayload,
    ShippingMethod,
    ShippingQuote,
    VerifyPaymentRequest,
)
from .pricing import PricingRules, PricingValidator
from .utils import format_inr, format_rupees, round_currency, to_decimal, to_minor_units

__version__ = "1.0.0"

__all__ = [
    'GST_RATE',
    'ProductCatalog',
    'SAMPLE_PRODUCTS',
    'calculate_tax_amount',
    'CartItem',
    'CheckoutSession',
    'CreateOrderRequest',
    'CustomerPrefill',
    'DiscountCode',
    'DiscountResult',
    'GatewayOrder',
    'OrderStatus',
    'PaymentConfig',
    'PaymentState',
    'PaymentStatusInfo',
    'PaymentVerificationResult',
    'PricingBreakdown',
    'PricingLineItem',
    'PricingSummary',
    'PricingValidationResult',
    'Product',
    'RazorpayOrderPayload',
    'ShippingMethod',
    'ShippingQuote',
    'VerifyPaymentRequest',
    'PricingRules',
    'PricingValidator',
    'format_inr',
    'format_rupees',
    'round_currency',
    'to_decimal',
    'to_minor_units',
]
