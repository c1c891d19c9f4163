"""
Pydantic data models for catalog pricing, cart reconciliation and payment API payloads.

Model Categories:
    Catalog:
        ProductPricing, ProductMetadata, Product
    Cart and pricing:
        CartItem, CalculatedPrice, ProductPricingCheck, PricingLineItem,
        PricingSummary, PricingMetadata, PricingBreakdown, PricingValidationResult
    Discounts and shipping:
        DiscountCode, DiscountResult, ShippingQuote
    Payment gateway:
        RazorpayOrderPayload, CreateOrderRequest, GatewayOrder,
        VerifyPaymentRequest, PaymentVerificationResult, PaymentStatusInfo,
        PaymentConfig
    Checkout:
        CustomerPrefill, CheckoutSession

Pricing models are frozen: operations such as discount application return a
new breakdown instead of mutating the one they were given. Money fields are
Decimal rupees; ``*_in_paisa`` fields are integer minor units.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FrozenModel(BaseModel):
    """Immutable base for catalog and pricing records."""

    model_config = ConfigDict(
        frozen=True,
        extra='forbid',
        str_strip_whitespace=True,
    )


class ApiModel(BaseModel):
    """Base for payment API payloads; accepts camelCase aliases and ignores unknown keys."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra='ignore',
        str_strip_whitespace=True,
    )


# ============================================================================
# CATALOG
# ============================================================================

class ProductPricing(FrozenModel):
    base_price: Decimal = Field(..., description="Unit price in rupees")
    original_price: Optional[Decimal] = None
    discount_percentage: Optional[Decimal] = None
    tax_rate: Decimal = Field(default=Decimal('0'), ge=0, description="e.g. 0.18 for 18% GST")
    currency: str = 'INR'
    min_quantity: int = Field(default=1, ge=0)
    max_quantity: int = Field(..., ge=0)
    is_available: bool = True
    stock_count: Optional[int] = Field(default=None, ge=0)


class ProductMetadata(FrozenModel):
    sku: str = Field(..., min_length=1)
    hsn: Optional[str] = Field(default=None, description="HSN code for tax purposes")
    category: str
    subcategory: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    craftsman: str
    origin: Optional[str] = None
    materials: List[str] = Field(default_factory=list)
    shipping_weight: Optional[Decimal] = Field(default=None, ge=0, description="kg")


class Product(FrozenModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ''
    pricing: ProductPricing
    metadata: ProductMetadata
    is_new: bool = False
    is_featured: bool = False
    rating: Optional[float] = Field(default=None, ge=0, le=5)


# ============================================================================
# CART AND PRICING
# ============================================================================

class CartItem(FrozenModel):
    product_id: str = Field(..., min_length=1)
    quantity: int
    selected_variant: Optional[str] = None


class CalculatedPrice(FrozenModel):
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    total_in_paisa: int


class ProductPricingCheck(FrozenModel):
    """Outcome of validating one product at one quantity against the catalog."""

    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    calculated_price: Optional[CalculatedPrice] = None


class PricingLineItem(FrozenModel):
    product_id: str
    name: str
    sku: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    tax: Decimal
    total: Decimal


class PricingSummary(FrozenModel):
    subtotal: Decimal
    total_tax: Decimal
    total_amount: Decimal
    total_amount_in_paisa: int
    currency: str = 'INR'
    item_count: int
    discount_amount: Decimal = Decimal('0')
    discount_code: Optional[str] = None


class PricingMetadata(FrozenModel):
    hsn: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    craftsmen: List[str] = Field(default_factory=list)
    shipping_weight: Decimal = Decimal('0')


class PricingBreakdown(FrozenModel):
    """
    Authoritative price for a cart.

    Without a discount the summary fields are the sums of the line fields;
    with one, ``summary.subtotal`` is the line subtotal minus
    ``summary.discount_amount`` and tax is recomputed on it.
    """

    items: List[PricingLineItem]
    summary: PricingSummary
    metadata: PricingMetadata

    @property
    def effective_tax_rate(self) -> Decimal:
        if self.summary.subtotal == 0:
            return Decimal('0')
        return self.summary.total_tax / self.summary.subtotal


class PricingValidationResult(BaseModel):
    """``pricing`` is attached only when ``is_valid`` is True."""

    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    pricing: Optional[PricingBreakdown] = None


# ============================================================================
# DISCOUNTS AND SHIPPING
# ============================================================================

class DiscountCode(FrozenModel):
    percentage: Decimal = Field(..., gt=0, le=100)
    min_order_amount: Decimal = Field(..., ge=0)
    max_discount: Decimal = Field(..., ge=0)
    description: str


class DiscountResult(FrozenModel):
    is_valid: bool
    discount_amount: Decimal = Decimal('0')
    discount_percentage: Decimal = Decimal('0')
    message: str
    updated_pricing: Optional[PricingBreakdown] = None


class ShippingMethod(str, Enum):
    STANDARD = 'Standard Delivery'
    EXPRESS = 'Express Delivery'


class ShippingQuote(FrozenModel):
    cost: Decimal
    estimated_days: int
    method: ShippingMethod


# ============================================================================
# PAYMENT GATEWAY
# ============================================================================

class RazorpayOrderPayload(FrozenModel):
    """Order creation payload: minor-unit amount and string-only notes."""

    amount: int = Field(..., description="Amount in paisa")
    currency: str
    receipt: str
    notes: Dict[str, str] = Field(default_factory=dict)


class CreateOrderRequest(ApiModel):
    amount: int = Field(..., description="Amount in paisa")
    currency: str = 'INR'
    receipt: str = ''
    notes: Dict[str, str] = Field(default_factory=dict)


class OrderStatus(str, Enum):
    CREATED = 'created'
    ATTEMPTED = 'attempted'
    PAID = 'paid'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class GatewayOrder(ApiModel):
    id: str
    entity: str = 'order'
    amount: int
    amount_paid: int = 0
    amount_due: int = 0
    currency: str
    receipt: str
    offer_id: Optional[str] = None
    status: OrderStatus = OrderStatus.CREATED
    attempts: int = 0
    notes: Dict[str, str] = Field(default_factory=dict)
    created_at: Optional[int] = None

    @field_validator('notes', mode='before')
    @classmethod
    def normalise_notes(cls, value):
        # The gateway returns an empty list instead of an empty object
        if value in (None, []):
            return {}
        return value


class VerifyPaymentRequest(ApiModel):
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


class PaymentVerificationResult(ApiModel):
    success: bool
    message: str = ''
    order_id: Optional[str] = Field(default=None, alias='orderId')
    transaction_id: Optional[str] = Field(default=None, alias='transactionId')


class PaymentState(str, Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    PAID = 'paid'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class PaymentStatusInfo(ApiModel):
    order_id: str = Field(..., alias='orderId')
    status: PaymentState
    payment_id: Optional[str] = Field(default=None, alias='paymentId')
    amount: Decimal
    currency: str = 'INR'
    created_at: Optional[str] = Field(default=None, alias='createdAt')
    updated_at: Optional[str] = Field(default=None, alias='updatedAt')


class PaymentConfig(ApiModel):
    key_id: str = ''
    currency: str = 'INR'
    company_name: str = 'Handicraft Store'
    company_logo: Optional[str] = None
    theme_color: str = '#3B82F6'
    timeout: float = Field(default=30.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1)


# ============================================================================
# CHECKOUT
# ============================================================================

class CustomerPrefill(ApiModel):
    name: Optional[str] = None
    email: Optional[str] = None
    contact: Optional[str] = None


class CheckoutSession(BaseModel):
    """Everything the client needs to open the payment sheet for one order."""

    model_config = ConfigDict(frozen=True)

    order: GatewayOrder
    pricing: PricingBreakdown
    warnings: List[str] = Field(default_factory=list)
    options: Dict[str, Any] = Field(default_factory=dict)

    @property
    def order_id(self) -> str:
        return self.order.id

    @property
    def receipt(self) -> str:
        return self.order.receipt
