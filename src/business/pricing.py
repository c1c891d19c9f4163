"""
Cart pricing reconciliation against the product catalog.

Every payment is preceded by an authoritative recomputation of the cart total
from catalog data. The client-supplied amount is only ever compared against
it, within a one-rupee tolerance, and never trusted.

Key Features:
- Per-item catalog validation with product-name-prefixed errors
- Low-stock, heavy-item and total-weight warnings
- Order total bounds
- Discount codes that recompute tax on the discounted subtotal
- Weight and destination based shipping quotes
- Order payloads in minor units with string-only notes

Business constants come from ``PricingRules``, normally built from the active
configuration class with ``PricingRules.from_config``.
"""

import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import structlog

from src.integrations.error_handler import ErrorHandler
from src.integrations.exceptions import PricingValidationError
from src.monitoring.logging import StructuredLogger
from src.utils.identifiers import generate_identifier

from .catalog import ProductCatalog
from .models import (
    CartItem, DiscountCode, DiscountResult, PricingBreakdown, PricingLineItem,
    PricingMetadata, PricingSummary, PricingValidationResult, RazorpayOrderPayload,
    ShippingMethod, ShippingQuote,
)
from .utils import NumericType, format_amount_text, format_rupees, round_currency, to_decimal, to_minor_units

logger = structlog.get_logger(__name__)

CartInput = Union[CartItem, Mapping[str, Any]]
ShippingTier = Tuple[Optional[float], int]

RECEIPT_PREFIX = 'order'
RECEIPT_SUFFIX_LENGTH = 6


@dataclass(frozen=True)
class PricingRules:
    """Business constants for cart validation, discounts and shipping."""

    low_stock_threshold: int = 5
    heavy_item_weight: Decimal = Decimal('30')
    special_handling_weight: Decimal = Decimal('100')
    min_order_total: Decimal = Decimal('1')
    max_order_total: Decimal = Decimal('1000000')
    amount_tolerance: Decimal = Decimal('1')
    currency: str = 'INR'
    shipping_tiers: Tuple[ShippingTier, ...] = ((5.0, 100), (20.0, 200), (50.0, 500), (None, 1000))
    non_metro_surcharge: Decimal = Decimal('100')
    base_delivery_days: int = 7
    non_metro_extra_days: int = 2
    metro_pincodes: Tuple[str, ...] = ('110001', '400001', '560001', '600001', '700001', '500001')
    discount_codes: Dict[str, DiscountCode] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: Any) -> 'PricingRules':
        """Build rules from a configuration class such as ``BaseConfig``."""
        return cls(
            low_stock_threshold=config.PRICING_LOW_STOCK_THRESHOLD,
            heavy_item_weight=to_decimal(config.PRICING_HEAVY_ITEM_WEIGHT),
            special_handling_weight=to_decimal(config.PRICING_SPECIAL_HANDLING_WEIGHT),
            min_order_total=to_decimal(config.PRICING_MIN_ORDER_TOTAL),
            max_order_total=to_decimal(config.PRICING_MAX_ORDER_TOTAL),
            amount_tolerance=to_decimal(config.PRICING_AMOUNT_TOLERANCE),
            currency=config.CURRENCY,
            shipping_tiers=tuple(tuple(tier) for tier in config.SHIPPING_TIERS),
            non_metro_surcharge=to_decimal(config.SHIPPING_NON_METRO_SURCHARGE),
            base_delivery_days=config.SHIPPING_BASE_DAYS,
            non_metro_extra_days=config.SHIPPING_NON_METRO_EXTRA_DAYS,
            metro_pincodes=tuple(config.METRO_PINCODES),
            discount_codes=parse_discount_codes(config.DISCOUNT_CODES),
        )


def parse_discount_codes(table: Mapping[str, Mapping[str, Any]]) -> Dict[str, DiscountCode]:
    """Validate a raw discount table; codes are stored upper-cased."""
    return {code.upper(): DiscountCode(**values) for code, values in table.items()}


def _coerce_cart_item(item: CartInput) -> CartItem:
    if isinstance(item, CartItem):
        return item
    return CartItem.model_validate(dict(item))


class PricingValidator:
    """
    Recomputes cart prices from the catalog and guards the payable amount.

    Args:
        catalog: Product lookup and per-product pricing authority
        structured_logger: Receives ``PRICING_VALIDATION`` events
        error_handler: Receives rejected carts as validation errors
        rules: Business constants (defaults when omitted)
        metrics: Optional ``PaymentMetrics``
    """

    def __init__(
        self,
        catalog: ProductCatalog,
        structured_logger: StructuredLogger,
        error_handler: ErrorHandler,
        rules: Optional[PricingRules] = None,
        metrics: Any = None
    ):
        self.catalog = catalog
        self.logger = structured_logger
        self.error_handler = error_handler
        self.rules = rules or PricingRules()
        self.metrics = metrics

    def validate_cart_pricing(self, cart_items: Iterable[CartInput]) -> PricingValidationResult:
        """
        Validate every cart line and build the authoritative breakdown.

        Args:
            cart_items: ``CartItem`` objects or mappings with ``product_id`` and ``quantity``

        Returns:
            PricingValidationResult; ``pricing`` is set only when there are no errors
        """
        items = [_coerce_cart_item(item) for item in cart_items]
        rules = self.rules
        errors: List[str] = []
        warnings: List[str] = []
        lines: List[PricingLineItem] = []
        hsn_codes: List[str] = []
        categories: List[str] = []
        craftsmen: List[str] = []
        shipping_weight = Decimal('0')

        self.logger.debug('PRICING_VALIDATION', 'Starting cart pricing validation', {
            'itemCount': len(items),
            'items': [{'productId': item.product_id, 'quantity': item.quantity} for item in items],
        })

        for item in items:
            product = self.catalog.get_product_by_id(item.product_id)
            if product is None:
                errors.append(f"Product with ID {item.product_id} not found")
                continue

            check = self.catalog.validate_pricing(product, item.quantity)
            if not check.is_valid:
                errors.extend(f"{product.name}: {error}" for error in check.errors)
                continue
            if check.calculated_price is None:
                errors.append(f"Failed to calculate price for {product.name}")
                continue

            price = check.calculated_price
            lines.append(PricingLineItem(
                product_id=product.id,
                name=product.name,
                sku=product.metadata.sku,
                quantity=item.quantity,
                unit_price=product.pricing.base_price,
                subtotal=price.subtotal,
                tax=price.tax,
                total=price.total,
            ))

            metadata = product.metadata
            if metadata.hsn and metadata.hsn not in hsn_codes:
                hsn_codes.append(metadata.hsn)
            if metadata.category not in categories:
                categories.append(metadata.category)
            if metadata.craftsman not in craftsmen:
                craftsmen.append(metadata.craftsman)

            unit_weight = metadata.shipping_weight or Decimal('0')
            shipping_weight += unit_weight * item.quantity

            stock = product.pricing.stock_count
            if stock and stock <= rules.low_stock_threshold:
                warnings.append(f"{product.name}: Only {stock} items left in stock")
            if unit_weight > rules.heavy_item_weight:
                warnings.append(f"{product.name}: Heavy item - additional shipping charges may apply")

        totals = summarize_lines(lines)
        total_amount = totals['total_amount']
        summary = PricingSummary(
            **totals,
            total_amount_in_paisa=to_minor_units(total_amount),
            currency=rules.currency,
            item_count=sum(line.quantity for line in lines),
        )

        if total_amount < rules.min_order_total:
            errors.append(f"Order total must be at least {format_rupees(rules.min_order_total)}")
        if total_amount > rules.max_order_total:
            errors.append(f"Order total cannot exceed {format_rupees(rules.max_order_total)}")
        if shipping_weight > rules.special_handling_weight:
            warnings.append(
                f"Order weight exceeds {format_amount_text(rules.special_handling_weight)}kg"
                " - special shipping arrangements required"
            )

        is_valid = not errors
        result = PricingValidationResult(is_valid=is_valid, errors=errors, warnings=warnings)
        if is_valid:
            result.pricing = PricingBreakdown(
                items=lines,
                summary=summary,
                metadata=PricingMetadata(
                    hsn=hsn_codes,
                    categories=categories,
                    craftsmen=craftsmen,
                    shipping_weight=shipping_weight,
                ),
            )

        self.logger.info('PRICING_VALIDATION', 'Cart pricing validation completed', {
            'isValid': is_valid,
            'errorCount': len(errors),
            'warningCount': len(warnings),
            'totalAmount': float(total_amount),
            'itemCount': summary.item_count,
        })
        self._record('cart', is_valid)

        if not is_valid:
            self.error_handler.handle_validation_error('; '.join(errors), {
                'component': 'PricingValidation',
                'action': 'validate_cart_pricing',
                'additional_data': {
                    'cartItems': [item.model_dump() for item in items],
                    'errors': errors,
                    'warnings': warnings,
                },
            })

        return result

    def validate_product_pricing(self, product_id: str, quantity: int) -> PricingValidationResult:
        """Validate a single product as a one-line cart."""
        return self.validate_cart_pricing([CartItem(product_id=product_id, quantity=quantity)])

    def validate_before_payment(
        self,
        cart_items: Iterable[CartInput],
        expected_amount: NumericType,
        discount_code: Optional[str] = None
    ) -> PricingValidationResult:
        """
        Recompute the cart and compare it with the amount about to be charged.

        Args:
            cart_items: Cart lines
            expected_amount: Amount in rupees the client intends to pay
            discount_code: Optional code applied before the comparison

        Returns:
            The cart validation result, marked invalid (without pricing) when
            the discount is rejected or the amounts differ by more than the tolerance
        """
        items = [_coerce_cart_item(item) for item in cart_items]
        validation = self.validate_cart_pricing(items)
        if not validation.is_valid or validation.pricing is None:
            return validation

        pricing = validation.pricing
        if discount_code:
            discount = self.apply_discount_code(pricing, discount_code)
            if not discount.is_valid or discount.updated_pricing is None:
                self._record('before_payment', False)
                return PricingValidationResult(
                    is_valid=False,
                    errors=[*validation.errors, discount.message],
                    warnings=validation.warnings,
                )
            pricing = discount.updated_pricing

        expected = to_decimal(expected_amount)
        calculated = pricing.summary.total_amount
        difference = abs(calculated - expected)

        if difference > self.rules.amount_tolerance:
            message = (
                f"Amount mismatch: Expected ₹{format_amount_text(expected)}, "
                f"calculated ₹{format_amount_text(calculated)}"
            )
            self.logger.error(
                'PRICING_VALIDATION', 'Payment amount mismatch detected',
                PricingValidationError('Amount mismatch', errors=[message]),
                {
                    'expectedAmount': float(expected),
                    'calculatedAmount': float(calculated),
                    'difference': float(difference),
                    'cartItems': [item.model_dump() for item in items],
                }
            )
            self._record('before_payment', False)
            return PricingValidationResult(
                is_valid=False,
                errors=[*validation.errors, message],
                warnings=validation.warnings,
            )

        self._record('before_payment', True)
        return PricingValidationResult(
            is_valid=True,
            errors=validation.errors,
            warnings=validation.warnings,
            pricing=pricing,
        )

    def apply_discount_code(self, pricing: PricingBreakdown, discount_code: str) -> DiscountResult:
        """
        Apply a discount code to a validated breakdown.

        The discount is ``percentage`` of the subtotal, rounded half-up and
        capped at the code's maximum. Tax is recomputed on the discounted
        subtotal at the breakdown's effective tax rate. The input breakdown is
        left untouched.

        Returns:
            DiscountResult with ``updated_pricing`` when the code was accepted
        """
        code = (discount_code or '').strip().upper()
        discount = self.rules.discount_codes.get(code)

        if discount is None:
            self._record('discount', False)
            return DiscountResult(is_valid=False, message='Invalid discount code')

        if pricing.summary.discount_code:
            self._record('discount', False)
            return DiscountResult(is_valid=False, message='A discount code has already been applied')

        subtotal = pricing.summary.subtotal
        if subtotal < discount.min_order_amount:
            self._record('discount', False)
            return DiscountResult(
                is_valid=False,
                message=(
                    f"Minimum order amount of {format_rupees(discount.min_order_amount)} "
                    "required for this discount"
                ),
            )

        discount_amount = min(
            round_currency(subtotal * discount.percentage / 100),
            discount.max_discount,
        )
        updated_subtotal = subtotal - discount_amount
        updated_tax = round_currency(updated_subtotal * pricing.effective_tax_rate)
        updated_total = updated_subtotal + updated_tax

        updated_pricing = pricing.model_copy(update={
            'summary': pricing.summary.model_copy(update={
                'subtotal': updated_subtotal,
                'total_tax': updated_tax,
                'total_amount': updated_total,
                'total_amount_in_paisa': to_minor_units(updated_total),
                'discount_amount': discount_amount,
                'discount_code': code,
            }),
        })

        self.logger.info('PRICING_VALIDATION', 'Discount code applied', {
            'discountCode': code,
            'discountAmount': float(discount_amount),
            'updatedTotal': float(updated_total),
        })
        self._record('discount', True)
        return DiscountResult(
            is_valid=True,
            discount_amount=discount_amount,
            discount_percentage=discount.percentage,
            message=discount.description,
            updated_pricing=updated_pricing,
        )

    def calculate_shipping_cost(
        self,
        weight: NumericType,
        destination_code: str,
        expedited: bool = False
    ) -> ShippingQuote:
        """
        Quote shipping by weight tier and destination.

        Destinations whose first three digits match a metropolitan pincode ship
        at the tier price; others pay a surcharge and take longer. Expedited
        delivery doubles the cost and halves the days, rounding up.

        Raises:
            ValueError: If the weight is negative
        """
        weight = to_decimal(weight)
        if weight < 0:
            raise ValueError(f"Shipping weight cannot be negative: {weight}")

        rules = self.rules
        cost = Decimal('0')
        for limit, tier_cost in rules.shipping_tiers:
            if limit is None or weight <= to_decimal(limit):
                cost = to_decimal(tier_cost)
                break
        days = rules.base_delivery_days

        is_metropolitan = any(
            destination_code.startswith(pincode[:3]) for pincode in rules.metro_pincodes
        )
        if not is_metropolitan:
            cost += rules.non_metro_surcharge
            days += rules.non_metro_extra_days

        if expedited:
            cost *= 2
            days = math.ceil(days / 2)

        return ShippingQuote(
            cost=cost,
            estimated_days=days,
            method=ShippingMethod.EXPRESS if expedited else ShippingMethod.STANDARD,
        )

    def format_for_razorpay(
        self,
        pricing: PricingBreakdown,
        receipt: Optional[str] = None
    ) -> RazorpayOrderPayload:
        """Order creation payload with the amount in paisa and string-only notes."""
        summary = pricing.summary
        notes = {
            'item_count': str(summary.item_count),
            'subtotal': format_amount_text(summary.subtotal),
            'tax_amount': format_amount_text(summary.total_tax),
            'total_amount': format_amount_text(summary.total_amount),
            'categories': ', '.join(pricing.metadata.categories),
            'craftsmen': ', '.join(pricing.metadata.craftsmen),
            'shipping_weight': format_amount_text(pricing.metadata.shipping_weight),
            'hsn_codes': ', '.join(pricing.metadata.hsn),
        }
        if summary.discount_code:
            notes['discount_code'] = summary.discount_code
            notes['discount_amount'] = format_amount_text(summary.discount_amount)

        return RazorpayOrderPayload(
            amount=summary.total_amount_in_paisa,
            currency=summary.currency,
            receipt=receipt or generate_identifier(RECEIPT_PREFIX, RECEIPT_SUFFIX_LENGTH),
            notes=notes,
        )

    def _record(self, operation: str, valid: bool) -> None:
        if self.metrics is not None:
            self.metrics.record_pricing_validation(operation, valid)


def summarize_lines(lines: Sequence[PricingLineItem]) -> Dict[str, Decimal]:
    """Sums of the line fields; a breakdown without discount has exactly these totals."""
    return {
        'subtotal': sum((line.subtotal for line in lines), Decimal('0')),
        'total_tax': sum((line.tax for line in lines), Decimal('0')),
        'total_amount': sum((line.total for line in lines), Decimal('0')),
    }
