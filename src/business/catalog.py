"""
In-process product catalog and per-product price validation.

The catalog is the pricing authority: cart totals are always recomputed from
the unit prices and tax rates held here, never taken from the client.
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional

import structlog

from .models import CalculatedPrice, Product, ProductMetadata, ProductPricing, ProductPricingCheck
from .utils import round_currency, to_minor_units

logger = structlog.get_logger(__name__)

GST_RATE = Decimal('0.18')
WORKSHOP_ORIGIN = 'Jodhpur, Rajasthan'


def _product(
    product_id: str,
    name: str,
    base_price: int,
    original_price: int,
    discount_percentage: str,
    max_quantity: int,
    stock_count: int,
    sku: str,
    hsn: str,
    category: str,
    subcategory: str,
    craftsman: str,
    shipping_weight: int,
    tags: List[str],
    materials: List[str],
    rating: float,
    is_new: bool = False,
    is_featured: bool = False
) -> Product:
    return Product(
        id=product_id,
        name=name,
        pricing=ProductPricing(
            base_price=base_price,
            original_price=original_price,
            discount_percentage=Decimal(discount_percentage),
            tax_rate=GST_RATE,
            min_quantity=1,
            max_quantity=max_quantity,
            stock_count=stock_count,
        ),
        metadata=ProductMetadata(
            sku=sku,
            hsn=hsn,
            category=category,
            subcategory=subcategory,
            tags=tags,
            craftsman=craftsman,
            origin=WORKSHOP_ORIGIN,
            materials=materials,
            shipping_weight=shipping_weight,
        ),
        is_new=is_new,
        is_featured=is_featured,
        rating=rating,
    )


SAMPLE_PRODUCTS: List[Product] = [
    _product('1', 'Royal Carved Throne Chair', 45000, 55000, '18.18', 2, 5,
             'RCT-001', '94036000', 'Furniture', 'Chairs', 'Master Ravi Sharma', 40,
             ['royal', 'carved', 'throne', 'traditional', 'mahogany', 'gold-leaf'],
             ['Mahogany Wood', 'Gold Leaf', 'Velvet'], 4.8, is_new=True, is_featured=True),
    _product('2', 'Ornate Storage Cabinet', 32000, 40000, '20', 1, 3,
             'OSC-002', '94036000', 'Furniture', 'Storage', 'Artisan Mukesh Joshi', 50,
             ['storage', 'cabinet', 'painted', 'brass', 'mirror-work', 'marwari'],
             ['Sheesham Wood', 'Brass', 'Mirror Work'], 4.6),
    _product('3', 'Decorative Mirror Frame', 8500, 12000, '29.17', 5, 12,
             'DMF-003', '70099100', 'Decor', 'Mirrors', 'Master Priya Devi', 10,
             ['mirror', 'frame', 'peacock', 'floral', 'carved', 'antique-gold'],
             ['Mango Wood', 'Antique Gold Finish'], 4.9),
    _product('4', 'Wooden Coffee Table', 18000, 22000, '18.18', 2, 7,
             'WCT-004', '94036000', 'Furniture', 'Tables', 'Craftsman Gopal Singh', 25,
             ['coffee-table', 'round', 'lattice', 'brass-inlay', 'teak'],
             ['Teak Wood', 'Brass Inlays'], 4.5),
    _product('5', 'Traditional Bookshelf', 28000, 35000, '20', 1, 4,
             'TBS-005', '94036000', 'Furniture', 'Storage', 'Master Lakhan Singh', 45,
             ['bookshelf', 'carved', 'adjustable', 'geometric', 'rosewood'],
             ['Rosewood', 'Brass Hardware'], 4.7),
    _product('6', 'Carved Wall Art Panel', 12000, 15000, '20', 3, 8,
             'WAP-006', '44209900', 'Decor', 'Wall Art', 'Artisan Devi Lal', 18,
             ['wall-art', 'carved', 'folklore', 'rajasthani', 'natural-finish'],
             ['Mango Wood', 'Natural Finish'], 4.4),
    _product('7', 'Vintage Trunk Storage', 22000, 28000, '21.43', 2, 6,
             'VTS-007', '94036000', 'Furniture', 'Storage', 'Master Kailash Chand', 35,
             ['trunk', 'vintage', 'storage', 'brass', 'antique', 'lock'],
             ['Aged Wood', 'Brass Fittings'], 4.6),
    _product('8', 'Decorative Table Lamp', 6500, 8500, '23.53', 10, 20,
             'DTL-008', '94051000', 'Decor', 'Lighting', 'Artisan Sunita Devi', 5,
             ['lamp', 'table-lamp', 'ceramic', 'handwoven', 'ambient'],
             ['Ceramic', 'Handwoven Fabric'], 4.3),
]


def calculate_tax_amount(amount: Decimal, tax_rate: Decimal) -> Decimal:
    """Tax on ``amount`` rounded half-up to whole rupees."""
    return round_currency(amount * tax_rate)


class ProductCatalog:
    """
    Lookup and pricing authority over a fixed set of products.

    Args:
        products: Products to serve; defaults to ``SAMPLE_PRODUCTS``
    """

    def __init__(self, products: Optional[Iterable[Product]] = None):
        self._products: Dict[str, Product] = {}
        for product in (SAMPLE_PRODUCTS if products is None else products):
            if product.id in self._products:
                raise ValueError(f"Duplicate product id: {product.id}")
            self._products[product.id] = product

    def __len__(self) -> int:
        return len(self._products)

    def all_products(self) -> List[Product]:
        return list(self._products.values())

    def get_product_by_id(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    def get_products_by_category(self, category: str) -> List[Product]:
        wanted = category.lower()
        return [p for p in self._products.values() if p.metadata.category.lower() == wanted]

    def search_products(self, query: str) -> List[Product]:
        """Case-insensitive match on name, description, tags and materials."""
        needle = query.lower()
        matches = []
        for product in self._products.values():
            haystack = [product.name, product.description, *product.metadata.tags,
                        *product.metadata.materials]
            if any(needle in text.lower() for text in haystack):
                matches.append(product)
        return matches

    def validate_pricing(self, product: Product, quantity: int) -> ProductPricingCheck:
        """
        Check availability, quantity bounds, stock and price for one product.

        Args:
            product: Catalog product
            quantity: Requested quantity

        Returns:
            ProductPricingCheck with every failed rule listed, and the
            calculated price when all rules pass
        """
        pricing = product.pricing
        errors: List[str] = []

        if not pricing.is_available:
            errors.append('Product is currently unavailable')
        if quantity < pricing.min_quantity:
            errors.append(f"Minimum quantity is {pricing.min_quantity}")
        if quantity > pricing.max_quantity:
            errors.append(f"Maximum quantity is {pricing.max_quantity}")
        # A zero or unknown stock count is not enforced
        if pricing.stock_count and quantity > pricing.stock_count:
            errors.append(f"Only {pricing.stock_count} items in stock")
        if pricing.base_price <= 0:
            errors.append('Invalid product price')

        if errors:
            logger.debug("Product pricing rejected", product_id=product.id,
                         quantity=quantity, errors=errors)
            return ProductPricingCheck(is_valid=False, errors=errors)

        subtotal = pricing.base_price * quantity
        tax = calculate_tax_amount(subtotal, pricing.tax_rate)
        total = subtotal + tax
        return ProductPricingCheck(
            is_valid=True,
            calculated_price=CalculatedPrice(
                subtotal=subtotal,
                tax=tax,
                total=total,
                total_in_paisa=to_minor_units(total),
            ),
        )
