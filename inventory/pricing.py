"""
Pricing lookups against the live catalog.
"""
from decimal import Decimal

from core.exceptions import ProductNotFound
from .models import Product


def resolve_price(product_id: int) -> Decimal:
    """
    Return the current unit price of a product.

    Always hits the database so a price change is visible to the very next
    line item.

    Raises:
        ProductNotFound: If no product has this id
    """
    price = Product.objects.filter(pk=product_id).values_list('price_per_unit', flat=True).first()
    if price is None:
        raise ProductNotFound(product_id)
    return price
