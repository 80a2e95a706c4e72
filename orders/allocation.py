"""
Order line allocation: price a line item, then draw its stock.
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from inventory import ledger
from inventory.pricing import resolve_price

CENTS = Decimal('0.01')


@dataclass
class PricedLine:
    product_id: int
    quantity: Decimal
    unit_price: Decimal
    subtotal: Decimal
    lot_debits: List[ledger.LotDebit] = field(default_factory=list)


def line_subtotal(unit_price: Decimal, quantity: Decimal) -> Decimal:
    return (unit_price * quantity).quantize(CENTS, rounding=ROUND_HALF_UP)


def price_and_allocate(product_id: int, quantity: Decimal, as_of: date,
                       shortfall_policy: Optional[ledger.ShortfallPolicy] = None) -> PricedLine:
    """
    Price one line item and allocate its stock.

    The price lookup runs first, so an unknown product raises
    ProductNotFound before any lot is touched.
    """
    unit_price = resolve_price(product_id)
    debits = ledger.allocate(product_id, quantity, as_of, shortfall_policy)
    return PricedLine(
        product_id=product_id,
        quantity=quantity,
        unit_price=unit_price,
        subtotal=line_subtotal(unit_price, quantity),
        lot_debits=debits,
    )
