"""
Inventory Ledger - FIFO allocation of stock across harvest batches.

Allocation walks a product's eligible lots oldest harvest first and debits
each until the requested quantity is covered. Whatever the lots cannot
cover is handed to a shortfall policy, which either describes a new lot to
create or refuses the allocation.

Must be called inside ``transaction.atomic()``: lots are locked with
``select_for_update()`` and debited in place.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, List, Optional

from django.conf import settings
from django.db.models import Sum
from django.utils import timezone

from core.exceptions import AllocationInconsistency, InsufficientStock
from .models import HarvestBatch

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


@dataclass(frozen=True)
class NewLotSpec:
    """Description of a lot a shortfall policy wants created."""
    batch_no: str
    quantity: Decimal
    harvest_date: date
    expiry_date: date


@dataclass(frozen=True)
class LotDebit:
    """Quantity taken from one lot by an allocation."""
    batch_id: int
    batch_no: str
    quantity: Decimal
    synthesized: bool = False


ShortfallPolicy = Callable[[int, Decimal, date], NewLotSpec]


def synthesize_lot(product_id: int, deficit: Decimal, as_of: date) -> NewLotSpec:
    """Default policy: fabricate a fresh lot carrying exactly the deficit."""
    shelf_life = timedelta(days=settings.AUTO_LOT_SHELF_LIFE_DAYS)
    return NewLotSpec(
        batch_no=f"AUTO-{as_of:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}",
        quantity=deficit,
        harvest_date=as_of,
        expiry_date=as_of + shelf_life,
    )


def reject_shortfall(product_id: int, deficit: Decimal, as_of: date) -> NewLotSpec:
    """Strict policy: never fabricate stock."""
    available = available_quantity(product_id, as_of)
    raise InsufficientStock(product_id, requested=available + deficit, available=available)


SHORTFALL_POLICIES = {
    'synthesize': synthesize_lot,
    'reject': reject_shortfall,
}


def get_shortfall_policy(name: Optional[str] = None) -> ShortfallPolicy:
    """Look up a policy by name, defaulting to ORDER_SHORTFALL_POLICY."""
    name = name or settings.ORDER_SHORTFALL_POLICY
    try:
        return SHORTFALL_POLICIES[name]
    except KeyError:
        raise ValueError(f"Unknown shortfall policy: {name!r}") from None


def eligible_batches(product_id: int, as_of: date):
    """Unexpired lots with stock left, oldest harvest first."""
    return HarvestBatch.objects.filter(
        product_id=product_id,
        expiry_date__gt=as_of,
        quantity_available__gt=0
    ).order_by('harvest_date', 'batch_no', 'id')


def available_quantity(product_id: int, as_of: Optional[date] = None) -> Decimal:
    """
    Total stock over a product's unexpired lots.

    Advisory only: allocation does not consult it.
    """
    as_of = as_of or timezone.localdate()
    total = eligible_batches(product_id, as_of).aggregate(
        total=Sum('quantity_available')
    )['total']
    return total or ZERO


def _create_lot(product_id: int, deficit: Decimal, as_of: date,
                policy: ShortfallPolicy) -> HarvestBatch:
    spec = policy(product_id, deficit, as_of)
    batch = HarvestBatch.objects.create(
        product_id=product_id,
        batch_no=spec.batch_no,
        harvest_date=spec.harvest_date,
        expiry_date=spec.expiry_date,
        quantity_available=spec.quantity,
        is_synthesized=True,
    )
    logger.info(
        f"Synthesized lot {batch.batch_no} for product {product_id}: "
        f"{spec.quantity} units, expires {spec.expiry_date}"
    )
    return batch


def allocate(product_id: int, quantity: Decimal, as_of: date,
             shortfall_policy: Optional[ShortfallPolicy] = None) -> List[LotDebit]:
    """
    Debit ``quantity`` of a product from its lots, oldest harvest first.

    Args:
        product_id: Product to draw stock for (not validated here)
        quantity: Positive quantity to allocate
        as_of: Allocation date; lots expiring on or before it are skipped
        shortfall_policy: Called with the uncovered deficit; defaults to
            the ORDER_SHORTFALL_POLICY setting

    Returns:
        One LotDebit per lot touched, in consumption order

    Raises:
        InsufficientStock: If the policy refuses to cover a shortfall
        AllocationInconsistency: If demand remains after the walk
    """
    policy = shortfall_policy or get_shortfall_policy()

    lots = list(eligible_batches(product_id, as_of).select_for_update())

    if not lots and not HarvestBatch.objects.filter(product_id=product_id).exists():
        logger.info(f"Product {product_id} has no lots; provisioning first sale of {quantity}")
        lots.append(_create_lot(product_id, quantity, as_of, policy))

    total_available = sum((lot.quantity_available for lot in lots), ZERO)
    if total_available < quantity:
        deficit = quantity - total_available
        logger.info(
            f"Product {product_id} short by {deficit} "
            f"(requested {quantity}, eligible {total_available})"
        )
        lots.append(_create_lot(product_id, deficit, as_of, policy))

    debits = []
    remaining = quantity
    for lot in lots:
        if remaining <= 0:
            break
        take = min(remaining, lot.quantity_available)
        if take <= 0:
            continue
        lot.quantity_available -= take
        lot.save(update_fields=['quantity_available'])
        remaining -= take
        debits.append(LotDebit(
            batch_id=lot.id,
            batch_no=lot.batch_no,
            quantity=take,
            synthesized=lot.is_synthesized,
        ))
        logger.debug(
            f"Debited {take} from lot {lot.batch_no} of product {product_id}, "
            f"{lot.quantity_available} left"
        )

    if remaining > 0:
        logger.error(
            f"Allocation for product {product_id} left {remaining} of {quantity} "
            f"unallocated after shortfall handling"
        )
        raise AllocationInconsistency(product_id, quantity, remaining)

    return debits
