"""
Order Service Layer - Atomic checkout and order lifecycle.

Checkout (process_order) runs in one transaction:
1. Price each line from the live catalog, in the order given
2. Allocate each line's stock from harvest batches (FIFO, shortfall policy)
3. Insert the CONFIRMED order, its lines and a completed payment
4. Queue the confirmation task once the transaction commits
Any failure rolls everything back; nothing of the order is left behind.
"""
import logging
from contextlib import contextmanager
from datetime import date
from decimal import Decimal, InvalidOperation
from functools import partial
from typing import Dict, List, Optional, Tuple

from django.db import DatabaseError, transaction
from django.utils import timezone

from core.exceptions import (
    CustomerNotFound,
    InvalidStatusTransition,
    OrderNotFound,
    OrderProcessingError,
    OrderValidationError,
    PersistenceFailure,
)
from inventory.ledger import ShortfallPolicy
from inventory.pricing import resolve_price
from .allocation import line_subtotal, price_and_allocate
from .models import Customer, Order, OrderItem, Payment
from .tasks import send_order_confirmation

logger = logging.getLogger(__name__)

QUANTITY_PLACES = 3

ALLOWED_TRANSITIONS = {
    Order.Status.PENDING: {Order.Status.CONFIRMED, Order.Status.CANCELLED},
    Order.Status.CONFIRMED: {Order.Status.DELIVERED, Order.Status.CANCELLED},
    Order.Status.DELIVERED: set(),
    Order.Status.CANCELLED: set(),
}


def _column_limit(model, field_name: str) -> Decimal:
    """Smallest magnitude a DecimalField column cannot store."""
    field = model._meta.get_field(field_name)
    return Decimal(10) ** (field.max_digits - field.decimal_places)


def _check_amount(value: Decimal, model, field_name: str, label: str) -> None:
    if abs(value) >= _column_limit(model, field_name):
        raise OrderValidationError(
            f"{label} {value} exceeds what {model.__name__}.{field_name} can store"
        )


def _parse_quantity(idx: int, raw) -> Decimal:
    if isinstance(raw, bool) or raw is None:
        raise OrderValidationError(f"Item {idx}: quantity must be a positive number")
    try:
        quantity = Decimal(str(raw))
    except InvalidOperation:
        raise OrderValidationError(f"Item {idx}: quantity must be a positive number") from None
    if not quantity.is_finite() or quantity <= 0:
        raise OrderValidationError(f"Item {idx}: quantity must be a positive number")
    if quantity.as_tuple().exponent < -QUANTITY_PLACES:
        raise OrderValidationError(
            f"Item {idx}: quantity allows at most {QUANTITY_PLACES} decimal places"
        )
    if quantity >= _column_limit(OrderItem, 'quantity'):
        raise OrderValidationError(f"Item {idx}: quantity {quantity} is too large")
    return quantity


def validate_order_items(items: List[Dict]) -> List[Tuple[int, Decimal]]:
    """
    Validate order items structure.

    Args:
        items: List of dicts with 'product_id' and 'quantity'

    Returns:
        (product_id, quantity) pairs in the order given

    Raises:
        OrderValidationError: If validation fails
    """
    if not items:
        raise OrderValidationError("Order must contain at least one item")

    lines = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise OrderValidationError(f"Item {idx}: expected an object with 'product_id' and 'quantity'")
        if 'product_id' not in item:
            raise OrderValidationError(f"Item {idx}: missing 'product_id'")
        if 'quantity' not in item:
            raise OrderValidationError(f"Item {idx}: missing 'quantity'")

        product_id = item['product_id']
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise OrderValidationError(f"Item {idx}: product_id must be an integer")

        lines.append((product_id, _parse_quantity(idx, item['quantity'])))
    return lines


def _get_customer(customer_id: int) -> Customer:
    try:
        return Customer.objects.get(pk=customer_id)
    except Customer.DoesNotExist:
        raise CustomerNotFound(customer_id) from None


@contextmanager
def _persistence_guard(action: str):
    """Translate database errors into PersistenceFailure."""
    try:
        yield
    except DatabaseError as e:
        logger.exception(f"Database error while trying to {action}: {e}")
        raise PersistenceFailure(f"Could not {action}: {e}") from e


def _queue_confirmation(order_id: int) -> None:
    try:
        send_order_confirmation.delay(order_id)
        logger.info(f"Triggered confirmation task for order #{order_id}")
    except Exception as e:
        # The order is committed; a lost notification must not surface as a failure.
        logger.error(f"Failed to queue confirmation task for order #{order_id}: {e}")


def process_order(customer_id: int, order_date: date, payment_mode: str,
                  items: List[Dict],
                  shortfall_policy: Optional[ShortfallPolicy] = None) -> Order:
    """
    Place a paid multi-item order in a single atomic transaction.

    Lines are priced and allocated strictly in the order given, so a later
    line for the same product sees the debits of an earlier one. Lot
    expiry is judged against ``order_date``.

    Args:
        customer_id: Ordering customer
        order_date: Date of the order and of stock allocation
        payment_mode: One of Payment.Mode
        items: List of dicts with 'product_id' and 'quantity'
        shortfall_policy: Overrides the configured shortfall policy

    Returns:
        The CONFIRMED order, with items and payment persisted

    Raises:
        OrderProcessingError: Any failure; nothing is persisted
    """
    lines = validate_order_items(items)
    if payment_mode not in Payment.Mode.values:
        raise OrderValidationError(f"Unsupported payment mode: {payment_mode!r}")
    if not isinstance(order_date, date):
        raise OrderValidationError("order_date must be a date")

    try:
        with _persistence_guard('place order'), transaction.atomic():
            customer = _get_customer(customer_id)

            priced = []
            total_amount = Decimal('0.00')
            for product_id, quantity in lines:
                line = price_and_allocate(product_id, quantity, order_date, shortfall_policy)
                _check_amount(line.subtotal, OrderItem, 'subtotal', f"Subtotal for product {product_id}")
                total_amount += line.subtotal
                _check_amount(total_amount, Order, 'total_amount', "Order total")
                priced.append(line)

            order = Order.objects.create(
                customer=customer,
                order_date=order_date,
                status=Order.Status.CONFIRMED,
                total_amount=total_amount
            )
            OrderItem.objects.bulk_create([
                OrderItem(
                    order=order,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    subtotal=line.subtotal
                )
                for line in priced
            ])
            Payment.objects.create(
                order=order,
                mode=payment_mode,
                status=Payment.Status.COMPLETED,
                amount=total_amount
            )
            transaction.on_commit(partial(_queue_confirmation, order.id))
    except OrderProcessingError as e:
        logger.warning(f"Order for customer {customer_id} failed ({e.kind}): {e.message}")
        raise

    lot_count = sum(len(line.lot_debits) for line in priced)
    logger.info(
        f"Order #{order.id} confirmed: {len(priced)} items from {lot_count} lots, "
        f"total ${total_amount}, paid by {payment_mode}"
    )
    return order


def create_pending_order(customer_id: int, items: List[Dict],
                         order_date: Optional[date] = None) -> Order:
    """
    Create an unpaid PENDING order from a cart.

    Lines are priced from the live catalog but no stock is allocated and
    no payment is recorded; see record_payment.
    """
    lines = validate_order_items(items)
    order_date = order_date or timezone.localdate()

    with _persistence_guard('create order'), transaction.atomic():
        customer = _get_customer(customer_id)
        order_items = []
        total_amount = Decimal('0.00')
        for product_id, quantity in lines:
            unit_price = resolve_price(product_id)
            subtotal = line_subtotal(unit_price, quantity)
            _check_amount(subtotal, OrderItem, 'subtotal', f"Subtotal for product {product_id}")
            _check_amount(total_amount + subtotal, Order, 'total_amount', "Order total")
            order_items.append(OrderItem(
                product_id=product_id,
                quantity=quantity,
                unit_price=unit_price,
                subtotal=subtotal
            ))
            total_amount += subtotal

        order = Order.objects.create(
            customer=customer,
            order_date=order_date,
            status=Order.Status.PENDING,
            total_amount=total_amount
        )
        for order_item in order_items:
            order_item.order = order
        OrderItem.objects.bulk_create(order_items)

    logger.info(f"Created pending order #{order.id} for customer {customer.id}, total ${total_amount}")
    return order


def _lock_order(order_id: int) -> Order:
    try:
        return Order.objects.select_for_update().get(pk=order_id)
    except Order.DoesNotExist:
        raise OrderNotFound(order_id) from None


def record_payment(order_id: int, mode: str, amount) -> Payment:
    """
    Capture payment for a PENDING order and confirm it.

    The amount must match the order total exactly.
    """
    if mode not in Payment.Mode.values:
        raise OrderValidationError(f"Unsupported payment mode: {mode!r}")
    try:
        amount = Decimal(str(amount))
    except InvalidOperation:
        raise OrderValidationError("Payment amount must be a number") from None

    with _persistence_guard('record payment'), transaction.atomic():
        order = _lock_order(order_id)
        if order.status != Order.Status.PENDING:
            raise InvalidStatusTransition(order.id, order.status, Order.Status.CONFIRMED)
        if Payment.objects.filter(order=order).exists():
            raise OrderValidationError(f"Order {order.id} already has a payment")
        if amount != order.total_amount:
            raise OrderValidationError(
                f"Payment amount {amount} does not match order total {order.total_amount}"
            )

        payment = Payment.objects.create(
            order=order,
            mode=mode,
            status=Payment.Status.COMPLETED,
            amount=amount
        )
        order.status = Order.Status.CONFIRMED
        order.save(update_fields=['status', 'updated_at'])
        transaction.on_commit(partial(_queue_confirmation, order.id))

    logger.info(f"Payment recorded for order #{order.id}: {amount} by {mode}")
    return payment


def update_order_status(order_id: int, new_status: str) -> Order:
    """
    Administrative status change following the order state machine.

    Raises:
        OrderNotFound, OrderValidationError, InvalidStatusTransition
    """
    if new_status not in Order.Status.values:
        raise OrderValidationError(f"Unknown order status: {new_status!r}")

    with _persistence_guard('update order status'), transaction.atomic():
        order = _lock_order(order_id)
        if new_status not in ALLOWED_TRANSITIONS[order.status]:
            raise InvalidStatusTransition(order.id, order.status, new_status)
        previous = order.status
        order.status = new_status
        order.save(update_fields=['status', 'updated_at'])

    logger.info(f"Order #{order.id} moved from {previous} to {new_status}")
    return order


def get_order_summary(order_id: int) -> Dict:
    """
    Get detailed order summary with optimized queries.

    Uses select_related and prefetch_related to minimize database hits.
    """
    try:
        order = Order.objects.select_related('customer').prefetch_related(
            'items__product__grower'
        ).get(pk=order_id)
    except Order.DoesNotExist:
        raise OrderNotFound(order_id) from None

    payment = Payment.objects.filter(order=order).first()

    return {
        'id': order.id,
        'customer': {
            'id': order.customer.id,
            'name': order.customer.name,
            'email': order.customer.email
        },
        'order_date': order.order_date.isoformat(),
        'status': order.status,
        'total_amount': str(order.total_amount),
        'item_count': len(order.items.all()),
        'items': [
            {
                'product_id': item.product.id,
                'product_name': item.product.name,
                'grower': item.product.grower.name,
                'quantity': str(item.quantity),
                'unit_price': str(item.unit_price),
                'subtotal': str(item.subtotal)
            }
            for item in order.items.all()
        ],
        'payment': {
            'mode': payment.mode,
            'status': payment.status,
            'amount': str(payment.amount),
            'paid_at': payment.paid_at.isoformat()
        } if payment else None,
        'created_at': order.created_at.isoformat(),
        'updated_at': order.updated_at.isoformat()
    }
