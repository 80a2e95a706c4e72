"""
Celery tasks for order processing.

Tasks:
    - send_order_confirmation: Async notification after an order is confirmed
    - cancel_stale_pending_orders: Periodic cleanup of unpaid orders
    - generate_daily_order_report: Daily order statistics
"""
import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.db.models import Count, Q, Sum
from django.utils import timezone

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def send_order_confirmation(self, order_id: int):
    """
    Async task triggered after an order is confirmed.

    Args:
        order_id: ID of the confirmed order

    Returns:
        Dict with confirmation details
    """
    from orders.models import Order

    try:
        order = Order.objects.select_related('customer', 'payment').prefetch_related(
            'items__product'
        ).get(id=order_id)
    except Order.DoesNotExist:
        logger.error(f"Order #{order_id} not found for confirmation")
        return {'status': 'error', 'message': f'Order {order_id} not found'}

    if order.status != Order.Status.CONFIRMED:
        logger.warning(
            f"Order #{order_id} is not confirmed (status: {order.status}), "
            "skipping confirmation"
        )
        return {
            'status': 'skipped',
            'message': f'Order {order_id} is not confirmed'
        }

    payment = getattr(order, 'payment', None)
    paid_line = f"${payment.amount} ({payment.mode})" if payment else "not recorded"

    items_summary = [
        f"  - {item.quantity}x {item.product.name} @ ${item.unit_price} = ${item.subtotal}"
        for item in order.items.all()
    ]

    confirmation_message = f"""
    ===============================================
    ORDER CONFIRMATION - #{order.id}
    ===============================================
    Customer: {order.customer.name} <{order.customer.email}>
    Order date: {order.order_date.isoformat()}
    Paid: {paid_line}
    Total: ${order.total_amount}

    Items:
    {chr(10).join(items_summary)}
    ===============================================
    """

    logger.info(confirmation_message)

    return {
        'status': 'success',
        'order_id': order.id,
        'message': f'Confirmation sent for order {order_id}'
    }


@shared_task
def cancel_stale_pending_orders():
    """
    Periodic task cancelling orders left unpaid for too long.

    PENDING orders never moved stock, so cancelling them needs no
    inventory correction.
    """
    from orders.models import Order

    threshold = timezone.now() - timedelta(hours=settings.STALE_PENDING_ORDER_HOURS)
    stale_orders = Order.objects.filter(
        status=Order.Status.PENDING,
        created_at__lt=threshold
    )

    count = stale_orders.update(status=Order.Status.CANCELLED, updated_at=timezone.now())
    if count > 0:
        logger.warning(f"Cancelled {count} stale pending orders")

    return {'cancelled': count}


@shared_task
def generate_daily_order_report():
    """
    Generate yesterday's order statistics.

    Scheduled via Celery Beat (see CELERY_BEAT_SCHEDULE).
    """
    from orders.models import Order

    yesterday = timezone.localdate() - timedelta(days=1)
    realized = Q(status__in=Order.REALIZED_STATUSES)

    stats = Order.objects.filter(order_date=yesterday).aggregate(
        total_orders=Count('id'),
        realized_orders=Count('id', filter=realized),
        pending_orders=Count('id', filter=Q(status=Order.Status.PENDING)),
        cancelled_orders=Count('id', filter=Q(status=Order.Status.CANCELLED)),
        total_revenue=Sum('total_amount', filter=realized)
    )
    stats['total_revenue'] = str(stats['total_revenue'] or '0.00')
    stats['date'] = yesterday.isoformat()

    report = f"""
    ===============================================
    DAILY ORDER REPORT - {yesterday}
    ===============================================
    Total Orders: {stats['total_orders']}
    Realized: {stats['realized_orders']}
    Pending: {stats['pending_orders']}
    Cancelled: {stats['cancelled_orders']}
    Total Revenue: ${stats['total_revenue']}
    ===============================================
    """

    logger.info(report)

    return stats
