"""
Read-only grower reporting over committed orders.

Only CONFIRMED and DELIVERED orders count as realized revenue; PENDING and
CANCELLED orders are ignored. Revenue is attributed to a grower through the
ownership of the products on each order line.
"""
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List

from django.db.models import Count, Max, Q, Sum
from django.utils import timezone

from inventory.models import Grower, HarvestBatch, Product
from .models import Order, OrderItem

ZERO = Decimal('0.00')


def realized_lines_for_grower(grower_id: int):
    return OrderItem.objects.filter(
        product__grower_id=grower_id,
        order__status__in=Order.REALIZED_STATUSES
    )


def grower_revenue(grower_id: int, start_date: date, end_date: date) -> Decimal:
    """Sum of line subtotals for a grower's products, order dates inclusive."""
    total = realized_lines_for_grower(grower_id).filter(
        order__order_date__gte=start_date,
        order__order_date__lte=end_date
    ).aggregate(total=Sum('subtotal'))['total']
    return total or ZERO


def grower_performance(grower_id: int, as_of: date = None) -> Dict:
    """
    Headline metrics for one grower.

    Raises:
        Grower.DoesNotExist: If the grower is unknown
    """
    as_of = as_of or timezone.localdate()
    grower = Grower.objects.get(pk=grower_id)

    realized = realized_lines_for_grower(grower_id).aggregate(
        revenue=Sum('subtotal'),
        orders=Count('order', distinct=True)
    )
    revenue = realized['revenue'] or ZERO
    realized_orders = realized['orders']

    all_orders = Order.objects.filter(items__product__grower_id=grower_id).aggregate(
        total=Count('id', distinct=True),
        delivered=Count('id', distinct=True, filter=Q(status=Order.Status.DELIVERED)),
        last_order_date=Max('order_date')
    )

    stock = HarvestBatch.objects.filter(
        product__grower_id=grower_id,
        expiry_date__gt=as_of,
        quantity_available__gt=0
    ).aggregate(quantity=Sum('quantity_available'), batches=Count('id'))

    if all_orders['total']:
        delivery_rate = (Decimal(all_orders['delivered'] * 100) / all_orders['total']).quantize(
            Decimal('0.01'), rounding=ROUND_HALF_UP
        )
    else:
        delivery_rate = ZERO

    if realized_orders:
        average_order_value = (revenue / realized_orders).quantize(
            Decimal('0.01'), rounding=ROUND_HALF_UP
        )
    else:
        average_order_value = ZERO

    return {
        'grower_id': grower.id,
        'grower_name': grower.name,
        'total_products': Product.objects.filter(grower_id=grower_id).count(),
        'total_revenue': revenue,
        'total_orders': realized_orders,
        'average_order_value': average_order_value,
        'available_quantity': stock['quantity'] or Decimal('0'),
        'active_batches': stock['batches'],
        'delivery_success_rate': delivery_rate,
        'last_order_date': all_orders['last_order_date'],
    }


def grower_performance_dashboard(as_of: date = None) -> List[Dict]:
    """Performance of every grower, best revenue first."""
    rows = [
        grower_performance(grower_id, as_of)
        for grower_id in Grower.objects.values_list('id', flat=True)
    ]
    rows.sort(key=lambda row: (row['total_revenue'], row['total_orders']), reverse=True)
    return rows
