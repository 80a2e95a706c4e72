"""
Order Models - Customers, orders, order lines and payments.

Order Status Flow:
    PENDING -> CONFIRMED (payment captured or atomic checkout)
    CONFIRMED -> DELIVERED
    PENDING / CONFIRMED -> CANCELLED
"""
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models

from inventory.models import Product


class Customer(models.Model):
    """Customer placing orders on the marketplace."""
    name = models.CharField(max_length=200, db_index=True)
    email = models.EmailField(unique=True)
    contact_no = models.CharField(max_length=20, blank=True, default='')
    address = models.CharField(max_length=300, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'Customer'
        verbose_name_plural = 'Customers'
        ordering = ['name']

    def __str__(self):
        return f"{self.name} <{self.email}>"


class Order(models.Model):
    """
    Order header for one customer checkout.

    Status:
        - PENDING: Created without payment, no stock moved
        - CONFIRMED: Paid; stock allocated when placed through checkout
        - DELIVERED: Handed over to the customer
        - CANCELLED: Withdrawn by an administrator or timed out
    """

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        CONFIRMED = 'confirmed', 'Confirmed'
        DELIVERED = 'delivered', 'Delivered'
        CANCELLED = 'cancelled', 'Cancelled'

    # Statuses that count towards realized revenue.
    REALIZED_STATUSES = (Status.CONFIRMED, Status.DELIVERED)

    customer = models.ForeignKey(
        Customer,
        on_delete=models.CASCADE,
        related_name='orders',
        help_text="Customer who placed the order"
    )
    order_date = models.DateField(db_index=True)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
        help_text="Current order status"
    )
    total_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="Sum of line subtotals"
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Order'
        verbose_name_plural = 'Orders'
        ordering = ['-order_date', '-id']
        indexes = [
            models.Index(fields=['customer', 'status'], name='order_customer_status_idx'),
            models.Index(fields=['status', 'order_date'], name='order_status_date_idx'),
        ]

    def __str__(self):
        return f"Order #{self.id} - {self.customer.name} ({self.status})"

    @property
    def is_confirmed(self) -> bool:
        return self.status == self.Status.CONFIRMED

    @property
    def is_realized(self) -> bool:
        return self.status in self.REALIZED_STATUSES

    @property
    def item_count(self) -> int:
        return self.items.count()


class OrderItem(models.Model):
    """
    One line of an order.

    Unit price and subtotal are frozen at the time the line is priced.
    """
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='items',
        help_text="Parent order"
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name='order_items',
        help_text="Ordered product"
    )
    quantity = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        validators=[MinValueValidator(Decimal('0.001'))],
        help_text="Quantity ordered"
    )
    unit_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Price per unit at time of order"
    )
    subtotal = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="quantity x unit_price, rounded to cents"
    )

    class Meta:
        verbose_name = 'Order Item'
        verbose_name_plural = 'Order Items'
        ordering = ['id']

    def __str__(self):
        return f"{self.quantity}x {self.product.name} @ ${self.unit_price}"


class Payment(models.Model):
    """Payment captured for an order."""

    class Mode(models.TextChoices):
        CASH = 'cash', 'Cash'
        CARD = 'card', 'Card'
        UPI = 'upi', 'UPI'
        BANK_TRANSFER = 'bank_transfer', 'Bank Transfer'

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        COMPLETED = 'completed', 'Completed'
        FAILED = 'failed', 'Failed'
        REFUNDED = 'refunded', 'Refunded'

    order = models.OneToOneField(
        Order,
        on_delete=models.CASCADE,
        related_name='payment'
    )
    mode = models.CharField(max_length=20, choices=Mode.choices)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    paid_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'Payment'
        verbose_name_plural = 'Payments'
        ordering = ['-paid_at']

    def __str__(self):
        return f"Payment for order #{self.order_id}: {self.amount} ({self.mode}, {self.status})"
