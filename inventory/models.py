"""
Inventory Models - Catalog and stock entities for the marketplace.

Models:
    - Grower: Producer who owns products
    - Product: Catalog item with the current unit price
    - HarvestBatch: Dated, expiring lot of stock for one product
"""
from datetime import date
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone


class Grower(models.Model):
    """
    Grower entity; owns the products sold on the marketplace.
    """
    name = models.CharField(max_length=200, db_index=True)
    email = models.EmailField(unique=True)
    contact_no = models.CharField(max_length=20, blank=True, default='')
    address = models.CharField(max_length=300, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'Grower'
        verbose_name_plural = 'Growers'
        ordering = ['name']

    def __str__(self):
        return self.name


class Product(models.Model):
    """
    Product entity. The price is read fresh whenever an order is priced.
    """
    name = models.CharField(
        max_length=200,
        db_index=True,
        help_text="Product name for display and search"
    )
    category = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Free-form category, e.g. Vegetables"
    )
    price_per_unit = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text="Current catalog price (must be positive)"
    )
    grower = models.ForeignKey(
        Grower,
        on_delete=models.CASCADE,
        related_name='products',
        help_text="Owning grower"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Product'
        verbose_name_plural = 'Products'
        ordering = ['name']
        indexes = [
            models.Index(fields=['grower', 'category'], name='product_grower_category_idx'),
        ]

    def __str__(self):
        return f"{self.name} (${self.price_per_unit})"


class HarvestBatch(models.Model):
    """
    A lot of harvested stock for one product.

    Lots are consumed oldest harvest first. A lot whose expiry date is on or
    before the allocation date is never consumed.
    """
    product = models.ForeignKey(
        Product,
        on_delete=models.CASCADE,
        related_name='batches',
        help_text="Product this lot belongs to"
    )
    batch_no = models.CharField(
        max_length=50,
        help_text="Lot identifier, unique per product"
    )
    harvest_date = models.DateField()
    expiry_date = models.DateField()
    quantity_available = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        validators=[MinValueValidator(Decimal('0'))],
        help_text="Remaining quantity in this lot"
    )
    is_synthesized = models.BooleanField(
        default=False,
        help_text="Created automatically to cover an order shortfall"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'Harvest Batch'
        verbose_name_plural = 'Harvest Batches'
        ordering = ['product', 'harvest_date', 'batch_no']
        constraints = [
            models.UniqueConstraint(
                fields=['product', 'batch_no'],
                name='unique_product_batch_no'
            ),
            models.CheckConstraint(
                condition=models.Q(quantity_available__gte=0),
                name='batch_quantity_non_negative'
            ),
        ]
        indexes = [
            models.Index(fields=['product', 'expiry_date'], name='batch_product_expiry_idx'),
        ]

    def __str__(self):
        return f"{self.product.name} | {self.batch_no}: {self.quantity_available}"

    def is_expired(self, as_of: date = None) -> bool:
        as_of = as_of or timezone.localdate()
        return self.expiry_date <= as_of
