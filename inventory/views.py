"""
Inventory API Views with optimized queries.

Implements:
- Grower list/create
- Product list/create/detail with current stock
- Per-product stock lookup
- Harvest batch list/create
"""
from decimal import Decimal

from django.db.models import Q, Sum
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework import generics
from rest_framework.response import Response
from rest_framework.views import APIView

from .ledger import available_quantity
from .models import Grower, Product, HarvestBatch
from .serializers import (
    GrowerSerializer,
    ProductSerializer,
    HarvestBatchSerializer,
)


# =============================================================================
# Grower Views
# =============================================================================

class GrowerListCreateView(generics.ListCreateAPIView):
    """
    GET: List all growers
    POST: Register a new grower
    """
    queryset = Grower.objects.all()
    serializer_class = GrowerSerializer


# =============================================================================
# Product Views
# =============================================================================

def products_with_stock():
    """Products annotated with the stock held in unexpired lots."""
    today = timezone.localdate()
    return Product.objects.select_related('grower').annotate(
        total_quantity=Sum(
            'batches__quantity_available',
            filter=Q(batches__expiry_date__gt=today),
            default=Decimal('0')
        )
    )


class ProductListCreateView(generics.ListCreateAPIView):
    """
    GET: List products with grower and available quantity
    POST: Create a new product

    Query Parameters (GET):
        - grower_id: Filter by owning grower
        - category: Filter by category (case-insensitive)
        - in_stock: Only products with stock left (true/false)
    """
    serializer_class = ProductSerializer

    def get_queryset(self):
        queryset = products_with_stock()

        grower_id = self.request.query_params.get('grower_id')
        if grower_id:
            queryset = queryset.filter(grower_id=grower_id)

        category = self.request.query_params.get('category', '').strip()
        if category:
            queryset = queryset.filter(category__iexact=category)

        if self.request.query_params.get('in_stock', '').lower() == 'true':
            queryset = queryset.filter(total_quantity__gt=0)

        return queryset.order_by('name')


class ProductDetailView(generics.RetrieveAPIView):
    """GET: Retrieve a product with its available quantity."""
    serializer_class = ProductSerializer

    def get_queryset(self):
        return products_with_stock()


class ProductStockView(APIView):
    """
    GET: Available quantity of one product over unexpired lots.

    Advisory only; checkout never rejects an order on this number.
    """

    def get(self, request, pk):
        product = get_object_or_404(Product, pk=pk)
        quantity = available_quantity(product.id)
        return Response({
            'product_id': product.id,
            'available_quantity': str(quantity),
            'in_stock': quantity > 0,
        })


# =============================================================================
# Harvest Batch Views
# =============================================================================

class HarvestBatchListCreateView(generics.ListCreateAPIView):
    """
    GET: List lots, oldest harvest first
    POST: Record a new lot for a product

    Query Parameters (GET):
        - product_id: Filter by product
        - active: Only unexpired lots with stock left (true/false)
    """
    serializer_class = HarvestBatchSerializer

    def get_queryset(self):
        queryset = HarvestBatch.objects.select_related('product')

        product_id = self.request.query_params.get('product_id')
        if product_id:
            queryset = queryset.filter(product_id=product_id)

        if self.request.query_params.get('active', '').lower() == 'true':
            queryset = queryset.filter(
                expiry_date__gt=timezone.localdate(),
                quantity_available__gt=0
            )

        return queryset.order_by('product_id', 'harvest_date', 'batch_no')
