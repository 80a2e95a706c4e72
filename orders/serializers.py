"""
Serializers for order models and order requests.
"""
from decimal import Decimal

from django.utils import timezone
from rest_framework import serializers

from inventory.serializers import ProductMinimalSerializer
from .models import Customer, Order, OrderItem, Payment


class CustomerSerializer(serializers.ModelSerializer):
    """Serializer for Customer model."""
    class Meta:
        model = Customer
        fields = ['id', 'name', 'email', 'contact_no', 'address', 'created_at']
        read_only_fields = ['id', 'created_at']


class CustomerMinimalSerializer(serializers.ModelSerializer):
    class Meta:
        model = Customer
        fields = ['id', 'name', 'email']


class OrderItemSerializer(serializers.ModelSerializer):
    """Serializer for OrderItem with product details."""
    product = ProductMinimalSerializer(read_only=True)

    class Meta:
        model = OrderItem
        fields = ['id', 'product', 'quantity', 'unit_price', 'subtotal']


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = ['id', 'order', 'mode', 'status', 'amount', 'paid_at']
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    """
    Serializer for Order model with nested items and payment.
    Expects items, products and payment to be prefetched.
    """
    customer = CustomerMinimalSerializer(read_only=True)
    items = OrderItemSerializer(many=True, read_only=True)
    payment = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'customer', 'order_date', 'status', 'total_amount',
            'items', 'payment', 'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_payment(self, obj):
        payment = getattr(obj, 'payment', None)
        return PaymentSerializer(payment).data if payment else None


class OrderListSerializer(serializers.ModelSerializer):
    """
    Optimized serializer for listing orders.
    Uses select_related for customer data.
    """
    customer_name = serializers.CharField(source='customer.name', read_only=True)
    item_count = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'customer_name', 'order_date', 'status',
            'total_amount', 'item_count', 'created_at'
        ]

    def get_item_count(self, obj):
        # Use prefetched items count if available
        if hasattr(obj, '_prefetched_objects_cache') and 'items' in obj._prefetched_objects_cache:
            return len(obj.items.all())
        return obj.items.count()


class OrderItemCreateSerializer(serializers.Serializer):
    """One requested line: product and a positive quantity."""
    product_id = serializers.IntegerField(min_value=1)
    quantity = serializers.DecimalField(
        max_digits=12,
        decimal_places=3,
        min_value=Decimal('0.001')
    )


class OrderCreateSerializer(serializers.Serializer):
    """
    Request body for POST /orders/ (unpaid pending order).

    {
        "customer_id": 1,
        "items": [
            {"product_id": 1, "quantity": "2.5"},
            {"product_id": 3, "quantity": 1}
        ]
    }
    """
    customer_id = serializers.IntegerField(min_value=1)
    items = OrderItemCreateSerializer(many=True, allow_empty=False)


class OrderProcessSerializer(OrderCreateSerializer):
    """
    Request body for POST /orders/process/ (atomic paid checkout).

    Same as OrderCreateSerializer plus "payment_mode" and an optional
    "order_date" (defaults to today). Items are processed in the order given.
    """
    order_date = serializers.DateField(required=False)
    payment_mode = serializers.ChoiceField(choices=Payment.Mode.choices)

    def validate(self, attrs):
        attrs.setdefault('order_date', timezone.localdate())
        return attrs


class OrderStatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.Status.choices)


class PaymentCreateSerializer(serializers.Serializer):
    mode = serializers.ChoiceField(choices=Payment.Mode.choices)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))


class GrowerRevenueQuerySerializer(serializers.Serializer):
    start_date = serializers.DateField()
    end_date = serializers.DateField()

    def validate(self, attrs):
        if attrs['end_date'] < attrs['start_date']:
            raise serializers.ValidationError("end_date must not be before start_date.")
        return attrs
