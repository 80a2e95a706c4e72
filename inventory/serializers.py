"""
Serializers for inventory models.
Provides data validation and JSON conversion for API endpoints.
"""
from decimal import Decimal

from rest_framework import serializers

from .ledger import available_quantity
from .models import Grower, Product, HarvestBatch


class GrowerSerializer(serializers.ModelSerializer):
    """Serializer for Grower model."""
    product_count = serializers.SerializerMethodField()

    class Meta:
        model = Grower
        fields = ['id', 'name', 'email', 'contact_no', 'address', 'product_count', 'created_at']
        read_only_fields = ['id', 'created_at']

    def get_product_count(self, obj):
        return obj.products.count()


class GrowerMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for nested grower representation."""
    class Meta:
        model = Grower
        fields = ['id', 'name']


class ProductSerializer(serializers.ModelSerializer):
    """
    Serializer for Product with its grower and current stock.

    ``total_quantity`` is advisory display data; checkout does not rely on it.
    """
    grower = GrowerMinimalSerializer(read_only=True)
    grower_id = serializers.PrimaryKeyRelatedField(
        queryset=Grower.objects.all(),
        source='grower',
        write_only=True
    )
    total_quantity = serializers.SerializerMethodField()

    class Meta:
        model = Product
        fields = [
            'id', 'name', 'category', 'price_per_unit',
            'grower', 'grower_id', 'total_quantity',
            'created_at', 'updated_at'
        ]
        read_only_fields = ['id', 'created_at', 'updated_at']

    def get_total_quantity(self, obj):
        # Use the queryset annotation when the view provided one
        total = getattr(obj, 'total_quantity', None)
        if total is None:
            total = available_quantity(obj.id)
        return str(total)


class ProductMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for nested representations."""
    class Meta:
        model = Product
        fields = ['id', 'name', 'price_per_unit']


class HarvestBatchSerializer(serializers.ModelSerializer):
    """Serializer for lots recorded by growers."""
    product = ProductMinimalSerializer(read_only=True)
    product_id = serializers.PrimaryKeyRelatedField(
        queryset=Product.objects.all(),
        source='product',
        write_only=True
    )
    quantity_available = serializers.DecimalField(
        max_digits=12,
        decimal_places=3,
        min_value=Decimal('0')
    )

    class Meta:
        model = HarvestBatch
        fields = [
            'id', 'product', 'product_id', 'batch_no',
            'harvest_date', 'expiry_date', 'quantity_available',
            'is_synthesized', 'created_at'
        ]
        read_only_fields = ['id', 'is_synthesized', 'created_at']
        # Uniqueness of (product, batch_no) is checked in validate()
        validators = []

    def validate(self, attrs):
        if attrs['expiry_date'] <= attrs['harvest_date']:
            raise serializers.ValidationError("expiry_date must be after harvest_date.")
        if HarvestBatch.objects.filter(product=attrs['product'], batch_no=attrs['batch_no']).exists():
            raise serializers.ValidationError(
                "A batch with this batch_no already exists for the product."
            )
        return attrs
