from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Grower',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(db_index=True, max_length=200)),
                ('email', models.EmailField(max_length=254, unique=True)),
                ('contact_no', models.CharField(blank=True, default='', max_length=20)),
                ('address', models.CharField(blank=True, default='', max_length=300)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'verbose_name': 'Grower',
                'verbose_name_plural': 'Growers',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='Product',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(db_index=True, help_text='Product name for display and search', max_length=200)),
                ('category', models.CharField(db_index=True, help_text='Free-form category, e.g. Vegetables', max_length=100)),
                ('price_per_unit', models.DecimalField(decimal_places=2, help_text='Current catalog price (must be positive)', max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.01'))])),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('grower', models.ForeignKey(help_text='Owning grower', on_delete=django.db.models.deletion.CASCADE, related_name='products', to='inventory.grower')),
            ],
            options={
                'verbose_name': 'Product',
                'verbose_name_plural': 'Products',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='HarvestBatch',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('batch_no', models.CharField(help_text='Lot identifier, unique per product', max_length=50)),
                ('harvest_date', models.DateField()),
                ('expiry_date', models.DateField()),
                ('quantity_available', models.DecimalField(decimal_places=3, help_text='Remaining quantity in this lot', max_digits=12, validators=[django.core.validators.MinValueValidator(Decimal('0'))])),
                ('is_synthesized', models.BooleanField(default=False, help_text='Created automatically to cover an order shortfall')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('product', models.ForeignKey(help_text='Product this lot belongs to', on_delete=django.db.models.deletion.CASCADE, related_name='batches', to='inventory.product')),
            ],
            options={
                'verbose_name': 'Harvest Batch',
                'verbose_name_plural': 'Harvest Batches',
                'ordering': ['product', 'harvest_date', 'batch_no'],
            },
        ),
        migrations.AddIndex(
            model_name='product',
            index=models.Index(fields=['grower', 'category'], name='product_grower_category_idx'),
        ),
        migrations.AddIndex(
            model_name='harvestbatch',
            index=models.Index(fields=['product', 'expiry_date'], name='batch_product_expiry_idx'),
        ),
        migrations.AddConstraint(
            model_name='harvestbatch',
            constraint=models.UniqueConstraint(fields=('product', 'batch_no'), name='unique_product_batch_no'),
        ),
        migrations.AddConstraint(
            model_name='harvestbatch',
            constraint=models.CheckConstraint(condition=models.Q(('quantity_available__gte', 0)), name='batch_quantity_non_negative'),
        ),
    ]
