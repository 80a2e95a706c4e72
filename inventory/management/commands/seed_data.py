"""
Management command to seed the database with sample marketplace data.

Generates:
- Growers with a catalog of produce
- Harvest batches per product (some already expired)
- Customers

Usage:
    python manage.py seed_data
    python manage.py seed_data --clear  # Clear existing data first
"""
import random
from datetime import timedelta
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from inventory.models import Grower, Product, HarvestBatch
from orders.models import Customer

PRODUCE = {
    'Vegetables': ['Tomato', 'Potato', 'Onion', 'Carrot', 'Cabbage', 'Spinach', 'Okra', 'Brinjal'],
    'Fruits': ['Mango', 'Banana', 'Papaya', 'Guava', 'Pomegranate', 'Grapes'],
    'Grains': ['Basmati Rice', 'Wheat', 'Millet', 'Sorghum', 'Maize'],
    'Pulses': ['Chickpea', 'Red Lentil', 'Green Gram', 'Pigeon Pea'],
    'Spices': ['Turmeric', 'Chilli', 'Coriander Seed', 'Cumin'],
}

VARIETIES = ['Organic', 'Heirloom', 'Hill', 'Farm Fresh', 'Hybrid', 'Native']

TOWNS = [
    'Nashik', 'Pune', 'Nagpur', 'Kolhapur', 'Satara', 'Solapur',
    'Aurangabad', 'Ahmednagar', 'Sangli', 'Jalgaon', 'Latur', 'Akola'
]

FIRST_NAMES = ['Asha', 'Ravi', 'Meera', 'Sunil', 'Kavita', 'Arjun', 'Neha', 'Vikram', 'Pooja', 'Rahul']
LAST_NAMES = ['Patil', 'Deshmukh', 'Kulkarni', 'Jadhav', 'Shinde', 'Pawar', 'Joshi', 'More']


class Command(BaseCommand):
    help = 'Seed the database with sample growers, products, harvest batches and customers'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before seeding',
        )
        parser.add_argument(
            '--growers',
            type=int,
            default=10,
            help='Number of growers to create (default: 10)',
        )
        parser.add_argument(
            '--products',
            type=int,
            default=100,
            help='Number of products to create (default: 100)',
        )
        parser.add_argument(
            '--customers',
            type=int,
            default=25,
            help='Number of customers to create (default: 25)',
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            self._clear_data()

        self.stdout.write('Starting database seeding...')

        with transaction.atomic():
            growers = self._create_growers(options['growers'])
            products = self._create_products(options['products'], growers)
            self._create_batches(products)
            self._create_customers(options['customers'])

        self.stdout.write(self.style.SUCCESS('Database seeding completed successfully!'))

    def _clear_data(self):
        """Clear all existing data."""
        from orders.models import Order

        Order.objects.all().delete()
        Customer.objects.all().delete()
        HarvestBatch.objects.all().delete()
        Product.objects.all().delete()
        Grower.objects.all().delete()

        self.stdout.write(self.style.WARNING('All existing data cleared.'))

    def _person(self, i):
        return f"{FIRST_NAMES[i % len(FIRST_NAMES)]} {LAST_NAMES[(i // len(FIRST_NAMES)) % len(LAST_NAMES)]}"

    def _create_growers(self, count):
        growers = [
            Grower(
                name=self._person(i),
                email=f"grower{i + 1}@example.com",
                contact_no=f"98{random.randint(10000000, 99999999)}",
                address=f"{random.randint(1, 300)} Farm Road, {random.choice(TOWNS)}"
            )
            for i in range(count)
        ]
        Grower.objects.bulk_create(growers, ignore_conflicts=True)

        growers = list(Grower.objects.all())
        self.stdout.write(self.style.SUCCESS(f'Created {len(growers)} growers'))
        return growers

    def _create_products(self, count, growers):
        """Create produce listings spread across growers."""
        products = []
        for i in range(count):
            category = random.choice(list(PRODUCE))
            products.append(Product(
                name=f"{random.choice(VARIETIES)} {random.choice(PRODUCE[category])}",
                category=category,
                # Random price between 20 and 400 per unit
                price_per_unit=Decimal(str(round(random.uniform(20, 400), 2))),
                grower=random.choice(growers)
            ))

        Product.objects.bulk_create(products)

        products = list(Product.objects.all())
        self.stdout.write(self.style.SUCCESS(f'Created {len(products)} products'))
        return products

    def _create_batches(self, products):
        """Create 1-4 lots per product, about one in five already expired."""
        today = timezone.localdate()
        batches = []

        for product in products:
            for n in range(random.randint(1, 4)):
                harvest_date = today - timedelta(days=random.randint(1, 60))
                if random.random() < 0.2:
                    expiry_date = today - timedelta(days=random.randint(0, 5))
                else:
                    expiry_date = today + timedelta(days=random.randint(1, 45))
                if expiry_date <= harvest_date:
                    harvest_date = expiry_date - timedelta(days=7)

                batches.append(HarvestBatch(
                    product=product,
                    batch_no=f"B{product.id:05d}-{n + 1:02d}",
                    harvest_date=harvest_date,
                    expiry_date=expiry_date,
                    quantity_available=Decimal(random.randint(0, 500))
                ))

        HarvestBatch.objects.bulk_create(batches, batch_size=5000, ignore_conflicts=True)
        self.stdout.write(self.style.SUCCESS(f'Created {HarvestBatch.objects.count()} harvest batches'))

    def _create_customers(self, count):
        customers = [
            Customer(
                name=self._person(i + 3),
                email=f"customer{i + 1}@example.com",
                contact_no=f"97{random.randint(10000000, 99999999)}",
                address=f"{random.randint(1, 999)} Market Street, {random.choice(TOWNS)}"
            )
            for i in range(count)
        ]
        Customer.objects.bulk_create(customers, ignore_conflicts=True)
        self.stdout.write(self.style.SUCCESS(f'Created {Customer.objects.count()} customers'))
