"""
Tests for inventory allocation, pricing and stock endpoints.

Test Cases:
1. FIFO consumption across lots, ties broken by batch number
2. Expired lots never consumed
3. First-sale and shortfall lot synthesis
4. Reject policy and the residual-demand defect guard
5. Live price lookups
6. Product, stock and batch API endpoints
"""
from datetime import date, timedelta
from decimal import Decimal
from io import StringIO

from django.apps import apps
from django.core.exceptions import ImproperlyConfigured
from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from core.exceptions import AllocationInconsistency, InsufficientStock, ProductNotFound
from inventory import ledger
from inventory.models import Grower, Product, HarvestBatch
from inventory.pricing import resolve_price
from orders.models import Customer

AS_OF = date(2026, 1, 10)


def make_batch(product, batch_no, harvest_date, quantity, expiry_date=None):
    return HarvestBatch.objects.create(
        product=product,
        batch_no=batch_no,
        harvest_date=harvest_date,
        expiry_date=expiry_date or harvest_date + timedelta(days=60),
        quantity_available=Decimal(quantity)
    )


class LedgerAllocationTestCase(TestCase):
    """Test cases for FIFO allocation and shortfall handling."""

    def setUp(self):
        self.grower = Grower.objects.create(name='Asha Patil', email='asha@example.com')
        self.product = Product.objects.create(
            name='Heirloom Tomato',
            category='Vegetables',
            price_per_unit=Decimal('10.00'),
            grower=self.grower
        )

    def test_fifo_consumes_oldest_harvest_first(self):
        """
        Given: Lot A (day 1, 5 units) and lot B (day 2, 10 units)
        When: Allocating 7 units
        Then: A is emptied and B drops to 8
        """
        lot_a = make_batch(self.product, 'A', AS_OF - timedelta(days=9), '5')
        lot_b = make_batch(self.product, 'B', AS_OF - timedelta(days=8), '10')

        debits = ledger.allocate(self.product.id, Decimal('7'), AS_OF)

        lot_a.refresh_from_db()
        lot_b.refresh_from_db()
        self.assertEqual(lot_a.quantity_available, Decimal('0'))
        self.assertEqual(lot_b.quantity_available, Decimal('8'))
        self.assertEqual(
            [(d.batch_no, d.quantity) for d in debits],
            [('A', Decimal('5')), ('B', Decimal('2'))]
        )
        self.assertFalse(HarvestBatch.objects.filter(is_synthesized=True).exists())

    def test_fifo_order_ignores_creation_order(self):
        newer = make_batch(self.product, 'NEW', AS_OF - timedelta(days=1), '10')
        older = make_batch(self.product, 'OLD', AS_OF - timedelta(days=20), '10')

        ledger.allocate(self.product.id, Decimal('4'), AS_OF)

        older.refresh_from_db()
        newer.refresh_from_db()
        self.assertEqual(older.quantity_available, Decimal('6'))
        self.assertEqual(newer.quantity_available, Decimal('10'))

    def test_same_harvest_date_broken_by_batch_no(self):
        harvest = AS_OF - timedelta(days=3)
        lot_b = make_batch(self.product, 'LOT-B', harvest, '5')
        lot_a = make_batch(self.product, 'LOT-A', harvest, '5')

        debits = ledger.allocate(self.product.id, Decimal('1'), AS_OF)

        self.assertEqual(debits[0].batch_no, 'LOT-A')
        lot_a.refresh_from_db()
        lot_b.refresh_from_db()
        self.assertEqual(lot_a.quantity_available, Decimal('4'))
        self.assertEqual(lot_b.quantity_available, Decimal('5'))

    def test_expired_lot_is_never_used(self):
        """
        Given: Only a lot expiring on the allocation date, with stock left
        When: Allocating 5 units
        Then: The expired lot is untouched and a new lot covers the order
        """
        expired = make_batch(
            self.product, 'OLD', AS_OF - timedelta(days=30), '50', expiry_date=AS_OF
        )

        debits = ledger.allocate(self.product.id, Decimal('5'), AS_OF)

        expired.refresh_from_db()
        self.assertEqual(expired.quantity_available, Decimal('50'))
        synthesized = HarvestBatch.objects.get(is_synthesized=True)
        self.assertEqual(synthesized.quantity_available, Decimal('0'))
        self.assertEqual(synthesized.harvest_date, AS_OF)
        self.assertEqual(synthesized.expiry_date, AS_OF + timedelta(days=30))
        self.assertEqual(len(debits), 1)
        self.assertTrue(debits[0].synthesized)
        self.assertEqual(debits[0].quantity, Decimal('5'))

    def test_first_sale_creates_exactly_one_lot(self):
        """
        Given: A product with no lots at all
        When: Allocating 20 units
        Then: One synthesized lot is created and fully consumed
        """
        debits = ledger.allocate(self.product.id, Decimal('20'), AS_OF)

        batches = HarvestBatch.objects.filter(product=self.product)
        self.assertEqual(batches.count(), 1)
        batch = batches.get()
        self.assertTrue(batch.is_synthesized)
        self.assertEqual(batch.quantity_available, Decimal('0'))
        self.assertTrue(batch.batch_no.startswith('AUTO-20260110-'))
        self.assertEqual(sum(d.quantity for d in debits), Decimal('20'))

    def test_shortfall_synthesizes_missing_quantity(self):
        """
        Given: One eligible lot with 3 units
        When: Allocating 10 units
        Then: The lot is emptied and a synthesized lot supplies the other 7
        """
        lot = make_batch(self.product, 'L1', AS_OF - timedelta(days=2), '3')

        debits = ledger.allocate(self.product.id, Decimal('10'), AS_OF)

        lot.refresh_from_db()
        self.assertEqual(lot.quantity_available, Decimal('0'))
        synthesized = HarvestBatch.objects.get(is_synthesized=True)
        self.assertEqual(synthesized.quantity_available, Decimal('0'))
        self.assertEqual(
            [(d.batch_no, d.quantity, d.synthesized) for d in debits],
            [('L1', Decimal('3'), False), (synthesized.batch_no, Decimal('7'), True)]
        )
        self.assertEqual(sum(d.quantity for d in debits), Decimal('10'))

    def test_exact_stock_creates_no_lot(self):
        lot = make_batch(self.product, 'L1', AS_OF - timedelta(days=2), '10')

        ledger.allocate(self.product.id, Decimal('10'), AS_OF)

        lot.refresh_from_db()
        self.assertEqual(lot.quantity_available, Decimal('0'))
        self.assertEqual(HarvestBatch.objects.count(), 1)

    def test_fractional_quantities(self):
        lot = make_batch(self.product, 'L1', AS_OF - timedelta(days=2), '2.5')

        ledger.allocate(self.product.id, Decimal('1.25'), AS_OF)

        lot.refresh_from_db()
        self.assertEqual(lot.quantity_available, Decimal('1.25'))

    def test_reject_policy_raises_insufficient_stock(self):
        lot = make_batch(self.product, 'L1', AS_OF - timedelta(days=2), '3')

        with self.assertRaises(InsufficientStock) as context:
            ledger.allocate(self.product.id, Decimal('10'), AS_OF, ledger.reject_shortfall)

        self.assertEqual(context.exception.requested, Decimal('10'))
        self.assertEqual(context.exception.available, Decimal('3'))
        lot.refresh_from_db()
        self.assertEqual(lot.quantity_available, Decimal('3'))
        self.assertEqual(HarvestBatch.objects.count(), 1)

    def test_reject_policy_refuses_first_sale(self):
        with self.assertRaises(InsufficientStock):
            ledger.allocate(self.product.id, Decimal('1'), AS_OF, ledger.reject_shortfall)
        self.assertFalse(HarvestBatch.objects.exists())

    @override_settings(ORDER_SHORTFALL_POLICY='reject')
    def test_configured_policy_is_used_by_default(self):
        with self.assertRaises(InsufficientStock):
            ledger.allocate(self.product.id, Decimal('1'), AS_OF)

    def test_under_provisioning_policy_raises_inconsistency(self):
        """
        A policy that fabricates less than the deficit leaves demand
        unallocated; this must fail loudly rather than under-allocate.
        """
        def short_by_one(product_id, deficit, as_of):
            spec = ledger.synthesize_lot(product_id, deficit, as_of)
            return ledger.NewLotSpec(
                batch_no=spec.batch_no,
                quantity=deficit - 1,
                harvest_date=spec.harvest_date,
                expiry_date=spec.expiry_date
            )

        make_batch(self.product, 'L1', AS_OF - timedelta(days=2), '3')

        with self.assertRaises(AllocationInconsistency) as context:
            ledger.allocate(self.product.id, Decimal('10'), AS_OF, short_by_one)

        self.assertEqual(context.exception.unallocated, Decimal('1'))
        self.assertEqual(context.exception.kind, 'allocation_inconsistency')

    @override_settings(AUTO_LOT_SHELF_LIFE_DAYS=7)
    def test_synthesized_shelf_life_follows_setting(self):
        spec = ledger.synthesize_lot(self.product.id, Decimal('4'), AS_OF)
        self.assertEqual(spec.expiry_date, AS_OF + timedelta(days=7))
        self.assertEqual(spec.quantity, Decimal('4'))

    def test_get_shortfall_policy(self):
        self.assertIs(ledger.get_shortfall_policy(), ledger.synthesize_lot)
        self.assertIs(ledger.get_shortfall_policy('reject'), ledger.reject_shortfall)
        with self.assertRaises(ValueError):
            ledger.get_shortfall_policy('borrow')

    @override_settings(ORDER_SHORTFALL_POLICY='borrow')
    def test_unknown_policy_setting_fails_at_startup(self):
        with self.assertRaises(ImproperlyConfigured) as context:
            apps.get_app_config('inventory').ready()
        self.assertIn('borrow', str(context.exception))

    @override_settings(ORDER_SHORTFALL_POLICY='reject')
    def test_known_policy_setting_passes_startup(self):
        apps.get_app_config('inventory').ready()

    def test_available_quantity_ignores_expired_lots(self):
        make_batch(self.product, 'L1', AS_OF - timedelta(days=2), '3')
        make_batch(self.product, 'L2', AS_OF - timedelta(days=1), '4.5')
        make_batch(self.product, 'OLD', AS_OF - timedelta(days=40), '100', expiry_date=AS_OF)

        self.assertEqual(ledger.available_quantity(self.product.id, AS_OF), Decimal('7.5'))
        self.assertEqual(
            ledger.available_quantity(self.product.id, AS_OF + timedelta(days=365)),
            Decimal('0')
        )


class PricingTestCase(TestCase):

    def setUp(self):
        grower = Grower.objects.create(name='Ravi Jadhav', email='ravi@example.com')
        self.product = Product.objects.create(
            name='Basmati Rice',
            category='Grains',
            price_per_unit=Decimal('85.50'),
            grower=grower
        )

    def test_resolve_price(self):
        self.assertEqual(resolve_price(self.product.id), Decimal('85.50'))

    def test_resolve_price_unknown_product(self):
        with self.assertRaises(ProductNotFound) as context:
            resolve_price(99999)
        self.assertEqual(context.exception.product_id, 99999)
        self.assertIn('not found', context.exception.message)

    def test_resolve_price_reads_latest_price(self):
        resolve_price(self.product.id)
        Product.objects.filter(pk=self.product.id).update(price_per_unit=Decimal('90.00'))
        self.assertEqual(resolve_price(self.product.id), Decimal('90.00'))


class InventoryAPITestCase(APITestCase):
    """Test cases for product, stock and batch endpoints."""

    def setUp(self):
        self.today = timezone.localdate()
        self.grower = Grower.objects.create(name='Meera Kulkarni', email='meera@example.com')
        self.tomato = Product.objects.create(
            name='Tomato', category='Vegetables',
            price_per_unit=Decimal('30.00'), grower=self.grower
        )
        self.mango = Product.objects.create(
            name='Mango', category='Fruits',
            price_per_unit=Decimal('120.00'), grower=self.grower
        )
        make_batch(self.tomato, 'T1', self.today - timedelta(days=3), '12.5',
                   expiry_date=self.today + timedelta(days=5))
        make_batch(self.tomato, 'T0', self.today - timedelta(days=30), '40',
                   expiry_date=self.today)

    def test_product_list_reports_unexpired_stock(self):
        response = self.client.get('/api/products/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        by_name = {row['name']: row for row in response.data['results']}
        self.assertEqual(Decimal(by_name['Tomato']['total_quantity']), Decimal('12.5'))
        self.assertEqual(Decimal(by_name['Mango']['total_quantity']), Decimal('0'))
        self.assertEqual(by_name['Tomato']['grower']['name'], 'Meera Kulkarni')

    def test_product_list_filters(self):
        response = self.client.get('/api/products/', {'in_stock': 'true'})
        self.assertEqual([row['name'] for row in response.data['results']], ['Tomato'])

        response = self.client.get('/api/products/', {'category': 'fruits'})
        self.assertEqual([row['name'] for row in response.data['results']], ['Mango'])

    def test_product_create(self):
        response = self.client.post('/api/products/', {
            'name': 'Turmeric',
            'category': 'Spices',
            'price_per_unit': '210.00',
            'grower_id': self.grower.id
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Decimal(response.data['total_quantity']), Decimal('0'))
        self.assertTrue(Product.objects.filter(name='Turmeric', grower=self.grower).exists())

    def test_product_stock(self):
        response = self.client.get(f'/api/products/{self.tomato.id}/stock/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(Decimal(response.data['available_quantity']), Decimal('12.5'))
        self.assertTrue(response.data['in_stock'])

        response = self.client.get('/api/products/99999/stock/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_batch_create(self):
        response = self.client.post('/api/harvest-batches/', {
            'product_id': self.mango.id,
            'batch_no': 'M1',
            'harvest_date': self.today.isoformat(),
            'expiry_date': (self.today + timedelta(days=10)).isoformat(),
            'quantity_available': '25.000'
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertFalse(response.data['is_synthesized'])
        batch = HarvestBatch.objects.get(product=self.mango, batch_no='M1')
        self.assertEqual(batch.quantity_available, Decimal('25'))

    def test_batch_create_rejects_duplicate_batch_no(self):
        response = self.client.post('/api/harvest-batches/', {
            'product_id': self.tomato.id,
            'batch_no': 'T1',
            'harvest_date': self.today.isoformat(),
            'expiry_date': (self.today + timedelta(days=10)).isoformat(),
            'quantity_available': '5'
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_batch_create_rejects_expiry_before_harvest(self):
        response = self.client.post('/api/harvest-batches/', {
            'product_id': self.mango.id,
            'batch_no': 'M2',
            'harvest_date': self.today.isoformat(),
            'expiry_date': self.today.isoformat(),
            'quantity_available': '5'
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_batch_list_active_filter(self):
        response = self.client.get('/api/harvest-batches/', {
            'product_id': self.tomato.id, 'active': 'true'
        })

        self.assertEqual([row['batch_no'] for row in response.data['results']], ['T1'])

    def test_grower_create(self):
        response = self.client.post('/api/growers/', {
            'name': 'Sunil Shinde',
            'email': 'sunil@example.com',
            'contact_no': '9800000000',
            'address': 'Nashik'
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['product_count'], 0)


class SeedDataCommandTestCase(TestCase):

    def test_seed_data_creates_marketplace(self):
        out = StringIO()
        call_command('seed_data', growers=2, products=6, customers=3, stdout=out)

        self.assertEqual(Grower.objects.count(), 2)
        self.assertEqual(Product.objects.count(), 6)
        self.assertEqual(Customer.objects.count(), 3)
        self.assertGreaterEqual(HarvestBatch.objects.count(), 6)
        self.assertFalse(HarvestBatch.objects.filter(is_synthesized=True).exists())
        self.assertIn('completed successfully', out.getvalue())

    def test_seed_data_clear(self):
        call_command('seed_data', growers=1, products=2, customers=1, stdout=StringIO())
        call_command('seed_data', '--clear', growers=1, products=2, customers=1, stdout=StringIO())

        self.assertEqual(Product.objects.count(), 2)
        self.assertEqual(Grower.objects.count(), 1)
