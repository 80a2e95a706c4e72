"""
Tests for order transaction logic.

Test Cases:
1. Checkout confirms the order, writes lines, payment and lot debits
2. Unknown product anywhere in the order leaves no trace
3. Totals, payment amount and rounding stay consistent
4. Prices are read fresh for every order
5. Shortfall policies, allocation defects and database errors roll back
6. Pending orders, payments and status transitions
7. Grower revenue reporting, background tasks and the HTTP layer
"""
import threading
from datetime import date, timedelta
from decimal import Decimal
from unittest import skipUnless
from unittest.mock import patch

from django.db import IntegrityError, OperationalError, connection
from django.test import TestCase, TransactionTestCase, override_settings
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from core.exceptions import (
    AllocationInconsistency,
    CustomerNotFound,
    InsufficientStock,
    InvalidStatusTransition,
    OrderNotFound,
    OrderValidationError,
    PersistenceFailure,
    ProductNotFound,
)
from inventory import ledger
from inventory.models import Grower, Product, HarvestBatch
from orders.models import Customer, Order, OrderItem, Payment
from orders.reporting import grower_performance, grower_performance_dashboard, grower_revenue
from orders.services import (
    create_pending_order,
    get_order_summary,
    process_order,
    record_payment,
    update_order_status,
)
from orders.tasks import (
    cancel_stale_pending_orders,
    generate_daily_order_report,
    send_order_confirmation,
)

ORDER_DATE = date(2026, 1, 10)


def make_batch(product, batch_no, quantity, days_old=5, expiry_date=None):
    return HarvestBatch.objects.create(
        product=product,
        batch_no=batch_no,
        harvest_date=ORDER_DATE - timedelta(days=days_old),
        expiry_date=expiry_date or ORDER_DATE + timedelta(days=20),
        quantity_available=Decimal(quantity)
    )


def snapshot():
    """Everything checkout may touch, for before/after comparisons."""
    return {
        'orders': list(Order.objects.values_list('id', 'status', 'total_amount')),
        'items': list(OrderItem.objects.values_list('id', 'quantity')),
        'payments': list(Payment.objects.values_list('id', 'amount')),
        'batches': list(
            HarvestBatch.objects.order_by('id').values_list('id', 'batch_no', 'quantity_available')
        ),
    }


class MarketplaceFixtureMixin:

    def setUp(self):
        self.grower = Grower.objects.create(name='Asha Patil', email='asha@example.com')
        self.customer = Customer.objects.create(name='Neha Joshi', email='neha@example.com')

        self.product1 = Product.objects.create(
            name='Tomato', category='Vegetables',
            price_per_unit=Decimal('10.00'), grower=self.grower
        )
        self.product2 = Product.objects.create(
            name='Mango', category='Fruits',
            price_per_unit=Decimal('25.00'), grower=self.grower
        )
        self.product3 = Product.objects.create(
            name='Turmeric', category='Spices',
            price_per_unit=Decimal('15.50'), grower=self.grower
        )
        # No lots at all
        self.new_product = Product.objects.create(
            name='Millet', category='Grains',
            price_per_unit=Decimal('4.25'), grower=self.grower
        )

        self.lot1 = make_batch(self.product1, 'T-1', '100')
        self.lot2 = make_batch(self.product2, 'M-1', '50')
        self.lot3 = make_batch(self.product3, 'U-1', '10')


class OrderProcessingTestCase(MarketplaceFixtureMixin, TestCase):
    """Test cases for the atomic checkout."""

    def test_order_confirmed_with_lines_payment_and_debits(self):
        """
        Given: Products with enough stock
        When: Processing an order
        Then: Order is CONFIRMED, lines and payment exist, stock is debited
        """
        items = [
            {'product_id': self.product1.id, 'quantity': 5},
            {'product_id': self.product2.id, 'quantity': 3}
        ]

        order = process_order(self.customer.id, ORDER_DATE, 'upi', items)

        self.assertEqual(order.status, Order.Status.CONFIRMED)
        self.assertEqual(order.order_date, ORDER_DATE)
        # (5 * 10) + (3 * 25) = 125
        self.assertEqual(order.total_amount, Decimal('125.00'))
        self.assertEqual(order.items.count(), 2)

        payment = Payment.objects.get(order=order)
        self.assertEqual(payment.status, Payment.Status.COMPLETED)
        self.assertEqual(payment.mode, Payment.Mode.UPI)
        self.assertEqual(payment.amount, Decimal('125.00'))

        self.lot1.refresh_from_db()
        self.lot2.refresh_from_db()
        self.assertEqual(self.lot1.quantity_available, Decimal('95'))
        self.assertEqual(self.lot2.quantity_available, Decimal('47'))

    def test_total_equals_sum_of_subtotals(self):
        items = [
            {'product_id': self.product3.id, 'quantity': '1.333'},
            {'product_id': self.product1.id, 'quantity': Decimal('2.5')},
            {'product_id': self.new_product.id, 'quantity': 3}
        ]

        order = process_order(self.customer.id, ORDER_DATE, 'cash', items)

        subtotals = list(order.items.order_by('id').values_list('subtotal', flat=True))
        # 1.333 * 15.50 = 20.6615 -> 20.66
        self.assertEqual(subtotals, [Decimal('20.66'), Decimal('25.00'), Decimal('12.75')])
        order.refresh_from_db()
        self.assertEqual(order.total_amount, sum(subtotals))
        self.assertEqual(order.payment.amount, order.total_amount)

    def test_unknown_product_leaves_no_trace(self):
        """
        Given: A three-line order whose last line references no product
        When: Processing the order
        Then: ProductNotFound, and nothing at all has changed, including
              the lot synthesized for an earlier line
        """
        before = snapshot()
        items = [
            {'product_id': self.product1.id, 'quantity': 5},
            {'product_id': self.new_product.id, 'quantity': 8},
            {'product_id': 99999, 'quantity': 1}
        ]

        with self.assertRaises(ProductNotFound) as context:
            process_order(self.customer.id, ORDER_DATE, 'card', items)

        self.assertEqual(context.exception.kind, 'product_not_found')
        self.assertEqual(snapshot(), before)
        self.assertFalse(HarvestBatch.objects.filter(product=self.new_product).exists())

    def test_unknown_customer(self):
        with self.assertRaises(CustomerNotFound):
            process_order(99999, ORDER_DATE, 'cash', [{'product_id': self.product1.id, 'quantity': 1}])
        self.assertFalse(Order.objects.exists())

    def test_validation_errors(self):
        bad_requests = [
            ([], 'cash'),
            ([{'product_id': self.product1.id, 'quantity': 0}], 'cash'),
            ([{'product_id': self.product1.id, 'quantity': -2}], 'cash'),
            ([{'product_id': self.product1.id, 'quantity': '1.0005'}], 'cash'),
            ([{'product_id': self.product1.id, 'quantity': 'lots'}], 'cash'),
            ([{'product_id': self.product1.id, 'quantity': True}], 'cash'),
            ([{'quantity': 1}], 'cash'),
            ([{'product_id': self.product1.id}], 'cash'),
            ([5], 'cash'),
            ([{'product_id': self.product1.id, 'quantity': '1000000000'}], 'cash'),
            ([{'product_id': self.product1.id, 'quantity': 1}], 'cheque'),
        ]
        for items, mode in bad_requests:
            with self.subTest(items=items, mode=mode):
                with self.assertRaises(OrderValidationError):
                    process_order(self.customer.id, ORDER_DATE, mode, items)
        self.assertFalse(Order.objects.exists())

    def test_repeated_product_sees_earlier_debits(self):
        """
        Given: 10 units of product3
        When: Ordering 6 then 6 more of the same product in one order
        Then: The second line takes the last 4 units plus a synthesized 2
        """
        items = [
            {'product_id': self.product3.id, 'quantity': 6},
            {'product_id': self.product3.id, 'quantity': 6}
        ]

        order = process_order(self.customer.id, ORDER_DATE, 'cash', items)

        self.lot3.refresh_from_db()
        self.assertEqual(self.lot3.quantity_available, Decimal('0'))
        synthesized = HarvestBatch.objects.filter(product=self.product3, is_synthesized=True)
        self.assertEqual(synthesized.count(), 1)
        self.assertEqual(order.items.count(), 2)
        self.assertEqual(order.total_amount, Decimal('186.00'))

    def test_first_sale_provisions_lot(self):
        order = process_order(
            self.customer.id, ORDER_DATE, 'card',
            [{'product_id': self.new_product.id, 'quantity': 20}]
        )

        lots = HarvestBatch.objects.filter(product=self.new_product)
        self.assertEqual(lots.count(), 1)
        self.assertEqual(lots.get().quantity_available, Decimal('0'))
        self.assertEqual(order.items.get().subtotal, Decimal('85.00'))

    def test_lots_judged_against_order_date(self):
        expiring = make_batch(self.new_product, 'X-1', '30', expiry_date=ORDER_DATE)

        process_order(
            self.customer.id, ORDER_DATE, 'cash',
            [{'product_id': self.new_product.id, 'quantity': 4}]
        )

        expiring.refresh_from_db()
        self.assertEqual(expiring.quantity_available, Decimal('30'))
        self.assertTrue(HarvestBatch.objects.filter(product=self.new_product, is_synthesized=True).exists())

    def test_price_freshness(self):
        """
        Given: Two orders of the same product
        When: The catalog price changes between them
        Then: Each order is priced at the price current when it was placed
        """
        items = [{'product_id': self.product1.id, 'quantity': 4}]
        first = process_order(self.customer.id, ORDER_DATE, 'cash', items)

        Product.objects.filter(pk=self.product1.id).update(price_per_unit=Decimal('12.00'))
        second = process_order(self.customer.id, ORDER_DATE, 'cash', items)

        self.assertEqual(first.items.get().subtotal, Decimal('40.00'))
        self.assertEqual(second.items.get().subtotal, Decimal('48.00'))
        self.assertEqual(second.items.get().unit_price, Decimal('12.00'))

    def test_reject_policy_leaves_no_trace(self):
        before = snapshot()
        items = [
            {'product_id': self.product1.id, 'quantity': 5},
            {'product_id': self.product3.id, 'quantity': 50}
        ]

        with self.assertRaises(InsufficientStock):
            process_order(self.customer.id, ORDER_DATE, 'cash', items,
                          shortfall_policy=ledger.reject_shortfall)

        self.assertEqual(snapshot(), before)

    def test_allocation_inconsistency_rolls_back(self):
        def short_by_one(product_id, deficit, as_of):
            spec = ledger.synthesize_lot(product_id, deficit, as_of)
            return ledger.NewLotSpec(spec.batch_no, deficit - 1, spec.harvest_date, spec.expiry_date)

        before = snapshot()

        with self.assertRaises(AllocationInconsistency):
            process_order(
                self.customer.id, ORDER_DATE, 'cash',
                [{'product_id': self.product3.id, 'quantity': 15}],
                shortfall_policy=short_by_one
            )

        self.assertEqual(snapshot(), before)

    def test_database_error_becomes_persistence_failure(self):
        before = snapshot()

        with patch.object(Payment.objects, 'create', side_effect=IntegrityError('payment rejected')):
            with self.assertRaises(PersistenceFailure) as context:
                process_order(
                    self.customer.id, ORDER_DATE, 'cash',
                    [{'product_id': self.product1.id, 'quantity': 5}]
                )

        self.assertIn('payment rejected', context.exception.message)
        self.assertEqual(snapshot(), before)

    def test_database_error_looking_up_customer(self):
        with patch.object(Customer.objects, 'get', side_effect=OperationalError('database is gone')):
            with self.assertRaises(PersistenceFailure):
                process_order(
                    self.customer.id, ORDER_DATE, 'cash',
                    [{'product_id': self.product1.id, 'quantity': 5}]
                )

        self.assertFalse(Order.objects.exists())

    def test_subtotal_too_large_to_store(self):
        """
        Given: The largest catalog price and the largest line quantity
        When: Processing the order
        Then: A validation error, and the first-sale lot is rolled back too
        """
        premium = Product.objects.create(
            name='Saffron', category='Spices',
            price_per_unit=Decimal('99999999.99'), grower=self.grower
        )
        before = snapshot()

        with self.assertRaises(OrderValidationError) as context:
            process_order(
                self.customer.id, ORDER_DATE, 'cash',
                [{'product_id': premium.id, 'quantity': '999999999.999'}]
            )

        self.assertIn('Subtotal', context.exception.message)
        self.assertEqual(snapshot(), before)

    def test_order_total_too_large_to_store(self):
        premium = Product.objects.create(
            name='Saffron', category='Spices',
            price_per_unit=Decimal('99999999.99'), grower=self.grower
        )
        # Each line is 9999999999.00, the largest storable amount
        items = [
            {'product_id': premium.id, 'quantity': 100},
            {'product_id': premium.id, 'quantity': 100}
        ]
        before = snapshot()

        with self.assertRaises(OrderValidationError) as context:
            process_order(self.customer.id, ORDER_DATE, 'cash', items)

        self.assertIn('Order total', context.exception.message)
        self.assertEqual(snapshot(), before)

        order = process_order(self.customer.id, ORDER_DATE, 'cash', items[:1])
        self.assertEqual(order.total_amount, Decimal('9999999999.00'))

    def test_confirmation_queued_after_commit(self):
        with patch('orders.services.send_order_confirmation') as mock_task:
            with self.captureOnCommitCallbacks(execute=True):
                order = process_order(
                    self.customer.id, ORDER_DATE, 'cash',
                    [{'product_id': self.product1.id, 'quantity': 1}]
                )

        mock_task.delay.assert_called_once_with(order.id)

    def test_queue_failure_does_not_fail_order(self):
        with patch('orders.services.send_order_confirmation') as mock_task:
            mock_task.delay.side_effect = ConnectionError('broker down')
            with self.captureOnCommitCallbacks(execute=True):
                order = process_order(
                    self.customer.id, ORDER_DATE, 'cash',
                    [{'product_id': self.product1.id, 'quantity': 1}]
                )

        self.assertTrue(Order.objects.filter(pk=order.pk, status=Order.Status.CONFIRMED).exists())

    def test_order_summary(self):
        order = process_order(
            self.customer.id, ORDER_DATE, 'bank_transfer',
            [{'product_id': self.product2.id, 'quantity': 2}]
        )

        summary = get_order_summary(order.id)

        self.assertEqual(summary['status'], 'confirmed')
        self.assertEqual(summary['total_amount'], '50.00')
        self.assertEqual(summary['items'][0]['grower'], 'Asha Patil')
        self.assertEqual(summary['payment']['mode'], 'bank_transfer')

        with self.assertRaises(OrderNotFound):
            get_order_summary(99999)


class PendingOrderTestCase(MarketplaceFixtureMixin, TestCase):
    """Test cases for the pay-later path and status changes."""

    def test_pending_order_moves_no_stock(self):
        order = create_pending_order(self.customer.id, [
            {'product_id': self.product1.id, 'quantity': 5},
            {'product_id': self.product2.id, 'quantity': 2}
        ])

        self.assertEqual(order.status, Order.Status.PENDING)
        self.assertEqual(order.total_amount, Decimal('100.00'))
        self.assertEqual(order.order_date, timezone.localdate())
        self.assertFalse(Payment.objects.filter(order=order).exists())
        self.lot1.refresh_from_db()
        self.assertEqual(self.lot1.quantity_available, Decimal('100'))

    def test_pending_order_unknown_product(self):
        with self.assertRaises(ProductNotFound):
            create_pending_order(self.customer.id, [
                {'product_id': self.product1.id, 'quantity': 5},
                {'product_id': 99999, 'quantity': 1}
            ])
        self.assertFalse(Order.objects.exists())
        self.assertFalse(OrderItem.objects.exists())

    def test_pending_order_total_too_large_to_store(self):
        premium = Product.objects.create(
            name='Saffron', category='Spices',
            price_per_unit=Decimal('99999999.99'), grower=self.grower
        )

        with self.assertRaises(OrderValidationError):
            create_pending_order(self.customer.id, [{'product_id': premium.id, 'quantity': '999999999.999'}])

        self.assertFalse(Order.objects.exists())

    def test_pending_order_database_error_looking_up_customer(self):
        with patch.object(Customer.objects, 'get', side_effect=OperationalError('database is gone')):
            with self.assertRaises(PersistenceFailure):
                create_pending_order(self.customer.id, [{'product_id': self.product1.id, 'quantity': 1}])

    def test_record_payment_confirms_order(self):
        order = create_pending_order(self.customer.id, [{'product_id': self.product1.id, 'quantity': 3}])

        payment = record_payment(order.id, 'card', '30.00')

        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.CONFIRMED)
        self.assertEqual(payment.status, Payment.Status.COMPLETED)
        self.assertEqual(payment.amount, Decimal('30.00'))

    def test_record_payment_rejects_wrong_amount(self):
        order = create_pending_order(self.customer.id, [{'product_id': self.product1.id, 'quantity': 3}])

        with self.assertRaises(OrderValidationError):
            record_payment(order.id, 'card', '29.99')

        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.PENDING)

    def test_record_payment_twice(self):
        order = create_pending_order(self.customer.id, [{'product_id': self.product1.id, 'quantity': 3}])
        record_payment(order.id, 'cash', Decimal('30.00'))

        with self.assertRaises(InvalidStatusTransition):
            record_payment(order.id, 'cash', Decimal('30.00'))
        self.assertEqual(Payment.objects.filter(order=order).count(), 1)

    def test_record_payment_unknown_order(self):
        with self.assertRaises(OrderNotFound):
            record_payment(99999, 'cash', '1.00')

    def test_status_transitions(self):
        order = create_pending_order(self.customer.id, [{'product_id': self.product1.id, 'quantity': 1}])

        update_order_status(order.id, 'confirmed')
        update_order_status(order.id, 'delivered')
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.DELIVERED)

        with self.assertRaises(InvalidStatusTransition):
            update_order_status(order.id, 'cancelled')

    def test_cancel_pending_and_confirmed(self):
        pending = create_pending_order(self.customer.id, [{'product_id': self.product1.id, 'quantity': 1}])
        confirmed = process_order(
            self.customer.id, ORDER_DATE, 'cash', [{'product_id': self.product1.id, 'quantity': 1}]
        )

        update_order_status(pending.id, 'cancelled')
        update_order_status(confirmed.id, 'cancelled')

        with self.assertRaises(InvalidStatusTransition):
            update_order_status(pending.id, 'confirmed')

    def test_unknown_status(self):
        order = create_pending_order(self.customer.id, [{'product_id': self.product1.id, 'quantity': 1}])
        with self.assertRaises(OrderValidationError):
            update_order_status(order.id, 'shipped')
        with self.assertRaises(OrderNotFound):
            update_order_status(99999, 'cancelled')


def make_order(customer, order_status, order_date, lines):
    """Insert an order directly, bypassing allocation."""
    order = Order.objects.create(customer=customer, order_date=order_date, status=order_status)
    total = Decimal('0.00')
    for product, quantity in lines:
        subtotal = product.price_per_unit * quantity
        OrderItem.objects.create(
            order=order, product=product, quantity=quantity,
            unit_price=product.price_per_unit, subtotal=subtotal
        )
        total += subtotal
    order.total_amount = total
    order.save()
    return order


class GrowerReportingTestCase(TestCase):
    """Test cases for realized revenue and grower metrics."""

    def setUp(self):
        self.customer = Customer.objects.create(name='Rahul More', email='rahul@example.com')
        self.grower1 = Grower.objects.create(name='Kavita Pawar', email='kavita@example.com')
        self.grower2 = Grower.objects.create(name='Vikram Shinde', email='vikram@example.com')
        self.onion = Product.objects.create(
            name='Onion', category='Vegetables',
            price_per_unit=Decimal('10.00'), grower=self.grower1
        )
        self.grapes = Product.objects.create(
            name='Grapes', category='Fruits',
            price_per_unit=Decimal('20.00'), grower=self.grower2
        )

        S = Order.Status
        make_order(self.customer, S.CONFIRMED, date(2026, 1, 5), [(self.onion, 2), (self.grapes, 1)])
        make_order(self.customer, S.DELIVERED, date(2026, 1, 31), [(self.onion, 3)])
        make_order(self.customer, S.PENDING, date(2026, 1, 10), [(self.onion, 5)])
        make_order(self.customer, S.CANCELLED, date(2026, 1, 10), [(self.onion, 1)])
        make_order(self.customer, S.CONFIRMED, date(2026, 2, 1), [(self.onion, 1)])

        HarvestBatch.objects.create(
            product=self.onion, batch_no='O-1', harvest_date=date(2026, 1, 1),
            expiry_date=date(2026, 3, 1), quantity_available=Decimal('7')
        )
        HarvestBatch.objects.create(
            product=self.onion, batch_no='O-0', harvest_date=date(2025, 12, 1),
            expiry_date=date(2026, 1, 15), quantity_available=Decimal('100')
        )

    def test_revenue_counts_only_realized_orders_in_range(self):
        self.assertEqual(
            grower_revenue(self.grower1.id, date(2026, 1, 1), date(2026, 1, 31)),
            Decimal('50.00')
        )
        self.assertEqual(
            grower_revenue(self.grower2.id, date(2026, 1, 1), date(2026, 1, 31)),
            Decimal('20.00')
        )

    def test_revenue_range_is_inclusive(self):
        self.assertEqual(
            grower_revenue(self.grower1.id, date(2026, 1, 5), date(2026, 1, 5)),
            Decimal('20.00')
        )
        self.assertEqual(
            grower_revenue(self.grower1.id, date(2026, 2, 1), date(2026, 2, 28)),
            Decimal('10.00')
        )

    def test_revenue_without_orders_is_zero(self):
        self.assertEqual(
            grower_revenue(self.grower1.id, date(2025, 1, 1), date(2025, 12, 31)),
            Decimal('0.00')
        )

    def test_grower_performance(self):
        metrics = grower_performance(self.grower1.id, as_of=date(2026, 1, 20))

        self.assertEqual(metrics['total_products'], 1)
        self.assertEqual(metrics['total_revenue'], Decimal('60.00'))
        self.assertEqual(metrics['total_orders'], 3)
        self.assertEqual(metrics['average_order_value'], Decimal('20.00'))
        self.assertEqual(metrics['available_quantity'], Decimal('7'))
        self.assertEqual(metrics['active_batches'], 1)
        self.assertEqual(metrics['delivery_success_rate'], Decimal('20.00'))
        self.assertEqual(metrics['last_order_date'], date(2026, 2, 1))

    def test_dashboard_orders_by_revenue(self):
        rows = grower_performance_dashboard(as_of=date(2026, 1, 20))

        self.assertEqual([row['grower_name'] for row in rows], ['Kavita Pawar', 'Vikram Shinde'])
        self.assertEqual(rows[1]['total_revenue'], Decimal('20.00'))


class OrderTasksTestCase(MarketplaceFixtureMixin, TestCase):
    """Test cases for Celery tasks, run synchronously."""

    def test_send_confirmation_for_confirmed_order(self):
        order = process_order(
            self.customer.id, ORDER_DATE, 'cash', [{'product_id': self.product1.id, 'quantity': 2}]
        )

        result = send_order_confirmation(order.id)

        self.assertEqual(result['status'], 'success')
        self.assertEqual(result['order_id'], order.id)

    def test_send_confirmation_skips_pending_order(self):
        order = create_pending_order(self.customer.id, [{'product_id': self.product1.id, 'quantity': 2}])
        self.assertEqual(send_order_confirmation(order.id)['status'], 'skipped')

    def test_send_confirmation_missing_order(self):
        self.assertEqual(send_order_confirmation(99999)['status'], 'error')

    def test_cancel_stale_pending_orders(self):
        stale = create_pending_order(self.customer.id, [{'product_id': self.product1.id, 'quantity': 1}])
        fresh = create_pending_order(self.customer.id, [{'product_id': self.product1.id, 'quantity': 1}])
        Order.objects.filter(pk=stale.pk).update(created_at=timezone.now() - timedelta(hours=49))

        result = cancel_stale_pending_orders()

        self.assertEqual(result, {'cancelled': 1})
        stale.refresh_from_db()
        fresh.refresh_from_db()
        self.assertEqual(stale.status, Order.Status.CANCELLED)
        self.assertEqual(fresh.status, Order.Status.PENDING)

    def test_daily_report(self):
        yesterday = timezone.localdate() - timedelta(days=1)
        make_order(self.customer, Order.Status.CONFIRMED, yesterday, [(self.product2, 2)])
        make_order(self.customer, Order.Status.PENDING, yesterday, [(self.product1, 1)])
        make_order(self.customer, Order.Status.CONFIRMED, timezone.localdate(), [(self.product1, 9)])

        stats = generate_daily_order_report()

        self.assertEqual(stats['total_orders'], 2)
        self.assertEqual(stats['realized_orders'], 1)
        self.assertEqual(stats['pending_orders'], 1)
        self.assertEqual(Decimal(stats['total_revenue']), Decimal('50.00'))
        self.assertEqual(stats['date'], yesterday.isoformat())


@override_settings(RATE_LIMIT_ENABLED=False)
class OrderAPITestCase(MarketplaceFixtureMixin, APITestCase):
    """Test cases for the order endpoints."""

    def process_payload(self, items, **overrides):
        payload = {
            'customer_id': self.customer.id,
            'order_date': ORDER_DATE.isoformat(),
            'payment_mode': 'upi',
            'items': items,
        }
        payload.update(overrides)
        return payload

    def test_process_order(self):
        response = self.client.post('/api/orders/process/', self.process_payload([
            {'product_id': self.product1.id, 'quantity': '2.5'},
            {'product_id': self.new_product.id, 'quantity': 4}
        ]), format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'confirmed')
        self.assertEqual(Decimal(response.data['total_amount']), Decimal('42.00'))
        self.assertEqual(len(response.data['items']), 2)
        self.assertEqual(response.data['payment']['status'], 'completed')
        self.assertEqual(Decimal(response.data['payment']['amount']), Decimal('42.00'))

    def test_process_order_unknown_product(self):
        response = self.client.post('/api/orders/process/', self.process_payload([
            {'product_id': self.product1.id, 'quantity': 1},
            {'product_id': 99999, 'quantity': 1}
        ]), format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'product_not_found')
        self.assertFalse(Order.objects.exists())

    def test_process_order_amount_too_large_to_store(self):
        premium = Product.objects.create(
            name='Saffron', category='Spices',
            price_per_unit=Decimal('99999999.99'), grower=self.grower
        )
        before = snapshot()

        response = self.client.post('/api/orders/process/', self.process_payload([
            {'product_id': premium.id, 'quantity': '999999999.999'}
        ]), format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'validation_error')
        self.assertEqual(snapshot(), before)

    def test_process_order_unknown_customer(self):
        response = self.client.post('/api/orders/process/', self.process_payload(
            [{'product_id': self.product1.id, 'quantity': 1}], customer_id=99999
        ), format='json')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'customer_not_found')

    def test_process_order_invalid_payload(self):
        payload = self.process_payload([{'product_id': self.product1.id, 'quantity': 1}])
        del payload['payment_mode']
        response = self.client.post('/api/orders/process/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.post('/api/orders/process/', self.process_payload([]), format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_process_order_defaults_to_today(self):
        payload = self.process_payload([{'product_id': self.product1.id, 'quantity': 1}])
        del payload['order_date']

        response = self.client.post('/api/orders/process/', payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['order_date'], timezone.localdate().isoformat())

    def test_process_order_unexpected_error(self):
        with patch('orders.views.process_order', side_effect=RuntimeError('boom')):
            response = self.client.post('/api/orders/process/', self.process_payload(
                [{'product_id': self.product1.id, 'quantity': 1}]
            ), format='json')

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['error'], 'Server Error')

    def test_pending_order_then_payment(self):
        response = self.client.post('/api/orders/', {
            'customer_id': self.customer.id,
            'items': [{'product_id': self.product2.id, 'quantity': 2}]
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'pending')
        self.assertIsNone(response.data['payment'])
        order_id = response.data['id']

        response = self.client.post(f'/api/orders/{order_id}/payment/', {
            'mode': 'card', 'amount': '50.00'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        response = self.client.get(f'/api/orders/{order_id}/payment/')
        self.assertEqual(response.data['status'], 'completed')

        response = self.client.get(f'/api/orders/{order_id}/')
        self.assertEqual(response.data['status'], 'confirmed')

    def test_payment_for_confirmed_order_conflicts(self):
        order = process_order(
            self.customer.id, ORDER_DATE, 'cash', [{'product_id': self.product1.id, 'quantity': 1}]
        )

        response = self.client.post(f'/api/orders/{order.id}/payment/', {
            'mode': 'card', 'amount': '10.00'
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'invalid_status_transition')

    def test_status_update(self):
        order = process_order(
            self.customer.id, ORDER_DATE, 'cash', [{'product_id': self.product1.id, 'quantity': 1}]
        )

        response = self.client.patch(f'/api/orders/{order.id}/status/', {'status': 'delivered'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'delivered')

        response = self.client.patch(f'/api/orders/{order.id}/status/', {'status': 'pending'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

        response = self.client.patch('/api/orders/99999/status/', {'status': 'cancelled'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_order_list_filters(self):
        process_order(self.customer.id, ORDER_DATE, 'cash', [{'product_id': self.product1.id, 'quantity': 1}])
        create_pending_order(self.customer.id, [{'product_id': self.product1.id, 'quantity': 1}])

        response = self.client.get('/api/orders/', {'status': 'pending'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['status'], 'pending')
        self.assertEqual(response.data['results'][0]['item_count'], 1)

    def test_order_stats(self):
        process_order(self.customer.id, ORDER_DATE, 'cash', [{'product_id': self.product1.id, 'quantity': 3}])
        create_pending_order(self.customer.id, [{'product_id': self.product1.id, 'quantity': 1}])

        response = self.client.get('/api/orders/stats/')

        self.assertEqual(response.data['total_orders'], 2)
        self.assertEqual(response.data['confirmed_orders'], 1)
        self.assertEqual(response.data['pending_orders'], 1)
        self.assertEqual(Decimal(response.data['total_revenue']), Decimal('30.00'))

    def test_grower_revenue_endpoint(self):
        process_order(self.customer.id, ORDER_DATE, 'cash', [{'product_id': self.product2.id, 'quantity': 4}])

        response = self.client.get(f'/api/growers/{self.grower.id}/revenue/', {
            'start_date': '2026-01-01', 'end_date': '2026-01-31'
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(Decimal(response.data['total_revenue']), Decimal('100.00'))

        response = self.client.get(f'/api/growers/{self.grower.id}/revenue/', {'start_date': '2026-01-01'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_grower_performance_endpoints(self):
        process_order(self.customer.id, ORDER_DATE, 'cash', [{'product_id': self.product2.id, 'quantity': 4}])

        response = self.client.get(f'/api/growers/{self.grower.id}/performance/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(Decimal(response.data['total_revenue']), Decimal('100.00'))
        self.assertEqual(response.data['last_order_date'], ORDER_DATE.isoformat())

        response = self.client.get('/api/growers/performance/')
        self.assertEqual(len(response.data), 1)

    def test_customer_create(self):
        response = self.client.post('/api/customers/', {
            'name': 'Pooja Deshmukh', 'email': 'pooja@example.com'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)


@skipUnless(connection.vendor == 'postgresql', 'Row locking needs PostgreSQL')
class ConcurrentOrderTestCase(TransactionTestCase):
    """
    Concurrent checkouts against the same lot.
    Uses TransactionTestCase for proper multi-threading support.
    """

    def setUp(self):
        grower = Grower.objects.create(name='Concurrent Grower', email='cg@example.com')
        self.customer = Customer.objects.create(name='Concurrent Customer', email='cc@example.com')
        self.product = Product.objects.create(
            name='Limited Lot Product', category='Fruits',
            price_per_unit=Decimal('50.00'), grower=grower
        )
        self.lot = make_batch(self.product, 'L-1', '10')

    def test_concurrent_orders_never_overdraw_a_lot(self):
        """
        Given: 10 units in one lot
        When: Two concurrent orders of 8 units each
        Then: Both confirm, the lot ends at exactly 0 and the shortfall of
              6 is covered by synthesized stock
        """
        results = {}

        def place_order(key):
            try:
                order = process_order(
                    self.customer.id, ORDER_DATE, 'cash',
                    [{'product_id': self.product.id, 'quantity': 8}]
                )
                results[key] = order.status
            finally:
                connection.close()

        threads = [threading.Thread(target=place_order, args=(k,)) for k in ('order1', 'order2')]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(results.values()), ['confirmed', 'confirmed'])
        self.lot.refresh_from_db()
        self.assertEqual(self.lot.quantity_available, Decimal('0'))
        self.assertEqual(
            sum(OrderItem.objects.values_list('quantity', flat=True)),
            Decimal('16')
        )
        self.assertFalse(HarvestBatch.objects.filter(quantity_available__lt=0).exists())
