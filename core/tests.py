"""
Tests for shared error types and Redis rate limiting.
"""
from decimal import Decimal
from unittest.mock import MagicMock, patch

import redis
from django.test import SimpleTestCase, override_settings
from rest_framework.response import Response
from rest_framework.test import APIRequestFactory
from rest_framework.views import APIView

from core.exceptions import (
    AllocationInconsistency,
    InsufficientStock,
    InvalidStatusTransition,
    OrderProcessingError,
    PersistenceFailure,
    ProductNotFound,
)
from core.rate_limiting import get_client_ip, get_redis_client, rate_limit


class ErrorTaxonomyTestCase(SimpleTestCase):

    def test_every_error_is_an_order_processing_error(self):
        errors = [
            ProductNotFound(7),
            InsufficientStock(7, Decimal('10'), Decimal('3')),
            InvalidStatusTransition(1, 'delivered', 'pending'),
            AllocationInconsistency(7, Decimal('10'), Decimal('1')),
            PersistenceFailure('Could not place order: disk full'),
        ]
        for error in errors:
            with self.subTest(kind=error.kind):
                self.assertIsInstance(error, OrderProcessingError)
                self.assertEqual(error.to_dict(), {'error': error.kind, 'detail': error.message})

    def test_product_not_found_message(self):
        error = ProductNotFound(42)
        self.assertEqual(error.kind, 'product_not_found')
        self.assertEqual(error.product_id, 42)
        self.assertEqual(str(error), 'Product 42 not found')

    def test_insufficient_stock_carries_quantities(self):
        error = InsufficientStock(5, Decimal('12.5'), Decimal('2'))
        self.assertEqual(error.requested, Decimal('12.5'))
        self.assertEqual(error.available, Decimal('2'))
        self.assertIn('requested 12.5', error.message)


class ThrottledView(APIView):
    authentication_classes = []
    permission_classes = []

    @rate_limit(max_requests=2, window_seconds=60)
    def post(self, request):
        return Response({'ok': True})


def fake_redis(count, ttl=42):
    client = MagicMock()
    client.incr.return_value = count
    client.ttl.return_value = ttl
    return client


@override_settings(RATE_LIMIT_ENABLED=True)
class RateLimitTestCase(SimpleTestCase):

    def setUp(self):
        self.factory = APIRequestFactory()
        self.view = ThrottledView.as_view()

    def post(self, **extra):
        return self.view(self.factory.post('/throttled/', {}, format='json', **extra))

    @patch('core.rate_limiting.get_redis_client')
    def test_first_request_sets_window_and_headers(self, mock_client):
        client = fake_redis(1)
        mock_client.return_value = client

        response = self.post(REMOTE_ADDR='10.0.0.5')

        self.assertEqual(response.status_code, 200)
        client.incr.assert_called_once_with('rate_limit:ThrottledView.post:10.0.0.5')
        client.expire.assert_called_once_with('rate_limit:ThrottledView.post:10.0.0.5', 60)
        self.assertEqual(response['X-RateLimit-Limit'], '2')
        self.assertEqual(response['X-RateLimit-Remaining'], '1')
        self.assertEqual(response['X-RateLimit-Reset'], '42')

    @patch('core.rate_limiting.get_redis_client')
    def test_over_limit_returns_429(self, mock_client):
        client = fake_redis(3, ttl=17)
        mock_client.return_value = client

        response = self.post()

        self.assertEqual(response.status_code, 429)
        self.assertEqual(response['Retry-After'], '17')
        self.assertEqual(response.data['retry_after'], 17)
        client.expire.assert_not_called()

    @patch('core.rate_limiting.get_redis_client', return_value=None)
    def test_no_redis_passes_through(self, mock_client):
        response = self.post()

        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.has_header('X-RateLimit-Limit'))

    @patch('core.rate_limiting.get_redis_client')
    def test_redis_error_fails_open(self, mock_client):
        client = fake_redis(1)
        client.incr.side_effect = redis.RedisError('connection reset')
        mock_client.return_value = client

        response = self.post()

        self.assertEqual(response.status_code, 200)

    @override_settings(RATE_LIMIT_ENABLED=False)
    @patch('core.rate_limiting.get_redis_client')
    def test_disabled_by_setting(self, mock_client):
        response = self.post()

        self.assertEqual(response.status_code, 200)
        mock_client.assert_not_called()

    def test_client_ip_prefers_forwarded_for(self):
        request = self.factory.get('/', HTTP_X_FORWARDED_FOR='203.0.113.9, 10.0.0.1', REMOTE_ADDR='10.0.0.1')
        self.assertEqual(get_client_ip(request), '203.0.113.9')

        request = self.factory.get('/', REMOTE_ADDR='10.0.0.1')
        self.assertEqual(get_client_ip(request), '10.0.0.1')


class RedisClientTestCase(SimpleTestCase):

    def setUp(self):
        get_redis_client.cache_clear()
        self.addCleanup(get_redis_client.cache_clear)

    @patch('core.rate_limiting.redis.Redis.from_url')
    def test_unreachable_redis_returns_none(self, mock_from_url):
        mock_from_url.return_value.ping.side_effect = redis.ConnectionError('refused')

        self.assertIsNone(get_redis_client())

    @patch('core.rate_limiting.redis.Redis.from_url')
    def test_client_is_cached(self, mock_from_url):
        first = get_redis_client()
        second = get_redis_client()

        self.assertIs(first, second)
        mock_from_url.assert_called_once()
