"""
Order API Views.

Implements:
- GET /orders/ - List orders with optimized queries
- POST /orders/ - Create an unpaid pending order
- POST /orders/process/ - Atomic paid checkout with stock allocation
- GET /orders/{id}/ - Order detail with items and payment
- PATCH /orders/{id}/status/ - Administrative status change
- GET|POST /orders/{id}/payment/ - Read or record an order's payment
- GET /growers/{id}/revenue/, /growers/{id}/performance/, /growers/performance/
"""
import logging

from django.db import models
from django.db.models import Avg, Count, Sum
from django.shortcuts import get_object_or_404
from rest_framework import generics, status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import OrderProcessingError
from core.rate_limiting import rate_limit
from inventory.models import Grower
from .models import Customer, Order, Payment
from .reporting import grower_performance, grower_performance_dashboard, grower_revenue
from .serializers import (
    CustomerSerializer,
    GrowerRevenueQuerySerializer,
    OrderCreateSerializer,
    OrderListSerializer,
    OrderProcessSerializer,
    OrderSerializer,
    OrderStatusUpdateSerializer,
    PaymentCreateSerializer,
    PaymentSerializer,
)
from .services import create_pending_order, process_order, record_payment, update_order_status

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    'customer_not_found': status.HTTP_404_NOT_FOUND,
    'order_not_found': status.HTTP_404_NOT_FOUND,
    'invalid_status_transition': status.HTTP_409_CONFLICT,
    'allocation_inconsistency': status.HTTP_500_INTERNAL_SERVER_ERROR,
    'persistence_failure': status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def error_response(exc: OrderProcessingError) -> Response:
    """Map an order failure to an HTTP response."""
    return Response(
        exc.to_dict(),
        status=ERROR_STATUS.get(exc.kind, status.HTTP_400_BAD_REQUEST)
    )


def server_error_response() -> Response:
    return Response(
        {'error': 'Server Error', 'detail': 'An unexpected error occurred'},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR
    )


def order_detail_queryset():
    return Order.objects.select_related('customer', 'payment').prefetch_related(
        'items__product'
    )


class CustomerListCreateView(generics.ListCreateAPIView):
    """
    GET: List customers
    POST: Register a customer
    """
    queryset = Customer.objects.all()
    serializer_class = CustomerSerializer


class OrderListCreateView(generics.ListCreateAPIView):
    """
    GET: List all orders with optimized queries
    POST: Create an unpaid PENDING order (no stock movement)

    Query Parameters (GET):
        - customer_id: Filter by customer
        - status: Filter by status (pending, confirmed, delivered, cancelled)
    """

    def get_serializer_class(self):
        if self.request.method == 'POST':
            return OrderCreateSerializer
        return OrderListSerializer

    def get_queryset(self):
        queryset = Order.objects.select_related('customer').prefetch_related('items')

        customer_id = self.request.query_params.get('customer_id')
        if customer_id:
            queryset = queryset.filter(customer_id=customer_id)

        status_filter = self.request.query_params.get('status', '').lower()
        if status_filter in Order.Status.values:
            queryset = queryset.filter(status=status_filter)

        return queryset.order_by('-order_date', '-id')

    def create(self, request, *args, **kwargs):
        """
        Returns:
            - 201: Pending order created
            - 400: Validation error or unknown product
            - 404: Unknown customer
        """
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order = create_pending_order(
                serializer.validated_data['customer_id'],
                serializer.validated_data['items']
            )
        except OrderProcessingError as e:
            logger.warning(f"Pending order rejected: {e}")
            return error_response(e)
        except Exception as e:
            logger.exception(f"Unexpected error creating order: {e}")
            return server_error_response()

        order = order_detail_queryset().get(id=order.id)
        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)


class OrderProcessView(APIView):
    """
    POST: Atomic paid checkout.

    Request Body:
    {
        "customer_id": 1,
        "order_date": "2024-05-01",
        "payment_mode": "upi",
        "items": [
            {"product_id": 1, "quantity": "2.5"},
            {"product_id": 3, "quantity": 1}
        ]
    }

    Returns:
        - 201: Order confirmed, stock allocated, payment recorded
        - 400: Validation error, unknown product or insufficient stock
        - 404: Unknown customer
        - 500: Allocation defect or database failure (nothing persisted)
    """

    @rate_limit(max_requests=10, window_seconds=60)
    def post(self, request):
        serializer = OrderProcessSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            order = process_order(
                data['customer_id'],
                data['order_date'],
                data['payment_mode'],
                data['items']
            )
        except OrderProcessingError as e:
            return error_response(e)
        except Exception as e:
            logger.exception(f"Unexpected error processing order: {e}")
            return server_error_response()

        order = order_detail_queryset().get(id=order.id)
        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)


class OrderDetailView(generics.RetrieveAPIView):
    """GET: Retrieve order details with all items and payment."""
    serializer_class = OrderSerializer

    def get_queryset(self):
        return order_detail_queryset()


class OrderStatusView(APIView):
    """
    PATCH: Move an order along its status flow.

    Request Body: {"status": "delivered"}
    """

    def patch(self, request, pk):
        serializer = OrderStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            update_order_status(pk, serializer.validated_data['status'])
        except OrderProcessingError as e:
            return error_response(e)

        return Response(OrderSerializer(order_detail_queryset().get(id=pk)).data)


class OrderPaymentView(APIView):
    """
    GET: The order's payment, or null
    POST: Pay a pending order; the amount must equal the order total
    """

    def get(self, request, pk):
        order = get_object_or_404(Order, pk=pk)
        payment = Payment.objects.filter(order=order).first()
        return Response(PaymentSerializer(payment).data if payment else None)

    def post(self, request, pk):
        serializer = PaymentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            payment = record_payment(
                pk,
                serializer.validated_data['mode'],
                serializer.validated_data['amount']
            )
        except OrderProcessingError as e:
            return error_response(e)

        return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)


class OrderStatsView(APIView):
    """
    GET: Order statistics overall or for one customer.

    Query Parameters:
        - customer_id: Filter stats by customer (optional)
    """

    def get(self, request):
        queryset = Order.objects.all()

        customer_id = request.query_params.get('customer_id')
        if customer_id:
            queryset = queryset.filter(customer_id=customer_id)

        realized = models.Q(status__in=Order.REALIZED_STATUSES)
        stats = queryset.aggregate(
            total_orders=Count('id'),
            pending_orders=Count('id', filter=models.Q(status=Order.Status.PENDING)),
            confirmed_orders=Count('id', filter=models.Q(status=Order.Status.CONFIRMED)),
            delivered_orders=Count('id', filter=models.Q(status=Order.Status.DELIVERED)),
            cancelled_orders=Count('id', filter=models.Q(status=Order.Status.CANCELLED)),
            total_revenue=Sum('total_amount', filter=realized),
            avg_order_value=Avg('total_amount', filter=realized)
        )

        # Handle None values
        stats['total_revenue'] = str(stats['total_revenue'] or '0.00')
        stats['avg_order_value'] = str(round(stats['avg_order_value'] or 0, 2))

        return Response(stats)


def _performance_payload(row):
    payload = dict(row)
    for key in ('total_revenue', 'average_order_value', 'available_quantity', 'delivery_success_rate'):
        payload[key] = str(payload[key])
    if payload['last_order_date'] is not None:
        payload['last_order_date'] = payload['last_order_date'].isoformat()
    return payload


class GrowerRevenueView(APIView):
    """
    GET: Realized revenue of a grower between two dates (inclusive).

    Query Parameters:
        - start_date, end_date: ISO dates (required)
    """

    def get(self, request, pk):
        grower = get_object_or_404(Grower, pk=pk)
        query = GrowerRevenueQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        start_date = query.validated_data['start_date']
        end_date = query.validated_data['end_date']

        return Response({
            'grower_id': grower.id,
            'start_date': start_date.isoformat(),
            'end_date': end_date.isoformat(),
            'total_revenue': str(grower_revenue(grower.id, start_date, end_date)),
        })


class GrowerPerformanceView(APIView):
    """GET: Headline metrics for one grower."""

    def get(self, request, pk):
        grower = get_object_or_404(Grower, pk=pk)
        return Response(_performance_payload(grower_performance(grower.id)))


class GrowerPerformanceDashboardView(APIView):
    """GET: Metrics for every grower, best revenue first."""

    def get(self, request):
        return Response([_performance_payload(row) for row in grower_performance_dashboard()])
