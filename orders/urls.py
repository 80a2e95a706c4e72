"""
URL routing for order API endpoints.
"""
from django.urls import path
from . import views

app_name = 'orders'

urlpatterns = [
    path('customers/', views.CustomerListCreateView.as_view(), name='customer-list'),
    path('orders/', views.OrderListCreateView.as_view(), name='order-list'),
    path('orders/process/', views.OrderProcessView.as_view(), name='order-process'),
    path('orders/stats/', views.OrderStatsView.as_view(), name='order-stats'),
    path('orders/<int:pk>/', views.OrderDetailView.as_view(), name='order-detail'),
    path('orders/<int:pk>/status/', views.OrderStatusView.as_view(), name='order-status'),
    path('orders/<int:pk>/payment/', views.OrderPaymentView.as_view(), name='order-payment'),
    path('growers/performance/', views.GrowerPerformanceDashboardView.as_view(), name='grower-performance-dashboard'),
    path('growers/<int:pk>/revenue/', views.GrowerRevenueView.as_view(), name='grower-revenue'),
    path('growers/<int:pk>/performance/', views.GrowerPerformanceView.as_view(), name='grower-performance'),
]
