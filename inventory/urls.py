"""
URL routing for inventory API endpoints.
"""
from django.urls import path
from . import views

app_name = 'inventory'

urlpatterns = [
    # Growers
    path('growers/', views.GrowerListCreateView.as_view(), name='grower-list'),

    # Products
    path('products/', views.ProductListCreateView.as_view(), name='product-list'),
    path('products/<int:pk>/', views.ProductDetailView.as_view(), name='product-detail'),
    path('products/<int:pk>/stock/', views.ProductStockView.as_view(), name='product-stock'),

    # Harvest batches
    path('harvest-batches/', views.HarvestBatchListCreateView.as_view(), name='batch-list'),
]
