from django.urls import path

from .views import CancelOrderView, OrderDetailView, OrdersCollectionView, OrderStatusView

app_name = "orders"

urlpatterns = [
    path("", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("<uuid:oid>/", OrderDetailView.as_view(), name="orders-detail"),  # GET detail / DELETE archive
    path("<uuid:oid>/cancel/", CancelOrderView.as_view(), name="orders-cancel"),
    path("<uuid:oid>/status/", OrderStatusView.as_view(), name="orders-status"),
]
