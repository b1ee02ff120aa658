"""
URL configuration for the orders API.

All routes are prefixed with /api/v1/orders/ when included in the main URLconf.
"""

from django.urls import path

from orders.views import (
    ConfirmReceiptView,
    OrderAdvanceView,
    OrderCancelView,
    OrderConfirmView,
    OrderDetailView,
    OrderHistoryView,
    OrderListCreateView,
    RedeemPointsView,
)

app_name = "orders"

urlpatterns = [
    path("", OrderListCreateView.as_view(), name="list_create"),
    path("redeem-points/", RedeemPointsView.as_view(), name="redeem_points"),
    path("<uuid:pk>/", OrderDetailView.as_view(), name="detail"),
    path("<uuid:pk>/history/", OrderHistoryView.as_view(), name="history"),
    path("<uuid:pk>/confirm/", OrderConfirmView.as_view(), name="confirm"),
    path("<uuid:pk>/advance/", OrderAdvanceView.as_view(), name="advance"),
    path("<uuid:pk>/confirm-receipt/", ConfirmReceiptView.as_view(), name="confirm_receipt"),
    path("<uuid:pk>/cancel/", OrderCancelView.as_view(), name="cancel"),
]
