"""
URL configuration for the escrow API.

Routes:
    - GET /order/{order_id}/ - Escrow for an order
    - GET /pending/ - Pending escrows (admin)
    - GET /order/{order_id}/refund-attempts/ - Refund attempt ledger (admin)
    - POST /{id}/retry-release/ - Retry a failed release (admin)
    - POST /{id}/verify-release/ - Verify latest transfer (admin)

All routes are prefixed with /api/v1/escrow/ when included in the main URLconf.
"""

from django.urls import path

from payments.views import (
    EscrowForOrderView,
    PendingEscrowListView,
    RefundAttemptListView,
    RetryReleaseView,
    VerifyReleaseView,
)

app_name = "escrow"

urlpatterns = [
    path("order/<uuid:order_id>/", EscrowForOrderView.as_view(), name="order_escrow"),
    path(
        "order/<uuid:order_id>/refund-attempts/",
        RefundAttemptListView.as_view(),
        name="refund_attempts",
    ),
    path("pending/", PendingEscrowListView.as_view(), name="pending"),
    path("<uuid:pk>/retry-release/", RetryReleaseView.as_view(), name="retry_release"),
    path("<uuid:pk>/verify-release/", VerifyReleaseView.as_view(), name="verify_release"),
]
