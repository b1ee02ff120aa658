"""
URL configuration for the settlement service.

URL Structure:
    /                                    - ReDoc API documentation
    /admin/                              - Django admin interface
    /health/                             - Health check endpoint
    /schema/                             - OpenAPI schema (YAML)
    /api/v1/auth/
        token/                           - Obtain JWT pair (POST)
        token/refresh/                   - Refresh access token (POST)
    /api/v1/orders/
        (root)                           - List own orders (GET), checkout (POST)
        redeem-points/                   - Points redemption order (POST)
        {id}/                            - Order detail (GET)
        {id}/history/                    - Status history (GET)
        {id}/confirm/                    - Seller/admin confirms (POST)
        {id}/advance/                    - Advance delivery status (POST)
        {id}/confirm-receipt/            - Buyer confirms receipt (POST)
        {id}/cancel/                     - Cancel order (POST)
    /api/v1/escrow/
        order/{order_id}/                - Escrow for an order (GET)
        pending/                         - Pending escrows (GET, admin)
        {id}/retry-release/              - Retry failed release (POST, admin)
        {id}/verify-release/             - Verify transfer with gateway (POST, admin)
    /api/v1/payments/
        webhooks/stripe/                 - Stripe webhook endpoint (POST)
    /api/v1/disputes/
        (root)                           - List own disputes (GET), open (POST)
        all/                             - All disputes (GET, admin)
        eligibility/{order_id}/          - Refund eligibility (GET)
        {id}/                            - Dispute detail (GET)
        {id}/resolve/                    - Resolve (PATCH, admin)
        {id}/cancel/                     - Withdraw (PATCH)
    /api/v1/notifications/
        (root)                           - List notifications (GET)
        {id}/read/                       - Mark as read (POST)
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
api_v1_patterns = [
    path("auth/", include("authentication.urls")),
    path("orders/", include("orders.urls")),
    path("escrow/", include("payments.escrow_urls")),
    path("payments/", include("payments.urls")),
    path("disputes/", include("disputes.urls")),
    path("notifications/", include("notifications.urls")),
]

urlpatterns = [
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    path("admin/", admin.site.urls),
    path("health/", health_check, name="health_check"),
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Marketplace Settlement Admin"
admin.site.site_title = "Settlement Admin"
admin.site.index_title = "Orders, escrow and disputes"
