"""
URL configuration for the disputes API.

Routes:
    /                          - List own disputes (GET), open (POST)
    /all/                      - All disputes (GET, admin)
    /eligibility/{order_id}/   - Refund eligibility (GET)
    /{id}/                     - Dispute detail (GET)
    /{id}/resolve/             - Adjudicate (PATCH, admin)
    /{id}/cancel/              - Withdraw (PATCH)
"""

from django.urls import path

from disputes.views import (
    AllDisputesView,
    DisputeCancelView,
    DisputeDetailView,
    DisputeListCreateView,
    DisputeResolveView,
    RefundEligibilityView,
)

app_name = "disputes"

urlpatterns = [
    path("", DisputeListCreateView.as_view(), name="list_create"),
    path("all/", AllDisputesView.as_view(), name="all"),
    path("eligibility/<uuid:order_id>/", RefundEligibilityView.as_view(), name="eligibility"),
    path("<uuid:pk>/", DisputeDetailView.as_view(), name="detail"),
    path("<uuid:pk>/resolve/", DisputeResolveView.as_view(), name="resolve"),
    path("<uuid:pk>/cancel/", DisputeCancelView.as_view(), name="cancel"),
]
