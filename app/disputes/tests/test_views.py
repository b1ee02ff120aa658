"""
Tests for the disputes API views.

Tests follow pattern: test_<method>_<scenario>_<expected_outcome>
"""

import pytest
from rest_framework import status

from disputes.states import DisputeStatus, DisputeType
from disputes.tests.factories import DisputeFactory
from payments.exceptions import GatewayUnavailableError
from payments.models import Escrow

# =============================================================================
# URL Constants
# =============================================================================


DISPUTES_URL = "/api/v1/disputes/"
ALL_DISPUTES_URL = f"{DISPUTES_URL}all/"


def dispute_url(dispute_id, action=None):
    base = f"{DISPUTES_URL}{dispute_id}/"
    return f"{base}{action}/" if action else base


def eligibility_url(order_id):
    return f"{DISPUTES_URL}eligibility/{order_id}/"


@pytest.fixture
def dispute(buyer_client, delivered_order):
    response = buyer_client.post(
        DISPUTES_URL,
        {
            "order_id": str(delivered_order.id),
            "dispute_type": DisputeType.DAMAGED_ITEM,
            "description": "Screen cracked on arrival",
        },
        format="json",
    )
    assert response.status_code == status.HTTP_201_CREATED
    return response.data


# =============================================================================
# Tests
# =============================================================================


class TestDisputeListCreateView:
    def test_post_opens_dispute_returns_201(self, dispute, delivered_order):
        assert dispute["status"] == DisputeStatus.PENDING
        assert dispute["dispute_type"] == DisputeType.DAMAGED_ITEM
        assert Escrow.objects.get(order_id=delivered_order.id).frozen is True

    def test_post_twice_returns_409(self, dispute, buyer_client, delivered_order):
        response = buyer_client.post(
            DISPUTES_URL,
            {"order_id": str(delivered_order.id), "description": "Again"},
            format="json",
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "ALREADY_DISPUTED"

    def test_post_undelivered_order_returns_409(self, buyer_client, paid_order):
        response = buyer_client.post(
            DISPUTES_URL,
            {"order_id": str(paid_order.id), "description": "Where is it"},
            format="json",
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "INVALID_STATE"

    def test_post_outside_window_returns_422(self, buyer_client, delivered_order, fixed_clock):
        from datetime import timedelta

        fixed_clock.advance(timedelta(days=31))

        response = buyer_client.post(
            DISPUTES_URL,
            {"order_id": str(delivered_order.id), "description": "Late claim"},
            format="json",
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.data["error_code"] == "NOT_ELIGIBLE"

    def test_post_missing_description_returns_400(self, buyer_client, delivered_order):
        response = buyer_client.post(
            DISPUTES_URL, {"order_id": str(delivered_order.id)}, format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_post_as_outsider_returns_403(self, outsider_client, delivered_order):
        response = outsider_client.post(
            DISPUTES_URL,
            {"order_id": str(delivered_order.id), "description": "Not mine"},
            format="json",
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_get_lists_for_both_parties(self, dispute, buyer_client, seller_client, outsider_client):
        assert buyer_client.get(DISPUTES_URL).data["count"] == 1
        assert seller_client.get(DISPUTES_URL).data["count"] == 1
        assert outsider_client.get(DISPUTES_URL).data["count"] == 0

    def test_get_filters_by_status(self, dispute, buyer_client):
        response = buyer_client.get(DISPUTES_URL, {"status": DisputeStatus.RESOLVED})

        assert response.data["count"] == 0

    def test_get_unauthenticated_returns_401(self, api_client):
        assert api_client.get(DISPUTES_URL).status_code == status.HTTP_401_UNAUTHORIZED


class TestAllDisputesView:
    def test_get_as_admin_returns_every_dispute(self, staff_client):
        DisputeFactory.create_batch(2)

        response = staff_client.get(ALL_DISPUTES_URL)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["count"] == 2

    def test_get_as_buyer_returns_403(self, buyer_client):
        assert buyer_client.get(ALL_DISPUTES_URL).status_code == status.HTTP_403_FORBIDDEN


class TestRefundEligibilityView:
    def test_get_returns_eligibility(self, buyer_client, delivered_order):
        response = buyer_client.get(eligibility_url(delivered_order.id))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["eligible"] is True
        assert response.data["refundable_amount_cents"] == 10000

    def test_get_unknown_order_returns_404(self, buyer_client):
        response = buyer_client.get(eligibility_url("00000000-0000-0000-0000-000000000000"))

        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestDisputeDetailView:
    def test_get_as_party_returns_dispute(self, dispute, seller_client):
        response = seller_client.get(dispute_url(dispute["id"]))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["id"] == dispute["id"]

    def test_get_as_outsider_returns_403(self, dispute, outsider_client):
        response = outsider_client.get(dispute_url(dispute["id"]))

        assert response.status_code == status.HTTP_403_FORBIDDEN


class TestDisputeResolveView:
    def test_patch_upheld_refunds(self, dispute, staff_client, mock_gateway):
        response = staff_client.patch(
            dispute_url(dispute["id"], "resolve"),
            {"outcome": DisputeStatus.RESOLVED, "resolution": "Photos confirm damage"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == DisputeStatus.RESOLVED
        assert response.data["resolved_amount_cents"] == 10000
        assert response.data["requires_manual_intervention"] is False

    def test_patch_rejected(self, dispute, staff_client, mock_gateway):
        response = staff_client.patch(
            dispute_url(dispute["id"], "resolve"),
            {"outcome": DisputeStatus.CANCELLED, "resolution": "No evidence"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == DisputeStatus.CANCELLED
        mock_gateway.refund.assert_not_called()

    def test_patch_invalid_outcome_returns_400(self, dispute, staff_client):
        response = staff_client.patch(
            dispute_url(dispute["id"], "resolve"),
            {"outcome": "pending", "resolution": "x"},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_patch_as_buyer_returns_403(self, dispute, buyer_client, mock_gateway):
        response = buyer_client.patch(
            dispute_url(dispute["id"], "resolve"),
            {"outcome": DisputeStatus.RESOLVED, "resolution": "I win"},
            format="json",
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        mock_gateway.refund.assert_not_called()

    def test_patch_gateway_down_returns_503(self, dispute, staff_client, mock_gateway):
        mock_gateway.refund.side_effect = GatewayUnavailableError("timeout")

        response = staff_client.patch(
            dispute_url(dispute["id"], "resolve"),
            {"outcome": DisputeStatus.RESOLVED, "resolution": "Refund"},
            format="json",
        )

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.data["error_code"] == "GATEWAY_UNAVAILABLE"

    def test_patch_settled_dispute_returns_409(self, dispute, staff_client, mock_gateway):
        url = dispute_url(dispute["id"], "resolve")
        staff_client.patch(url, {"outcome": DisputeStatus.CANCELLED, "resolution": "No"}, format="json")

        response = staff_client.patch(
            url, {"outcome": DisputeStatus.RESOLVED, "resolution": "Yes"}, format="json"
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "INVALID_TRANSITION"


class TestDisputeCancelView:
    def test_patch_as_opener_withdraws(self, dispute, buyer_client, delivered_order):
        response = buyer_client.patch(dispute_url(dispute["id"], "cancel"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == DisputeStatus.CANCELLED
        assert Escrow.objects.get(order_id=delivered_order.id).frozen is False

    def test_patch_as_counterparty_returns_403(self, dispute, seller_client):
        response = seller_client.patch(dispute_url(dispute["id"], "cancel"))

        assert response.status_code == status.HTTP_403_FORBIDDEN
