"""
Tests for the Stripe webhook handler.

Signature verification is patched out; each test feeds the handler the
event dict StripeAdapter.verify_webhook_signature would have returned.
"""

import json

import pytest

from orders.models import Order
from orders.states import PaymentStatus
from payments.adapters import StripeAdapter
from payments.exceptions import GatewayInvalidRequestError, GatewayUnavailableError
from payments.models import Escrow
from payments.states import EscrowStatus

WEBHOOK_URL = "/api/v1/payments/webhooks/stripe/"


def _event(event_type, order_id=None, intent_id="pi_webhook_1", **intent_fields):
    metadata = {"order_id": str(order_id)} if order_id else {}
    return {
        "id": "evt_test_1",
        "type": event_type,
        "data": {"object": {"id": intent_id, "metadata": metadata, **intent_fields}},
    }


@pytest.fixture
def verified_event(mocker):
    """Patch signature verification; set .return_value to the event."""
    return mocker.patch.object(StripeAdapter, "verify_webhook_signature")


def _post(client, signature="t=1,v1=abc"):
    headers = {"HTTP_STRIPE_SIGNATURE": signature} if signature else {}
    return client.post(
        WEBHOOK_URL,
        data=json.dumps({"any": "payload"}),
        content_type="application/json",
        **headers,
    )


@pytest.mark.django_db
class TestStripeWebhook:
    def test_missing_signature_returns_400(self, client, verified_event):
        response = _post(client, signature="")

        assert response.status_code == 400
        verified_event.assert_not_called()

    def test_invalid_signature_returns_400(self, client, verified_event):
        verified_event.side_effect = GatewayInvalidRequestError("Invalid webhook signature")

        response = _post(client)

        assert response.status_code == 400

    def test_payment_succeeded_opens_escrow(self, client, verified_event, placed_order):
        verified_event.return_value = _event("payment_intent.succeeded", placed_order.id)

        response = _post(client)

        assert response.status_code == 200
        order = Order.objects.get(id=placed_order.id)
        assert order.payment_status == PaymentStatus.SUCCESS
        assert order.payment_reference == "pi_webhook_1"
        assert Escrow.objects.filter(order=order).count() == 1

    def test_redelivered_event_is_harmless(self, client, verified_event, placed_order):
        verified_event.return_value = _event("payment_intent.succeeded", placed_order.id)

        _post(client)
        response = _post(client)

        assert response.status_code == 200
        assert Escrow.objects.filter(order_id=placed_order.id).count() == 1

    def test_payment_failed_marks_order(self, client, verified_event, placed_order):
        verified_event.return_value = _event(
            "payment_intent.payment_failed",
            placed_order.id,
            last_payment_error={"message": "Card declined"},
        )

        response = _post(client)

        assert response.status_code == 200
        assert Order.objects.get(id=placed_order.id).payment_status == PaymentStatus.FAILED

    def test_late_failure_after_success_is_acknowledged(self, client, verified_event, paid_order):
        verified_event.return_value = _event("payment_intent.payment_failed", paid_order.id)

        response = _post(client)

        assert response.status_code == 200
        assert Order.objects.get(id=paid_order.id).payment_status == PaymentStatus.SUCCESS

    def test_other_event_types_ignored(self, client, verified_event):
        verified_event.return_value = _event("charge.refunded")

        response = _post(client)

        assert response.status_code == 200
        assert response.content == b"Ignored"

    def test_missing_order_metadata_ignored(self, client, verified_event):
        verified_event.return_value = _event("payment_intent.succeeded")

        response = _post(client)

        assert response.status_code == 200
        assert response.content == b"Ignored"

    def test_non_uuid_order_metadata_ignored(self, client, verified_event):
        verified_event.return_value = _event("payment_intent.succeeded", "order-42")

        response = _post(client)

        assert response.status_code == 200
        assert response.content == b"Ignored"

    def test_success_after_failed_attempt_opens_escrow(
        self, client, verified_event, placed_order
    ):
        verified_event.return_value = _event("payment_intent.payment_failed", placed_order.id)
        _post(client)
        verified_event.return_value = _event(
            "payment_intent.succeeded", placed_order.id, intent_id="pi_retry_ok"
        )

        response = _post(client)

        assert response.status_code == 200
        order = Order.objects.get(id=placed_order.id)
        assert order.payment_status == PaymentStatus.SUCCESS
        assert Escrow.objects.get(order=order).payment_reference == "pi_retry_ok"

    def test_late_payment_refund_outage_asks_for_retry(
        self, client, verified_event, placed_order, buyer, mock_gateway
    ):
        from orders.services import OrderService

        OrderService.cancel(placed_order.id, buyer, "Changed my mind")
        mock_gateway.refund.side_effect = GatewayUnavailableError("timeout")
        verified_event.return_value = _event("payment_intent.succeeded", placed_order.id)

        assert _post(client).status_code == 503

        mock_gateway.refund.side_effect = None
        response = _post(client)

        assert response.status_code == 200
        order = Order.objects.get(id=placed_order.id)
        assert order.payment_status == PaymentStatus.REFUNDED
        assert Escrow.objects.get(order=order).release_status == EscrowStatus.REFUNDED

    def test_malformed_event_returns_400(self, client, verified_event):
        verified_event.return_value = {"type": "payment_intent.succeeded"}

        assert _post(client).status_code == 400

    def test_busy_order_asks_for_retry(
        self, client, verified_event, placed_order, mock_redis_lock, settings
    ):
        settings.SETTLEMENT_LOCK_TIMEOUT_SECONDS = 0
        mock_redis_lock.set.return_value = False
        verified_event.return_value = _event("payment_intent.succeeded", placed_order.id)

        response = _post(client)

        assert response.status_code == 503
        assert Order.objects.get(id=placed_order.id).payment_status == PaymentStatus.PENDING

    def test_get_not_allowed(self, client):
        assert client.get(WEBHOOK_URL).status_code == 405
