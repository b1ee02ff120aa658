"""
Webhook endpoint for Stripe payment events.

The view:
1. Verifies the webhook signature
2. Finds the order named in the PaymentIntent metadata
3. Records the payment outcome through OrderService (idempotent)
4. Returns 200 so Stripe stops retrying

Events Handled:
    - payment_intent.succeeded: payment SUCCESS, escrow opened
    - payment_intent.payment_failed: payment FAILED

Other event types are acknowledged and ignored.

Usage:
    # In urls.py
    from payments.webhooks import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from __future__ import annotations

import logging
import uuid

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from orders.services import OrderService
from payments.adapters import StripeAdapter
from payments.exceptions import (
    GatewayInvalidRequestError,
    GatewayUnavailableError,
    LockAcquisitionError,
)

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive a Stripe webhook and record the payment outcome.

    Security:
    - Signature verification prevents spoofed webhooks
    - CSRF exemption required for external webhooks
    - Only POST requests accepted

    Idempotency:
    - Recording the same outcome twice is a no-op, so Stripe's retries
      are harmless

    Returns:
        HttpResponse with status:
        - 200: Event handled, duplicate, or ignored
        - 400: Invalid signature or payload
        - 503: Order busy or gateway unavailable; Stripe retries later
    """
    payload = request.body
    signature = request.headers.get("Stripe-Signature", "")

    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return HttpResponse("Missing signature", status=400)

    try:
        event_data = StripeAdapter.verify_webhook_signature(payload, signature)
    except GatewayInvalidRequestError as e:
        logger.warning("Webhook signature verification failed", extra={"error": str(e)})
        return HttpResponse("Invalid signature", status=400)

    event_id = event_data.get("id")
    event_type = event_data.get("type")
    if not event_id or not event_type:
        logger.warning("Webhook missing required fields")
        return HttpResponse("Invalid event", status=400)

    if event_type not in (PAYMENT_SUCCEEDED, PAYMENT_FAILED):
        logger.debug("Ignoring webhook event type", extra={"event_type": event_type})
        return HttpResponse("Ignored", status=200)

    intent = event_data.get("data", {}).get("object", {})
    order_id = (intent.get("metadata") or {}).get("order_id")
    log_context = {
        "stripe_event_id": event_id,
        "event_type": event_type,
        "payment_reference": intent.get("id"),
        "order_id": order_id,
    }
    logger.info(f"Received Stripe webhook: {event_type}", extra=log_context)

    if not order_id:
        logger.warning("PaymentIntent has no order_id metadata", extra=log_context)
        return HttpResponse("Ignored", status=200)

    try:
        order_id = uuid.UUID(str(order_id))
    except ValueError:
        logger.warning("PaymentIntent order_id is not a valid id", extra=log_context)
        return HttpResponse("Ignored", status=200)

    try:
        if event_type == PAYMENT_SUCCEEDED:
            result = OrderService.record_payment_success(order_id, intent.get("id", ""))
        else:
            error = (intent.get("last_payment_error") or {}).get("message", "")
            result = OrderService.record_payment_failure(order_id, error)
    except LockAcquisitionError:
        logger.warning("Order busy, asking Stripe to retry", extra=log_context)
        return HttpResponse("Busy", status=503)
    except GatewayUnavailableError:
        logger.warning("Gateway unavailable, asking Stripe to retry", extra=log_context)
        return HttpResponse("Gateway unavailable", status=503)

    if not result.success:
        logger.warning(
            f"Webhook not applied: {result.error}",
            extra={**log_context, "error_code": result.error_code},
        )
    return HttpResponse("Accepted", status=200)
