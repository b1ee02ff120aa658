"""
Stripe API adapter for settlement operations.

This module provides the StripeAdapter class which encapsulates all
Stripe API interactions the settlement core needs: refunding a buyer,
transferring escrowed funds to a seller's connected account, checking
whether a transfer landed, and verifying webhooks. All Stripe calls go
through this adapter for consistent error handling, timeouts,
idempotency and logging.

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: Hard timeout on every API call (default: 30)

Usage:
    from payments.adapters import IdempotencyKeyGenerator, StripeAdapter

    result = StripeAdapter.transfer(
        recipient_code="acct_xxx",
        amount_cents=10000,
        currency="ghs",
        reference=f"escrow-{escrow.id}-1",
        idempotency_key=IdempotencyKeyGenerator.generate("transfer", escrow.id, 1),
    )

Note:
    Amounts are always integers in the smallest currency unit.
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

import stripe
from django.conf import settings

from payments.exceptions import (
    GatewayAuthenticationError,
    GatewayDeclinedError,
    GatewayError,
    GatewayInvalidAccountError,
    GatewayInvalidRequestError,
    GatewayRateLimitError,
    GatewayUnavailableError,
)


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class RefundResult:
    """
    Result from a gateway refund.

    Attributes:
        id: Refund ID (re_xxx)
        amount_cents: Refunded amount
        currency: Currency code
        status: Refund status (succeeded, pending, failed)
        payment_reference: Original charge reference (pi_xxx)
    """

    id: str
    amount_cents: int
    currency: str
    status: str
    payment_reference: str
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class TransferResult:
    """
    Result from a gateway transfer to a seller.

    Attributes:
        id: Transfer ID (tr_xxx)
        amount_cents: Amount transferred
        currency: Currency code
        recipient_code: Destination connected account (acct_xxx)
        reference: Our per-attempt reference (Stripe transfer_group)
    """

    id: str
    amount_cents: int
    currency: str
    recipient_code: str
    reference: str
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


class TransferStatus:
    """Outcome of verify_transfer()."""

    SUCCESS = "success"
    REVERSED = "reversed"
    NOT_FOUND = "not_found"


@dataclass
class TransferVerification:
    status: str
    transfer_id: str | None = None
    amount_cents: int | None = None


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The same inputs always give the same key, so a retry after a timeout
    replays the original request on Stripe's side instead of repeating it.

    Example:
        key = IdempotencyKeyGenerator.generate(
            operation="refund",
            entity_id=order.id,
            attempt=order.refund_amount_cents,
        )
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations.

    All methods are classmethods - no instance state is maintained.
    Thread-safe for use from Celery workers.

    Every operation raises a GatewayError subclass on failure; check
    is_retryable to tell a timeout or outage from a permanent rejection.
    """

    # Stripe only accepts a fixed set of refund reasons; the free-text
    # reason travels in metadata instead.
    REFUND_REASON = "requested_by_customer"

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _configure_stripe() -> None:
        """Configure Stripe client with API key and timeout."""
        stripe.api_key = settings.STRIPE_SECRET_KEY
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 30)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # Core Operations
    # =========================================================================

    @classmethod
    def refund(
        cls,
        reference: str,
        amount_cents: int,
        reason: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        """
        Refund part or all of a captured charge.

        Args:
            reference: Charge reference (PaymentIntent id, pi_xxx)
            amount_cents: Amount to refund
            reason: Free-text reason, stored in refund metadata
            idempotency_key: Key that makes a retried call safe

        Raises:
            GatewayUnavailableError: Timeout, outage or rate limit (retry)
            GatewayError: Permanent rejection
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "refund",
            "payment_reference": reference,
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            refund = stripe.Refund.create(
                idempotency_key=idempotency_key,
                payment_intent=reference,
                amount=amount_cents,
                reason=cls.REFUND_REASON,
                metadata={**(metadata or {}), "reason": reason[:500]},
            )

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "refund_id": refund.id,
                    "status": refund.status,
                    "duration_ms": duration_ms,
                },
            )

            return RefundResult(
                id=refund.id,
                amount_cents=refund.amount,
                currency=refund.currency,
                status=refund.status,
                payment_reference=refund.payment_intent,
                metadata=dict(refund.metadata or {}),
                raw_response=refund.to_dict(),
            )

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    @classmethod
    def transfer(
        cls,
        recipient_code: str,
        amount_cents: int,
        currency: str,
        reference: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> TransferResult:
        """
        Transfer funds from the platform balance to a seller.

        Args:
            recipient_code: Seller's connected account (acct_xxx)
            amount_cents: Amount to transfer
            currency: Currency code
            reference: Our per-attempt reference, sent as transfer_group
                so verify_transfer() can find it later
            idempotency_key: Key that makes a retried call safe

        Raises:
            GatewayUnavailableError: Timeout, outage or rate limit (retry)
            GatewayInvalidAccountError: Destination cannot receive funds
            GatewayError: Other permanent rejection
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "transfer",
            "amount_cents": amount_cents,
            "recipient_code": recipient_code,
            "reference": reference,
            "idempotency_key": idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            transfer = stripe.Transfer.create(
                idempotency_key=idempotency_key,
                amount=amount_cents,
                currency=currency,
                destination=recipient_code,
                transfer_group=reference,
                metadata=metadata or {},
            )

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "transfer_id": transfer.id,
                    "duration_ms": duration_ms,
                },
            )

            return TransferResult(
                id=transfer.id,
                amount_cents=transfer.amount,
                currency=transfer.currency,
                recipient_code=transfer.destination,
                reference=reference,
                metadata=dict(transfer.metadata or {}),
                raw_response=transfer.to_dict(),
            )

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    @classmethod
    def verify_transfer(cls, reference: str) -> TransferVerification:
        """
        Look up the transfer made under reference.

        Used after a timed-out release to learn whether the money moved.

        Returns:
            TransferVerification with status success, reversed or not_found
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {"operation": "verify_transfer", "reference": reference}

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            transfers = stripe.Transfer.list(transfer_group=reference, limit=10)

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "count": len(transfers.data),
                    "duration_ms": duration_ms,
                },
            )
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

        if not transfers.data:
            return TransferVerification(status=TransferStatus.NOT_FOUND)

        transfer = transfers.data[0]
        status = TransferStatus.REVERSED if transfer.reversed else TransferStatus.SUCCESS
        return TransferVerification(
            status=status,
            transfer_id=transfer.id,
            amount_cents=transfer.amount,
        )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    @classmethod
    def verify_webhook_signature(
        cls,
        payload: bytes,
        signature: str,
    ) -> dict[str, Any]:
        """
        Verify and parse a Stripe webhook event.

        Raises:
            GatewayInvalidRequestError: Invalid signature or payload
        """
        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                settings.STRIPE_WEBHOOK_SECRET,
            )
            return event.to_dict()
        except stripe.SignatureVerificationError as e:
            raise GatewayInvalidRequestError(
                "Invalid webhook signature",
                gateway_code="signature_verification_failed",
                details={"error": str(e)},
            ) from e
        except ValueError as e:
            raise GatewayInvalidRequestError(
                "Invalid webhook payload",
                gateway_code="invalid_payload",
            ) from e

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to domain exceptions.

        Raises:
            GatewayDeclinedError: Stripe refused the operation
            GatewayInvalidAccountError: Destination account unusable
            GatewayInvalidRequestError: Invalid request parameters
            GatewayAuthenticationError: API key rejected
            GatewayRateLimitError: Rate limited
            GatewayUnavailableError: Network error, timeout or 5xx
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, GatewayError):
            raise error

        if isinstance(error, stripe.CardError):
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "gateway_code": error.code},
            )
            raise GatewayDeclinedError(
                str(error.user_message or error),
                gateway_code=error.code,
            )

        elif isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "gateway_code": error.code},
            )

            if "account" in str(error).lower():
                raise GatewayInvalidAccountError(
                    str(error),
                    gateway_code=error.code,
                )

            if error.code in ("charge_already_refunded", "insufficient_funds"):
                raise GatewayDeclinedError(str(error), gateway_code=error.code)

            raise GatewayInvalidRequestError(
                str(error),
                gateway_code=error.code,
            )

        elif isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise GatewayRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                gateway_code="rate_limit",
            )

        elif isinstance(error, stripe.APIConnectionError):
            logger.error(
                "Connection error to Stripe",
                extra=log_context,
                exc_info=True,
            )
            raise GatewayUnavailableError(
                "Could not connect to Stripe. Please retry.",
                gateway_code="api_connection_error",
            )

        elif isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise GatewayAuthenticationError(
                "Stripe authentication failed",
                gateway_code="authentication_error",
            )

        elif isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise GatewayUnavailableError(
                "Stripe service error. Please retry.",
                gateway_code="api_error",
            )

        else:
            # Outcome unknown: treat as transient so nothing is assumed settled
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise GatewayUnavailableError(
                f"Unexpected Stripe error: {error}",
                gateway_code="unknown_error",
            )


__all__ = [
    "IdempotencyKeyGenerator",
    "RefundResult",
    "StripeAdapter",
    "TransferResult",
    "TransferStatus",
    "TransferVerification",
]
