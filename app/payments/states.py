"""
State enums for settlement models.

Escrow Release Status:
    pending → released | refunded | failed
    failed → released (operator retry only)

RefundAttempt Status:
    success | failed (append-only, never changes)
"""

from django.db import models


class EscrowStatus(models.TextChoices):
    """
    States for Escrow.release_status.

    Terminal states: RELEASED, REFUNDED
    FAILED needs an operator: retry_failed_release or a manual refund.
    """

    PENDING = "pending", "Pending"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"
    FAILED = "failed", "Failed"


class ReleaseReason(models.TextChoices):
    """Why an escrow was released."""

    BUYER_CONFIRMED = "buyer_confirmed", "Buyer Confirmed Receipt"
    AUTO_TIMER_EXPIRED = "auto_timer_expired", "Release Window Expired"
    OPERATOR_RETRY = "operator_retry", "Operator Retry"


class RefundAttemptStatus(models.TextChoices):
    SUCCESS = "success", "Success"
    FAILED = "failed", "Failed"
