"""
Payment gateway adapters.

All gateway API calls go through these adapters for consistent error
handling, timeouts, idempotency and logging.

Usage:
    from payments.adapters import StripeAdapter

    result = StripeAdapter.refund(
        reference="pi_xxx",
        amount_cents=5000,
        reason="Item not received",
        idempotency_key=key,
    )
"""

from payments.adapters.stripe_adapter import (
    IdempotencyKeyGenerator,
    RefundResult,
    StripeAdapter,
    TransferResult,
    TransferStatus,
    TransferVerification,
)

__all__ = [
    "IdempotencyKeyGenerator",
    "RefundResult",
    "StripeAdapter",
    "TransferResult",
    "TransferStatus",
    "TransferVerification",
]
