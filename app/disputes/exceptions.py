"""
Dispute-specific exceptions.

Exception Hierarchy:
    ValidationError
    └── NotEligibleError - Order is outside the refund/dispute rules
    ConflictError
    └── AlreadyDisputedError - Order already has a PENDING dispute

Usage:
    from disputes.exceptions import NotEligibleError

    raise NotEligibleError(
        "Refund window has expired",
        details={"order_id": str(order.id)},
    )
"""

from __future__ import annotations

from core.exceptions import ConflictError, ValidationError


class NotEligibleError(ValidationError):
    """Raised when an order may not be disputed or refunded."""

    default_error_code: str = "NOT_ELIGIBLE"


class AlreadyDisputedError(ConflictError):
    """Raised when the order already has a dispute under review."""

    default_error_code: str = "ALREADY_DISPUTED"


__all__ = [
    "AlreadyDisputedError",
    "NotEligibleError",
]
