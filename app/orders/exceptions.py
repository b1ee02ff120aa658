"""
Order-specific exceptions.

Exception Hierarchy:
    ConflictError
    └── InvalidTransitionError - State change not allowed from current status
    PermissionDeniedError
    └── UnauthorizedActionError - Actor lacks the role/ownership for an action

Usage:
    from orders.exceptions import InvalidTransitionError

    raise InvalidTransitionError(
        "Cannot ship an order in 'pending' status",
        details={"current_status": "pending", "target_status": "shipped"},
    )
"""

from __future__ import annotations

from core.exceptions import ConflictError, PermissionDeniedError


class InvalidTransitionError(ConflictError):
    """
    Raised when a state machine transition is not allowed.

    Wraps django-fsm's TransitionNotAllowed in the standard error format.
    """

    default_error_code: str = "INVALID_TRANSITION"


class UnauthorizedActionError(PermissionDeniedError):
    """Raised when the actor's roles on an order do not grant an action."""

    default_error_code: str = "UNAUTHORIZED"


__all__ = [
    "InvalidTransitionError",
    "UnauthorizedActionError",
]
