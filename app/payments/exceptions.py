"""
Settlement exceptions for escrow, refund and gateway operations.

Exception Hierarchy:
    ExternalServiceError
    └── GatewayError - Base for all payment gateway errors
        ├── GatewayDeclinedError - Gateway refused the operation (permanent)
        ├── GatewayInvalidAccountError - Payout destination unusable (permanent)
        ├── GatewayInvalidRequestError - Malformed request (permanent)
        ├── GatewayRateLimitError - Rate limited (transient, retry)
        ├── GatewayUnavailableError - Network/5xx/timeout (transient, retry)
        └── GatewayAuthenticationError - Bad API key (permanent)

    ConflictError
    ├── StaleRecordError - Optimistic locking conflict
    └── LockAcquisitionError - Distributed lock timeout

Transient vs permanent:
    Every GatewayError carries is_retryable. Transient errors propagate to
    the caller (a Celery task retries them, an API request returns 503) and
    leave settlement state untouched. Permanent errors are recorded against
    the escrow or refund attempt and returned as a failed ServiceResult.

Usage:
    from payments.exceptions import GatewayError, GatewayUnavailableError

    try:
        StripeAdapter.transfer(...)
    except GatewayError as e:
        if e.is_retryable:
            raise GatewayUnavailableError(e.message, details=e.details) from e
        mark_release_failed(e.message)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import ConflictError, ExternalServiceError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(ExternalServiceError):
    """
    Base exception for all payment gateway errors.

    Attributes:
        gateway_code: The gateway's own error code, when it sent one
        is_retryable: Whether the same request may succeed later
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        gateway_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if gateway_code:
            details["gateway_code"] = gateway_code
        super().__init__(message, error_code=error_code, details=details)
        self.gateway_code = gateway_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class GatewayDeclinedError(GatewayError):
    """
    The gateway refused the operation (e.g. charge already fully refunded).

    Retrying the same request will not succeed.
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False


class GatewayInvalidAccountError(GatewayError):
    """
    The payout destination cannot receive funds.

    Raised when the seller's connected account is missing, disabled or
    not onboarded. Needs the seller to fix their payout account before an
    operator retries the release.
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False


class GatewayInvalidRequestError(GatewayError):
    """
    Invalid request parameters sent to the gateway.

    This usually indicates a bug in our code, not a user error.
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False


class GatewayAuthenticationError(GatewayError):
    """The configured API key was rejected."""

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with backoff)
# -----------------------------------------------------------------------------


class GatewayUnavailableError(GatewayError):
    """
    The gateway could not be reached or did not answer in time.

    IMPORTANT: The operation may have succeeded on the gateway's side.
    Retries must reuse the same idempotency key so a duplicate request
    returns the original result instead of moving money twice.
    """

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


class GatewayRateLimitError(GatewayUnavailableError):
    """Rate limited by the gateway. Retry with exponential backoff."""

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


# =============================================================================
# Settlement Conflicts
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects concurrent modification.

    The record was modified by another process between read and update.
    The caller should retry with fresh data or abort.
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """
    Raised when the per-order settlement lock cannot be acquired in time.

    Another worker is settling the same order. The operation is safe to
    retry once that worker finishes.
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


__all__ = [
    "GatewayAuthenticationError",
    "GatewayDeclinedError",
    "GatewayError",
    "GatewayInvalidAccountError",
    "GatewayInvalidRequestError",
    "GatewayRateLimitError",
    "GatewayUnavailableError",
    "LockAcquisitionError",
    "StaleRecordError",
]
