"""
Core views providing infrastructure endpoints and API error mapping.

This module contains views that are not part of the business domain but are
essential for application infrastructure, such as health checks, plus the
helpers every domain view uses to turn a failed ServiceResult or an
application error into an HTTP response.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import connection
from django.http import JsonResponse
from rest_framework import status
from rest_framework.response import Response

if TYPE_CHECKING:
    from core.exceptions import BaseApplicationError
    from core.services import ServiceResult


# =============================================================================
# Error code -> HTTP status
# =============================================================================

ERROR_STATUS_CODES: dict[str, int] = {
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "INVALID_AMOUNT": status.HTTP_400_BAD_REQUEST,
    "INSUFFICIENT_STOCK": status.HTTP_400_BAD_REQUEST,
    "INSUFFICIENT_POINTS": status.HTTP_400_BAD_REQUEST,
    "UNAUTHORIZED": status.HTTP_403_FORBIDDEN,
    "PERMISSION_DENIED": status.HTTP_403_FORBIDDEN,
    "NOT_OWNER": status.HTTP_403_FORBIDDEN,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "ORDER_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "ESCROW_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "DISPUTE_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PRODUCT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "STORE_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "INVALID_TRANSITION": status.HTTP_409_CONFLICT,
    "INVALID_STATE": status.HTTP_409_CONFLICT,
    "ALREADY_DISPUTED": status.HTTP_409_CONFLICT,
    "DISPUTE_OPEN": status.HTTP_409_CONFLICT,
    "ESCROW_FROZEN": status.HTTP_409_CONFLICT,
    "REQUIRES_MANUAL_INTERVENTION": status.HTTP_409_CONFLICT,
    "REFUND_EXCEEDS_TOTAL": status.HTTP_409_CONFLICT,
    "LOCK_ACQUISITION_FAILED": status.HTTP_409_CONFLICT,
    "STALE_RECORD": status.HTTP_409_CONFLICT,
    "NOT_ELIGIBLE": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "GATEWAY_UNAVAILABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
    "GATEWAY_ERROR": status.HTTP_502_BAD_GATEWAY,
    "RELEASE_FAILED": status.HTTP_502_BAD_GATEWAY,
}


def status_for_error_code(error_code: str | None) -> int:
    """HTTP status for a stable error code; unknown codes map to 400."""
    return ERROR_STATUS_CODES.get(error_code or "", status.HTTP_400_BAD_REQUEST)


def failure_response(result: ServiceResult) -> Response:
    """
    Build a DRF response for a failed ServiceResult.

    Example:
        result = OrderService.cancel(order_id, request.user, reason)
        if not result.success:
            return failure_response(result)
    """
    return Response(result.to_response(), status=status_for_error_code(result.error_code))


def error_response(exc: BaseApplicationError) -> Response:
    """
    Build a DRF response for a raised application error.

    Only the message and error code leave the server; the exception's
    details stay in the logs.
    """
    body = {"success": False, "error": exc.message, "error_code": exc.error_code}
    return Response(body, status=status_for_error_code(exc.error_code))


def health_check(request):
    """
    Health check endpoint for monitoring and orchestration.

    Returns:
        JsonResponse with status and component health:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "disconnected"
        - cache: "connected" or "disconnected"

    HTTP Status Codes:
        200: All systems operational
        503: Database unreachable
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
    }
    is_healthy = True

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except Exception:
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        is_healthy = False

    # Cache failure is not critical (graceful degradation)
    try:
        from django.core.cache import cache

        cache.set("health_check", "ok", timeout=1)
        if cache.get("health_check") == "ok":
            health_status["cache"] = "connected"
        else:
            health_status["cache"] = "disconnected"
    except Exception:
        health_status["cache"] = "disconnected"

    status_code = 200 if is_healthy else 503

    return JsonResponse(health_status, status=status_code)
