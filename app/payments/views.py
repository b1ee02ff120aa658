"""
DRF views for the escrow API.

This module provides API views for:
- Escrow status for an order (buyer, seller, admin)
- Pending escrow listing (admin)
- Refund attempt ledger for reconciliation (admin)
- Operator retry of a failed release (admin)
- Transfer verification against the gateway (admin)

Related files:
    - services.py: EscrowService, RefundService
    - serializers.py: Request/response serializers
    - escrow_urls.py: URL routing

Endpoints:
    GET /api/v1/escrow/order/{order_id}/ - Escrow for an order
    GET /api/v1/escrow/pending/ - Pending escrows, soonest release first
    GET /api/v1/escrow/order/{order_id}/refund-attempts/ - Refund attempt ledger
    POST /api/v1/escrow/{id}/retry-release/ - Retry a failed release
    POST /api/v1/escrow/{id}/verify-release/ - Verify latest transfer

Security:
    - All endpoints require authentication
    - Role checks happen in the service layer via orders.capabilities
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.views import error_response, failure_response
from payments.exceptions import GatewayUnavailableError, LockAcquisitionError
from payments.serializers import (
    EscrowSerializer,
    EscrowViewSerializer,
    RefundAttemptSerializer,
    ReleaseVerificationSerializer,
    RetryReleaseSerializer,
)
from payments.services import EscrowService, RefundService

logger = logging.getLogger(__name__)


class EscrowForOrderView(APIView):
    """
    Get the escrow holding an order's payment.

    GET /api/v1/escrow/order/{order_id}/

    Returns:
        Escrow details and can_confirm_receipt, or 404 if the order has no
        escrow (points orders never do)
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_order_escrow",
        summary="Get escrow for order",
        responses={
            200: EscrowViewSerializer,
            403: OpenApiResponse(description="Not a party to this order"),
            404: OpenApiResponse(description="Order or escrow not found"),
        },
        tags=["Escrow"],
    )
    def get(self, request, order_id):
        result = EscrowService.get_for_order(order_id, request.user)
        if not result.success:
            return failure_response(result)
        return Response(EscrowViewSerializer(result.data).data)


class PendingEscrowListView(APIView):
    """
    List PENDING escrows for operators.

    GET /api/v1/escrow/pending/

    Returns:
        Paginated escrows, soonest release_date first, unscheduled last
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_pending_escrows",
        summary="List pending escrows",
        responses={
            200: EscrowSerializer(many=True),
            403: OpenApiResponse(description="Admin only"),
        },
        tags=["Escrow"],
    )
    def get(self, request):
        result = EscrowService.list_pending(request.user)
        if not result.success:
            return failure_response(result)

        paginator = PageNumberPagination()
        page = paginator.paginate_queryset(result.data, request, view=self)
        return paginator.get_paginated_response(EscrowSerializer(page, many=True).data)


class RefundAttemptListView(APIView):
    """
    Every gateway refund call made for an order, successful or not.

    GET /api/v1/escrow/order/{order_id}/refund-attempts/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_refund_attempts",
        summary="List refund attempts",
        responses={
            200: RefundAttemptSerializer(many=True),
            403: OpenApiResponse(description="Admin only"),
        },
        tags=["Escrow"],
    )
    def get(self, request, order_id):
        result = RefundService.attempts_for_order(order_id, request.user)
        if not result.success:
            return failure_response(result)

        paginator = PageNumberPagination()
        page = paginator.paginate_queryset(result.data, request, view=self)
        return paginator.get_paginated_response(RefundAttemptSerializer(page, many=True).data)


class RetryReleaseView(APIView):
    """
    Re-attempt a FAILED release.

    POST /api/v1/escrow/{id}/retry-release/

    Request:
        {"version": 3}  # optional

    Returns:
        The escrow after the attempt. A retry whose transfer is rejected
        again responds 502 with RELEASE_FAILED; a gateway outage responds
        503 and leaves the escrow as it was.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="retry_escrow_release",
        summary="Retry failed release",
        request=RetryReleaseSerializer,
        responses={
            200: EscrowSerializer,
            403: OpenApiResponse(description="Admin only"),
            409: OpenApiResponse(description="Stale version or escrow not FAILED"),
            503: OpenApiResponse(description="Gateway unavailable"),
        },
        tags=["Escrow"],
    )
    def post(self, request, pk):
        serializer = RetryReleaseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = EscrowService.retry_failed_release(
                pk,
                request.user,
                expected_version=serializer.validated_data.get("version"),
            )
        except (GatewayUnavailableError, LockAcquisitionError) as e:
            logger.warning(
                "Release retry could not complete",
                extra={"escrow_id": str(pk), "error_code": e.error_code},
            )
            return error_response(e)

        if not result.success:
            return failure_response(result)
        return Response(EscrowSerializer(result.data).data)


class VerifyReleaseView(APIView):
    """
    Ask the gateway whether the latest transfer for an escrow landed.

    POST /api/v1/escrow/{id}/verify-release/

    Returns:
        transfer_status (success, reversed, not_found) and whether the
        escrow was settled as RELEASED by this call
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="verify_escrow_release",
        summary="Verify release with gateway",
        request=None,
        responses={
            200: ReleaseVerificationSerializer,
            403: OpenApiResponse(description="Admin only"),
            409: OpenApiResponse(description="No transfer attempted"),
            503: OpenApiResponse(description="Gateway unavailable"),
        },
        tags=["Escrow"],
    )
    def post(self, request, pk):
        try:
            result = EscrowService.verify_release(pk, request.user)
        except (GatewayUnavailableError, LockAcquisitionError) as e:
            return error_response(e)

        if not result.success:
            return failure_response(result)
        return Response(ReleaseVerificationSerializer(result.data).data)
