"""
Views for the disputes API.

Endpoints:
    GET /api/v1/disputes/ - Disputes where the user is buyer or seller
    POST /api/v1/disputes/ - Open a dispute
    GET /api/v1/disputes/all/ - Every dispute (admin)
    GET /api/v1/disputes/eligibility/{order_id}/ - Refund eligibility
    GET /api/v1/disputes/{id}/ - Dispute detail
    PATCH /api/v1/disputes/{id}/resolve/ - Adjudicate (admin)
    PATCH /api/v1/disputes/{id}/cancel/ - Withdraw (opener only)
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
)
from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.views import error_response, failure_response
from disputes.serializers import (
    DisputeSerializer,
    OpenDisputeSerializer,
    RefundEligibilitySerializer,
    ResolveDisputeSerializer,
)
from disputes.services import DisputeService
from payments.exceptions import GatewayUnavailableError, LockAcquisitionError

logger = logging.getLogger(__name__)

FILTER_PARAMETERS = [
    OpenApiParameter(
        name="status",
        type=str,
        location=OpenApiParameter.QUERY,
        description="Filter by status (pending, resolved, cancelled)",
        required=False,
    ),
    OpenApiParameter(
        name="type",
        type=str,
        location=OpenApiParameter.QUERY,
        description="Filter by dispute type",
        required=False,
    ),
]


def _paginated(view, request, queryset):
    paginator = PageNumberPagination()
    page = paginator.paginate_queryset(queryset, request, view=view)
    return paginator.get_paginated_response(DisputeSerializer(page, many=True).data)


class DisputeListCreateView(APIView):
    """
    List the user's disputes or open a new one.

    Opening freezes the order's escrow until the dispute is resolved,
    rejected or withdrawn.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_disputes",
        summary="List my disputes",
        parameters=FILTER_PARAMETERS,
        responses={200: DisputeSerializer(many=True)},
        tags=["Disputes"],
    )
    def get(self, request):
        queryset = DisputeService.list_for_user(
            request.user,
            status=request.query_params.get("status"),
            dispute_type=request.query_params.get("type"),
        )
        return _paginated(self, request, queryset)

    @extend_schema(
        operation_id="open_dispute",
        summary="Open dispute",
        request=OpenDisputeSerializer,
        responses={
            201: DisputeSerializer,
            409: OpenApiResponse(description="Already disputed or order not delivered"),
            422: OpenApiResponse(description="Outside the refund window or not refundable"),
        },
        tags=["Disputes"],
    )
    def post(self, request):
        serializer = OpenDisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            result = DisputeService.open_dispute(
                data["order_id"],
                request.user,
                data["dispute_type"],
                data["description"],
            )
        except LockAcquisitionError as e:
            return error_response(e)

        if not result.success:
            return failure_response(result)
        return Response(DisputeSerializer(result.data).data, status=status.HTTP_201_CREATED)


class AllDisputesView(APIView):
    """Every dispute, for adjudicators."""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_all_disputes",
        summary="List all disputes",
        parameters=FILTER_PARAMETERS,
        responses={
            200: DisputeSerializer(many=True),
            403: OpenApiResponse(description="Admin only"),
        },
        tags=["Disputes"],
    )
    def get(self, request):
        result = DisputeService.list_all(
            request.user,
            status=request.query_params.get("status"),
            dispute_type=request.query_params.get("type"),
        )
        if not result.success:
            return failure_response(result)
        return _paginated(self, request, result.data)


class RefundEligibilityView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="check_refund_eligibility",
        summary="Check refund eligibility",
        responses={
            200: RefundEligibilitySerializer,
            404: OpenApiResponse(description="Order not found"),
        },
        tags=["Disputes"],
    )
    def get(self, request, order_id):
        result = DisputeService.check_refund_eligibility(order_id, request.user)
        if not result.success:
            return failure_response(result)
        return Response(RefundEligibilitySerializer(result.data).data)


class DisputeDetailView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_dispute",
        summary="Get dispute",
        responses={
            200: DisputeSerializer,
            403: OpenApiResponse(description="Not a party to this dispute"),
            404: OpenApiResponse(description="Dispute not found"),
        },
        tags=["Disputes"],
    )
    def get(self, request, pk):
        result = DisputeService.get_dispute(pk, request.user)
        if not result.success:
            return failure_response(result)
        return Response(DisputeSerializer(result.data).data)


class DisputeResolveView(APIView):
    """
    Adjudicate a dispute.

    A response with requires_manual_intervention=true means the claim was
    upheld after the funds had already been released; finance must refund
    the buyer by hand.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="resolve_dispute",
        summary="Resolve dispute",
        request=ResolveDisputeSerializer,
        responses={
            200: DisputeSerializer,
            403: OpenApiResponse(description="Admin only"),
            409: OpenApiResponse(description="Dispute already settled or refund exceeds total"),
            503: OpenApiResponse(description="Gateway unavailable; retry"),
        },
        tags=["Disputes"],
    )
    def patch(self, request, pk):
        serializer = ResolveDisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            result = DisputeService.resolve(
                pk,
                request.user,
                data["outcome"],
                data["resolution"],
                refund_amount_cents=data.get("refund_amount_cents"),
            )
        except (GatewayUnavailableError, LockAcquisitionError) as e:
            logger.warning(
                "Dispute resolution could not complete",
                extra={"dispute_id": str(pk), "error_code": e.error_code},
            )
            return error_response(e)

        if not result.success:
            return failure_response(result)
        return Response(DisputeSerializer(result.data).data)


class DisputeCancelView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="cancel_dispute",
        summary="Withdraw dispute",
        request=None,
        responses={
            200: DisputeSerializer,
            403: OpenApiResponse(description="Only the opener can withdraw"),
            409: OpenApiResponse(description="Dispute already settled"),
        },
        tags=["Disputes"],
    )
    def patch(self, request, pk):
        try:
            result = DisputeService.cancel(pk, request.user)
        except LockAcquisitionError as e:
            return error_response(e)

        if not result.success:
            return failure_response(result)
        return Response(DisputeSerializer(result.data).data)
