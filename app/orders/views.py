"""
DRF views for the orders API.

This module provides API views for:
- Checkout and points redemption
- Order listing and detail (buyer or seller side)
- Seller confirmation and delivery progression
- Buyer receipt confirmation and cancellation

Related files:
    - services.py: OrderService
    - serializers.py: Request/response serializers
    - urls.py: URL routing

Endpoints:
    GET /api/v1/orders/ - Own orders (?as_seller=true for the store side)
    POST /api/v1/orders/ - Checkout
    POST /api/v1/orders/redeem-points/ - Checkout paid with points
    GET /api/v1/orders/{id}/ - Order detail
    GET /api/v1/orders/{id}/history/ - Status history
    POST /api/v1/orders/{id}/confirm/ - Confirm a paid order
    POST /api/v1/orders/{id}/advance/ - Advance delivery status
    POST /api/v1/orders/{id}/confirm-receipt/ - Buyer confirms receipt
    POST /api/v1/orders/{id}/cancel/ - Cancel

Security:
    - All endpoints require authentication
    - Role checks happen in the service layer via orders.capabilities
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
from orders.serializers import (
    AdvanceDeliverySerializer,
    CancelOrderSerializer,
    CreateOrderSerializer,
    OrderSerializer,
    OrderStatusHistorySerializer,
    RedeemPointsSerializer,
)
from orders.services import OrderService
from payments.exceptions import GatewayUnavailableError, LockAcquisitionError

logger = logging.getLogger(__name__)


class OrderListCreateView(APIView):
    """
    List orders or check out.

    GET returns orders the user placed, or with ?as_seller=true the
    orders received by the user's stores.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_orders",
        summary="List orders",
        parameters=[
            OpenApiParameter(
                name="as_seller",
                type=bool,
                location=OpenApiParameter.QUERY,
                description="List orders received as a seller",
                required=False,
            ),
            OpenApiParameter(
                name="status",
                type=str,
                location=OpenApiParameter.QUERY,
                description="Filter by order status",
                required=False,
            ),
        ],
        responses={200: OrderSerializer(many=True)},
        tags=["Orders"],
    )
    def get(self, request):
        as_seller = request.query_params.get("as_seller", "").lower() in ("1", "true", "yes")
        queryset = OrderService.list_orders(
            request.user,
            as_seller=as_seller,
            status=request.query_params.get("status"),
        )
        paginator = PageNumberPagination()
        page = paginator.paginate_queryset(queryset, request, view=self)
        return paginator.get_paginated_response(OrderSerializer(page, many=True).data)

    @extend_schema(
        operation_id="create_order",
        summary="Checkout",
        request=CreateOrderSerializer,
        responses={
            201: OrderSerializer,
            400: OpenApiResponse(description="Invalid items or insufficient stock"),
            404: OpenApiResponse(description="Store or product not found"),
        },
        tags=["Orders"],
    )
    def post(self, request):
        serializer = CreateOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = OrderService.create_order(
            request.user,
            data["store_id"],
            [dict(item) for item in data["items"]],
            currency=data.get("currency"),
        )
        if not result.success:
            return failure_response(result)
        return Response(OrderSerializer(result.data).data, status=status.HTTP_201_CREATED)


class RedeemPointsView(APIView):
    """
    Check out with loyalty points.

    The order is confirmed immediately and never holds an escrow.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="redeem_points",
        summary="Redeem points",
        request=RedeemPointsSerializer,
        responses={
            201: OrderSerializer,
            400: OpenApiResponse(description="Insufficient points or stock"),
        },
        tags=["Orders"],
    )
    def post(self, request):
        serializer = RedeemPointsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = OrderService.redeem_points(
            request.user,
            data["store_id"],
            [dict(item) for item in data["items"]],
        )
        if not result.success:
            return failure_response(result)
        return Response(OrderSerializer(result.data).data, status=status.HTTP_201_CREATED)


class OrderDetailView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_order",
        summary="Get order",
        responses={
            200: OrderSerializer,
            403: OpenApiResponse(description="Not a party to this order"),
            404: OpenApiResponse(description="Order not found"),
        },
        tags=["Orders"],
    )
    def get(self, request, pk):
        result = OrderService.get_order(pk, request.user)
        if not result.success:
            return failure_response(result)
        return Response(OrderSerializer(result.data).data)


class OrderHistoryView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_order_history",
        summary="Order status history",
        responses={200: OrderStatusHistorySerializer(many=True)},
        tags=["Orders"],
    )
    def get(self, request, pk):
        result = OrderService.get_history(pk, request.user)
        if not result.success:
            return failure_response(result)
        return Response(OrderStatusHistorySerializer(result.data, many=True).data)


class OrderConfirmView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="confirm_order",
        summary="Confirm order",
        request=None,
        responses={
            200: OrderSerializer,
            409: OpenApiResponse(description="Order not pending or not paid"),
        },
        tags=["Orders"],
    )
    def post(self, request, pk):
        result = OrderService.confirm(pk, request.user)
        if not result.success:
            return failure_response(result)
        return Response(OrderSerializer(result.data).data)


class OrderAdvanceView(APIView):
    """
    Move the order to the next delivery status.

    Statuses cannot be skipped: shipped, then out_for_delivery, then
    delivered. Delivery starts the escrow's release countdown.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="advance_order",
        summary="Advance delivery status",
        request=AdvanceDeliverySerializer,
        responses={
            200: OrderSerializer,
            409: OpenApiResponse(description="Status would skip or reverse a step"),
        },
        tags=["Orders"],
    )
    def post(self, request, pk):
        serializer = AdvanceDeliverySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = OrderService.advance_delivery(
            pk, serializer.validated_data["status"], request.user
        )
        if not result.success:
            return failure_response(result)
        return Response(OrderSerializer(result.data).data)


class ConfirmReceiptView(APIView):
    """
    Buyer confirms the goods arrived.

    Completes the order and releases the escrow to the seller right away.
    A 503 means the transfer outcome is unknown; the request can be
    repeated safely.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="confirm_receipt",
        summary="Confirm receipt",
        request=None,
        responses={
            200: OrderSerializer,
            409: OpenApiResponse(description="Order not delivered or escrow frozen"),
            503: OpenApiResponse(description="Gateway unavailable; retry"),
        },
        tags=["Orders"],
    )
    def post(self, request, pk):
        try:
            result = OrderService.confirm_receipt(pk, request.user)
        except (GatewayUnavailableError, LockAcquisitionError) as e:
            logger.warning(
                "Receipt confirmation could not complete",
                extra={"order_id": str(pk), "error_code": e.error_code},
            )
            return error_response(e)

        if not result.success:
            return failure_response(result)
        return Response(OrderSerializer(result.data).data)


class OrderCancelView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="cancel_order",
        summary="Cancel order",
        request=CancelOrderSerializer,
        responses={
            200: OrderSerializer,
            403: OpenApiResponse(description="Status requires an admin to cancel"),
            409: OpenApiResponse(description="Terminal order, open dispute or funds released"),
            503: OpenApiResponse(description="Gateway unavailable; retry"),
        },
        tags=["Orders"],
    )
    def post(self, request, pk):
        serializer = CancelOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = OrderService.cancel(pk, request.user, serializer.validated_data["reason"])
        except (GatewayUnavailableError, LockAcquisitionError) as e:
            logger.warning(
                "Order cancellation could not complete",
                extra={"order_id": str(pk), "error_code": e.error_code},
            )
            return error_response(e)

        if not result.success:
            return failure_response(result)
        return Response(OrderSerializer(result.data).data)
