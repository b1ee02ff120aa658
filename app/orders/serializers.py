"""
DRF serializers for the orders API.

This module provides serializers for:
- Order display with items (buyer, seller and admin views)
- Checkout and points redemption requests
- Delivery progression and cancellation requests
- Status history

Related files:
    - models.py: Order, OrderItem, OrderStatusHistory
    - views.py: Order API views

Usage:
    serializer = CreateOrderSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    OrderService.create_order(request.user, **serializer.validated_data)
"""

from __future__ import annotations

from rest_framework import serializers

from orders.models import Order, OrderItem, OrderStatusHistory
from orders.states import DELIVERY_SEQUENCE


class OrderItemSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)
    line_total_cents = serializers.IntegerField(read_only=True)

    class Meta:
        model = OrderItem
        fields = [
            "id",
            "product",
            "product_name",
            "quantity",
            "unit_price_cents",
            "line_total_cents",
        ]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    """
    Order serializer for API responses.

    Fields:
        status: Fulfilment status (pending ... completed, or cancelled)
        payment_status: Gateway/points payment status
        settlement_mode: escrowed for gateway orders, direct for points
        total_amount_cents / refund_amount_cents: Smallest currency unit
        seller: Owner of the store the order was placed with
    """

    store_name = serializers.CharField(source="store.name", read_only=True)
    seller = serializers.IntegerField(source="store.owner_id", read_only=True)
    items = OrderItemSerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "buyer",
            "store",
            "store_name",
            "seller",
            "status",
            "payment_method",
            "payment_status",
            "settlement_mode",
            "total_amount_cents",
            "currency",
            "refund_amount_cents",
            "refund_reason",
            "points_spent",
            "payment_reference",
            "items",
            "confirmed_at",
            "delivered_at",
            "completed_at",
            "cancelled_at",
            "cancellation_reason",
            "version",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class OrderStatusHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderStatusHistory
        fields = ["id", "old_status", "new_status", "changed_by", "reason", "changed_at"]
        read_only_fields = fields


class OrderLineSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)


class CreateOrderSerializer(serializers.Serializer):
    """
    Checkout request.

    Every product must belong to store_id. Repeated products are merged.
    """

    store_id = serializers.UUIDField()
    items = OrderLineSerializer(many=True, allow_empty=False)
    currency = serializers.CharField(max_length=3, min_length=3, required=False)


class RedeemPointsSerializer(serializers.Serializer):
    store_id = serializers.UUIDField()
    items = OrderLineSerializer(many=True, allow_empty=False)


class AdvanceDeliverySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=DELIVERY_SEQUENCE[1:])


class CancelOrderSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")
