"""
Serializers for the disputes API.
"""

from __future__ import annotations

from rest_framework import serializers

from disputes.models import Dispute
from disputes.states import DisputeStatus, DisputeType


class DisputeSerializer(serializers.ModelSerializer):
    """Read-only serializer for a dispute."""

    class Meta:
        model = Dispute
        fields = [
            "id",
            "order",
            "buyer",
            "seller",
            "opened_by",
            "dispute_type",
            "description",
            "status",
            "resolution",
            "resolved_amount_cents",
            "requires_manual_intervention",
            "resolved_by",
            "resolved_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class OpenDisputeSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    dispute_type = serializers.ChoiceField(
        choices=DisputeType.choices,
        default=DisputeType.REFUND_REQUEST,
    )
    description = serializers.CharField(max_length=5000)


class ResolveDisputeSerializer(serializers.Serializer):
    """
    Adjudication request.

    outcome "resolved" upholds the claim; refund_amount_cents defaults to
    everything not yet refunded. outcome "cancelled" rejects it.
    """

    outcome = serializers.ChoiceField(
        choices=[DisputeStatus.RESOLVED, DisputeStatus.CANCELLED],
    )
    resolution = serializers.CharField(max_length=5000)
    refund_amount_cents = serializers.IntegerField(required=False, min_value=1)


class RefundEligibilitySerializer(serializers.Serializer):
    eligible = serializers.BooleanField(read_only=True)
    reason = serializers.CharField(read_only=True)
    requires_manual_intervention = serializers.BooleanField(read_only=True)
    refundable_amount_cents = serializers.IntegerField(read_only=True)
    window_ends_at = serializers.DateTimeField(read_only=True)
