"""
DRF serializers for the escrow API.

This module provides serializers for:
- Escrow display (buyer, seller and admin views)
- Refund attempt history
- Operator retry/verify requests

Related files:
    - models.py: Escrow, RefundAttempt
    - views.py: Escrow API views

Usage:
    serializer = EscrowSerializer(escrow)
    data = serializer.data
"""

from __future__ import annotations

from rest_framework import serializers

from payments.models import Escrow, RefundAttempt


class EscrowSerializer(serializers.ModelSerializer):
    """
    Escrow serializer for API responses.

    Fields:
        id: Escrow ID
        order: Order ID
        amount_held_cents: Amount held, in smallest currency unit
        release_status: pending, released, refunded or failed
        release_date: Scheduled auto-release time (null until delivery)
        frozen: True while a dispute is open
        version: Row version, sent back with operator retries
    """

    class Meta:
        model = Escrow
        fields = [
            "id",
            "order",
            "amount_held_cents",
            "currency",
            "release_status",
            "release_date",
            "frozen",
            "released_at",
            "release_reason",
            "release_attempts",
            "failure_reason",
            "failed_at",
            "refunded_at",
            "version",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class EscrowViewSerializer(serializers.Serializer):
    """Escrow plus whether the requesting buyer may confirm receipt now."""

    escrow = EscrowSerializer(read_only=True)
    can_confirm_receipt = serializers.BooleanField(read_only=True)


class RefundAttemptSerializer(serializers.ModelSerializer):
    class Meta:
        model = RefundAttempt
        fields = [
            "id",
            "order",
            "amount_cents",
            "gateway_ref",
            "status",
            "error_message",
            "reason",
            "attempted_at",
        ]
        read_only_fields = fields


class RetryReleaseSerializer(serializers.Serializer):
    """
    Request body for an operator retry.

    version is optional; when given, the retry is rejected with
    STALE_RECORD if the escrow changed since the operator loaded it.
    """

    version = serializers.IntegerField(required=False, min_value=1)


class ReleaseVerificationSerializer(serializers.Serializer):
    escrow = EscrowSerializer(read_only=True)
    transfer_status = serializers.CharField(read_only=True)
    settled = serializers.BooleanField(read_only=True)
