"""
Serializers for notification API.
"""

from __future__ import annotations

from rest_framework import serializers

from notifications.models import Notification


class NotificationSerializer(serializers.ModelSerializer):
    """Read-only serializer for a notification."""

    class Meta:
        model = Notification
        fields = [
            "id",
            "kind",
            "title",
            "body",
            "meta",
            "is_read",
            "read_at",
            "created_at",
        ]
        read_only_fields = fields
