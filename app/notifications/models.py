"""
Notification model.

Design Decisions:
    - Title and body are fully rendered strings (historical record)
    - kind groups notifications by the settlement event that produced them
    - meta carries ids (order, escrow, dispute) for client deep links
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel


class NotificationKind(models.TextChoices):
    ORDER = "order", "Order"
    ESCROW = "escrow", "Escrow"
    REFUND = "refund", "Refund"
    DISPUTE = "dispute", "Dispute"
    POINTS = "points", "Points"


class Notification(BaseModel):
    """
    Individual notification record for a user.

    Fields:
        recipient: User receiving the notification (scopes all queries)
        kind: Settlement event family
        title: Fully rendered title string
        body: Fully rendered body string
        meta: Arbitrary JSON context (order_id, dispute_id, amounts)
        is_read / read_at: Read state

    Note:
        recipient CASCADE: Notifications deleted when user deleted
    """

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
        db_index=True,
        help_text="User receiving this notification",
    )
    kind = models.CharField(
        max_length=20,
        choices=NotificationKind.choices,
        default=NotificationKind.ORDER,
    )
    title = models.CharField(max_length=255)
    body = models.TextField(blank=True, default="")
    meta = models.JSONField(default=dict, blank=True)
    is_read = models.BooleanField(default=False, db_index=True)
    read_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["recipient", "is_read"], name="notif_recipient_read_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.recipient_id}: {self.title}"
