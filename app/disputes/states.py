"""
State enums for dispute models.

Dispute Status:
    pending → resolved (claim upheld by an adjudicator)
    pending → cancelled (claim rejected, or withdrawn by its opener)
"""

from django.db import models


class DisputeStatus(models.TextChoices):
    """
    States for Dispute.status.

    Terminal states: RESOLVED, CANCELLED
    """

    PENDING = "pending", "Pending"
    RESOLVED = "resolved", "Resolved"
    CANCELLED = "cancelled", "Cancelled"


class DisputeType(models.TextChoices):
    REFUND_REQUEST = "refund_request", "Refund Request"
    ITEM_NOT_AS_DESCRIBED = "item_not_as_described", "Item Not As Described"
    ITEM_NOT_RECEIVED = "item_not_received", "Item Not Received"
    WRONG_ITEM_SENT = "wrong_item_sent", "Wrong Item Sent"
    DAMAGED_ITEM = "damaged_item", "Damaged Item"
    OTHER = "other", "Other"


# Outcomes an adjudicator may choose
RESOLUTION_OUTCOMES = frozenset([DisputeStatus.RESOLVED, DisputeStatus.CANCELLED])
