"""
Dispute model.

A Dispute is a buyer's or seller's claim against a delivered order. While
it is PENDING the order's escrow is frozen; an adjudicator either upholds
it (RESOLVED, usually with a refund) or rejects it (CANCELLED).

Usage:
    from disputes.models import Dispute
    from disputes.states import DisputeStatus

    open_dispute = Dispute.objects.filter(order=order, status=DisputeStatus.PENDING).first()

Note:
    status is a protected django-fsm field; reload with
    Dispute.objects.get() to observe a change made elsewhere.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel
from disputes.states import DisputeStatus, DisputeType


class Dispute(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A contested order.

    State Flow:
        PENDING -> RESOLVED (upheld by an adjudicator)
        PENDING -> CANCELLED (rejected by an adjudicator, or withdrawn)

    Disputes accumulate per order, but at most one may be PENDING at a
    time (partial unique constraint).

    Fields:
        buyer / seller: Parties of the order, copied at creation so
            capability checks work on the dispute alone
        opened_by: Whichever party filed the claim; only they may withdraw it
        resolved_amount_cents: Amount refunded by the resolution, if any
        requires_manual_intervention: Set when the claim was upheld after
            the funds had already left escrow
    """

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.PROTECT,
        related_name="disputes",
    )
    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="disputes_as_buyer",
    )
    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="disputes_as_seller",
    )
    opened_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="+",
    )
    dispute_type = models.CharField(
        max_length=30,
        choices=DisputeType.choices,
        default=DisputeType.REFUND_REQUEST,
    )
    description = models.TextField()

    status = FSMField(
        default=DisputeStatus.PENDING,
        choices=DisputeStatus.choices,
        db_index=True,
        protected=True,
    )
    resolution = models.TextField(blank=True, default="")
    resolved_amount_cents = models.PositiveBigIntegerField(null=True, blank=True)
    requires_manual_intervention = models.BooleanField(default=False, db_index=True)
    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["order"],
                condition=Q(status=DisputeStatus.PENDING),
                name="dispute_one_pending_per_order",
            ),
        ]

    def __str__(self) -> str:
        return f"Dispute({self.order_id}, {self.dispute_type}, {self.status})"

    @property
    def is_open(self) -> bool:
        return self.status == DisputeStatus.PENDING

    @transition(field=status, source=DisputeStatus.PENDING, target=DisputeStatus.RESOLVED)
    def resolve(self, at, by, resolution, amount_cents=None, manual=False):
        self.resolved_at = at
        self.resolved_by = by
        self.resolution = resolution
        self.resolved_amount_cents = amount_cents
        self.requires_manual_intervention = manual

    @transition(field=status, source=DisputeStatus.PENDING, target=DisputeStatus.CANCELLED)
    def cancel(self, at, by=None, resolution=""):
        self.resolved_at = at
        self.resolved_by = by
        self.resolution = resolution
