"""
Settlement models: the escrow ledger and the refund audit ledger.

Escrow: funds held for one gateway-paid order until release or refund.
RefundAttempt: append-only record of every refund call to the gateway.

Usage:
    from payments.models import Escrow
    from payments.states import EscrowStatus

    escrow = Escrow.objects.select_for_update().get(order_id=order.id)
    if escrow.release_status == EscrowStatus.PENDING and not escrow.frozen:
        ...

Note:
    release_status is a protected django-fsm field. It changes only through
    the transition methods below; reload with Escrow.objects.get() to
    observe a change made elsewhere.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q

from django_fsm import FSMField, transition

from core.model_mixins import AppendOnlyMixin, UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel
from payments.states import EscrowStatus, RefundAttemptStatus


class Escrow(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Platform-held funds for one gateway-paid order.

    State Flow:
        PENDING -> RELEASED (transfer to seller succeeded)
        PENDING -> REFUNDED (money returned to buyer)
        PENDING -> FAILED (permanent transfer failure, needs an operator)
        FAILED -> RELEASED (operator retry succeeded)

    frozen is orthogonal to release_status: it is set while a dispute is
    open and blocks release, not refund.

    Fields:
        order: The order whose payment is held (one escrow per order)
        payment_reference: Gateway charge reference the buyer paid with
        amount_held_cents: Amount held, in smallest currency unit
        release_date: Scheduled auto-release time, null until delivery
        transfer_reference: Gateway reference of the latest transfer attempt
        release_attempts: Number of transfer attempts made
    """

    order = models.OneToOneField(
        "orders.Order",
        on_delete=models.PROTECT,
        related_name="escrow",
    )
    payment_reference = models.CharField(max_length=255, blank=True, default="")
    amount_held_cents = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=3, default="ghs")

    # ==========================================================================
    # State
    # ==========================================================================

    release_status = FSMField(
        default=EscrowStatus.PENDING,
        choices=EscrowStatus.choices,
        db_index=True,
        protected=True,
    )
    release_date = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the release scheduler may release this escrow",
    )
    frozen = models.BooleanField(
        default=False,
        help_text="Set while a dispute is open; blocks release",
    )

    # ==========================================================================
    # Release / refund bookkeeping
    # ==========================================================================

    released_at = models.DateTimeField(null=True, blank=True)
    released_to = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Recipient code the funds were transferred to",
    )
    release_reason = models.CharField(max_length=30, blank=True, default="")
    transfer_reference = models.CharField(max_length=255, blank=True, default="")
    transfer_id = models.CharField(max_length=255, blank=True, default="")
    release_attempts = models.PositiveIntegerField(default=0)
    failure_reason = models.TextField(blank=True, default="")
    failed_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["release_date", "created_at"]
        verbose_name_plural = "escrows"
        indexes = [
            models.Index(
                fields=["release_status", "frozen", "release_date"],
                name="escrow_due_release_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount_held_cents__gt=0),
                name="escrow_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Escrow({self.order_id}, {self.release_status})"

    # ==========================================================================
    # Transitions
    # ==========================================================================

    @transition(
        field=release_status,
        source=EscrowStatus.PENDING,
        target=EscrowStatus.RELEASED,
    )
    def release(self, at, recipient_code, transfer_id, reason):
        self._mark_released(at, recipient_code, transfer_id, reason)

    @transition(
        field=release_status,
        source=EscrowStatus.FAILED,
        target=EscrowStatus.RELEASED,
    )
    def release_after_retry(self, at, recipient_code, transfer_id, reason):
        self._mark_released(at, recipient_code, transfer_id, reason)
        self.failure_reason = ""

    @transition(field=release_status, source=EscrowStatus.PENDING, target=EscrowStatus.REFUNDED)
    def refund(self, at):
        self.refunded_at = at

    @transition(field=release_status, source=EscrowStatus.PENDING, target=EscrowStatus.FAILED)
    def fail(self, at, reason):
        self.failed_at = at
        self.failure_reason = reason

    def _mark_released(self, at, recipient_code, transfer_id, reason):
        self.released_at = at
        self.released_to = recipient_code
        self.transfer_id = transfer_id
        self.release_reason = reason


class RefundAttempt(AppendOnlyMixin, BaseModel):
    """
    One row per refund call to the gateway, successful or not.

    Never mutated after insertion; exists for reconciliation and retry
    history. idempotency_key is the key sent to the gateway, so a FAILED
    row followed by a SUCCESS row with the same key is one refund.
    """

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.PROTECT,
        related_name="refund_attempts",
    )
    payment_reference = models.CharField(max_length=255, blank=True, default="")
    amount_cents = models.PositiveBigIntegerField()
    gateway_ref = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Gateway refund id (re_xxx) when the call succeeded",
    )
    idempotency_key = models.CharField(max_length=255, db_index=True)
    status = models.CharField(max_length=20, choices=RefundAttemptStatus.choices)
    error_message = models.TextField(blank=True, default="")
    reason = models.TextField(blank=True, default="")
    initiated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )
    attempted_at = models.DateTimeField()

    class Meta:
        ordering = ["attempted_at", "id"]

    def __str__(self) -> str:
        return f"RefundAttempt({self.order_id}, {self.amount_cents}, {self.status})"
