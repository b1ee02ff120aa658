"""
Order models.

Store and Product are the minimal catalog the checkout path needs; the
Order is the root of every settlement record. Escrow, Dispute and
RefundAttempt reference an Order, never the reverse.

Usage:
    from orders.models import Order
    from orders.states import OrderStatus

    order = Order.objects.select_for_update().get(id=order_id)
    order.ship()
    order.save()

Note:
    status and payment_status are protected django-fsm fields. They can
    only change through the transition methods below; to re-read them,
    load a fresh instance with Order.objects.get().
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F, Q

from django_fsm import FSMField, transition

from core.model_mixins import AppendOnlyMixin, UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel
from orders.states import (
    NON_TERMINAL_ORDER_STATUSES,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    SettlementMode,
)


# =============================================================================
# Catalog
# =============================================================================


class Store(UUIDPrimaryKeyMixin, BaseModel):
    """
    A seller's store. The owner is the seller for every order placed here.

    Fields:
        owner: Seller account
        name: Display name
        recipient_code: Gateway payout destination (Stripe connected
            account id). Blank until the seller finishes payout onboarding;
            escrow release fails without it.
    """

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="stores",
    )
    name = models.CharField(max_length=200)
    recipient_code = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Gateway payout recipient (e.g. acct_xxx)",
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name


class Product(UUIDPrimaryKeyMixin, BaseModel):
    """A purchasable item with tracked stock."""

    store = models.ForeignKey(Store, on_delete=models.PROTECT, related_name="products")
    name = models.CharField(max_length=200)
    price_cents = models.PositiveBigIntegerField(
        help_text="Unit price in smallest currency unit",
    )
    stock = models.PositiveIntegerField(default=0)
    units_sold = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.CheckConstraint(
                condition=Q(price_cents__gt=0),
                name="product_price_positive",
            ),
        ]

    def __str__(self) -> str:
        return self.name


# =============================================================================
# Order
# =============================================================================


class Order(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    One checkout: the canonical status of a purchase.

    State Flow:
        PENDING -> CONFIRMED -> SHIPPED -> OUT_FOR_DELIVERY -> DELIVERED -> COMPLETED
        any non-terminal -> CANCELLED

    Payment Flow:
        PENDING -> [PROCESSING ->] SUCCESS | FAILED
        SUCCESS -> PARTIALLY_REFUNDED -> REFUNDED

    Invariants:
        refund_amount_cents <= total_amount_cents (database constraint)
        A GATEWAY order is ESCROWED; a POINTS order is DIRECT.
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="orders",
    )
    store = models.ForeignKey(Store, on_delete=models.PROTECT, related_name="orders")

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=OrderStatus.PENDING,
        choices=OrderStatus.choices,
        db_index=True,
        protected=True,
    )
    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.GATEWAY,
    )
    payment_status = FSMField(
        default=PaymentStatus.PENDING,
        choices=PaymentStatus.choices,
        db_index=True,
        protected=True,
    )
    settlement_mode = models.CharField(
        max_length=20,
        choices=SettlementMode.choices,
        default=SettlementMode.ESCROWED,
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    total_amount_cents = models.PositiveBigIntegerField(
        help_text="Order total in smallest currency unit",
    )
    currency = models.CharField(max_length=3, default="ghs")
    refund_amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Running total refunded to the buyer",
    )
    refund_reason = models.TextField(blank=True, default="")
    points_spent = models.PositiveIntegerField(default=0)

    payment_reference = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Gateway charge reference (e.g. pi_xxx)",
    )

    # ==========================================================================
    # Timestamps
    # ==========================================================================

    confirmed_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["buyer", "status"], name="order_buyer_status_idx"),
            models.Index(fields=["store", "status"], name="order_store_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(total_amount_cents__gt=0),
                name="order_total_positive",
            ),
            models.CheckConstraint(
                condition=Q(refund_amount_cents__lte=F("total_amount_cents")),
                name="order_refund_within_total",
            ),
        ]

    def __str__(self) -> str:
        return f"Order({self.id}, {self.status}, {self.total_amount_cents} {self.currency.upper()})"

    # ==========================================================================
    # Derived
    # ==========================================================================

    @property
    def seller_id(self):
        return self.store.owner_id

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)

    @property
    def is_escrowed(self) -> bool:
        return self.settlement_mode == SettlementMode.ESCROWED

    @property
    def refundable_amount_cents(self) -> int:
        return self.total_amount_cents - self.refund_amount_cents

    def payment_succeeded(self) -> bool:
        return self.payment_status == PaymentStatus.SUCCESS

    # ==========================================================================
    # Status transitions
    # ==========================================================================

    @transition(
        field=status,
        source=OrderStatus.PENDING,
        target=OrderStatus.CONFIRMED,
        conditions=[payment_succeeded],
    )
    def confirm(self, at):
        self.confirmed_at = at

    @transition(field=status, source=OrderStatus.CONFIRMED, target=OrderStatus.SHIPPED)
    def ship(self, at=None):
        pass

    @transition(
        field=status,
        source=OrderStatus.SHIPPED,
        target=OrderStatus.OUT_FOR_DELIVERY,
    )
    def dispatch(self, at=None):
        pass

    @transition(
        field=status,
        source=OrderStatus.OUT_FOR_DELIVERY,
        target=OrderStatus.DELIVERED,
    )
    def deliver(self, at):
        self.delivered_at = at

    @transition(field=status, source=OrderStatus.DELIVERED, target=OrderStatus.COMPLETED)
    def complete(self, at):
        self.completed_at = at

    @transition(
        field=status,
        source=NON_TERMINAL_ORDER_STATUSES,
        target=OrderStatus.CANCELLED,
    )
    def cancel(self, at, reason=""):
        self.cancelled_at = at
        self.cancellation_reason = reason

    # ==========================================================================
    # Payment transitions
    # ==========================================================================

    @transition(
        field=payment_status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.PROCESSING,
    )
    def mark_payment_processing(self):
        pass

    @transition(
        field=payment_status,
        source=[PaymentStatus.PENDING, PaymentStatus.PROCESSING, PaymentStatus.FAILED],
        target=PaymentStatus.SUCCESS,
    )
    def mark_payment_succeeded(self, reference=""):
        if reference:
            self.payment_reference = reference

    @transition(
        field=payment_status,
        source=[PaymentStatus.PENDING, PaymentStatus.PROCESSING],
        target=PaymentStatus.FAILED,
    )
    def mark_payment_failed(self):
        pass

    @transition(
        field=payment_status,
        source=[PaymentStatus.SUCCESS, PaymentStatus.PARTIALLY_REFUNDED],
        target=PaymentStatus.PARTIALLY_REFUNDED,
    )
    def mark_partially_refunded(self):
        pass

    @transition(
        field=payment_status,
        source=[PaymentStatus.SUCCESS, PaymentStatus.PARTIALLY_REFUNDED],
        target=PaymentStatus.REFUNDED,
    )
    def mark_refunded(self):
        pass


class OrderItem(BaseModel):
    """A line item, priced at checkout time."""

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="order_items")
    quantity = models.PositiveIntegerField()
    unit_price_cents = models.PositiveBigIntegerField()

    class Meta:
        ordering = ["created_at", "id"]
        constraints = [
            models.CheckConstraint(
                condition=Q(quantity__gt=0),
                name="order_item_quantity_positive",
            ),
        ]

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents


class OrderStatusHistory(AppendOnlyMixin, BaseModel):
    """
    Immutable audit row, one per order status transition.

    old_status is blank for the row written when the order is placed.
    """

    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="status_history")
    old_status = models.CharField(max_length=20, blank=True, default="")
    new_status = models.CharField(max_length=20, choices=OrderStatus.choices)
    changed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
        help_text="Null when the system made the change",
    )
    reason = models.TextField(blank=True, default="")
    changed_at = models.DateTimeField()

    class Meta:
        ordering = ["changed_at", "id"]
        verbose_name_plural = "order status history"

    def __str__(self) -> str:
        return f"{self.order_id}: {self.old_status or '-'} -> {self.new_status}"
