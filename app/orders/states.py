"""
State enums for order models.

These are Django TextChoices for database storage and admin integration.
Order.status and Order.payment_status are both django-fsm fields.

Order Status:
    pending → confirmed → shipped → out_for_delivery → delivered → completed
    any non-terminal → cancelled

Payment Status:
    pending → processing → success | failed
    pending → success | failed
    success → partially_refunded → refunded
    success → refunded
"""

from django.db import models


class OrderStatus(models.TextChoices):
    """
    States for the Order lifecycle.

    Terminal states: COMPLETED, CANCELLED
    """

    PENDING = "pending", "Pending"
    CONFIRMED = "confirmed", "Confirmed"
    SHIPPED = "shipped", "Shipped"
    OUT_FOR_DELIVERY = "out_for_delivery", "Out for Delivery"
    DELIVERED = "delivered", "Delivered"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


TERMINAL_ORDER_STATUSES = frozenset([OrderStatus.COMPLETED, OrderStatus.CANCELLED])

NON_TERMINAL_ORDER_STATUSES = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.SHIPPED,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
]

# Statuses a buyer or seller may still cancel from; later ones need an admin
SELF_CANCELLABLE_STATUSES = frozenset([OrderStatus.PENDING, OrderStatus.CONFIRMED])

# Forward-only delivery progression driven by advance_delivery
DELIVERY_SEQUENCE = [
    OrderStatus.CONFIRMED,
    OrderStatus.SHIPPED,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
]

# Orders in these statuses may be disputed
DISPUTABLE_ORDER_STATUSES = frozenset([OrderStatus.DELIVERED, OrderStatus.COMPLETED])


class PaymentMethod(models.TextChoices):
    """How the buyer paid for the order."""

    GATEWAY = "gateway", "Payment Gateway"
    POINTS = "points", "Loyalty Points"


class PaymentStatus(models.TextChoices):
    """
    States for Order.payment_status.

    Terminal states: FAILED, REFUNDED
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    SUCCESS = "success", "Success"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"


# Payment statuses under which money is held and may be refunded
REFUNDABLE_PAYMENT_STATUSES = frozenset(
    [PaymentStatus.SUCCESS, PaymentStatus.PARTIALLY_REFUNDED]
)


class SettlementMode(models.TextChoices):
    """
    How an order's money is settled.

    ESCROWED: gateway payment held in escrow until release or refund
    DIRECT: no real-money settlement (points orders), no escrow
    """

    ESCROWED = "escrowed", "Escrowed"
    DIRECT = "direct", "Direct"
