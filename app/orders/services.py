"""
Order state machine service.

OrderService is the only writer of Order.status and Order.payment_status.
Every status change appends an OrderStatusHistory row in the same
transaction, and a transition to the status the order already has is a
logged no-op success.

Operations that touch escrow (confirm_receipt, cancel) run under the
per-order settlement lock and call EscrowService outside any transaction,
since those calls may reach the payment gateway.

Usage:
    from orders.services import OrderService

    result = OrderService.advance_delivery(order.id, OrderStatus.DELIVERED, seller)
    if not result.success:
        return failure_response(result)

    # Buyer confirms; releases the escrow immediately
    OrderService.confirm_receipt(order.id, buyer)
"""

from __future__ import annotations

from collections import OrderedDict
from typing import TYPE_CHECKING

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db.models import F

from core.helpers import ceil_div, format_amount, short_id
from core.services import BaseService, ServiceResult
from disputes.models import Dispute
from disputes.states import DisputeStatus
from notifications.models import NotificationKind
from notifications.services import NotificationService
from orders.capabilities import Action, can, require
from orders.exceptions import InvalidTransitionError, UnauthorizedActionError
from orders.models import Order, OrderItem, OrderStatusHistory, Product, Store
from orders.states import (
    DELIVERY_SEQUENCE,
    SELF_CANCELLABLE_STATUSES,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    SettlementMode,
)
from payments.locks import settlement_lock
from payments.models import Escrow
from payments.services import EscrowService
from payments.states import EscrowStatus, ReleaseReason

if TYPE_CHECKING:
    from typing import Any

    from django.db.models import QuerySet

    from authentication.models import User


ALREADY_PROCESSED = "ALREADY_PROCESSED"

DELIVERY_NOTICES = {
    OrderStatus.SHIPPED: (
        "Order Shipped!",
        "Your order #{order} from {store} has been shipped.",
    ),
    OrderStatus.OUT_FOR_DELIVERY: (
        "Out for Delivery",
        "Your order #{order} from {store} is out for delivery.",
    ),
    OrderStatus.DELIVERED: (
        "Order Delivered!",
        "Your order #{order} from {store} has been delivered. "
        "Please confirm receipt on the platform.",
    ),
}


class OrderService(BaseService):
    """
    Order lifecycle: checkout, payment status, delivery progression,
    receipt confirmation and cancellation.

    Methods:
        create_order: Gateway checkout, reserves stock
        redeem_points: Points checkout, auto-confirmed, no escrow
        record_payment_success / record_payment_failure / mark_payment_processing
        confirm: PENDING -> CONFIRMED
        advance_delivery: CONFIRMED -> SHIPPED -> OUT_FOR_DELIVERY -> DELIVERED
        confirm_receipt: DELIVERED -> COMPLETED, releases escrow
        cancel: non-terminal -> CANCELLED, refunds escrow, restores stock
        close_after_refund: Cancel after a dispute refund already returned the money
        get_order / list_orders / get_history: Queries
    """

    # ==========================================================================
    # Checkout
    # ==========================================================================

    @classmethod
    def create_order(
        cls,
        buyer: User,
        store_id: Any,
        items: list[dict[str, Any]],
        currency: str | None = None,
    ) -> ServiceResult[Order]:
        """
        Place a gateway-paid order and reserve its stock.

        Args:
            buyer: The purchasing user
            store_id: Store every product must belong to
            items: [{"product_id": ..., "quantity": n}, ...]
            currency: ISO 4217 code, defaults to MARKETPLACE_DEFAULT_CURRENCY

        Error codes:
            VALIDATION_ERROR, STORE_NOT_FOUND, PRODUCT_NOT_FOUND,
            INSUFFICIENT_STOCK
        """
        quantities = cls._merge_items(items)
        if isinstance(quantities, ServiceResult):
            return quantities

        with cls.atomic():
            priced = cls._price_lines(store_id, quantities)
            if isinstance(priced, ServiceResult):
                return priced
            store, lines, total_cents = priced
            cls._take_stock(lines)

            order = Order.objects.create(
                buyer=buyer,
                store=store,
                payment_method=PaymentMethod.GATEWAY,
                settlement_mode=SettlementMode.ESCROWED,
                total_amount_cents=total_cents,
                currency=(currency or settings.MARKETPLACE_DEFAULT_CURRENCY).lower(),
            )
            cls._create_items(order, lines)
            cls._record_history(order, "", buyer, "Order created")

        cls.get_logger().info(
            "Order created",
            extra={
                "order_id": str(order.id),
                "buyer_id": buyer.pk,
                "store_id": str(store.id),
                "total_cents": total_cents,
            },
        )
        cls._notify_new_order(order, buyer)
        return ServiceResult.success(order)

    @classmethod
    def redeem_points(
        cls,
        buyer: User,
        store_id: Any,
        items: list[dict[str, Any]],
    ) -> ServiceResult[Order]:
        """
        Place an order paid with loyalty points.

        The order is DIRECT: payment is SUCCESS and the order CONFIRMED at
        once, and no escrow is opened because no real money moves.

        Error codes:
            VALIDATION_ERROR, STORE_NOT_FOUND, PRODUCT_NOT_FOUND,
            INSUFFICIENT_STOCK, INSUFFICIENT_POINTS
        """
        quantities = cls._merge_items(items)
        if isinstance(quantities, ServiceResult):
            return quantities

        User = get_user_model()

        with cls.atomic():
            account = User.objects.select_for_update().get(pk=buyer.pk)

            priced = cls._price_lines(store_id, quantities)
            if isinstance(priced, ServiceResult):
                return priced
            store, lines, total_cents = priced

            points_required = ceil_div(total_cents, settings.POINTS_VALUE_MINOR_UNITS)
            if account.points_balance < points_required:
                cls.get_logger().info(
                    "Points redemption rejected",
                    extra={
                        "buyer_id": buyer.pk,
                        "points_required": points_required,
                        "points_balance": account.points_balance,
                    },
                )
                return ServiceResult.failure(
                    f"Insufficient points: {points_required} required, "
                    f"{account.points_balance} available",
                    error_code="INSUFFICIENT_POINTS",
                )

            cls._take_stock(lines)

            order = Order.objects.create(
                buyer=buyer,
                store=store,
                payment_method=PaymentMethod.POINTS,
                settlement_mode=SettlementMode.DIRECT,
                total_amount_cents=total_cents,
                currency=settings.MARKETPLACE_DEFAULT_CURRENCY,
                points_spent=points_required,
            )
            cls._create_items(order, lines)
            cls._record_history(order, "", buyer, "Order created")

            order.mark_payment_succeeded()
            order.confirm(at=cls.now())
            order.save()
            cls._record_history(order, OrderStatus.PENDING, buyer, "Paid with points")

            User.objects.filter(pk=account.pk).update(
                points_balance=F("points_balance") - points_required
            )

        cls.get_logger().info(
            "Points order created",
            extra={
                "order_id": str(order.id),
                "buyer_id": buyer.pk,
                "points_spent": points_required,
            },
        )
        NotificationService.notify(
            buyer,
            "Points Redeemed",
            f"You redeemed {points_required} points for order #{short_id(order.id)} "
            f"from {store.name}.",
            kind=NotificationKind.POINTS,
            meta={"order_id": str(order.id), "points_spent": points_required},
        )
        cls._notify_new_order(order, buyer)
        return ServiceResult.success(order)

    @classmethod
    def _merge_items(cls, items: list[dict[str, Any]]) -> OrderedDict | ServiceResult:
        """Sum quantities per product, preserving first-seen order."""
        if not items:
            return ServiceResult.failure(
                "An order needs at least one item",
                error_code="VALIDATION_ERROR",
                errors={"items": ["This field is required."]},
            )

        quantities: OrderedDict = OrderedDict()
        for item in items:
            product_id = str(item.get("product_id") or "")
            quantity = item.get("quantity")
            if not product_id or not isinstance(quantity, int) or quantity <= 0:
                return ServiceResult.failure(
                    "Each item needs a product_id and a positive quantity",
                    error_code="VALIDATION_ERROR",
                    errors={"items": ["Each item needs a product_id and a positive quantity."]},
                )
            quantities[product_id] = quantities.get(product_id, 0) + quantity
        return quantities

    @classmethod
    def _price_lines(
        cls,
        store_id: Any,
        quantities: OrderedDict,
    ) -> tuple[Store, list[tuple[Product, int]], int] | ServiceResult:
        """
        Lock the products, check stock and price the lines.

        Must run inside the checkout transaction. Products are locked in
        primary key order so concurrent checkouts never deadlock.
        """
        store = Store.objects.filter(id=store_id, is_active=True).first()
        if store is None:
            return ServiceResult.failure(
                f"Store {store_id} not found",
                error_code="STORE_NOT_FOUND",
            )

        products = {
            str(product.id): product
            for product in Product.objects.select_for_update()
            .filter(id__in=list(quantities), store=store, is_active=True)
            .order_by("id")
        }

        lines: list[tuple[Product, int]] = []
        total_cents = 0
        for product_id, quantity in quantities.items():
            product = products.get(product_id)
            if product is None:
                return ServiceResult.failure(
                    f"Product {product_id} not found in this store",
                    error_code="PRODUCT_NOT_FOUND",
                )
            if product.stock < quantity:
                return ServiceResult.failure(
                    f'Insufficient stock for product "{product.name}". '
                    f"Requested: {quantity}, Available: {product.stock}",
                    error_code="INSUFFICIENT_STOCK",
                )
            lines.append((product, quantity))
            total_cents += product.price_cents * quantity
        return store, lines, total_cents

    @classmethod
    def _take_stock(cls, lines: list[tuple[Product, int]]) -> None:
        for product, quantity in lines:
            Product.objects.filter(id=product.id).update(
                stock=F("stock") - quantity,
                units_sold=F("units_sold") + quantity,
            )

    @classmethod
    def _restore_stock(cls, lines: list[tuple[Any, int]]) -> None:
        for product, quantity in lines:
            Product.objects.filter(id=product.id).update(
                stock=F("stock") + quantity,
                units_sold=F("units_sold") - quantity,
            )

    @classmethod
    def _create_items(cls, order: Order, lines: list[tuple[Product, int]]) -> None:
        OrderItem.objects.bulk_create(
            [
                OrderItem(
                    order=order,
                    product=product,
                    quantity=quantity,
                    unit_price_cents=product.price_cents,
                )
                for product, quantity in lines
            ]
        )

    # ==========================================================================
    # Payment status
    # ==========================================================================

    @classmethod
    def record_payment_success(cls, order_id: Any, reference: str = "") -> ServiceResult[Order]:
        """
        Record a successful gateway charge and open the escrow.

        Idempotent: a repeated webhook delivery for an order already paid
        returns success without opening a second escrow. A charge that
        succeeds after an earlier failure (the buyer retried with another
        card) is recorded like any other success.

        Money that arrives for an order already cancelled is refunded from
        the escrow straight away. A redelivery retries that refund if the
        escrow is still PENDING.

        Error codes:
            ORDER_NOT_FOUND, plus those of EscrowService.refund

        Raises:
            GatewayUnavailableError: Late-payment refund outcome unknown
            LockAcquisitionError: Another worker is settling the order
        """
        logger = cls.get_logger()

        with settlement_lock(order_id):
            with cls.atomic():
                order = Order.objects.select_for_update().filter(id=order_id).first()
                if order is None:
                    return ServiceResult.failure(
                        f"Order {order_id} not found",
                        error_code="ORDER_NOT_FOUND",
                    )

                already_recorded = order.payment_status in (
                    PaymentStatus.SUCCESS,
                    PaymentStatus.PARTIALLY_REFUNDED,
                    PaymentStatus.REFUNDED,
                )
                if already_recorded:
                    logger.info(
                        "Payment already recorded",
                        extra={"order_id": str(order.id), "error_code": ALREADY_PROCESSED},
                    )
                else:
                    if order.payment_status == PaymentStatus.FAILED:
                        logger.info(
                            "Payment succeeded after an earlier failure",
                            extra={"order_id": str(order.id), "payment_reference": reference},
                        )
                    order.mark_payment_succeeded(reference=reference)
                    order.save()

                    if order.is_escrowed:
                        EscrowService.open_escrow(order)

            if order.status == OrderStatus.CANCELLED:
                escrow = Escrow.objects.filter(
                    order=order, release_status=EscrowStatus.PENDING
                ).first()
                if escrow is not None:
                    logger.warning(
                        "Payment succeeded for a cancelled order; refunding",
                        extra={"order_id": str(order.id), "escrow_id": str(escrow.id)},
                    )
                    refund = EscrowService.refund(
                        escrow.id, None, "Payment received after cancellation"
                    )
                    if not refund.success:
                        return refund
                    order = Order.objects.get(id=order.id)

        if already_recorded:
            return ServiceResult.success(order)

        logger.info(
            "Payment recorded",
            extra={"order_id": str(order.id), "payment_reference": reference},
        )
        return ServiceResult.success(order)

    @classmethod
    def record_payment_failure(cls, order_id: Any, reason: str = "") -> ServiceResult[Order]:
        """
        Record a failed gateway charge. A failure reported after success
        is ignored and returned as INVALID_STATE.
        """
        with cls.atomic():
            order = Order.objects.select_for_update().filter(id=order_id).first()
            if order is None:
                return ServiceResult.failure(
                    f"Order {order_id} not found",
                    error_code="ORDER_NOT_FOUND",
                )

            if order.payment_status == PaymentStatus.FAILED:
                cls.get_logger().info(
                    "Payment failure already recorded",
                    extra={"order_id": str(order.id), "error_code": ALREADY_PROCESSED},
                )
                return ServiceResult.success(order)

            if order.payment_status not in (PaymentStatus.PENDING, PaymentStatus.PROCESSING):
                return ServiceResult.failure(
                    f"Cannot fail a payment in status {order.payment_status}",
                    error_code="INVALID_STATE",
                )

            order.mark_payment_failed()
            order.save()

        cls.get_logger().warning(
            "Payment failed",
            extra={"order_id": str(order.id), "reason": reason},
        )
        return ServiceResult.success(order)

    @classmethod
    def mark_payment_processing(cls, order_id: Any) -> ServiceResult[Order]:
        with cls.atomic():
            order = Order.objects.select_for_update().filter(id=order_id).first()
            if order is None:
                return ServiceResult.failure(
                    f"Order {order_id} not found",
                    error_code="ORDER_NOT_FOUND",
                )
            if order.payment_status == PaymentStatus.PROCESSING:
                return ServiceResult.success(order)
            if order.payment_status != PaymentStatus.PENDING:
                return ServiceResult.failure(
                    f"Cannot start processing a payment in status {order.payment_status}",
                    error_code="INVALID_STATE",
                )
            order.mark_payment_processing()
            order.save()
        return ServiceResult.success(order)

    # ==========================================================================
    # Status transitions
    # ==========================================================================

    @classmethod
    def confirm(cls, order_id: Any, actor: User) -> ServiceResult[Order]:
        """
        Seller (or admin) accepts a paid order: PENDING -> CONFIRMED.

        Error codes:
            ORDER_NOT_FOUND, UNAUTHORIZED, INVALID_TRANSITION, INVALID_STATE
        """
        order = cls._load(order_id)
        if order is None:
            return cls._not_found(order_id)
        try:
            require(actor, order, Action.CONFIRM_ORDER)
        except UnauthorizedActionError as e:
            return cls.handle_exception(e, "confirm order")

        with cls.atomic():
            order = cls._lock(order_id)
            if order.status == OrderStatus.CONFIRMED:
                return cls._already(order, OrderStatus.CONFIRMED)
            if order.status != OrderStatus.PENDING:
                return cls._invalid_transition(order, OrderStatus.CONFIRMED)
            if not order.payment_succeeded():
                return ServiceResult.failure(
                    "Order cannot be confirmed before payment succeeds",
                    error_code="INVALID_STATE",
                )

            order.confirm(at=cls.now())
            order.save()
            cls._record_history(order, OrderStatus.PENDING, actor, "Order confirmed")

        cls._log_transition(order, OrderStatus.PENDING, actor)
        NotificationService.notify(
            order.buyer,
            "Order Confirmed!",
            f"Your order #{short_id(order.id)} from {order.store.name} has been "
            f"confirmed. It will be processed and shipped soon.",
            meta={"order_id": str(order.id), "status": order.status},
        )
        return ServiceResult.success(order)

    @classmethod
    def advance_delivery(cls, order_id: Any, new_status: str, actor: User) -> ServiceResult[Order]:
        """
        Move the order one step along the delivery sequence.

        Steps may not be skipped or reversed. Reaching DELIVERED stamps
        delivered_at and schedules the escrow's automatic release.

        Error codes:
            VALIDATION_ERROR, ORDER_NOT_FOUND, UNAUTHORIZED, INVALID_TRANSITION
        """
        if new_status not in DELIVERY_SEQUENCE[1:]:
            return ServiceResult.failure(
                f"Invalid delivery status: {new_status}",
                error_code="VALIDATION_ERROR",
                errors={"status": [f"Must be one of {', '.join(DELIVERY_SEQUENCE[1:])}."]},
            )

        order = cls._load(order_id)
        if order is None:
            return cls._not_found(order_id)
        try:
            require(actor, order, Action.ADVANCE_DELIVERY)
        except UnauthorizedActionError as e:
            return cls.handle_exception(e, "advance delivery")

        expected = DELIVERY_SEQUENCE[DELIVERY_SEQUENCE.index(new_status) - 1]

        with cls.atomic():
            order = cls._lock(order_id)
            if order.status == new_status:
                return cls._already(order, new_status)
            if order.status != expected:
                return cls._invalid_transition(order, new_status)

            now = cls.now()
            if new_status == OrderStatus.SHIPPED:
                order.ship(at=now)
            elif new_status == OrderStatus.OUT_FOR_DELIVERY:
                order.dispatch(at=now)
            else:
                order.deliver(at=now)
            order.save()
            cls._record_history(order, expected, actor, f"Status updated to {new_status}")

            if new_status == OrderStatus.DELIVERED and order.is_escrowed:
                EscrowService.schedule_release(order, order.delivered_at)

        cls._log_transition(order, expected, actor)
        cls._notify_delivery(order, new_status)
        return ServiceResult.success(order)

    @classmethod
    def confirm_receipt(cls, order_id: Any, actor: User) -> ServiceResult[Order]:
        """
        Buyer confirms receipt: DELIVERED -> COMPLETED, releasing the escrow
        at once instead of waiting for the release window.

        A permanent transfer failure still completes the order; the escrow
        is left FAILED for an operator to retry.

        Error codes:
            ORDER_NOT_FOUND, UNAUTHORIZED, INVALID_TRANSITION, ESCROW_FROZEN

        Raises:
            GatewayUnavailableError: Transfer outcome unknown; the order
                stays DELIVERED and the call can be repeated
            LockAcquisitionError: Another worker is settling the order
        """
        order = cls._load(order_id)
        if order is None:
            return cls._not_found(order_id)
        try:
            require(actor, order, Action.CONFIRM_RECEIPT)
        except UnauthorizedActionError as e:
            return cls.handle_exception(e, "confirm receipt")

        logger = cls.get_logger()

        with settlement_lock(order_id):
            with cls.atomic():
                order = cls._lock(order_id)
                if order.status == OrderStatus.COMPLETED:
                    return cls._already(order, OrderStatus.COMPLETED)
                if order.status != OrderStatus.DELIVERED:
                    return cls._invalid_transition(order, OrderStatus.COMPLETED)

                escrow = Escrow.objects.filter(order=order).first()
                if escrow is not None and escrow.frozen:
                    return ServiceResult.failure(
                        "Escrow is frozen by an open dispute",
                        error_code="ESCROW_FROZEN",
                    )

            if escrow is not None and escrow.release_status == EscrowStatus.PENDING:
                release = EscrowService.release(escrow.id, reason=ReleaseReason.BUYER_CONFIRMED)
                if not release.success:
                    if release.error_code != "RELEASE_FAILED":
                        return release
                    logger.error(
                        "Completing order with a failed release",
                        extra={
                            "order_id": str(order_id),
                            "escrow_id": str(escrow.id),
                            "error_code": release.error_code,
                        },
                    )

            with cls.atomic():
                order = cls._lock(order_id)
                order.complete(at=cls.now())
                order.save()
                cls._record_history(order, OrderStatus.DELIVERED, actor, "Buyer confirmed receipt")

        cls._log_transition(order, OrderStatus.DELIVERED, actor)
        meta = {"order_id": str(order.id), "status": order.status}
        NotificationService.notify(
            order.buyer,
            "Order Completed!",
            f"Your order #{short_id(order.id)} from {order.store.name} is complete. "
            f"Thank you for shopping!",
            meta=meta,
        )
        NotificationService.notify(
            order.store.owner,
            "Order Completed!",
            f"Order #{short_id(order.id)} is complete.",
            meta=meta,
        )
        return ServiceResult.success(order)

    @classmethod
    def cancel(cls, order_id: Any, actor: User, reason: str = "") -> ServiceResult[Order]:
        """
        Cancel a non-terminal order.

        A PENDING escrow is refunded in full first; money that already
        left escrow cannot be clawed back here. Stock is restored, and a
        points order gets its points back.

        Buyers and sellers may cancel while PENDING or CONFIRMED; later
        statuses need an admin.

        Error codes:
            ORDER_NOT_FOUND, UNAUTHORIZED, INVALID_TRANSITION, DISPUTE_OPEN,
            REQUIRES_MANUAL_INTERVENTION, plus those of EscrowService.refund

        Raises:
            GatewayUnavailableError: Refund outcome unknown; order unchanged
            LockAcquisitionError: Another worker is settling the order
        """
        order = cls._load(order_id)
        if order is None:
            return cls._not_found(order_id)
        try:
            require(actor, order, Action.CANCEL_ORDER)
        except UnauthorizedActionError as e:
            return cls.handle_exception(e, "cancel order")

        reason = reason or "Order cancelled"

        with settlement_lock(order_id):
            with cls.atomic():
                order = cls._lock(order_id)
                if order.status == OrderStatus.CANCELLED:
                    return cls._already(order, OrderStatus.CANCELLED)
                if order.is_terminal:
                    return cls._invalid_transition(order, OrderStatus.CANCELLED)
                if order.status not in SELF_CANCELLABLE_STATUSES and not can(
                    actor, order, Action.CANCEL_DISPATCHED_ORDER
                ):
                    return ServiceResult.failure(
                        f"You are not authorized to cancel this order in its current "
                        f"status ({order.status})",
                        error_code="UNAUTHORIZED",
                    )
                if Dispute.objects.filter(order=order, status=DisputeStatus.PENDING).exists():
                    return ServiceResult.failure(
                        "Order has an open dispute; resolve or withdraw it first",
                        error_code="DISPUTE_OPEN",
                    )

                escrow = Escrow.objects.filter(order=order).first()
                if escrow is not None and escrow.release_status in (
                    EscrowStatus.RELEASED,
                    EscrowStatus.FAILED,
                ):
                    return ServiceResult.failure(
                        "Funds already left escrow; manual refund required",
                        error_code="REQUIRES_MANUAL_INTERVENTION",
                    )

            if escrow is not None and escrow.release_status == EscrowStatus.PENDING:
                refund = EscrowService.refund(escrow.id, None, reason, actor=actor)
                if not refund.success:
                    return refund

            with cls.atomic():
                order = cls._lock(order_id)
                previous = order.status
                order.cancel(at=cls.now(), reason=reason)
                if (
                    order.payment_method == PaymentMethod.POINTS
                    and order.payment_status == PaymentStatus.SUCCESS
                ):
                    order.refund_amount_cents = order.total_amount_cents
                    order.refund_reason = reason
                    order.mark_refunded()
                    get_user_model().objects.filter(pk=order.buyer_id).update(
                        points_balance=F("points_balance") + order.points_spent
                    )
                order.save()
                cls._restore_stock(
                    [(item.product, item.quantity) for item in order.items.select_related("product")]
                )
                cls._record_history(order, previous, actor, reason)

        cls._log_transition(order, previous, actor)
        cls._notify_cancelled(order, actor, reason)
        return ServiceResult.success(order)

    @classmethod
    def close_after_refund(cls, order_id: Any, actor: User | None, reason: str) -> ServiceResult[Order]:
        """
        Cancel an order whose money was already returned by a dispute refund.

        Touches neither escrow nor stock: the goods were delivered. A
        terminal order keeps its status.
        """
        with cls.atomic():
            order = cls._lock(order_id)
            if order.is_terminal:
                return cls._already(order, order.status)
            previous = order.status
            order.cancel(at=cls.now(), reason=reason)
            order.save()
            cls._record_history(order, previous, actor, reason)

        cls._log_transition(order, previous, actor)
        return ServiceResult.success(order)

    # ==========================================================================
    # Queries
    # ==========================================================================

    @classmethod
    def get_order(cls, order_id: Any, actor: User) -> ServiceResult[Order]:
        order = cls._load(order_id)
        if order is None:
            return cls._not_found(order_id)
        try:
            require(actor, order, Action.VIEW_ORDER)
        except UnauthorizedActionError as e:
            return cls.handle_exception(e, "view order")
        return ServiceResult.success(order)

    @classmethod
    def list_orders(
        cls,
        actor: User,
        as_seller: bool = False,
        status: str | None = None,
    ) -> QuerySet[Order]:
        """Orders the actor placed, or received as a seller."""
        if as_seller:
            queryset = Order.objects.filter(store__owner=actor)
        else:
            queryset = Order.objects.filter(buyer=actor)
        if status:
            queryset = queryset.filter(status=status)
        return queryset.select_related("store").prefetch_related("items")

    @classmethod
    def get_history(cls, order_id: Any, actor: User) -> ServiceResult[QuerySet[OrderStatusHistory]]:
        result = cls.get_order(order_id, actor)
        if not result.success:
            return result
        return ServiceResult.success(result.data.status_history.all())

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @classmethod
    def _load(cls, order_id: Any) -> Order | None:
        return Order.objects.select_related("store", "buyer").filter(id=order_id).first()

    @classmethod
    def _lock(cls, order_id: Any) -> Order:
        return (
            Order.objects.select_for_update(of=("self",))
            .select_related("store", "store__owner", "buyer")
            .get(id=order_id)
        )

    @classmethod
    def _not_found(cls, order_id: Any) -> ServiceResult:
        return ServiceResult.failure(
            f"Order {order_id} not found",
            error_code="ORDER_NOT_FOUND",
        )

    @classmethod
    def _already(cls, order: Order, target: str) -> ServiceResult[Order]:
        cls.get_logger().info(
            f"Order already {target}",
            extra={"order_id": str(order.id), "error_code": ALREADY_PROCESSED},
        )
        return ServiceResult.success(order)

    @classmethod
    def _invalid_transition(cls, order: Order, target: str) -> ServiceResult:
        error = InvalidTransitionError(
            f"Invalid status transition from {order.status} to {target}",
            details={"order_id": str(order.id), "current_status": order.status, "target_status": target},
        )
        return cls.handle_exception(error, "order transition")

    @classmethod
    def _record_history(
        cls,
        order: Order,
        old_status: str,
        actor: User | None,
        reason: str,
    ) -> OrderStatusHistory:
        return OrderStatusHistory.objects.create(
            order=order,
            old_status=old_status,
            new_status=order.status,
            changed_by=actor if getattr(actor, "pk", None) else None,
            reason=reason,
            changed_at=cls.now(),
        )

    @classmethod
    def _log_transition(cls, order: Order, old_status: str, actor: User | None) -> None:
        cls.get_logger().info(
            "Order status changed",
            extra={
                "order_id": str(order.id),
                "old_status": old_status,
                "new_status": order.status,
                "actor_id": getattr(actor, "pk", None),
            },
        )

    # ==========================================================================
    # Notifications
    # ==========================================================================

    @classmethod
    def _notify_new_order(cls, order: Order, buyer: User) -> None:
        NotificationService.notify(
            order.store.owner,
            "New Order Alert!",
            f"You have a new order (#{short_id(order.id)}) from {buyer.get_full_name()} "
            f"for {format_amount(order.total_amount_cents, order.currency)}.",
            meta={"order_id": str(order.id), "status": order.status},
        )

    @classmethod
    def _notify_delivery(cls, order: Order, new_status: str) -> None:
        title, template = DELIVERY_NOTICES[new_status]
        meta = {"order_id": str(order.id), "status": order.status}
        NotificationService.notify(
            order.buyer,
            title,
            template.format(order=short_id(order.id), store=order.store.name),
            meta=meta,
        )
        if new_status == OrderStatus.DELIVERED:
            NotificationService.notify(
                order.store.owner,
                title,
                f"Order #{short_id(order.id)} has been delivered. Payment will be "
                f"released after buyer confirmation.",
                meta=meta,
            )

    @classmethod
    def _notify_cancelled(cls, order: Order, actor: User, reason: str) -> None:
        if actor.pk == order.buyer_id:
            recipients, cancelled_by = [order.store.owner], "buyer"
        elif actor.pk == order.store.owner_id:
            recipients, cancelled_by = [order.buyer], "seller"
        else:
            recipients, cancelled_by = [order.buyer, order.store.owner], "platform"

        for recipient in recipients:
            NotificationService.notify(
                recipient,
                "Order Cancelled",
                f"Order #{short_id(order.id)} has been cancelled by the {cancelled_by}. "
                f"Reason: {reason}",
                meta={
                    "order_id": str(order.id),
                    "cancelled_by": cancelled_by,
                    "reason": reason,
                },
            )


__all__ = [
    "OrderService",
]
