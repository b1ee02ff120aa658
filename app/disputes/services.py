"""
Dispute & refund resolver.

Opening a dispute freezes the order's escrow so it cannot be released
while the claim is under review. Resolving it either refunds the buyer
from escrow (claim upheld) or unfreezes the escrow (claim rejected).

When a claim is upheld after the funds already left escrow, the dispute
is still RESOLVED but flagged requires_manual_intervention; no second
transfer or refund is attempted.

Usage:
    from disputes.services import DisputeService

    result = DisputeService.open_dispute(order.id, buyer, DisputeType.ITEM_NOT_RECEIVED, "Never arrived")
    result = DisputeService.resolve(dispute.id, admin, DisputeStatus.RESOLVED, "Refund approved")
    if result.success and result.data.requires_manual_intervention:
        alert_finance_team(result.data)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db.models import Q

from core.helpers import format_amount, short_id
from core.services import BaseService, ServiceResult
from disputes.exceptions import AlreadyDisputedError, NotEligibleError
from disputes.models import Dispute
from disputes.states import RESOLUTION_OUTCOMES, DisputeStatus, DisputeType
from notifications.models import NotificationKind
from notifications.services import NotificationService
from orders.capabilities import Action, require
from orders.exceptions import UnauthorizedActionError
from orders.models import Order
from orders.services import OrderService
from orders.states import DISPUTABLE_ORDER_STATUSES, PaymentMethod, PaymentStatus
from payments.locks import settlement_lock
from payments.models import Escrow
from payments.services import EscrowService
from payments.states import EscrowStatus

if TYPE_CHECKING:
    from typing import Any

    from django.db.models import QuerySet

    from authentication.models import User


MANUAL_REFUND_NOTE = "[Funds already released - manual refund required]"


@dataclass
class RefundEligibility:
    """
    Read-only answer to "could this order be refunded now?".

    Attributes:
        eligible: True when an automatic refund from escrow is possible
        reason: Why not, when eligible is False
        requires_manual_intervention: The funds already left escrow
        refundable_amount_cents: Amount not yet refunded
        window_ends_at: End of the dispute/refund window
    """

    eligible: bool
    reason: str = ""
    requires_manual_intervention: bool = False
    refundable_amount_cents: int = 0
    window_ends_at: datetime | None = None


class DisputeService(BaseService):
    """
    Dispute lifecycle.

    Methods:
        open_dispute: File a claim and freeze the escrow
        resolve: Adjudicate (admin only)
        cancel: Withdraw a claim (its opener only)
        check_refund_eligibility: Read-only eligibility query
        get_dispute / list_for_user / list_all: Queries
    """

    # ==========================================================================
    # Eligibility
    # ==========================================================================

    @classmethod
    def window_ends_at(cls, order: Order) -> datetime:
        return order.created_at + timedelta(days=settings.DISPUTE_ELIGIBILITY_WINDOW_DAYS)

    @classmethod
    def _check_eligible(cls, order: Order) -> None:
        """
        Raise NotEligibleError unless the order's payment can be disputed.

        Escrow state is deliberately not checked: a claim filed after
        release is accepted and resolved with manual intervention.
        """
        if order.payment_method == PaymentMethod.POINTS:
            raise NotEligibleError(
                "Orders paid with points are not refundable",
                details={"order_id": str(order.id)},
            )
        if order.payment_status == PaymentStatus.REFUNDED:
            raise NotEligibleError(
                "Order has already been fully refunded",
                details={"order_id": str(order.id)},
            )
        if order.payment_status not in (PaymentStatus.SUCCESS, PaymentStatus.PARTIALLY_REFUNDED):
            raise NotEligibleError(
                "Payment was not successful",
                details={"order_id": str(order.id), "payment_status": order.payment_status},
            )
        if cls.now() > cls.window_ends_at(order):
            raise NotEligibleError(
                f"The {settings.DISPUTE_ELIGIBILITY_WINDOW_DAYS}-day refund window has expired",
                details={"order_id": str(order.id)},
            )

    @classmethod
    def check_refund_eligibility(cls, order_id: Any, actor: User) -> ServiceResult[RefundEligibility]:
        """
        Whether the order could be refunded from escrow right now.

        Never changes state. Ineligible results carry a reason; an escrow
        that already paid out is reported with requires_manual_intervention.
        """
        order = Order.objects.select_related("store").filter(id=order_id).first()
        if order is None:
            return ServiceResult.failure(
                f"Order {order_id} not found",
                error_code="ORDER_NOT_FOUND",
            )
        try:
            require(actor, order, Action.VIEW_ORDER)
        except UnauthorizedActionError as e:
            return cls.handle_exception(e, "check refund eligibility")

        eligibility = RefundEligibility(
            eligible=True,
            refundable_amount_cents=order.refundable_amount_cents,
            window_ends_at=cls.window_ends_at(order),
        )
        try:
            cls._check_eligible(order)
        except NotEligibleError as e:
            eligibility.eligible = False
            eligibility.reason = e.message
            return ServiceResult.success(eligibility)

        if order.status not in DISPUTABLE_ORDER_STATUSES:
            eligibility.eligible = False
            eligibility.reason = f"Only delivered orders can be disputed (status is {order.status})"
            return ServiceResult.success(eligibility)

        escrow =Escrow.objects.filter(order=order).first()
        if escrow is not None and escrow.release_status in (
            EscrowStatus.RELEASED,
            EscrowStatus.FAILED,
        ):
            eligibility.eligible = False
            eligibility.reason = "Funds have already been released to the seller"
            eligibility.requires_manual_intervention = True
        return ServiceResult.success(eligibility)

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    @classmethod
    def open_dispute(
        cls,
        order_id: Any,
        actor: User,
        dispute_type: str,
        description: str,
    ) -> ServiceResult[Dispute]:
        """
        File a claim against a delivered order and freeze its escrow.

        Error codes:
            VALIDATION_ERROR, ORDER_NOT_FOUND, UNAUTHORIZED, INVALID_STATE,
            NOT_ELIGIBLE, ALREADY_DISPUTED

        Raises:
            LockAcquisitionError: Another worker is settling the order
        """
        validation = cls.validate_required(description=description)
        if validation:
            return validation
        if dispute_type not in DisputeType.values:
            return ServiceResult.failure(
                f"Invalid dispute type: {dispute_type}",
                error_code="VALIDATION_ERROR",
                errors={"dispute_type": ["Invalid dispute type."]},
            )

        order = Order.objects.select_related("store").filter(id=order_id).first()
        if order is None:
            return ServiceResult.failure(
                f"Order {order_id} not found",
                error_code="ORDER_NOT_FOUND",
            )
        try:
            require(actor, order, Action.OPEN_DISPUTE)
        except UnauthorizedActionError as e:
            return cls.handle_exception(e, "open dispute")

        with settlement_lock(order.id):
            with cls.atomic():
                order = (
                    Order.objects.select_for_update(of=("self",))
                    .select_related("store", "store__owner", "buyer")
                    .get(id=order.id)
                )
                if order.status not in DISPUTABLE_ORDER_STATUSES:
                    return ServiceResult.failure(
                        f"Only delivered orders can be disputed (status is {order.status})",
                        error_code="INVALID_STATE",
                    )
                try:
                    cls._check_eligible(order)
                    if Dispute.objects.filter(order=order, status=DisputeStatus.PENDING).exists():
                        raise AlreadyDisputedError(
                            "A dispute is already open for this order",
                            details={"order_id": str(order.id)},
                        )
                except (NotEligibleError, AlreadyDisputedError) as e:
                    return cls.handle_exception(e, "open dispute")

                dispute = Dispute.objects.create(
                    order=order,
                    buyer_id=order.buyer_id,
                    seller_id=order.store.owner_id,
                    opened_by=actor,
                    dispute_type=dispute_type,
                    description=description.strip(),
                )
                EscrowService.freeze(order.id)

        cls.get_logger().info(
            "Dispute opened",
            extra={
                "dispute_id": str(dispute.id),
                "order_id": str(order.id),
                "dispute_type": dispute_type,
                "opened_by": actor.pk,
            },
        )
        cls._notify_opened(dispute, order)
        return ServiceResult.success(dispute)

    @classmethod
    def resolve(
        cls,
        dispute_id: Any,
        actor: User,
        outcome: str,
        resolution: str,
        refund_amount_cents: int | None = None,
    ) -> ServiceResult[Dispute]:
        """
        Adjudicate a PENDING dispute.

        RESOLVED with funds still in escrow refunds the buyer (refund_amount_cents,
        or everything not yet refunded), marks the escrow REFUNDED and
        cancels the order. RESOLVED after the funds left escrow records the
        outcome with requires_manual_intervention and moves no money.
        CANCELLED unfreezes the escrow and leaves the order alone.

        Error codes:
            VALIDATION_ERROR, INVALID_AMOUNT, DISPUTE_NOT_FOUND, UNAUTHORIZED,
            INVALID_TRANSITION, REFUND_EXCEEDS_TOTAL, GATEWAY_ERROR

        Raises:
            GatewayUnavailableError: Refund outcome unknown; dispute stays PENDING
            LockAcquisitionError: Another worker is settling the order
        """
        validation = cls.validate_required(resolution=resolution)
        if validation:
            return validation
        if outcome not in RESOLUTION_OUTCOMES:
            return ServiceResult.failure(
                f"Outcome must be one of {', '.join(sorted(RESOLUTION_OUTCOMES))}",
                error_code="VALIDATION_ERROR",
                errors={"outcome": ["Must be 'resolved' or 'cancelled'."]},
            )
        if refund_amount_cents is not None and refund_amount_cents <= 0:
            return ServiceResult.failure(
                "Refund amount must be positive",
                error_code="INVALID_AMOUNT",
            )

        dispute = Dispute.objects.filter(id=dispute_id).first()
        if dispute is None:
            return ServiceResult.failure(
                f"Dispute {dispute_id} not found",
                error_code="DISPUTE_NOT_FOUND",
            )
        try:
            require(actor, dispute, Action.RESOLVE_DISPUTE)
        except UnauthorizedActionError as e:
            return cls.handle_exception(e, "resolve dispute")

        logger = cls.get_logger()
        log_context = {
            "dispute_id": str(dispute.id),
            "order_id": str(dispute.order_id),
            "outcome": outcome,
        }

        with settlement_lock(dispute.order_id):
            with cls.atomic():
                dispute = Dispute.objects.select_for_update().get(id=dispute_id)
                if dispute.status == outcome:
                    logger.info(
                        "Dispute already settled with this outcome",
                        extra={**log_context, "error_code": "ALREADY_PROCESSED"},
                    )
                    return ServiceResult.success(dispute)
                if not dispute.is_open:
                    return ServiceResult.failure(
                        f"Dispute is already {dispute.status}",
                        error_code="INVALID_TRANSITION",
                    )
                order = Order.objects.select_for_update().get(id=dispute.order_id)
                escrow = Escrow.objects.filter(order=order).first()

            refunded_cents = None
            manual = False
            if outcome == DisputeStatus.RESOLVED:
                if escrow is not None and escrow.release_status == EscrowStatus.PENDING:
                    amount_cents = refund_amount_cents or order.refundable_amount_cents
                    if order.refund_amount_cents + amount_cents > order.total_amount_cents:
                        return ServiceResult.failure(
                            f"Refund of {amount_cents} exceeds the refundable amount "
                            f"{order.refundable_amount_cents}",
                            error_code="REFUND_EXCEEDS_TOTAL",
                        )
                    refund = EscrowService.refund(escrow.id, amount_cents, resolution, actor=actor)
                    if not refund.success:
                        return refund
                    refunded_cents = refund.data.amount_cents
                    OrderService.close_after_refund(
                        order.id, actor, f"Dispute resolved: {resolution}"
                    )
                elif escrow is None or escrow.release_status != EscrowStatus.REFUNDED:
                    manual = True
                    resolution = f"{resolution} {MANUAL_REFUND_NOTE}"
                    logger.warning(
                        "Dispute upheld after funds left escrow; manual refund required",
                        extra={
                            **log_context,
                            "escrow_status": getattr(escrow, "release_status", None),
                            "error_code": "REQUIRES_MANUAL_INTERVENTION",
                        },
                    )

            with cls.atomic():
                dispute = Dispute.objects.select_for_update().get(id=dispute_id)
                if outcome == DisputeStatus.RESOLVED:
                    dispute.resolve(
                        at=cls.now(),
                        by=actor,
                        resolution=resolution,
                        amount_cents=refunded_cents,
                        manual=manual,
                    )
                else:
                    dispute.cancel(at=cls.now(), by=actor, resolution=resolution)
                dispute.save()

            EscrowService.unfreeze(dispute.order_id)

        logger.info(
            "Dispute resolved",
            extra={
                **log_context,
                "refunded_cents": refunded_cents,
                "requires_manual_intervention": manual,
            },
        )
        cls._notify_resolved(dispute)
        return ServiceResult.success(dispute)

    @classmethod
    def cancel(cls, dispute_id: Any, actor: User) -> ServiceResult[Dispute]:
        """
        Withdraw a PENDING dispute. Only the party who opened it may.

        Error codes:
            DISPUTE_NOT_FOUND, UNAUTHORIZED, INVALID_TRANSITION
        """
        dispute = Dispute.objects.filter(id=dispute_id).first()
        if dispute is None:
            return ServiceResult.failure(
                f"Dispute {dispute_id} not found",
                error_code="DISPUTE_NOT_FOUND",
            )
        try:
            require(actor, dispute, Action.CANCEL_DISPUTE)
            if dispute.opened_by_id != actor.pk:
                raise UnauthorizedActionError(
                    "Only the party who opened a dispute can withdraw it",
                    details={"dispute_id": str(dispute.id), "user_id": actor.pk},
                )
        except UnauthorizedActionError as e:
            return cls.handle_exception(e, "cancel dispute")

        with settlement_lock(dispute.order_id):
            with cls.atomic():
                dispute = Dispute.objects.select_for_update().get(id=dispute_id)
                if dispute.status == DisputeStatus.CANCELLED:
                    cls.get_logger().info(
                        "Dispute already cancelled",
                        extra={"dispute_id": str(dispute.id), "error_code": "ALREADY_PROCESSED"},
                    )
                    return ServiceResult.success(dispute)
                if not dispute.is_open:
                    return ServiceResult.failure(
                        f"Dispute is already {dispute.status}",
                        error_code="INVALID_TRANSITION",
                    )
                dispute.cancel(at=cls.now(), resolution="Withdrawn by the opening party")
                dispute.save()

            EscrowService.unfreeze(dispute.order_id)

        cls.get_logger().info(
            "Dispute withdrawn",
            extra={"dispute_id": str(dispute.id), "order_id": str(dispute.order_id)},
        )
        counterparty = dispute.seller if actor.pk == dispute.buyer_id else dispute.buyer
        NotificationService.notify(
            counterparty,
            "Dispute Withdrawn",
            f"The dispute for order #{short_id(dispute.order_id)} has been withdrawn.",
            kind=NotificationKind.DISPUTE,
            meta={"dispute_id": str(dispute.id), "order_id": str(dispute.order_id)},
        )
        return ServiceResult.success(dispute)

    # ==========================================================================
    # Queries
    # ==========================================================================

    @classmethod
    def get_dispute(cls, dispute_id: Any, actor: User) -> ServiceResult[Dispute]:
        dispute = Dispute.objects.select_related("order").filter(id=dispute_id).first()
        if dispute is None:
            return ServiceResult.failure(
                f"Dispute {dispute_id} not found",
                error_code="DISPUTE_NOT_FOUND",
            )
        try:
            require(actor, dispute, Action.VIEW_DISPUTE)
        except UnauthorizedActionError as e:
            return cls.handle_exception(e, "view dispute")
        return ServiceResult.success(dispute)

    @classmethod
    def list_for_user(
        cls,
        actor: User,
        status: str | None = None,
        dispute_type: str | None = None,
    ) -> QuerySet[Dispute]:
        """Disputes where the actor is the buyer or the seller."""
        queryset = Dispute.objects.filter(Q(buyer=actor) | Q(seller=actor))
        return cls._filter(queryset, status, dispute_type)

    @classmethod
    def list_all(
        cls,
        actor: User,
        status: str | None = None,
        dispute_type: str | None = None,
    ) -> ServiceResult[QuerySet[Dispute]]:
        """Every dispute, for adjudicators."""
        try:
            require(actor, None, Action.RESOLVE_DISPUTE)
        except UnauthorizedActionError as e:
            return cls.handle_exception(e, "list disputes")
        return ServiceResult.success(cls._filter(Dispute.objects.all(), status, dispute_type))

    @classmethod
    def _filter(cls, queryset, status, dispute_type):
        if status:
            queryset = queryset.filter(status=status)
        if dispute_type:
            queryset = queryset.filter(dispute_type=dispute_type)
        return queryset.select_related("order")

    # ==========================================================================
    # Notifications
    # ==========================================================================

    @classmethod
    def _notify_opened(cls, dispute: Dispute, order: Order) -> None:
        meta = {"dispute_id": str(dispute.id), "order_id": str(order.id)}
        label = DisputeType(dispute.dispute_type).label.lower()
        opener_is_buyer = dispute.opened_by_id == dispute.buyer_id
        counterparty = order.store.owner if opener_is_buyer else order.buyer
        opener = order.buyer if opener_is_buyer else order.store.owner

        NotificationService.notify(
            counterparty,
            "Dispute Opened",
            f"A {label} has been filed for order #{short_id(order.id)} "
            f"({format_amount(order.total_amount_cents, order.currency)}).",
            kind=NotificationKind.DISPUTE,
            meta=meta,
        )
        NotificationService.notify(
            opener,
            "Dispute Submitted",
            f"Your dispute for order #{short_id(order.id)} has been submitted "
            f"and is under review.",
            kind=NotificationKind.DISPUTE,
            meta=meta,
        )

    @classmethod
    def _notify_resolved(cls, dispute: Dispute) -> None:
        meta = {
            "dispute_id": str(dispute.id),
            "order_id": str(dispute.order_id),
            "status": dispute.status,
        }
        order_ref = short_id(dispute.order_id)
        NotificationService.notify(
            dispute.buyer,
            "Dispute Resolved",
            f"Your dispute for order #{order_ref} has been {dispute.status}. "
            f"Resolution: {dispute.resolution}",
            kind=NotificationKind.DISPUTE,
            meta=meta,
        )
        NotificationService.notify(
            dispute.seller,
            "Dispute Resolved",
            f"The dispute for order #{order_ref} has been {dispute.status}. "
            f"Resolution: {dispute.resolution}",
            kind=NotificationKind.DISPUTE,
            meta=meta,
        )


__all__ = [
    "DisputeService",
    "RefundEligibility",
    "MANUAL_REFUND_NOTE",
]
