"""
Settlement services: the escrow ledger and the refund gateway path.

Every operation that moves money follows the two-phase pattern:

    1. Take the per-order settlement lock
    2. In a transaction: lock the rows, re-check preconditions, record
       the attempt
    3. Outside any transaction: call the gateway
    4. In a new transaction: record the outcome

A transient gateway failure (timeout, outage) raises
GatewayUnavailableError and leaves settlement state as it was before the
call, neither settled nor failed. A permanent failure is recorded and
returned as a failed ServiceResult.

Usage:
    from payments.services import EscrowService, RefundService

    result = EscrowService.release(escrow.id, reason=ReleaseReason.BUYER_CONFIRMED)
    if not result.success:
        logger.warning("Release rejected", extra={"error_code": result.error_code})

    # Tests
    SettlementService.set_stripe_adapter(MagicMock())
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db.models import F

from core.helpers import format_amount, short_id
from core.services import BaseService, ServiceResult
from notifications.models import NotificationKind
from notifications.services import NotificationService
from orders.capabilities import Action, require
from orders.exceptions import UnauthorizedActionError
from orders.models import Order
from orders.states import REFUNDABLE_PAYMENT_STATUSES, OrderStatus
from payments.adapters import IdempotencyKeyGenerator, StripeAdapter, TransferStatus
from payments.exceptions import (
    GatewayError,
    GatewayUnavailableError,
    StaleRecordError,
)
from payments.locks import check_version, settlement_lock
from payments.models import Escrow, RefundAttempt
from payments.states import EscrowStatus, RefundAttemptStatus, ReleaseReason

if TYPE_CHECKING:
    from typing import Any

    from django.db.models import QuerySet

    from authentication.models import User


NO_PAYOUT_ACCOUNT = "Seller has no payout account"


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class RefundOutcome:
    """
    Result of a successful gateway refund.

    Attributes:
        order: The order after refund_amount was updated
        attempt: The SUCCESS RefundAttempt row
        amount_cents: Amount refunded by this call
        fully_refunded: True when refund_amount now equals the order total
    """

    order: Order
    attempt: RefundAttempt
    amount_cents: int
    fully_refunded: bool


@dataclass
class EscrowView:
    escrow: Escrow
    can_confirm_receipt: bool


@dataclass
class ReleaseVerification:
    escrow: Escrow
    transfer_status: str
    settled: bool


# =============================================================================
# Base
# =============================================================================


class SettlementService(BaseService):
    """
    Base for services that call the payment gateway.

    The adapter is swappable so tests can inject a mock gateway.
    """

    _stripe_adapter: Any = StripeAdapter

    @classmethod
    def get_stripe_adapter(cls) -> Any:
        return SettlementService._stripe_adapter

    @classmethod
    def set_stripe_adapter(cls, adapter: Any | None) -> None:
        """Replace the gateway adapter. Passing None restores StripeAdapter."""
        SettlementService._stripe_adapter = adapter or StripeAdapter


# =============================================================================
# Refund Service
# =============================================================================


class RefundService(SettlementService):
    """
    The single path by which money is returned to a buyer.

    Enforces the refund bound (refund_amount_cents <= total_amount_cents)
    for every caller and writes a RefundAttempt row for each gateway call.
    """

    @classmethod
    def refund_order(
        cls,
        order_id: Any,
        amount_cents: int,
        reason: str,
        initiated_by: User | None = None,
    ) -> ServiceResult[RefundOutcome]:
        """
        Refund amount_cents of an order's gateway payment.

        The idempotency key is derived from the amount already refunded, so
        retrying after a timeout replays the same gateway request, while a
        later, separate partial refund gets a new key.

        Error codes:
            ORDER_NOT_FOUND, INVALID_AMOUNT, INVALID_STATE,
            REFUND_EXCEEDS_TOTAL, GATEWAY_ERROR

        Raises:
            GatewayUnavailableError: Transient gateway failure; retry later
            LockAcquisitionError: Another worker is settling the order
        """
        logger = cls.get_logger()

        if amount_cents is None or amount_cents <= 0:
            return ServiceResult.failure(
                "Refund amount must be positive",
                error_code="INVALID_AMOUNT",
            )

        with settlement_lock(order_id):
            # Phase 1: validate under row lock
            with cls.atomic():
                order = Order.objects.select_for_update().filter(id=order_id).first()
                if order is None:
                    return ServiceResult.failure(
                        f"Order {order_id} not found",
                        error_code="ORDER_NOT_FOUND",
                    )
                if order.payment_status not in REFUNDABLE_PAYMENT_STATUSES:
                    return ServiceResult.failure(
                        f"Cannot refund an order with payment status {order.payment_status}",
                        error_code="INVALID_STATE",
                    )
                if not order.payment_reference:
                    return ServiceResult.failure(
                        "Order has no gateway payment to refund",
                        error_code="INVALID_STATE",
                    )
                if order.refund_amount_cents + amount_cents > order.total_amount_cents:
                    return ServiceResult.failure(
                        f"Refund of {amount_cents} exceeds the refundable amount "
                        f"{order.refundable_amount_cents}",
                        error_code="REFUND_EXCEEDS_TOTAL",
                    )

                payment_reference = order.payment_reference
                idempotency_key = IdempotencyKeyGenerator.generate(
                    operation="refund",
                    entity_id=order.id,
                    attempt=order.refund_amount_cents,
                )

            log_context = {
                "order_id": str(order_id),
                "amount_cents": amount_cents,
                "idempotency_key": idempotency_key,
            }

            # Phase 2: gateway call outside the transaction
            try:
                gateway_result = cls.get_stripe_adapter().refund(
                    reference=payment_reference,
                    amount_cents=amount_cents,
                    reason=reason,
                    idempotency_key=idempotency_key,
                    metadata={"order_id": str(order_id)},
                )
            except GatewayError as e:
                cls._record_attempt(
                    order_id=order_id,
                    payment_reference=payment_reference,
                    amount_cents=amount_cents,
                    idempotency_key=idempotency_key,
                    status=RefundAttemptStatus.FAILED,
                    error_message=e.message,
                    reason=reason,
                    initiated_by=initiated_by,
                )
                if e.is_retryable:
                    logger.warning(
                        "Refund gateway call did not complete, outcome unknown",
                        extra={**log_context, "error": e.message},
                    )
                    raise GatewayUnavailableError(e.message, details=log_context) from e

                logger.error(
                    "Refund rejected by gateway",
                    extra={**log_context, "error": e.message},
                )
                return ServiceResult.failure(
                    f"Refund failed: {e.message}",
                    error_code="GATEWAY_ERROR",
                )

            # Phase 3: record the outcome
            with cls.atomic():
                order = Order.objects.select_for_update().get(id=order_id)
                order.refund_amount_cents = order.refund_amount_cents + amount_cents
                order.refund_reason = reason
                fully_refunded = order.refund_amount_cents == order.total_amount_cents
                if fully_refunded:
                    order.mark_refunded()
                else:
                    order.mark_partially_refunded()
                order.save()

                attempt = cls._record_attempt(
                    order_id=order_id,
                    payment_reference=payment_reference,
                    amount_cents=amount_cents,
                    idempotency_key=idempotency_key,
                    status=RefundAttemptStatus.SUCCESS,
                    gateway_ref=gateway_result.id,
                    reason=reason,
                    initiated_by=initiated_by,
                )

        logger.info(
            "Refund completed",
            extra={
                **log_context,
                "gateway_ref": gateway_result.id,
                "fully_refunded": fully_refunded,
            },
        )
        cls._notify_refunded(order, amount_cents)
        return ServiceResult.success(
            RefundOutcome(
                order=order,
                attempt=attempt,
                amount_cents=amount_cents,
                fully_refunded=fully_refunded,
            )
        )

    @classmethod
    def _notify_refunded(cls, order: Order, amount_cents: int) -> None:
        amount = format_amount(amount_cents, order.currency)
        meta = {"order_id": str(order.id), "amount_cents": amount_cents}
        NotificationService.notify(
            order.buyer,
            "Refund Processed",
            f"A refund of {amount} for order #{short_id(order.id)} has been processed.",
            kind=NotificationKind.REFUND,
            meta=meta,
        )
        NotificationService.notify(
            order.store.owner,
            "Refund Issued",
            f"{amount} for order #{short_id(order.id)} has been refunded to the buyer.",
            kind=NotificationKind.REFUND,
            meta=meta,
        )

    @classmethod
    def _record_attempt(cls, order_id: Any, **fields: Any) -> RefundAttempt:
        with cls.atomic():
            return RefundAttempt.objects.create(
                order_id=order_id,
                attempted_at=cls.now(),
                **fields,
            )

    @classmethod
    def attempts_for_order(cls, order_id: Any, actor: User) -> ServiceResult[QuerySet[RefundAttempt]]:
        """Refund attempt ledger for an order, newest first (admin only)."""
        try:
            require(actor, None, Action.MANAGE_ESCROW)
        except UnauthorizedActionError as e:
            return cls.handle_exception(e, "list refund attempts")
        return ServiceResult.success(
            RefundAttempt.objects.filter(order_id=order_id).order_by("-attempted_at")
        )


# =============================================================================
# Escrow Service
# =============================================================================


class EscrowService(SettlementService):
    """
    Escrow ledger: holds a gateway payment until it is released to the
    seller exactly once, or refunded to the buyer.

    Methods:
        open_escrow: Create the escrow when payment succeeds (idempotent)
        schedule_release: Stamp release_date when the order is delivered
        release: Transfer the held funds to the seller
        refund: Return held funds to the buyer
        freeze / unfreeze: Block / allow release while a dispute is open
        retry_failed_release: Operator re-attempt of a FAILED release
        verify_release: Ask the gateway whether a release actually landed
        get_for_order / list_pending / due_for_release: Queries
    """

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    @classmethod
    def open_escrow(cls, order: Order) -> ServiceResult[Escrow]:
        """
        Create the PENDING escrow for a paid, escrowed order.

        Called inside the transaction that records payment success.
        A second call for the same order returns the existing escrow.
        """
        escrow, created = Escrow.objects.get_or_create(
            order=order,
            defaults={
                "payment_reference": order.payment_reference,
                "amount_held_cents": order.total_amount_cents,
                "currency": order.currency,
            },
        )
        if not created:
            cls.get_logger().info(
                "Escrow already open",
                extra={
                    "order_id": str(order.id),
                    "escrow_id": str(escrow.id),
                    "error_code": "ALREADY_PROCESSED",
                },
            )
            return ServiceResult.success(escrow)

        cls.get_logger().info(
            "Escrow opened",
            extra={
                "order_id": str(order.id),
                "escrow_id": str(escrow.id),
                "amount_cents": escrow.amount_held_cents,
            },
        )
        return ServiceResult.success(escrow)

    @classmethod
    def schedule_release(cls, order: Order, delivered_at) -> Escrow | None:
        """
        Set the auto-release time to delivered_at plus the release window.

        Called inside the transaction that marks the order DELIVERED.
        Returns None for orders without an escrow (points orders).
        """
        escrow = Escrow.objects.select_for_update().filter(order=order).first()
        if escrow is None or escrow.release_status != EscrowStatus.PENDING:
            return escrow

        escrow.release_date = delivered_at + timedelta(days=settings.ESCROW_RELEASE_WINDOW_DAYS)
        escrow.save(update_fields=["release_date"])

        cls.get_logger().info(
            "Escrow release scheduled",
            extra={
                "escrow_id": str(escrow.id),
                "order_id": str(order.id),
                "release_date": escrow.release_date.isoformat(),
            },
        )
        return escrow

    # ==========================================================================
    # Release
    # ==========================================================================

    @classmethod
    def release(
        cls,
        escrow_id: Any,
        reason: str = ReleaseReason.AUTO_TIMER_EXPIRED,
        blocking: bool = True,
    ) -> ServiceResult[Escrow]:
        """
        Transfer the held funds to the seller, at most once.

        Outcomes:
            RELEASED already: success, logged as ALREADY_PROCESSED, no transfer
            frozen: failure ESCROW_FROZEN
            REFUNDED: failure INVALID_STATE
            FAILED (unless reason is OPERATOR_RETRY): failure INVALID_STATE
            no payout account or permanent gateway error: escrow FAILED,
                failure RELEASE_FAILED
            transient gateway error: escrow stays PENDING,
                GatewayUnavailableError raised

        Raises:
            GatewayUnavailableError: Outcome unknown; retry with the same key
            LockAcquisitionError: Another worker is settling the order
        """
        logger = cls.get_logger()

        order_id = Escrow.objects.filter(id=escrow_id).values_list("order_id", flat=True).first()
        if order_id is None:
            return ServiceResult.failure(
                f"Escrow {escrow_id} not found",
                error_code="ESCROW_NOT_FOUND",
            )

        log_context = {
            "escrow_id": str(escrow_id),
            "order_id": str(order_id),
            "reason": str(reason),
        }

        with settlement_lock(order_id, blocking=blocking):
            # Phase 1: re-check and record the attempt
            with cls.atomic():
                escrow = (
                    Escrow.objects.select_for_update(of=("self",))
                    .select_related("order__store")
                    .get(id=escrow_id)
                )

                rejection = cls._check_releasable(escrow, reason)
                if rejection is not None:
                    return rejection

                recipient_code = escrow.order.store.recipient_code
                if not recipient_code:
                    cls._mark_failed(escrow, NO_PAYOUT_ACCOUNT)
                    logger.error("Escrow release failed", extra={**log_context, "error": NO_PAYOUT_ACCOUNT})
                    return ServiceResult.failure(NO_PAYOUT_ACCOUNT, error_code="RELEASE_FAILED")

                # A new attempt number only after a concluded failure; a
                # transient retry reuses the in-flight reference and key.
                if escrow.release_attempts == 0 or escrow.release_status == EscrowStatus.FAILED:
                    escrow.release_attempts += 1
                    escrow.transfer_reference = f"escrow-{escrow.id}-{escrow.release_attempts}"
                escrow.release_reason = reason
                escrow.save(update_fields=["release_attempts", "transfer_reference", "release_reason"])

                amount_cents = escrow.amount_held_cents
                currency = escrow.currency
                transfer_reference = escrow.transfer_reference
                idempotency_key = IdempotencyKeyGenerator.generate(
                    operation="transfer",
                    entity_id=escrow.id,
                    attempt=escrow.release_attempts,
                )

            log_context["idempotency_key"] = idempotency_key

            # Phase 2: gateway call outside the transaction
            try:
                transfer = cls.get_stripe_adapter().transfer(
                    recipient_code=recipient_code,
                    amount_cents=amount_cents,
                    currency=currency,
                    reference=transfer_reference,
                    idempotency_key=idempotency_key,
                    metadata={"escrow_id": str(escrow_id), "order_id": str(order_id)},
                )
            except GatewayError as e:
                if e.is_retryable:
                    logger.warning(
                        "Escrow transfer did not complete, outcome unknown",
                        extra={**log_context, "error": e.message},
                    )
                    raise GatewayUnavailableError(e.message, details=log_context) from e

                with cls.atomic():
                    escrow = Escrow.objects.select_for_update().get(id=escrow_id)
                    cls._mark_failed(escrow, e.message)
                logger.error("Escrow release failed", extra={**log_context, "error": e.message})
                return ServiceResult.failure(
                    f"Release failed: {e.message}",
                    error_code="RELEASE_FAILED",
                )

            # Phase 3: the money moved; record it whatever else changed meanwhile
            with cls.atomic():
                escrow = Escrow.objects.select_for_update(of=("self",)).select_related("order").get(id=escrow_id)
                cls._mark_released(escrow, recipient_code, transfer.id, reason)

        if escrow.frozen:
            logger.warning(
                "Escrow released while frozen by a dispute",
                extra={**log_context, "error_code": "REQUIRES_MANUAL_INTERVENTION"},
            )

        logger.info(
            "Escrow released",
            extra={**log_context, "transfer_id": transfer.id, "amount_cents": amount_cents},
        )
        cls._notify_released(escrow)
        return ServiceResult.success(escrow)

    @classmethod
    def _check_releasable(cls, escrow: Escrow, reason: str) -> ServiceResult | None:
        if escrow.release_status == EscrowStatus.RELEASED:
            cls.get_logger().info(
                "Escrow already released",
                extra={"escrow_id": str(escrow.id), "error_code": "ALREADY_PROCESSED"},
            )
            return ServiceResult.success(escrow)
        if escrow.release_status == EscrowStatus.REFUNDED:
            return ServiceResult.failure(
                "Escrow has been refunded and cannot be released",
                error_code="INVALID_STATE",
            )
        if escrow.release_status == EscrowStatus.FAILED and reason != ReleaseReason.OPERATOR_RETRY:
            return ServiceResult.failure(
                "A previous release failed; an operator must retry it",
                error_code="INVALID_STATE",
            )
        if escrow.frozen:
            return ServiceResult.failure(
                "Escrow is frozen by an open dispute",
                error_code="ESCROW_FROZEN",
            )
        return None

    @classmethod
    def _mark_failed(cls, escrow: Escrow, reason: str) -> None:
        if escrow.release_status == EscrowStatus.PENDING:
            escrow.fail(at=cls.now(), reason=reason)
        else:
            escrow.failed_at = cls.now()
            escrow.failure_reason = reason
        escrow.save()

    @classmethod
    def _mark_released(cls, escrow: Escrow, recipient_code: str, transfer_id: str, reason: str) -> None:
        kwargs = {
            "at": cls.now(),
            "recipient_code": recipient_code,
            "transfer_id": transfer_id,
            "reason": reason,
        }
        if escrow.release_status == EscrowStatus.FAILED:
            escrow.release_after_retry(**kwargs)
        else:
            escrow.release(**kwargs)
        escrow.save()

    @classmethod
    def _notify_released(cls, escrow: Escrow) -> None:
        order = escrow.order
        NotificationService.notify(
            order.store.owner,
            "Funds Released",
            f"{format_amount(escrow.amount_held_cents, escrow.currency)} for order "
            f"#{short_id(order.id)} has been released to your payout account.",
            kind=NotificationKind.ESCROW,
            meta={"order_id": str(order.id), "escrow_id": str(escrow.id)},
        )

    # ==========================================================================
    # Refund
    # ==========================================================================

    @classmethod
    def refund(
        cls,
        escrow_id: Any,
        amount_cents: int | None,
        reason: str,
        actor: User | None = None,
    ) -> ServiceResult[RefundOutcome]:
        """
        Return held funds to the buyer and close the escrow as REFUNDED.

        amount_cents defaults to the order's remaining refundable amount.
        Only money not yet released can be refunded here.

        Error codes:
            ESCROW_NOT_FOUND, INVALID_STATE, REQUIRES_MANUAL_INTERVENTION,
            plus those of RefundService.refund_order

        Raises:
            GatewayUnavailableError: Transient gateway failure; escrow stays PENDING
        """
        order_id = Escrow.objects.filter(id=escrow_id).values_list("order_id", flat=True).first()
        if order_id is None:
            return ServiceResult.failure(
                f"Escrow {escrow_id} not found",
                error_code="ESCROW_NOT_FOUND",
            )

        with settlement_lock(order_id):
            with cls.atomic():
                escrow = Escrow.objects.select_for_update(of=("self",)).select_related("order").get(id=escrow_id)
                if escrow.release_status == EscrowStatus.REFUNDED:
                    return ServiceResult.failure(
                        "Escrow has already been refunded",
                        error_code="INVALID_STATE",
                    )
                if escrow.release_status != EscrowStatus.PENDING:
                    return ServiceResult.failure(
                        "Funds already left escrow; manual refund required",
                        error_code="REQUIRES_MANUAL_INTERVENTION",
                    )
                if amount_cents is None:
                    amount_cents = escrow.order.refundable_amount_cents

            result = RefundService.refund_order(order_id, amount_cents, reason, initiated_by=actor)
            if not result.success:
                return result

            with cls.atomic():
                escrow = Escrow.objects.select_for_update().get(id=escrow_id)
                escrow.refund(at=cls.now())
                escrow.save()

        cls.get_logger().info(
            "Escrow refunded",
            extra={
                "escrow_id": str(escrow_id),
                "order_id": str(order_id),
                "amount_cents": amount_cents,
            },
        )
        return result

    # ==========================================================================
    # Freeze
    # ==========================================================================

    @classmethod
    def freeze(cls, order_id: Any) -> Escrow | None:
        """Block release while a dispute is open. No-op without an escrow."""
        return cls._set_frozen(order_id, True)

    @classmethod
    def unfreeze(cls, order_id: Any) -> Escrow | None:
        """Allow release again once no dispute is open."""
        return cls._set_frozen(order_id, False)

    @classmethod
    def _set_frozen(cls, order_id: Any, frozen: bool) -> Escrow | None:
        with settlement_lock(order_id):
            with cls.atomic():
                escrow = Escrow.objects.select_for_update().filter(order_id=order_id).first()
                if escrow is None or escrow.frozen == frozen:
                    return escrow
                escrow.frozen = frozen
                escrow.save(update_fields=["frozen"])

        cls.get_logger().info(
            "Escrow frozen" if frozen else "Escrow unfrozen",
            extra={"escrow_id": str(escrow.id), "order_id": str(order_id)},
        )
        return escrow

    # ==========================================================================
    # Operator tools
    # ==========================================================================

    @classmethod
    def retry_failed_release(
        cls,
        escrow_id: Any,
        actor: User,
        expected_version: int | None = None,
    ) -> ServiceResult[Escrow]:
        """
        Re-attempt a FAILED release with a fresh attempt number.

        expected_version, when given, must match the escrow's current
        version so an operator never retries on stale information.

        Error codes:
            UNAUTHORIZED, ESCROW_NOT_FOUND, STALE_RECORD, INVALID_STATE,
            ESCROW_FROZEN, RELEASE_FAILED
        """
        try:
            require(actor, None, Action.MANAGE_ESCROW)
        except UnauthorizedActionError as e:
            return cls.handle_exception(e, "retry release")

        escrow = Escrow.objects.filter(id=escrow_id).first()
        if escrow is None:
            return ServiceResult.failure(
                f"Escrow {escrow_id} not found",
                error_code="ESCROW_NOT_FOUND",
            )

        if expected_version is not None:
            try:
                with cls.atomic():
                    escrow = check_version(Escrow, escrow_id, expected_version)
            except StaleRecordError as e:
                return cls.handle_exception(e, "retry release")

        if escrow.release_status != EscrowStatus.FAILED:
            return ServiceResult.failure(
                f"Only failed releases can be retried (status is {escrow.release_status})",
                error_code="INVALID_STATE",
            )

        cls.get_logger().info(
            "Operator retrying failed release",
            extra={"escrow_id": str(escrow_id), "actor_id": actor.pk},
        )
        return cls.release(escrow_id, reason=ReleaseReason.OPERATOR_RETRY)

    @classmethod
    def verify_release(cls, escrow_id: Any, actor: User) -> ServiceResult[ReleaseVerification]:
        """
        Ask the gateway whether the latest transfer for this escrow landed.

        A PENDING escrow whose transfer succeeded (a timed-out call that
        went through) is settled as RELEASED. Nothing else is changed.

        Error codes:
            UNAUTHORIZED, ESCROW_NOT_FOUND, INVALID_STATE, GATEWAY_ERROR
        """
        try:
            require(actor, None, Action.MANAGE_ESCROW)
        except UnauthorizedActionError as e:
            return cls.handle_exception(e, "verify release")

        escrow = Escrow.objects.select_related("order__store").filter(id=escrow_id).first()
        if escrow is None:
            return ServiceResult.failure(
                f"Escrow {escrow_id} not found",
                error_code="ESCROW_NOT_FOUND",
            )
        if not escrow.transfer_reference:
            return ServiceResult.failure(
                "No transfer has been attempted for this escrow",
                error_code="INVALID_STATE",
            )

        try:
            verification = cls.get_stripe_adapter().verify_transfer(escrow.transfer_reference)
        except GatewayError as e:
            if e.is_retryable:
                raise GatewayUnavailableError(
                    e.message, details={"escrow_id": str(escrow_id)}
                ) from e
            return ServiceResult.failure(
                f"Verification failed: {e.message}",
                error_code="GATEWAY_ERROR",
            )

        settled = False
        if verification.status == TransferStatus.SUCCESS:
            with settlement_lock(escrow.order_id):
                with cls.atomic():
                    escrow = (
                        Escrow.objects.select_for_update(of=("self",))
                        .select_related("order__store")
                        .get(id=escrow_id)
                    )
                    if escrow.release_status == EscrowStatus.PENDING:
                        cls._mark_released(
                            escrow,
                            escrow.order.store.recipient_code,
                            verification.transfer_id,
                            escrow.release_reason or ReleaseReason.AUTO_TIMER_EXPIRED,
                        )
                        settled = True

        cls.get_logger().info(
            "Release verified with gateway",
            extra={
                "escrow_id": str(escrow_id),
                "transfer_status": verification.status,
                "settled": settled,
            },
        )
        if settled:
            cls._notify_released(escrow)
        return ServiceResult.success(
            ReleaseVerification(
                escrow=escrow,
                transfer_status=verification.status,
                settled=settled,
            )
        )

    # ==========================================================================
    # Queries
    # ==========================================================================

    @classmethod
    def get_for_order(cls, order_id: Any, actor: User) -> ServiceResult[EscrowView]:
        """
        Escrow details for an order's buyer, seller or an admin.

        can_confirm_receipt tells the buyer whether confirming receipt now
        would release the funds.
        """
        order = Order.objects.select_related("store").filter(id=order_id).first()
        if order is None:
            return ServiceResult.failure(
                f"Order {order_id} not found",
                error_code="ORDER_NOT_FOUND",
            )
        try:
            require(actor, order, Action.VIEW_ESCROW)
        except UnauthorizedActionError as e:
            return cls.handle_exception(e, "view escrow")

        escrow = Escrow.objects.filter(order=order).first()
        if escrow is None:
            return ServiceResult.failure(
                "No escrow exists for this order",
                error_code="ESCROW_NOT_FOUND",
            )

        can_confirm_receipt = (
            order.buyer_id == actor.pk
            and order.status == OrderStatus.DELIVERED
            and escrow.release_status == EscrowStatus.PENDING
            and not escrow.frozen
        )
        return ServiceResult.success(
            EscrowView(escrow=escrow, can_confirm_receipt=can_confirm_receipt)
        )

    @classmethod
    def list_pending(cls, actor: User) -> ServiceResult[QuerySet[Escrow]]:
        """PENDING escrows, soonest release first (admin only)."""
        try:
            require(actor, None, Action.MANAGE_ESCROW)
        except UnauthorizedActionError as e:
            return cls.handle_exception(e, "list pending escrows")

        queryset = (
            Escrow.objects.filter(release_status=EscrowStatus.PENDING)
            .select_related("order", "order__store")
            .order_by(F("release_date").asc(nulls_last=True), "created_at")
        )
        return ServiceResult.success(queryset)

    @classmethod
    def due_for_release(cls, limit: int | None = None) -> list[Any]:
        """Ids of unfrozen PENDING escrows whose release_date has passed."""
        queryset = (
            Escrow.objects.filter(
                release_status=EscrowStatus.PENDING,
                frozen=False,
                release_date__lte=cls.now(),
            )
            .order_by("release_date")
            .values_list("id", flat=True)
        )
        if limit:
            queryset = queryset[:limit]
        return list(queryset)

    @classmethod
    def is_due(cls, escrow: Escrow) -> bool:
        return (
            escrow.release_status == EscrowStatus.PENDING
            and not escrow.frozen
            and escrow.release_date is not None
            and escrow.release_date <= cls.now()
        )


__all__ = [
    "EscrowService",
    "EscrowView",
    "RefundOutcome",
    "RefundService",
    "ReleaseVerification",
    "SettlementService",
]
