"""
Tests for RefundService and EscrowService.

Tests cover:
- Refund bound, idempotency keys and the RefundAttempt ledger
- Exactly-once release under repeated calls
- Permanent vs transient gateway failures
- Freeze, operator retry and gateway verification
- Escrow queries
"""

from datetime import timedelta

import pytest

from notifications.models import Notification
from orders.models import Order
from orders.states import OrderStatus, PaymentStatus
from payments.adapters import TransferStatus, TransferVerification
from payments.exceptions import (
    GatewayDeclinedError,
    GatewayInvalidAccountError,
    GatewayUnavailableError,
)
from payments.models import Escrow, RefundAttempt
from payments.services import EscrowService, RefundService
from payments.states import EscrowStatus, RefundAttemptStatus, ReleaseReason
from payments.tests.factories import DueEscrowFactory, EscrowFactory, FailedEscrowFactory


def _reload(escrow):
    return Escrow.objects.get(id=escrow.id)


# =============================================================================
# RefundService
# =============================================================================


@pytest.mark.django_db
class TestRefundOrder:
    def test_partial_refund(self, paid_order, buyer, mock_gateway):
        result = RefundService.refund_order(paid_order.id, 3000, "Damaged box", initiated_by=buyer)

        assert result.success
        assert result.data.amount_cents == 3000
        assert result.data.fully_refunded is False

        order = Order.objects.get(id=paid_order.id)
        assert order.refund_amount_cents == 3000
        assert order.refund_reason == "Damaged box"
        assert order.payment_status == PaymentStatus.PARTIALLY_REFUNDED

        attempt = result.data.attempt
        assert attempt.status == RefundAttemptStatus.SUCCESS
        assert attempt.gateway_ref == "re_test_1"
        assert attempt.idempotency_key.startswith(f"refund:{order.id}:0:")

    def test_second_partial_refund_gets_new_key(self, paid_order, mock_gateway):
        RefundService.refund_order(paid_order.id, 3000, "first")
        result = RefundService.refund_order(paid_order.id, 7000, "second")

        assert result.data.fully_refunded is True
        keys = [call.kwargs["idempotency_key"] for call in mock_gateway.refund.call_args_list]
        assert keys[0].startswith(f"refund:{paid_order.id}:0:")
        assert keys[1].startswith(f"refund:{paid_order.id}:3000:")
        assert Order.objects.get(id=paid_order.id).payment_status == PaymentStatus.REFUNDED

    def test_retry_after_timeout_reuses_key(self, paid_order, mock_gateway):
        mock_gateway.refund.side_effect = [GatewayUnavailableError("timeout"), mock_gateway.refund.return_value]

        with pytest.raises(GatewayUnavailableError):
            RefundService.refund_order(paid_order.id, 5000, "retry me")
        RefundService.refund_order(paid_order.id, 5000, "retry me")

        first, second = mock_gateway.refund.call_args_list
        assert first.kwargs["idempotency_key"] == second.kwargs["idempotency_key"]
        statuses = list(
            RefundAttempt.objects.filter(order_id=paid_order.id).values_list("status", flat=True)
        )
        assert statuses == [RefundAttemptStatus.FAILED, RefundAttemptStatus.SUCCESS]

    def test_refund_cannot_exceed_total(self, paid_order, mock_gateway):
        RefundService.refund_order(paid_order.id, 8000, "first")

        result = RefundService.refund_order(paid_order.id, 2001, "too much")

        assert result.error_code == "REFUND_EXCEEDS_TOTAL"
        assert mock_gateway.refund.call_count == 1
        assert Order.objects.get(id=paid_order.id).refund_amount_cents == 8000

    @pytest.mark.parametrize("amount", [0, -100, None])
    def test_invalid_amount(self, paid_order, mock_gateway, amount):
        result = RefundService.refund_order(paid_order.id, amount, "x")

        assert result.error_code == "INVALID_AMOUNT"
        mock_gateway.refund.assert_not_called()

    def test_unpaid_order_rejected(self, placed_order, mock_gateway):
        result = RefundService.refund_order(placed_order.id, 100, "x")

        assert result.error_code == "INVALID_STATE"

    def test_unknown_order(self, db, mock_gateway):
        result = RefundService.refund_order("00000000-0000-0000-0000-000000000000", 100, "x")

        assert result.error_code == "ORDER_NOT_FOUND"

    def test_permanent_failure_is_recorded(self, paid_order, mock_gateway):
        mock_gateway.refund.side_effect = GatewayDeclinedError("Charge already refunded")

        result = RefundService.refund_order(paid_order.id, 1000, "x")

        assert result.error_code == "GATEWAY_ERROR"
        attempt = RefundAttempt.objects.get(order_id=paid_order.id)
        assert attempt.status == RefundAttemptStatus.FAILED
        assert attempt.error_message == "Charge already refunded"
        assert Order.objects.get(id=paid_order.id).refund_amount_cents == 0

    def test_notifies_both_parties(self, paid_order, buyer, seller, mock_gateway):
        RefundService.refund_order(paid_order.id, 2500, "x")

        assert Notification.objects.get(recipient=buyer, title="Refund Processed").body.startswith(
            "A refund of 25.00 GHS"
        )
        assert Notification.objects.filter(recipient=seller, title="Refund Issued").exists()


# =============================================================================
# EscrowService: release
# =============================================================================


@pytest.mark.django_db
class TestRelease:
    def test_release_transfers_once(self, escrow, mock_gateway):
        result = EscrowService.release(escrow.id)

        assert result.success
        escrow = _reload(escrow)
        assert escrow.release_status == EscrowStatus.RELEASED
        assert escrow.release_reason == ReleaseReason.AUTO_TIMER_EXPIRED
        assert escrow.release_attempts == 1
        assert escrow.transfer_reference == f"escrow-{escrow.id}-1"

        kwargs = mock_gateway.transfer.call_args.kwargs
        assert kwargs["reference"] == f"escrow-{escrow.id}-1"
        assert kwargs["idempotency_key"].startswith(f"transfer:{escrow.id}:1:")
        assert kwargs["currency"] == "ghs"

    def test_repeated_release_is_noop(self, escrow, mock_gateway):
        for _ in range(3):
            assert EscrowService.release(escrow.id).success

        assert mock_gateway.transfer.call_count == 1

    def test_release_notifies_seller(self, escrow, seller, mock_gateway):
        EscrowService.release(escrow.id)

        notification = Notification.objects.get(recipient=seller, title="Funds Released")
        assert "100.00 GHS" in notification.body

    def test_frozen_escrow_not_released(self, escrow, delivered_order, mock_gateway):
        EscrowService.freeze(delivered_order.id)

        result = EscrowService.release(escrow.id)

        assert result.error_code == "ESCROW_FROZEN"
        mock_gateway.transfer.assert_not_called()

    def test_refunded_escrow_not_released(self, mock_gateway):
        escrow = EscrowFactory(release_status=EscrowStatus.REFUNDED)

        assert EscrowService.release(escrow.id).error_code == "INVALID_STATE"
        mock_gateway.transfer.assert_not_called()

    def test_failed_escrow_needs_operator(self, mock_gateway):
        escrow = FailedEscrowFactory()

        assert EscrowService.release(escrow.id).error_code == "INVALID_STATE"
        mock_gateway.transfer.assert_not_called()

    def test_missing_payout_account_fails_escrow(self, mock_gateway):
        escrow = EscrowFactory()
        store = escrow.order.store
        store.recipient_code = ""
        store.save()

        result = EscrowService.release(escrow.id)

        assert result.error_code == "RELEASE_FAILED"
        escrow = _reload(escrow)
        assert escrow.release_status == EscrowStatus.FAILED
        assert escrow.failure_reason == "Seller has no payout account"
        mock_gateway.transfer.assert_not_called()

    def test_permanent_failure_marks_failed(self, escrow, mock_gateway):
        mock_gateway.transfer.side_effect = GatewayInvalidAccountError("No such destination")

        result = EscrowService.release(escrow.id)

        assert result.error_code == "RELEASE_FAILED"
        escrow = _reload(escrow)
        assert escrow.release_status == EscrowStatus.FAILED
        assert escrow.failed_at is not None

    def test_transient_failure_keeps_pending_and_key(self, escrow, mock_gateway):
        mock_gateway.transfer.side_effect = [
            GatewayUnavailableError("timeout"),
            mock_gateway.transfer.return_value,
        ]

        with pytest.raises(GatewayUnavailableError):
            EscrowService.release(escrow.id)
        assert _reload(escrow).release_status == EscrowStatus.PENDING

        assert EscrowService.release(escrow.id).success

        first, second = mock_gateway.transfer.call_args_list
        assert first.kwargs["idempotency_key"] == second.kwargs["idempotency_key"]
        assert _reload(escrow).release_attempts == 1

    def test_unknown_escrow(self, db, mock_gateway):
        result = EscrowService.release("00000000-0000-0000-0000-000000000000")

        assert result.error_code == "ESCROW_NOT_FOUND"


# =============================================================================
# EscrowService: refund, freeze
# =============================================================================


@pytest.mark.django_db
class TestEscrowRefund:
    def test_full_refund_defaults_to_refundable_amount(self, paid_order, mock_gateway):
        escrow = Escrow.objects.get(order_id=paid_order.id)

        result = EscrowService.refund(escrow.id, None, "Cancelled")

        assert result.success
        assert result.data.amount_cents == 10000
        assert _reload(escrow).release_status == EscrowStatus.REFUNDED

    def test_partial_refund_closes_escrow(self, paid_order, mock_gateway):
        escrow = Escrow.objects.get(order_id=paid_order.id)

        EscrowService.refund(escrow.id, 4000, "Partial")

        assert _reload(escrow).release_status == EscrowStatus.REFUNDED
        order = Order.objects.get(id=paid_order.id)
        assert order.payment_status == PaymentStatus.PARTIALLY_REFUNDED

    def test_second_refund_rejected(self, paid_order, mock_gateway):
        escrow = Escrow.objects.get(order_id=paid_order.id)
        EscrowService.refund(escrow.id, None, "first")

        result = EscrowService.refund(escrow.id, None, "second")

        assert result.error_code == "INVALID_STATE"
        assert mock_gateway.refund.call_count == 1

    def test_released_escrow_requires_manual_intervention(self, escrow, mock_gateway):
        EscrowService.release(escrow.id)

        result = EscrowService.refund(escrow.id, None, "too late")

        assert result.error_code == "REQUIRES_MANUAL_INTERVENTION"
        mock_gateway.refund.assert_not_called()

    def test_gateway_rejection_keeps_escrow_pending(self, paid_order, mock_gateway):
        mock_gateway.refund.side_effect = GatewayDeclinedError("declined")
        escrow = Escrow.objects.get(order_id=paid_order.id)

        result = EscrowService.refund(escrow.id, None, "x")

        assert result.error_code == "GATEWAY_ERROR"
        assert _reload(escrow).release_status == EscrowStatus.PENDING


@pytest.mark.django_db
class TestFreeze:
    def test_freeze_and_unfreeze(self, paid_order):
        assert EscrowService.freeze(paid_order.id).frozen is True
        assert Escrow.objects.get(order_id=paid_order.id).frozen is True

        assert EscrowService.unfreeze(paid_order.id).frozen is False
        assert Escrow.objects.get(order_id=paid_order.id).frozen is False

    def test_freeze_is_idempotent(self, paid_order):
        EscrowService.freeze(paid_order.id)
        version = Escrow.objects.get(order_id=paid_order.id).version

        EscrowService.freeze(paid_order.id)

        assert Escrow.objects.get(order_id=paid_order.id).version == version

    def test_no_escrow_is_noop(self, placed_order):
        assert EscrowService.freeze(placed_order.id) is None


# =============================================================================
# EscrowService: operator tools
# =============================================================================


@pytest.mark.django_db
class TestRetryFailedRelease:
    def test_retry_uses_new_attempt(self, admin_user, mock_gateway):
        escrow = FailedEscrowFactory()

        result = EscrowService.retry_failed_release(escrow.id, admin_user)

        assert result.success
        escrow = _reload(escrow)
        assert escrow.release_status == EscrowStatus.RELEASED
        assert escrow.release_reason == ReleaseReason.OPERATOR_RETRY
        assert escrow.release_attempts == 2
        assert escrow.failure_reason == ""
        assert mock_gateway.transfer.call_args.kwargs["idempotency_key"].startswith(
            f"transfer:{escrow.id}:2:"
        )

    def test_retry_failing_again(self, admin_user, mock_gateway):
        mock_gateway.transfer.side_effect = GatewayInvalidAccountError("Still closed")
        escrow = FailedEscrowFactory()

        result = EscrowService.retry_failed_release(escrow.id, admin_user)

        assert result.error_code == "RELEASE_FAILED"
        escrow = _reload(escrow)
        assert escrow.release_status == EscrowStatus.FAILED
        assert escrow.failure_reason == "Still closed"

    def test_requires_admin(self, buyer, mock_gateway):
        escrow = FailedEscrowFactory()

        assert EscrowService.retry_failed_release(escrow.id, buyer).error_code == "UNAUTHORIZED"

    def test_stale_version_rejected(self, admin_user, mock_gateway):
        escrow = FailedEscrowFactory()

        result = EscrowService.retry_failed_release(escrow.id, admin_user, expected_version=7)

        assert result.error_code == "STALE_RECORD"
        mock_gateway.transfer.assert_not_called()

    def test_matching_version_accepted(self, admin_user, mock_gateway):
        escrow = FailedEscrowFactory()

        result = EscrowService.retry_failed_release(
            escrow.id, admin_user, expected_version=escrow.version
        )

        assert result.success

    def test_only_failed_escrows(self, admin_user, mock_gateway):
        escrow = EscrowFactory()

        result = EscrowService.retry_failed_release(escrow.id, admin_user)

        assert result.error_code == "INVALID_STATE"


@pytest.mark.django_db
class TestVerifyRelease:
    def test_settles_pending_escrow_whose_transfer_landed(
        self, escrow, admin_user, mock_gateway
    ):
        mock_gateway.transfer.side_effect = GatewayUnavailableError("timeout")
        with pytest.raises(GatewayUnavailableError):
            EscrowService.release(escrow.id)
        mock_gateway.verify_transfer.return_value = TransferVerification(
            status=TransferStatus.SUCCESS, transfer_id="tr_landed"
        )

        result = EscrowService.verify_release(escrow.id, admin_user)

        assert result.success
        assert result.data.settled is True
        escrow = _reload(escrow)
        assert escrow.release_status == EscrowStatus.RELEASED
        assert escrow.transfer_id == "tr_landed"
        mock_gateway.verify_transfer.assert_called_once_with(f"escrow-{escrow.id}-1")

    def test_not_found_transfer_changes_nothing(self, escrow, admin_user, mock_gateway):
        mock_gateway.transfer.side_effect = GatewayUnavailableError("timeout")
        with pytest.raises(GatewayUnavailableError):
            EscrowService.release(escrow.id)
        mock_gateway.verify_transfer.return_value = TransferVerification(
            status=TransferStatus.NOT_FOUND
        )

        result = EscrowService.verify_release(escrow.id, admin_user)

        assert result.data.settled is False
        assert _reload(escrow).release_status == EscrowStatus.PENDING

    def test_no_attempt_yet(self, escrow, admin_user, mock_gateway):
        assert EscrowService.verify_release(escrow.id, admin_user).error_code == "INVALID_STATE"

    def test_requires_admin(self, escrow, seller, mock_gateway):
        assert EscrowService.verify_release(escrow.id, seller).error_code == "UNAUTHORIZED"


# =============================================================================
# Queries
# =============================================================================


@pytest.mark.django_db
class TestEscrowQueries:
    def test_get_for_order_buyer_may_confirm(self, delivered_order, buyer, seller):
        view = EscrowService.get_for_order(delivered_order.id, buyer).data

        assert view.escrow.order_id == delivered_order.id
        assert view.can_confirm_receipt is True
        assert EscrowService.get_for_order(delivered_order.id, seller).data.can_confirm_receipt is False

    def test_get_for_order_before_delivery(self, paid_order, buyer):
        assert EscrowService.get_for_order(paid_order.id, buyer).data.can_confirm_receipt is False

    def test_get_for_order_outsider(self, paid_order, outsider):
        assert EscrowService.get_for_order(paid_order.id, outsider).error_code == "UNAUTHORIZED"

    def test_get_for_unpaid_order(self, placed_order, buyer):
        assert EscrowService.get_for_order(placed_order.id, buyer).error_code == "ESCROW_NOT_FOUND"

    def test_list_pending_admin_only(self, paid_order, admin_user, buyer):
        assert EscrowService.list_pending(buyer).error_code == "UNAUTHORIZED"
        assert EscrowService.list_pending(admin_user).data.count() == 1

    def test_due_for_release(self, fixed_clock, delivered_order, escrow):
        assert EscrowService.due_for_release() == []

        fixed_clock.advance(timedelta(days=4))

        assert EscrowService.due_for_release() == [escrow.id]
        assert EscrowService.is_due(escrow)

    def test_due_for_release_skips_frozen_and_settled(self, fixed_clock, db):
        fixed_clock.advance(timedelta(hours=2))
        due = DueEscrowFactory()
        DueEscrowFactory(frozen=True)
        DueEscrowFactory(release_status=EscrowStatus.RELEASED)

        assert EscrowService.due_for_release() == [due.id]

    def test_due_for_release_limit(self, fixed_clock, db):
        fixed_clock.advance(timedelta(hours=2))
        DueEscrowFactory.create_batch(3)

        assert len(EscrowService.due_for_release(limit=2)) == 2

    def test_order_still_delivered_after_auto_release(self, delivered_order, escrow, mock_gateway):
        EscrowService.release(escrow.id)

        assert Order.objects.get(id=delivered_order.id).status == OrderStatus.DELIVERED
