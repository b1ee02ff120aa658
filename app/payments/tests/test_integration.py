"""
End-to-end settlement scenarios.

Each test drives an order from placement to a settled escrow through the
public services and the release scheduler, with only the gateway mocked.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from django.db import connection

from disputes.services import DisputeService
from disputes.states import DisputeStatus, DisputeType
from orders.models import Order
from orders.services import OrderService
from orders.states import OrderStatus, PaymentStatus
from payments.exceptions import GatewayUnavailableError, LockAcquisitionError
from payments.locks import DistributedLock
from payments.models import Escrow, RefundAttempt
from payments.services import EscrowService
from payments.states import EscrowStatus, ReleaseReason
from payments.workers.release_scheduler import process_due_escrows, release_single_escrow


@pytest.fixture
def run_scheduler_inline(mocker):
    """Route the sweep's queued releases straight into the task body."""
    mocker.patch(
        "payments.workers.release_scheduler.release_single_escrow.delay",
        side_effect=lambda escrow_id: release_single_escrow(escrow_id),
    )


def _escrow(order):
    return Escrow.objects.get(order_id=order.id)


def _order(order):
    return Order.objects.get(id=order.id)


@pytest.mark.django_db
class TestSettlementScenarios:
    def test_buyer_confirms_receipt(self, delivered_order, buyer, mock_gateway):
        result = OrderService.confirm_receipt(delivered_order.id, buyer)

        assert result.success
        assert _order(delivered_order).status == OrderStatus.COMPLETED
        escrow = _escrow(delivered_order)
        assert escrow.release_status == EscrowStatus.RELEASED
        assert escrow.release_reason == ReleaseReason.BUYER_CONFIRMED
        assert escrow.transfer_id == "tr_test_1"
        mock_gateway.transfer.assert_called_once()
        assert mock_gateway.transfer.call_args.kwargs["amount_cents"] == 10000
        assert mock_gateway.transfer.call_args.kwargs["recipient_code"] == "acct_seller"

    def test_release_window_elapses(
        self, delivered_order, fixed_clock, mock_gateway, run_scheduler_inline
    ):
        fixed_clock.advance(timedelta(days=3))
        process_due_escrows()
        assert _escrow(delivered_order).release_status == EscrowStatus.PENDING

        fixed_clock.advance(timedelta(days=1, seconds=1))
        process_due_escrows()

        escrow = _escrow(delivered_order)
        assert escrow.release_status == EscrowStatus.RELEASED
        assert escrow.release_reason == ReleaseReason.AUTO_TIMER_EXPIRED
        assert _order(delivered_order).status == OrderStatus.DELIVERED

    def test_dispute_upheld_before_release_refunds_buyer(
        self,
        delivered_order,
        buyer,
        admin_user,
        fixed_clock,
        mock_gateway,
        run_scheduler_inline,
    ):
        dispute = DisputeService.open_dispute(
            delivered_order.id, buyer, DisputeType.DAMAGED_ITEM, "Arrived broken"
        ).data

        # The release window passes while the dispute is under review
        fixed_clock.advance(timedelta(days=5))
        process_due_escrows()
        assert _escrow(delivered_order).release_status == EscrowStatus.PENDING

        result = DisputeService.resolve(
            dispute.id, admin_user, DisputeStatus.RESOLVED, "Photos confirm damage"
        )
        process_due_escrows()

        assert result.success
        assert result.data.requires_manual_intervention is False
        assert _escrow(delivered_order).release_status == EscrowStatus.REFUNDED
        order = _order(delivered_order)
        assert order.status == OrderStatus.CANCELLED
        assert order.payment_status == PaymentStatus.REFUNDED
        mock_gateway.transfer.assert_not_called()
        mock_gateway.refund.assert_called_once()
        assert RefundAttempt.objects.filter(order=order).count() == 1

    def test_dispute_rejected_then_released(
        self,
        delivered_order,
        buyer,
        admin_user,
        fixed_clock,
        mock_gateway,
        run_scheduler_inline,
    ):
        dispute = DisputeService.open_dispute(
            delivered_order.id, buyer, DisputeType.ITEM_NOT_RECEIVED, "Never came"
        ).data
        DisputeService.resolve(dispute.id, admin_user, DisputeStatus.CANCELLED, "Signed for")

        fixed_clock.advance(timedelta(days=5))
        process_due_escrows()

        assert _escrow(delivered_order).release_status == EscrowStatus.RELEASED
        mock_gateway.refund.assert_not_called()

    def test_dispute_upheld_after_auto_release_needs_manual_refund(
        self,
        delivered_order,
        buyer,
        admin_user,
        fixed_clock,
        mock_gateway,
        run_scheduler_inline,
    ):
        fixed_clock.advance(timedelta(days=5))
        process_due_escrows()

        dispute = DisputeService.open_dispute(
            delivered_order.id, buyer, DisputeType.ITEM_NOT_AS_DESCRIBED, "Wrong colour"
        ).data
        result = DisputeService.resolve(dispute.id, admin_user, DisputeStatus.RESOLVED, "Upheld")

        assert result.data.status == DisputeStatus.RESOLVED
        assert result.data.requires_manual_intervention is True
        escrow = _escrow(delivered_order)
        assert escrow.release_status == EscrowStatus.RELEASED
        assert escrow.frozen is False
        mock_gateway.refund.assert_not_called()
        assert mock_gateway.transfer.call_count == 1

    def test_repeated_release_triggers_move_money_once(
        self, delivered_order, buyer, fixed_clock, mock_gateway, run_scheduler_inline
    ):
        escrow = _escrow(delivered_order)
        fixed_clock.advance(timedelta(days=5))

        OrderService.confirm_receipt(delivered_order.id, buyer)
        process_due_escrows()
        release_single_escrow(str(escrow.id))
        EscrowService.release(escrow.id)
        OrderService.confirm_receipt(delivered_order.id, buyer)

        assert mock_gateway.transfer.call_count == 1
        assert _escrow(delivered_order).release_status == EscrowStatus.RELEASED

    def test_transient_failure_retries_with_same_key(
        self, delivered_order, fixed_clock, mock_gateway
    ):
        escrow = _escrow(delivered_order)
        fixed_clock.advance(timedelta(days=5))
        transfer_result = mock_gateway.transfer.return_value
        mock_gateway.transfer.side_effect = [GatewayUnavailableError("timeout"), transfer_result]

        with pytest.raises(GatewayUnavailableError):
            EscrowService.release(escrow.id)
        result = EscrowService.release(escrow.id)

        assert result.success
        first, second = mock_gateway.transfer.call_args_list
        assert first.kwargs["idempotency_key"] == second.kwargs["idempotency_key"]
        assert first.kwargs["reference"] == second.kwargs["reference"]
        assert _escrow(delivered_order).release_attempts == 1

    def test_cancelled_before_delivery_refunds_and_restores_stock(
        self, confirmed_order, buyer, product, mock_gateway
    ):
        result = OrderService.cancel(confirmed_order.id, buyer, "Changed my mind")

        assert result.success
        assert _escrow(confirmed_order).release_status == EscrowStatus.REFUNDED
        order = _order(confirmed_order)
        assert order.status == OrderStatus.CANCELLED
        assert order.payment_status == PaymentStatus.REFUNDED
        product.refresh_from_db()
        assert product.stock == 10
        mock_gateway.transfer.assert_not_called()


class InMemoryRedis:
    """Thread-safe SET NX plus the compare-and-delete lock scripts."""

    def __init__(self):
        self._values = {}
        self._mutex = threading.Lock()

    def set(self, key, value, nx=False, ex=None):
        with self._mutex:
            if nx and key in self._values:
                return None
            self._values[key] = value
            return True

    def eval(self, script, numkeys, key, token, *args):
        with self._mutex:
            if self._values.get(key) != token:
                return 0
            if script == DistributedLock.RELEASE_SCRIPT:
                del self._values[key]
            return 1


@pytest.mark.django_db(transaction=True)
class TestConcurrentRelease:
    """
    Release calls racing on one escrow from separate threads.

    The first caller is held inside the gateway transfer while the others
    try to release, so they meet a lock that is genuinely taken.
    """

    def test_contending_releases_transfer_once(
        self, delivered_order, fixed_clock, mock_gateway, mock_redis_lock
    ):
        redis_store = InMemoryRedis()
        mock_redis_lock.set.side_effect = redis_store.set
        mock_redis_lock.eval.side_effect = redis_store.eval
        escrow_id = _escrow(delivered_order).id
        fixed_clock.advance(timedelta(days=5))

        in_gateway = threading.Event()
        gate = threading.Event()
        transfer_result = mock_gateway.transfer.return_value

        def held_transfer(**kwargs):
            in_gateway.set()
            gate.wait(timeout=5)
            return transfer_result

        mock_gateway.transfer.side_effect = held_transfer

        def release():
            connection.close()  # Force new connection for thread
            try:
                return EscrowService.release(escrow_id, blocking=False)
            except LockAcquisitionError as e:
                return e

        with ThreadPoolExecutor(max_workers=6) as executor:
            first = executor.submit(release)
            assert in_gateway.wait(timeout=5)
            others = [executor.submit(release) for _ in range(5)]
            other_outcomes = [future.result(timeout=5) for future in others]
            gate.set()
            first_outcome = first.result(timeout=5)

        assert first_outcome.success
        assert all(isinstance(outcome, LockAcquisitionError) for outcome in other_outcomes)
        assert mock_gateway.transfer.call_count == 1
        escrow = Escrow.objects.get(id=escrow_id)
        assert escrow.release_status == EscrowStatus.RELEASED
        assert escrow.release_attempts == 1

        # The lock is free again and the escrow is already settled
        late = EscrowService.release(escrow_id, blocking=False)
        assert late.success
        assert mock_gateway.transfer.call_count == 1
