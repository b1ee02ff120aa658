"""
Tests for the escrow release scheduler tasks.

Tasks are called directly (synchronously); release_single_escrow.delay
is patched where the sweep is tested in isolation.
"""

from datetime import timedelta

import pytest

from payments.exceptions import GatewayInvalidAccountError, GatewayUnavailableError
from payments.models import Escrow
from payments.services import EscrowService
from payments.states import EscrowStatus, ReleaseReason
from payments.tests.factories import DueEscrowFactory, EscrowFactory, FailedEscrowFactory
from payments.workers.release_scheduler import process_due_escrows, release_single_escrow


@pytest.mark.django_db
class TestProcessDueEscrows:
    def test_queues_each_due_escrow(self, mocker, fixed_clock):
        fixed_clock.advance(timedelta(hours=2))
        due = DueEscrowFactory.create_batch(2)
        EscrowFactory()  # not delivered yet
        delay = mocker.patch(
            "payments.workers.release_scheduler.release_single_escrow.delay"
        )

        result = process_due_escrows()

        assert result == {"queued_count": 2}
        queued = {call.args[0] for call in delay.call_args_list}
        assert queued == {str(escrow.id) for escrow in due}

    def test_respects_batch_size(self, mocker, fixed_clock, settings):
        settings.ESCROW_RELEASE_BATCH_SIZE = 1
        fixed_clock.advance(timedelta(hours=2))
        DueEscrowFactory.create_batch(3)
        delay = mocker.patch(
            "payments.workers.release_scheduler.release_single_escrow.delay"
        )

        assert process_due_escrows() == {"queued_count": 1}
        assert delay.call_count == 1

    def test_queue_failure_does_not_stop_sweep(self, mocker, fixed_clock):
        fixed_clock.advance(timedelta(hours=2))
        DueEscrowFactory.create_batch(2)
        mocker.patch(
            "payments.workers.release_scheduler.release_single_escrow.delay",
            side_effect=[RuntimeError("broker down"), None],
        )

        assert process_due_escrows() == {"queued_count": 1}

    def test_nothing_due(self, mocker, fixed_clock, escrow):
        delay = mocker.patch(
            "payments.workers.release_scheduler.release_single_escrow.delay"
        )

        assert process_due_escrows() == {"queued_count": 0}
        delay.assert_not_called()

    def test_sweep_releases_due_escrow(
        self, mocker, fixed_clock, delivered_order, escrow, mock_gateway
    ):
        fixed_clock.advance(timedelta(days=4, minutes=1))
        mocker.patch(
            "payments.workers.release_scheduler.release_single_escrow.delay",
            side_effect=lambda escrow_id: release_single_escrow(escrow_id),
        )

        process_due_escrows()

        escrow = Escrow.objects.get(id=escrow.id)
        assert escrow.release_status == EscrowStatus.RELEASED
        assert escrow.release_reason == ReleaseReason.AUTO_TIMER_EXPIRED


@pytest.mark.django_db
class TestReleaseSingleEscrow:
    def test_releases_due_escrow(self, fixed_clock, delivered_order, escrow, mock_gateway):
        fixed_clock.advance(timedelta(days=4))

        result = release_single_escrow(str(escrow.id))

        assert result["status"] == "released"
        assert result["order_id"] == str(delivered_order.id)
        mock_gateway.transfer.assert_called_once()

    def test_not_due_yet(self, escrow, mock_gateway):
        result = release_single_escrow(str(escrow.id))

        assert result["status"] == "not_due"
        mock_gateway.transfer.assert_not_called()

    def test_already_released(self, fixed_clock, escrow, mock_gateway):
        fixed_clock.advance(timedelta(days=4))
        release_single_escrow(str(escrow.id))

        result = release_single_escrow(str(escrow.id))

        assert result["status"] == "already_released"
        assert mock_gateway.transfer.call_count == 1

    def test_frozen(self, fixed_clock, delivered_order, escrow, mock_gateway):
        fixed_clock.advance(timedelta(days=4))
        EscrowService.freeze(delivered_order.id)

        assert release_single_escrow(str(escrow.id))["status"] == "frozen"
        mock_gateway.transfer.assert_not_called()

    def test_failed_escrow_left_for_operator(self, mock_gateway):
        escrow = FailedEscrowFactory()

        result = release_single_escrow(str(escrow.id))

        assert result["status"] == "invalid_state"
        assert result["current_state"] == EscrowStatus.FAILED

    def test_not_found(self, db):
        assert release_single_escrow("00000000-0000-0000-0000-000000000000")["status"] == "not_found"

    def test_invalid_uuid(self, db):
        result = release_single_escrow("not-a-uuid")

        assert result["status"] == "not_found"
        assert result["error"] == "Invalid UUID format"

    def test_lock_held_elsewhere(self, fixed_clock, escrow, mock_gateway, mock_redis_lock):
        fixed_clock.advance(timedelta(days=4))
        mock_redis_lock.set.return_value = False

        result = release_single_escrow(str(escrow.id))

        assert result["status"] == "lock_failed"
        mock_gateway.transfer.assert_not_called()
        assert Escrow.objects.get(id=escrow.id).release_status == EscrowStatus.PENDING

    def test_permanent_failure(self, fixed_clock, escrow, mock_gateway):
        fixed_clock.advance(timedelta(days=4))
        mock_gateway.transfer.side_effect = GatewayInvalidAccountError("No such destination")

        result = release_single_escrow(str(escrow.id))

        assert result["status"] == "release_failed"
        assert result["error_code"] == "RELEASE_FAILED"
        assert Escrow.objects.get(id=escrow.id).release_status == EscrowStatus.FAILED

    def test_transient_failure_propagates_for_retry(self, fixed_clock, escrow, mock_gateway):
        fixed_clock.advance(timedelta(days=4))
        mock_gateway.transfer.side_effect = GatewayUnavailableError("timeout")

        with pytest.raises(GatewayUnavailableError):
            release_single_escrow.run(str(escrow.id))

        assert Escrow.objects.get(id=escrow.id).release_status == EscrowStatus.PENDING
