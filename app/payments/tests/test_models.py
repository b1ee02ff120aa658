"""
Tests for settlement models.

Tests cover:
- Escrow state machine (allowed and rejected transitions)
- Escrow constraints and version bumps
- RefundAttempt append-only behavior
"""

import pytest
from django.db import IntegrityError, transaction
from django.utils import timezone
from django_fsm import TransitionNotAllowed

from core.exceptions import ConflictError
from orders.tests.factories import PaidOrderFactory
from payments.models import Escrow
from payments.states import EscrowStatus, ReleaseReason
from payments.tests.factories import EscrowFactory, FailedEscrowFactory, RefundAttemptFactory


@pytest.mark.django_db
class TestEscrowTransitions:
    def test_release_from_pending(self):
        escrow = EscrowFactory()
        now = timezone.now()

        escrow.release(
            at=now,
            recipient_code="acct_1",
            transfer_id="tr_1",
            reason=ReleaseReason.BUYER_CONFIRMED,
        )
        escrow.save()

        escrow = Escrow.objects.get(id=escrow.id)
        assert escrow.release_status == EscrowStatus.RELEASED
        assert escrow.released_at == now
        assert escrow.released_to == "acct_1"
        assert escrow.transfer_id == "tr_1"
        assert escrow.release_reason == ReleaseReason.BUYER_CONFIRMED

    def test_refund_from_pending(self):
        escrow = EscrowFactory()

        escrow.refund(at=timezone.now())

        assert escrow.release_status == EscrowStatus.REFUNDED
        assert escrow.refunded_at is not None

    def test_fail_from_pending(self):
        escrow = EscrowFactory()

        escrow.fail(at=timezone.now(), reason="Account closed")

        assert escrow.release_status == EscrowStatus.FAILED
        assert escrow.failure_reason == "Account closed"

    def test_retry_release_clears_failure(self):
        escrow = FailedEscrowFactory()

        escrow.release_after_retry(
            at=timezone.now(),
            recipient_code="acct_1",
            transfer_id="tr_2",
            reason=ReleaseReason.OPERATOR_RETRY,
        )

        assert escrow.release_status == EscrowStatus.RELEASED
        assert escrow.failure_reason == ""

    @pytest.mark.parametrize("status", [EscrowStatus.RELEASED, EscrowStatus.REFUNDED])
    def test_settled_escrow_cannot_move(self, status):
        escrow = EscrowFactory(release_status=status)

        with pytest.raises(TransitionNotAllowed):
            escrow.refund(at=timezone.now())
        with pytest.raises(TransitionNotAllowed):
            escrow.fail(at=timezone.now(), reason="x")

    def test_failed_escrow_cannot_be_refunded(self):
        escrow = FailedEscrowFactory()

        with pytest.raises(TransitionNotAllowed):
            escrow.refund(at=timezone.now())

    def test_release_status_is_protected(self):
        escrow = EscrowFactory()

        with pytest.raises(AttributeError):
            escrow.release_status = EscrowStatus.RELEASED


@pytest.mark.django_db
class TestEscrowConstraints:
    def test_one_escrow_per_order(self):
        escrow = EscrowFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            EscrowFactory(order=escrow.order)

    def test_amount_must_be_positive(self):
        with pytest.raises(IntegrityError), transaction.atomic():
            EscrowFactory(amount_held_cents=0)

    def test_save_bumps_version(self):
        escrow = EscrowFactory()
        assert escrow.version == 1

        escrow.frozen = True
        escrow.save(update_fields=["frozen"])

        assert escrow.version == 2
        assert Escrow.objects.get(id=escrow.id).version == 2

    def test_related_name_from_order(self):
        order = PaidOrderFactory()
        escrow = EscrowFactory(order=order)

        assert order.escrow == escrow


@pytest.mark.django_db
class TestRefundAttempt:
    def test_rows_cannot_be_updated(self):
        attempt = RefundAttemptFactory()
        attempt.reason = "changed"

        with pytest.raises(ConflictError) as exc_info:
            attempt.save()

        assert exc_info.value.error_code == "IMMUTABLE_RECORD"

    def test_rows_cannot_be_deleted(self):
        attempt = RefundAttemptFactory()

        with pytest.raises(ConflictError):
            attempt.delete()
