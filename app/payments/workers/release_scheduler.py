"""
Release scheduler: automatic escrow release after the delivery window.

Tasks:
- process_due_escrows: Periodic sweep that queues one release task per due escrow
- release_single_escrow: Releases a single escrow under the settlement lock

Each escrow is released in its own task, so one escrow's gateway error or
lock contention never blocks the others. The sweep itself moves no money.

Usage:
    # Scheduled by celery-beat (see migration 0002_release_schedule)
    from payments.workers import process_due_escrows

    process_due_escrows.delay()

    # Release a specific escrow
    release_single_escrow.delay(str(escrow.id))
"""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task
from django.conf import settings

from payments.exceptions import GatewayUnavailableError, LockAcquisitionError
from payments.models import Escrow
from payments.services import EscrowService
from payments.states import EscrowStatus, ReleaseReason

logger = logging.getLogger(__name__)


# =============================================================================
# Periodic Task: Scan for Due Escrows
# =============================================================================


@shared_task(bind=True)
def process_due_escrows(self) -> dict:
    """
    Find escrows past their release date and queue a release for each.

    Selects PENDING, unfrozen escrows with release_date <= now, oldest
    first, at most ESCROW_RELEASE_BATCH_SIZE per run. Anything left over
    is picked up on the next tick.

    Returns:
        Dict with queued_count

    Note:
        Idempotent. release_single_escrow re-checks state under the
        settlement lock, so queuing an escrow twice never pays twice.
    """
    logger.info("Starting due escrow scan")

    due_ids = EscrowService.due_for_release(limit=settings.ESCROW_RELEASE_BATCH_SIZE)

    queued_count = 0
    for escrow_id in due_ids:
        try:
            release_single_escrow.delay(str(escrow_id))
            queued_count += 1
        except Exception as e:
            logger.error(
                f"Failed to queue escrow for release: {e}",
                extra={"escrow_id": str(escrow_id), "error": str(e)},
            )

    logger.info(
        f"Due escrow scan complete: queued {queued_count} escrows",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}


# =============================================================================
# Individual Release Task
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(GatewayUnavailableError,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 5},
    acks_late=True,
)
def release_single_escrow(self, escrow_id: str) -> dict:
    """
    Release one escrow whose release window has expired.

    Returns:
        Dict with escrow_id and status, one of:
        "released", "already_released", "frozen", "not_due", "not_found",
        "invalid_state", "lock_failed", "release_failed"

    Raises:
        GatewayUnavailableError: Outcome of the transfer unknown; Celery
            retries with backoff and the same idempotency key
    """
    try:
        escrow_uuid = UUID(str(escrow_id))
    except ValueError:
        logger.error(f"Invalid escrow_id format: {escrow_id}")
        return {"status": "not_found", "escrow_id": escrow_id, "error": "Invalid UUID format"}

    escrow = Escrow.objects.filter(id=escrow_uuid).first()
    if escrow is None:
        logger.warning("Escrow not found", extra={"escrow_id": escrow_id})
        return {"status": "not_found", "escrow_id": escrow_id}

    if escrow.release_status == EscrowStatus.RELEASED:
        logger.info(
            "Escrow already released, skipping",
            extra={"escrow_id": escrow_id, "error_code": "ALREADY_PROCESSED"},
        )
        return {"status": "already_released", "escrow_id": escrow_id}

    if escrow.release_status != EscrowStatus.PENDING:
        return {
            "status": "invalid_state",
            "escrow_id": escrow_id,
            "current_state": escrow.release_status,
        }

    if escrow.frozen:
        logger.info("Escrow frozen by dispute, skipping", extra={"escrow_id": escrow_id})
        return {"status": "frozen", "escrow_id": escrow_id}

    if not EscrowService.is_due(escrow):
        return {"status": "not_due", "escrow_id": escrow_id}

    try:
        # Non-blocking: if a buyer confirmation or dispute holds the order,
        # let it finish and pick this escrow up on a later tick.
        result = EscrowService.release(
            escrow_uuid,
            reason=ReleaseReason.AUTO_TIMER_EXPIRED,
            blocking=False,
        )
    except LockAcquisitionError as e:
        logger.warning(
            f"Could not acquire settlement lock for release: {e}",
            extra={"escrow_id": escrow_id, "order_id": str(escrow.order_id)},
        )
        return {"status": "lock_failed", "escrow_id": escrow_id, "error": e.message}

    if result.success:
        return {"status": "released", "escrow_id": escrow_id, "order_id": str(escrow.order_id)}

    if result.error_code == "ESCROW_FROZEN":
        return {"status": "frozen", "escrow_id": escrow_id}

    logger.error(
        f"Release failed: {result.error}",
        extra={
            "escrow_id": escrow_id,
            "order_id": str(escrow.order_id),
            "error_code": result.error_code,
        },
    )
    return {
        "status": "release_failed",
        "escrow_id": escrow_id,
        "error": result.error,
        "error_code": result.error_code,
    }


__all__ = [
    "process_due_escrows",
    "release_single_escrow",
]
