"""
Workers for async settlement processing.

This module contains Celery tasks for background escrow operations:
- ReleaseScheduler: Finds escrows past their release date and releases
  each one in its own task

Usage:
    from payments.workers import process_due_escrows, release_single_escrow

    # Trigger a sweep manually (normally run by celery-beat)
    process_due_escrows.delay()

    # Release one escrow
    release_single_escrow.delay(str(escrow.id))
"""

from payments.workers.release_scheduler import (
    process_due_escrows,
    release_single_escrow,
)

__all__ = [
    "process_due_escrows",
    "release_single_escrow",
]
