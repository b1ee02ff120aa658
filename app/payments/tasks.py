"""
Celery tasks for the payments app.

Celery autodiscovery imports <app>.tasks; the task bodies live in
payments.workers and are re-exported here so they are registered.

Usage:
    from payments.tasks import process_due_escrows

    process_due_escrows.delay()
"""

from payments.workers import process_due_escrows, release_single_escrow

__all__ = [
    "process_due_escrows",
    "release_single_escrow",
]
