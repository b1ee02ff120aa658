"""
Add celery-beat schedule for automatic escrow release.

This migration creates the periodic task schedule for the
process_due_escrows task, which runs every ESCROW_RELEASE_INTERVAL_MINUTES
minutes to release escrows whose delivery window has expired.
"""

from django.conf import settings
from django.db import migrations

TASK_NAME = "Release Due Escrows"


def create_periodic_task(apps, schema_editor):
    """Create the periodic task for releasing due escrows."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule, _ = IntervalSchedule.objects.get_or_create(
        every=settings.ESCROW_RELEASE_INTERVAL_MINUTES,
        period="minutes",
    )

    PeriodicTask.objects.get_or_create(
        name=TASK_NAME,
        defaults={
            "task": "payments.workers.release_scheduler.process_due_escrows",
            "interval": schedule,
            "enabled": True,
            "description": (
                "Scans for PENDING, unfrozen escrows past their release date "
                "and queues one release task per escrow."
            ),
        },
    )


def remove_periodic_task(apps, schema_editor):
    """Remove the periodic task on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name=TASK_NAME).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_task, remove_periodic_task),
    ]
