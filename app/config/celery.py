"""
Celery configuration for the settlement service.

Celery runs the escrow auto-release sweep and the per-escrow release
tasks it fans out:
- payments.workers.release_scheduler.process_due_escrows (periodic, beat)
- payments.workers.release_scheduler.release_single_escrow (one per escrow)

Redis is both the message broker and result backend. The periodic
schedule lives in the database (django-celery-beat DatabaseScheduler)
and is created by a payments data migration.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Picks up tasks.py modules from every installed app
app.autodiscover_tasks()
