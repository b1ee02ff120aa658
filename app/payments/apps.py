"""
Payments app configuration.

This app holds the escrow ledger and the gateway side of settlement:
- Escrow records and the release scheduler
- The refund gateway path and its RefundAttempt audit ledger
- Stripe adapter, webhook endpoint and per-order settlement locks
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
