"""
Payment admin configuration.

Escrow and RefundAttempt are read-mostly in admin: release, refund and
freeze go through EscrowService so the gateway and the ledger agree.
"""

from django.contrib import admin

from core.helpers import format_amount
from payments.models import Escrow, RefundAttempt

__all__ = [
    "EscrowAdmin",
    "RefundAttemptAdmin",
]


@admin.register(Escrow)
class EscrowAdmin(admin.ModelAdmin):
    """
    Admin configuration for Escrow.

    Provides visibility into held funds and release state.
    State changes should be made through the service layer, not admin.
    """

    list_display = [
        "id",
        "order",
        "amount_display",
        "release_status",
        "frozen",
        "release_date",
        "release_attempts",
    ]
    list_filter = ["release_status", "frozen", "currency"]
    search_fields = ["id", "order__id", "payment_reference", "transfer_reference"]
    readonly_fields = [
        "id",
        "order",
        "payment_reference",
        "amount_held_cents",
        "currency",
        "release_status",
        "frozen",
        "released_at",
        "released_to",
        "release_reason",
        "transfer_reference",
        "transfer_id",
        "release_attempts",
        "failure_reason",
        "failed_at",
        "refunded_at",
        "version",
        "created_at",
        "updated_at",
    ]
    ordering = ["release_date"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "order", "release_status", "frozen", "release_date"),
            },
        ),
        (
            "Amount",
            {
                "fields": ("amount_held_cents", "currency", "payment_reference"),
            },
        ),
        (
            "Release",
            {
                "fields": (
                    "released_at",
                    "released_to",
                    "release_reason",
                    "transfer_reference",
                    "transfer_id",
                    "release_attempts",
                ),
            },
        ),
        (
            "Failure Info",
            {
                "fields": ("failure_reason", "failed_at", "refunded_at"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("version", "created_at", "updated_at"),
            },
        ),
    )

    def amount_display(self, obj: Escrow) -> str:
        return format_amount(obj.amount_held_cents, obj.currency)

    amount_display.short_description = "Amount"

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for escrows (audit trail)."""
        return False


@admin.register(RefundAttempt)
class RefundAttemptAdmin(admin.ModelAdmin):
    list_display = ["id", "order", "amount_cents", "status", "gateway_ref", "attempted_at"]
    list_filter = ["status"]
    search_fields = ["order__id", "gateway_ref", "idempotency_key"]
    readonly_fields = [f.name for f in RefundAttempt._meta.fields]
    ordering = ["-attempted_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
