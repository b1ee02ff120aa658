"""
Dispute admin configuration.

Adjudication goes through the resolve endpoint so refunds reach the
gateway; admin is for review.
"""

from django.contrib import admin

from disputes.models import Dispute


@admin.register(Dispute)
class DisputeAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "order",
        "dispute_type",
        "status",
        "requires_manual_intervention",
        "created_at",
    ]
    list_filter = ["status", "dispute_type", "requires_manual_intervention"]
    search_fields = ["id", "order__id", "buyer__email", "seller__email"]
    readonly_fields = [
        "id",
        "order",
        "buyer",
        "seller",
        "opened_by",
        "dispute_type",
        "description",
        "status",
        "resolution",
        "resolved_amount_cents",
        "requires_manual_intervention",
        "resolved_by",
        "resolved_at",
        "version",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
