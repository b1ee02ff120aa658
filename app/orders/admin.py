"""
Order admin configuration.

Catalog models are editable. Orders are read-only: every status change
goes through OrderService so history rows and escrow stay consistent.
"""

from django.contrib import admin

from core.helpers import format_amount
from orders.models import Order, OrderItem, OrderStatusHistory, Product, Store

__all__ = [
    "OrderAdmin",
    "ProductAdmin",
    "StoreAdmin",
]


@admin.register(Store)
class StoreAdmin(admin.ModelAdmin):
    list_display = ["name", "owner", "recipient_code", "is_active", "created_at"]
    list_filter = ["is_active"]
    search_fields = ["name", "owner__email", "recipient_code"]
    raw_id_fields = ["owner"]


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ["name", "store", "price_display", "stock", "units_sold", "is_active"]
    list_filter = ["is_active"]
    search_fields = ["name", "store__name"]
    raw_id_fields = ["store"]
    readonly_fields = ["units_sold"]

    def price_display(self, obj: Product) -> str:
        return format_amount(obj.price_cents, "ghs")

    price_display.short_description = "Price"


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    can_delete = False
    readonly_fields = ["product", "quantity", "unit_price_cents"]

    def has_add_permission(self, request, obj=None) -> bool:
        return False


class OrderStatusHistoryInline(admin.TabularInline):
    model = OrderStatusHistory
    extra = 0
    can_delete = False
    readonly_fields = ["old_status", "new_status", "changed_by", "reason", "changed_at"]

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """
    Admin configuration for Order.

    Provides visibility into order, payment and refund state.
    """

    list_display = [
        "id",
        "buyer",
        "store",
        "status",
        "payment_status",
        "total_display",
        "refund_amount_cents",
        "created_at",
    ]
    list_filter = ["status", "payment_status", "payment_method", "settlement_mode"]
    search_fields = ["id", "buyer__email", "store__name", "payment_reference"]
    readonly_fields = [f.name for f in Order._meta.fields]
    inlines = [OrderItemInline, OrderStatusHistoryInline]
    ordering = ["-created_at"]

    def total_display(self, obj: Order) -> str:
        return format_amount(obj.total_amount_cents, obj.currency)

    total_display.short_description = "Total"

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for orders (audit trail)."""
        return False
