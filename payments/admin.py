from django.contrib import admin

from .models import Order


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("gateway_order_id", "status", "amount", "currency", "user", "course", "created_at", "updated_at")
    search_fields = ("gateway_order_id", "gateway_payment_id", "receipt", "user__email", "course__title")
    list_filter = ("status", "currency", "created_at")
    readonly_fields = (
        "id", "provider", "amount", "currency", "receipt",
        "gateway_order_id", "gateway_payment_id", "gateway_signature",
        "status", "verified_at", "created_at", "updated_at",
    )
    ordering = ("-created_at",)

    def has_delete_permission(self, request, obj=None):
        return False
