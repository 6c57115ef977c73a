from django.contrib import admin

from projects.models import Project


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = (
        "title",
        "client",
        "expert",
        "status",
        "payment_status",
        "payment_amount_cents",
        "payment_currency",
        "created_at",
    )
    list_filter = ("status", "payment_status", "payment_currency")
    search_fields = ("title", "payment_intent_id", "client__email", "expert__email")
    raw_id_fields = ("client", "expert")
    # Written by payments only
    readonly_fields = (
        "payment_status",
        "payment_intent_id",
        "payment_amount_cents",
        "payment_currency",
        "payment_date",
        "platform_fee_cents",
        "expert_payout_cents",
        "payment_method",
        "refund_amount_cents",
        "refund_reason",
        "created_at",
        "updated_at",
    )
