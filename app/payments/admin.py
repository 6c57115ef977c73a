"""
Payment admin configuration.

Ledger rows, webhook events and reconciliation history are written by the
services only, so the admin is a read-mostly window onto them. The one
operator workflow is reviewing flagged discrepancies.
"""

from django.contrib import admin
from django.utils import timezone

from payments.models import (
    DiscrepancyResolution,
    Payment,
    ReconciliationDiscrepancy,
    ReconciliationRun,
    WebhookEvent,
)

__all__ = [
    "PaymentAdmin",
    "ReconciliationDiscrepancyAdmin",
    "ReconciliationRunAdmin",
    "WebhookEventAdmin",
]


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Admin configuration for Payment.

    Status changes only happen through webhooks, refunds and the
    reconciliation sweep; every field is read-only here.
    """

    list_display = [
        "id",
        "stripe_payment_intent_id",
        "project",
        "client",
        "expert",
        "amount_cents",
        "currency",
        "status",
        "payout_status",
        "created_at",
    ]
    list_filter = ["status", "payout_status", "currency", "created_at"]
    search_fields = [
        "id",
        "stripe_payment_intent_id",
        "stripe_refund_id",
        "client__email",
        "expert__email",
    ]
    raw_id_fields = ["project", "client", "expert"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "status", "project", "client", "expert"),
            },
        ),
        (
            "Stripe",
            {
                "fields": ("stripe_payment_intent_id", "stripe_customer_id"),
            },
        ),
        (
            "Amount & Fees",
            {
                "fields": (
                    "amount_cents",
                    "currency",
                    "fee_rate",
                    "platform_fee_cents",
                    "expert_payout_cents",
                ),
            },
        ),
        (
            "Refund",
            {
                "fields": (
                    "refund_amount_cents",
                    "refund_reason",
                    "stripe_refund_id",
                    "pending_refund",
                ),
            },
        ),
        (
            "Payout",
            {
                "fields": ("payout_status", "payout_date"),
            },
        ),
        (
            "Lifecycle",
            {
                "fields": (
                    "succeeded_at",
                    "failed_at",
                    "canceled_at",
                    "refunded_at",
                    "failure_reason",
                    "applied_event_ids",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("description", "metadata", "version", "created_at", "updated_at"),
                "classes": ("collapse",),
            },
        ),
    )

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for payments (ledger)."""
        return False

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Provides visibility into webhook processing status.
    Webhook events are immutable once received.
    """

    list_display = [
        "id",
        "stripe_event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "stripe_event_id", "event_type"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "stripe_event_id",
        "event_type",
        "payload",
        "processed_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "stripe_event_id", "event_type", "status"),
            },
        ),
        (
            "Processing",
            {
                "fields": ("processed_at", "retry_count"),
            },
        ),
        (
            "Error Info",
            {
                "fields": ("error_message",),
                "classes": ("collapse",),
            },
        ),
        (
            "Payload",
            {
                "fields": ("payload",),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for webhook events (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        return False


class ReconciliationDiscrepancyInline(admin.TabularInline):
    """Inline display of discrepancies for a reconciliation run."""

    model = ReconciliationDiscrepancy
    extra = 0
    readonly_fields = [
        "id",
        "entity_type",
        "entity_id",
        "stripe_id",
        "discrepancy_type",
        "local_state",
        "stripe_state",
        "resolution",
        "reviewed",
    ]
    fields = readonly_fields
    can_delete = False
    show_change_link = True

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(ReconciliationRun)
class ReconciliationRunAdmin(admin.ModelAdmin):
    """
    Admin configuration for ReconciliationRun.

    Runs are created by the reconciliation service and are not edited
    by hand.
    """

    list_display = [
        "id",
        "started_at",
        "status",
        "duration_display",
        "payments_checked",
        "refund_claims_checked",
        "pending_intents_checked",
        "discrepancies_found",
        "auto_healed",
        "flagged_for_review",
        "failed_to_heal",
    ]
    list_filter = ["status", "started_at"]
    search_fields = ["id"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "started_at",
        "completed_at",
        "duration_display",
        "lookback_hours",
        "stale_pending_hours",
        "payments_checked",
        "refund_claims_checked",
        "pending_intents_checked",
        "discrepancies_found",
        "auto_healed",
        "flagged_for_review",
        "failed_to_heal",
        "status",
        "error_message",
    ]
    date_hierarchy = "started_at"
    ordering = ["-started_at"]
    inlines = [ReconciliationDiscrepancyInline]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "status", "duration_display"),
            },
        ),
        (
            "Configuration",
            {
                "fields": ("lookback_hours", "stale_pending_hours"),
            },
        ),
        (
            "Results Summary",
            {
                "fields": (
                    "payments_checked",
                    "refund_claims_checked",
                    "pending_intents_checked",
                    "discrepancies_found",
                    "auto_healed",
                    "flagged_for_review",
                    "failed_to_heal",
                ),
            },
        ),
        (
            "Timing",
            {
                "fields": ("started_at", "completed_at"),
            },
        ),
        (
            "Error Info",
            {
                "fields": ("error_message",),
                "classes": ("collapse",),
            },
        ),
    )

    @admin.display(description="Duration")
    def duration_display(self, obj: ReconciliationRun) -> str:
        if obj.duration_seconds is not None:
            return f"{obj.duration_seconds:.1f}s"
        return "Running..."

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for reconciliation runs (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(ReconciliationDiscrepancy)
class ReconciliationDiscrepancyAdmin(admin.ModelAdmin):
    """
    Review queue for discrepancies and alerts.

    Flagged rows (including dead-lettered project updates and webhooks
    for unknown intents) are worked from here and bulk-marked reviewed.
    """

    list_display = [
        "id",
        "run_link",
        "entity_type",
        "entity_id",
        "discrepancy_type",
        "local_state",
        "stripe_state",
        "resolution",
        "reviewed",
        "created_at",
    ]
    list_filter = [
        "resolution",
        "reviewed",
        "entity_type",
        "discrepancy_type",
        "created_at",
    ]
    search_fields = [
        "id",
        "entity_id",
        "stripe_id",
        "discrepancy_type",
    ]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "run",
        "entity_type",
        "entity_id",
        "stripe_id",
        "discrepancy_type",
        "local_state",
        "stripe_state",
        "details",
        "resolution",
        "action_taken",
        "error_message",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["mark_reviewed"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "run", "resolution"),
            },
        ),
        (
            "Entity",
            {
                "fields": ("entity_type", "entity_id", "stripe_id"),
            },
        ),
        (
            "Discrepancy Details",
            {
                "fields": (
                    "discrepancy_type",
                    "local_state",
                    "stripe_state",
                    "details",
                ),
            },
        ),
        (
            "Resolution",
            {
                "fields": ("action_taken", "error_message"),
            },
        ),
        (
            "Review",
            {
                "fields": ("reviewed", "reviewed_at", "reviewed_by", "review_notes"),
            },
        ),
    )

    @admin.display(description="Run")
    def run_link(self, obj: ReconciliationDiscrepancy) -> str:
        if obj.run_id:
            return str(obj.run_id)[:8]
        return "-"

    @admin.action(description="Mark selected discrepancies as reviewed")
    def mark_reviewed(self, request, queryset):
        count = queryset.filter(
            resolution=DiscrepancyResolution.FLAGGED_FOR_REVIEW,
            reviewed=False,
        ).update(
            reviewed=True,
            reviewed_at=timezone.now(),
            reviewed_by=request.user,
        )
        self.message_user(request, f"Marked {count} discrepancies as reviewed.")

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for discrepancies (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        return False
