import uuid

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("projects", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Payment",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Incremented on every update for optimistic locking",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier (UUID v4)",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "stripe_payment_intent_id",
                    models.CharField(
                        help_text="Stripe PaymentIntent ID (pi_xxx)",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "stripe_customer_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Stripe Customer ID (cus_xxx) the intent was created for",
                        max_length=255,
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Gross amount in smallest currency unit (e.g., cents)"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="eur",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "fee_rate",
                    models.DecimalField(
                        decimal_places=4,
                        help_text="Platform fee rate in effect when the intent was created",
                        max_digits=5,
                    ),
                ),
                (
                    "platform_fee_cents",
                    models.PositiveBigIntegerField(help_text="Platform share of the amount"),
                ),
                (
                    "expert_payout_cents",
                    models.PositiveBigIntegerField(help_text="Expert share of the amount"),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("canceled", "Canceled"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current payment status (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "applied_event_ids",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="Stripe event ids already applied to this payment",
                    ),
                ),
                (
                    "refund_amount_cents",
                    models.PositiveBigIntegerField(
                        blank=True,
                        help_text="Refunded amount in smallest currency unit",
                        null=True,
                    ),
                ),
                (
                    "refund_reason",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Reason given for the refund",
                        max_length=500,
                    ),
                ),
                (
                    "stripe_refund_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Stripe Refund ID (re_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "pending_refund",
                    models.JSONField(
                        blank=True,
                        help_text=(
                            "Refund claim held while the Stripe refund call is in flight: "
                            "idempotency_key, amount_cents, reason, requested_at"
                        ),
                        null=True,
                    ),
                ),
                (
                    "payout_status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("paid", "Paid"), ("failed", "Failed")],
                        db_index=True,
                        default="pending",
                        help_text="Whether the expert payout has been made",
                        max_length=20,
                    ),
                ),
                (
                    "payout_date",
                    models.DateTimeField(
                        blank=True, help_text="When the expert payout was made", null=True
                    ),
                ),
                (
                    "succeeded_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When Stripe reported the payment succeeded",
                        null=True,
                    ),
                ),
                (
                    "failed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When Stripe reported the payment failed",
                        null=True,
                    ),
                ),
                (
                    "canceled_at",
                    models.DateTimeField(
                        blank=True, help_text="When the intent was canceled", null=True
                    ),
                ),
                (
                    "refunded_at",
                    models.DateTimeField(
                        blank=True, help_text="When the refund completed", null=True
                    ),
                ),
                (
                    "description",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Description sent to Stripe with the intent",
                        max_length=500,
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Arbitrary JSON metadata for extensibility",
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Stripe's failure message if the payment failed",
                    ),
                ),
                (
                    "client",
                    models.ForeignKey(
                        help_text="User paying",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="client_payments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "expert",
                    models.ForeignKey(
                        help_text="User receiving the payout",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="expert_payments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "project",
                    models.ForeignKey(
                        help_text="Project this payment settles",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="projects.project",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment",
                "verbose_name_plural": "Payments",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["client", "-created_at"], name="payment_client_created_idx"
                    ),
                    models.Index(
                        fields=["expert", "-created_at"], name="payment_expert_created_idx"
                    ),
                    models.Index(
                        fields=["status", "updated_at"], name="payment_status_updated_idx"
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents__gt", 0)),
                        name="payment_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("platform_fee_cents__gte", 0),
                            ("expert_payout_cents__gte", 0),
                            (
                                "amount_cents",
                                models.F("platform_fee_cents") + models.F("expert_payout_cents"),
                            ),
                        ),
                        name="payment_fee_split_sums_to_amount",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("refund_amount_cents__isnull", True),
                            ("refund_amount_cents__lte", models.F("amount_cents")),
                            _connector="OR",
                        ),
                        name="payment_refund_within_amount",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier (UUID v4)",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "stripe_event_id",
                    models.CharField(
                        help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Stripe event type (e.g., 'payment_intent.succeeded')",
                        max_length=100,
                    ),
                ),
                ("payload", models.JSONField(help_text="Full verified event from Stripe (JSON)")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current processing status",
                        max_length=20,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the event was successfully processed",
                        null=True,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        help_text="Error message from the last failed attempt",
                        null=True,
                    ),
                ),
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(
                        default=0, help_text="Number of processing attempts"
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"], name="webhook_status_created_idx"
                    ),
                    models.Index(
                        fields=["status", "retry_count"], name="webhook_status_retry_idx"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ReconciliationRun",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier (UUID v4)",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "started_at",
                    models.DateTimeField(help_text="When this reconciliation run started"),
                ),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When this reconciliation run completed (or failed)",
                        null=True,
                    ),
                ),
                (
                    "lookback_hours",
                    models.PositiveIntegerField(
                        help_text="How many hours of settled payments were checked against projects"
                    ),
                ),
                (
                    "stale_pending_hours",
                    models.PositiveIntegerField(
                        help_text="Age after which a pending intent is checked against Stripe"
                    ),
                ),
                (
                    "payments_checked",
                    models.PositiveIntegerField(
                        default=0, help_text="Payments compared with their project"
                    ),
                ),
                (
                    "refund_claims_checked",
                    models.PositiveIntegerField(default=0, help_text="Stale refund claims found"),
                ),
                (
                    "pending_intents_checked",
                    models.PositiveIntegerField(
                        default=0, help_text="Stale pending intents looked up in Stripe"
                    ),
                ),
                (
                    "discrepancies_found",
                    models.PositiveIntegerField(default=0, help_text="Total discrepancies found"),
                ),
                (
                    "auto_healed",
                    models.PositiveIntegerField(
                        default=0, help_text="Discrepancies automatically healed"
                    ),
                ),
                (
                    "flagged_for_review",
                    models.PositiveIntegerField(
                        default=0, help_text="Discrepancies requiring manual review"
                    ),
                ),
                (
                    "failed_to_heal",
                    models.PositiveIntegerField(
                        default=0, help_text="Discrepancies that failed to heal"
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("running", "Running"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="running",
                        help_text="Current status of this reconciliation run",
                        max_length=20,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(blank=True, help_text="Error message if the run failed"),
                ),
            ],
            options={
                "ordering": ["-started_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "started_at"], name="recon_run_status_started_idx"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ReconciliationDiscrepancy",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier (UUID v4)",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "entity_type",
                    models.CharField(
                        help_text="Type of entity (payment, webhook_event)", max_length=50
                    ),
                ),
                (
                    "entity_id",
                    models.CharField(
                        blank=True,
                        help_text="ID of the affected entity, if there is one",
                        max_length=64,
                    ),
                ),
                (
                    "stripe_id",
                    models.CharField(
                        blank=True,
                        help_text="Related Stripe object ID (pi_xxx, evt_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "discrepancy_type",
                    models.CharField(
                        choices=[
                            ("missing_payment_record", "Missing Payment Record"),
                            ("project_out_of_sync", "Project Out of Sync"),
                            ("project_update_failed", "Project Update Failed"),
                            ("refund_claim_stuck", "Refund Claim Stuck"),
                            ("refund_completion_conflict", "Refund Completion Conflict"),
                            ("stale_pending_intent", "Stale Pending Intent"),
                        ],
                        db_index=True,
                        help_text="Kind of mismatch detected",
                        max_length=50,
                    ),
                ),
                (
                    "local_state",
                    models.CharField(
                        blank=True,
                        help_text="State of the local record when the discrepancy was detected",
                        max_length=50,
                    ),
                ),
                (
                    "stripe_state",
                    models.CharField(
                        blank=True, help_text="State/status reported by Stripe", max_length=50
                    ),
                ),
                (
                    "details",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Additional context about the discrepancy",
                    ),
                ),
                (
                    "resolution",
                    models.CharField(
                        choices=[
                            ("auto_healed", "Auto Healed"),
                            ("flagged_for_review", "Flagged for Review"),
                            ("manually_resolved", "Manually Resolved"),
                            ("failed_to_heal", "Failed to Heal"),
                        ],
                        db_index=True,
                        help_text="How this discrepancy was resolved",
                        max_length=20,
                    ),
                ),
                (
                    "action_taken",
                    models.TextField(blank=True, help_text="What was done to resolve it"),
                ),
                (
                    "error_message",
                    models.TextField(blank=True, help_text="Error message if healing failed"),
                ),
                (
                    "reviewed",
                    models.BooleanField(
                        default=False,
                        help_text="Whether a human has reviewed this discrepancy",
                    ),
                ),
                (
                    "reviewed_at",
                    models.DateTimeField(
                        blank=True, help_text="When this discrepancy was reviewed", null=True
                    ),
                ),
                (
                    "review_notes",
                    models.TextField(blank=True, help_text="Notes from the reviewer"),
                ),
                (
                    "reviewed_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who reviewed this discrepancy",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="reviewed_discrepancies",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "run",
                    models.ForeignKey(
                        blank=True,
                        help_text="Sweep that found this discrepancy (empty for alerts raised elsewhere)",
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="discrepancies",
                        to="payments.reconciliationrun",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "Reconciliation discrepancies",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["resolution", "reviewed"], name="recon_disc_review_idx"
                    ),
                    models.Index(
                        fields=["entity_type", "entity_id"], name="recon_disc_entity_idx"
                    ),
                ],
            },
        ),
    ]
