import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Project",
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
                ("title", models.CharField(help_text="Project title", max_length=255)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("planning", "Planning"),
                            ("in_progress", "In Progress"),
                            ("completed", "Completed"),
                            ("on_hold", "On Hold"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="planning",
                        help_text="Work status",
                        max_length=20,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("unpaid", "Unpaid"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="unpaid",
                        help_text="Settlement status copied from the payment ledger",
                        max_length=20,
                    ),
                ),
                (
                    "payment_intent_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe PaymentIntent that settled this project",
                        max_length=255,
                    ),
                ),
                (
                    "payment_amount_cents",
                    models.BigIntegerField(
                        blank=True, help_text="Amount paid in minor currency units", null=True
                    ),
                ),
                (
                    "payment_currency",
                    models.CharField(
                        blank=True, help_text="ISO currency code of the payment", max_length=3
                    ),
                ),
                (
                    "payment_date",
                    models.DateTimeField(
                        blank=True, help_text="When the payment succeeded", null=True
                    ),
                ),
                (
                    "platform_fee_cents",
                    models.BigIntegerField(
                        blank=True, help_text="Platform fee in minor currency units", null=True
                    ),
                ),
                (
                    "expert_payout_cents",
                    models.BigIntegerField(
                        blank=True, help_text="Expert payout in minor currency units", null=True
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(
                        blank=True, help_text="Payment processor used (stripe)", max_length=20
                    ),
                ),
                (
                    "refund_amount_cents",
                    models.BigIntegerField(
                        blank=True,
                        help_text="Refunded amount in minor currency units",
                        null=True,
                    ),
                ),
                (
                    "refund_reason",
                    models.CharField(
                        blank=True, help_text="Reason given for the refund", max_length=500
                    ),
                ),
                (
                    "client",
                    models.ForeignKey(
                        help_text="User paying for the project",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="client_projects",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "expert",
                    models.ForeignKey(
                        blank=True,
                        help_text="User delivering the project and receiving the payout",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="expert_projects",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["client", "-created_at"], name="project_client_created_idx"
                    ),
                    models.Index(
                        fields=["expert", "-created_at"], name="project_expert_created_idx"
                    ),
                ],
            },
        ),
    ]
