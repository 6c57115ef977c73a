"""
Project model.

A project links a paying client with an expert. The payment fields mirror
the ledger's settled outcome and are written only by ProjectService.
"""

from django.conf import settings
from django.db import models

from core.models import BaseModel, UUIDPrimaryKeyMixin


class ProjectStatus(models.TextChoices):
    PLANNING = "planning", "Planning"
    IN_PROGRESS = "in_progress", "In Progress"
    COMPLETED = "completed", "Completed"
    ON_HOLD = "on_hold", "On Hold"
    CANCELLED = "cancelled", "Cancelled"


class ProjectPaymentStatus(models.TextChoices):
    UNPAID = "unpaid", "Unpaid"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"


class Project(UUIDPrimaryKeyMixin, BaseModel):
    """
    Work agreed between a client and an expert.

    Fields:
        title: Shown in the Stripe payment description
        client: Paying user
        expert: User receiving the payout
        status: Work status; moves to in_progress when payment succeeds
        payment_*: Settled payment outcome copied from the ledger
        refund_*: Refund outcome copied from the ledger
    """

    # =========================================================================
    # Relationships
    # =========================================================================
    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="client_projects",
        help_text="User paying for the project",
    )
    expert = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="expert_projects",
        help_text="User delivering the project and receiving the payout",
    )

    # =========================================================================
    # Project details
    # =========================================================================
    title = models.CharField(
        max_length=255,
        help_text="Project title",
    )
    status = models.CharField(
        max_length=20,
        choices=ProjectStatus.choices,
        default=ProjectStatus.PLANNING,
        db_index=True,
        help_text="Work status",
    )

    # =========================================================================
    # Payment outcome
    # =========================================================================
    payment_status = models.CharField(
        max_length=20,
        choices=ProjectPaymentStatus.choices,
        default=ProjectPaymentStatus.UNPAID,
        db_index=True,
        help_text="Settlement status copied from the payment ledger",
    )
    payment_intent_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Stripe PaymentIntent that settled this project",
    )
    payment_amount_cents = models.BigIntegerField(
        null=True,
        blank=True,
        help_text="Amount paid in minor currency units",
    )
    payment_currency = models.CharField(
        max_length=3,
        blank=True,
        help_text="ISO currency code of the payment",
    )
    payment_date = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payment succeeded",
    )
    platform_fee_cents = models.BigIntegerField(
        null=True,
        blank=True,
        help_text="Platform fee in minor currency units",
    )
    expert_payout_cents = models.BigIntegerField(
        null=True,
        blank=True,
        help_text="Expert payout in minor currency units",
    )
    payment_method = models.CharField(
        max_length=20,
        blank=True,
        help_text="Payment processor used (stripe)",
    )

    # =========================================================================
    # Refund outcome
    # =========================================================================
    refund_amount_cents = models.BigIntegerField(
        null=True,
        blank=True,
        help_text="Refunded amount in minor currency units",
    )
    refund_reason = models.CharField(
        max_length=500,
        blank=True,
        help_text="Reason given for the refund",
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["client", "-created_at"], name="project_client_created_idx"),
            models.Index(fields=["expert", "-created_at"], name="project_expert_created_idx"),
        ]

    def __str__(self):
        return f"Project {self.title} ({self.status})"
