"""
Reconciliation models: sweep history and the discrepancy queue.

- ReconciliationRun: One execution of the reconciliation sweep
- ReconciliationDiscrepancy: A mismatch between the ledger, the project
  and Stripe, and what was done about it

Discrepancies are also the alert and dead-letter queue for problems found
outside a sweep (webhook for an unknown intent, project propagation that
ran out of retries, a refund whose completion lost a race), in which case
``run`` is empty.

Usage:
    from payments.models import (
        DiscrepancyResolution,
        DiscrepancyType,
        ReconciliationDiscrepancy,
    )

    ReconciliationDiscrepancy.objects.create(
        entity_type="payment",
        entity_id=str(payment.id),
        stripe_id=payment.stripe_payment_intent_id,
        discrepancy_type=DiscrepancyType.PROJECT_UPDATE_FAILED,
        local_state=payment.status,
        resolution=DiscrepancyResolution.FLAGGED_FOR_REVIEW,
    )
"""

from __future__ import annotations

import logging

from django.conf import settings
from django.db import models

from core.models import BaseModel, UUIDPrimaryKeyMixin

logger = logging.getLogger(__name__)


class ReconciliationRunStatus(models.TextChoices):
    """Status of a reconciliation run."""

    RUNNING = "running", "Running"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class DiscrepancyResolution(models.TextChoices):
    """How a discrepancy was resolved."""

    AUTO_HEALED = "auto_healed", "Auto Healed"
    FLAGGED_FOR_REVIEW = "flagged_for_review", "Flagged for Review"
    MANUALLY_RESOLVED = "manually_resolved", "Manually Resolved"
    FAILED_TO_HEAL = "failed_to_heal", "Failed to Heal"


class DiscrepancyType(models.TextChoices):
    """What kind of mismatch was found."""

    MISSING_PAYMENT_RECORD = "missing_payment_record", "Missing Payment Record"
    PROJECT_OUT_OF_SYNC = "project_out_of_sync", "Project Out of Sync"
    PROJECT_UPDATE_FAILED = "project_update_failed", "Project Update Failed"
    REFUND_CLAIM_STUCK = "refund_claim_stuck", "Refund Claim Stuck"
    REFUND_COMPLETION_CONFLICT = "refund_completion_conflict", "Refund Completion Conflict"
    STALE_PENDING_INTENT = "stale_pending_intent", "Stale Pending Intent"


class ReconciliationRun(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks one reconciliation sweep.

    The service creates the run when it starts, fills in the counters as
    each phase finishes, and marks it completed or failed at the end.

    Example:
        run = ReconciliationRun.objects.create(
            started_at=timezone.now(),
            lookback_hours=24,
            stale_pending_hours=2,
        )
    """

    started_at = models.DateTimeField(
        help_text="When this reconciliation run started",
    )
    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When this reconciliation run completed (or failed)",
    )

    # Configuration used for this run
    lookback_hours = models.PositiveIntegerField(
        help_text="How many hours of settled payments were checked against projects",
    )
    stale_pending_hours = models.PositiveIntegerField(
        help_text="Age after which a pending intent is checked against Stripe",
    )

    # Results summary
    payments_checked = models.PositiveIntegerField(
        default=0,
        help_text="Payments compared with their project",
    )
    refund_claims_checked = models.PositiveIntegerField(
        default=0,
        help_text="Stale refund claims found",
    )
    pending_intents_checked = models.PositiveIntegerField(
        default=0,
        help_text="Stale pending intents looked up in Stripe",
    )
    discrepancies_found = models.PositiveIntegerField(
        default=0,
        help_text="Total discrepancies found",
    )
    auto_healed = models.PositiveIntegerField(
        default=0,
        help_text="Discrepancies automatically healed",
    )
    flagged_for_review = models.PositiveIntegerField(
        default=0,
        help_text="Discrepancies requiring manual review",
    )
    failed_to_heal = models.PositiveIntegerField(
        default=0,
        help_text="Discrepancies that failed to heal",
    )

    status = models.CharField(
        max_length=20,
        choices=ReconciliationRunStatus.choices,
        default=ReconciliationRunStatus.RUNNING,
        db_index=True,
        help_text="Current status of this reconciliation run",
    )
    error_message = models.TextField(
        blank=True,
        help_text="Error message if the run failed",
    )

    class Meta:
        indexes = [
            models.Index(fields=["status", "started_at"], name="recon_run_status_started_idx"),
        ]
        ordering = ["-started_at"]

    def __str__(self) -> str:
        return f"ReconciliationRun({self.id}, {self.status}, {self.started_at})"

    @property
    def duration_seconds(self) -> float | None:
        """Run duration in seconds, or None if not complete."""
        if self.completed_at and self.started_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


class ReconciliationDiscrepancy(UUIDPrimaryKeyMixin, BaseModel):
    """
    A single mismatch and its resolution.

    Discrepancies may be:
    - Auto-healed: The sweep corrected the state
    - Flagged for review: Needs a human (also used for alerts raised
      outside a sweep)
    - Manually resolved: A human reviewed and resolved the issue
    - Failed to heal: Automatic healing was attempted but failed
    """

    run = models.ForeignKey(
        ReconciliationRun,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="discrepancies",
        help_text="Sweep that found this discrepancy (empty for alerts raised elsewhere)",
    )

    # What was affected
    entity_type = models.CharField(
        max_length=50,
        help_text="Type of entity (payment, webhook_event)",
    )
    entity_id = models.CharField(
        max_length=64,
        blank=True,
        help_text="ID of the affected entity, if there is one",
    )
    stripe_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Related Stripe object ID (pi_xxx, evt_xxx)",
    )

    discrepancy_type = models.CharField(
        max_length=50,
        choices=DiscrepancyType.choices,
        db_index=True,
        help_text="Kind of mismatch detected",
    )
    local_state = models.CharField(
        max_length=50,
        blank=True,
        help_text="State of the local record when the discrepancy was detected",
    )
    stripe_state = models.CharField(
        max_length=50,
        blank=True,
        help_text="State/status reported by Stripe",
    )
    details = models.JSONField(
        default=dict,
        blank=True,
        help_text="Additional context about the discrepancy",
    )

    resolution = models.CharField(
        max_length=20,
        choices=DiscrepancyResolution.choices,
        db_index=True,
        help_text="How this discrepancy was resolved",
    )
    action_taken = models.TextField(
        blank=True,
        help_text="What was done to resolve it",
    )
    error_message = models.TextField(
        blank=True,
        help_text="Error message if healing failed",
    )

    # Review tracking (for flagged discrepancies)
    reviewed = models.BooleanField(
        default=False,
        help_text="Whether a human has reviewed this discrepancy",
    )
    reviewed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When this discrepancy was reviewed",
    )
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="reviewed_discrepancies",
        help_text="User who reviewed this discrepancy",
    )
    review_notes = models.TextField(
        blank=True,
        help_text="Notes from the reviewer",
    )

    class Meta:
        indexes = [
            models.Index(fields=["resolution", "reviewed"], name="recon_disc_review_idx"),
            models.Index(fields=["entity_type", "entity_id"], name="recon_disc_entity_idx"),
        ]
        ordering = ["-created_at"]
        verbose_name_plural = "Reconciliation discrepancies"

    def __str__(self) -> str:
        return f"Discrepancy({self.entity_type}:{self.entity_id}, {self.discrepancy_type})"

    @property
    def needs_review(self) -> bool:
        return (
            self.resolution == DiscrepancyResolution.FLAGGED_FOR_REVIEW
            and not self.reviewed
        )

    @classmethod
    def flag(
        cls,
        discrepancy_type: str,
        entity_type: str,
        entity_id: str = "",
        stripe_id: str = "",
        local_state: str = "",
        stripe_state: str = "",
        details: dict | None = None,
        error_message: str = "",
    ) -> ReconciliationDiscrepancy:
        """
        Raise an alert outside a sweep. It lands in the review queue.
        """
        discrepancy = cls.objects.create(
            discrepancy_type=discrepancy_type,
            entity_type=entity_type,
            entity_id=str(entity_id or ""),
            stripe_id=stripe_id or "",
            local_state=local_state or "",
            stripe_state=stripe_state or "",
            details=details or {},
            error_message=error_message,
            resolution=DiscrepancyResolution.FLAGGED_FOR_REVIEW,
        )
        logger.error(
            "Discrepancy flagged for review",
            extra={
                "discrepancy_id": str(discrepancy.id),
                "discrepancy_type": discrepancy_type,
                "entity_type": entity_type,
                "entity_id": str(entity_id or ""),
                "stripe_id": stripe_id,
            },
        )
        return discrepancy


__all__ = [
    "DiscrepancyResolution",
    "DiscrepancyType",
    "ReconciliationDiscrepancy",
    "ReconciliationRun",
    "ReconciliationRunStatus",
]
