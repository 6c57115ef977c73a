"""
Reconciliation service for detecting and healing state discrepancies.

The sweep is the safety net behind the webhook pipeline, project
propagation and the refund protocol. It catches up on whatever those
left half done.

Detection Categories:
    1. Project drift: a settled payment whose project does not show it,
       among recently updated rows and dead-lettered propagations of any age
    2. Stuck refund claims: a refund claim older than the stale threshold
    3. Stale pending intents: pending payments whose intent Stripe has
       already settled

Healing Strategy:
    - Project drift is re-driven through ProjectSyncService
    - Stuck claims are resumed with their original idempotency key, so
      Stripe returns the refund it already made (if any)
    - Stale intents are applied through the webhook transition path with
      a synthetic event id

Usage:
    from payments.services import ReconciliationService

    result = ReconciliationService.run_reconciliation(lookback_hours=24)

    if result.success:
        run_result = result.data
        print(f"Found {run_result.discrepancies_found} discrepancies")
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from core.services import BaseService, ServiceResult
from payments.adapters import StripeAdapter
from payments.exceptions import (
    LockAcquisitionError,
    ReconciliationError,
    ReconciliationLockError,
)
from payments.locks import reconciliation_lock
from payments.models import (
    DiscrepancyResolution,
    DiscrepancyType,
    Payment,
    ReconciliationDiscrepancy,
    ReconciliationRun,
    ReconciliationRunStatus,
)
from payments.services.project_sync import ProjectSyncService
from payments.services.refund_service import RefundService
from payments.state_machines import PaymentStatus

if TYPE_CHECKING:
    from typing import Any

    from payments.adapters import PaymentIntentResult


# =============================================================================
# Constants
# =============================================================================

DEFAULT_MAX_RECORDS = 500


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class Discrepancy:
    """A detected discrepancy, before it is healed and recorded."""

    discrepancy_type: str
    payment: Payment
    local_state: str
    stripe_state: str = ""
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class HealingResult:
    """Result of attempting to heal a discrepancy."""

    discrepancy: Discrepancy
    resolution: str
    action_taken: str = ""
    error: str = ""


@dataclass
class ReconciliationRunResult:
    """Summary result of a reconciliation run."""

    run_id: uuid.UUID
    started_at: datetime
    completed_at: datetime | None
    payments_checked: int
    refund_claims_checked: int
    pending_intents_checked: int
    discrepancies_found: int
    auto_healed: int
    flagged_for_review: int
    failed_to_heal: int
    results: list[HealingResult] = field(default_factory=list)


# =============================================================================
# Reconciliation Service
# =============================================================================


class ReconciliationService(BaseService):
    """
    Detects and heals discrepancies between the ledger, projects and Stripe.

    Concurrency Safety:
        - A global run lock prevents concurrent sweeps
        - Every heal goes through the same locked code path as the live
          operation it completes (row lock for transitions, refund lock
          for refunds), so a sweep racing a webhook is harmless
    """

    # Stripe adapter - can be injected for testing
    _stripe_adapter: type | None = None

    @classmethod
    def get_stripe_adapter(cls) -> type:
        return cls._stripe_adapter or StripeAdapter

    @classmethod
    def set_stripe_adapter(cls, adapter: type | None) -> None:
        """Set the Stripe adapter class (for testing)."""
        cls._stripe_adapter = adapter

    # =========================================================================
    # Public API
    # =========================================================================

    @classmethod
    def run_reconciliation(
        cls,
        lookback_hours: int | None = None,
        stale_pending_hours: int | None = None,
        max_records: int = DEFAULT_MAX_RECORDS,
    ) -> ServiceResult[ReconciliationRunResult]:
        """
        Run a full reconciliation pass.

        Args:
            lookback_hours: Window of settled payments compared with their
                project (default: RECONCILIATION_LOOKBACK_HOURS)
            stale_pending_hours: Age after which a pending intent is looked
                up in Stripe (default: RECONCILIATION_STALE_PENDING_HOURS)
            max_records: Maximum records per phase

        Returns:
            ServiceResult containing ReconciliationRunResult

        Raises:
            ReconciliationLockError: If another run is already in progress
            ReconciliationError: If the run failed as a whole
        """
        if lookback_hours is None:
            lookback_hours = settings.RECONCILIATION_LOOKBACK_HOURS
        if stale_pending_hours is None:
            stale_pending_hours = settings.RECONCILIATION_STALE_PENDING_HOURS

        cls.get_logger().info(
            "Starting reconciliation run",
            extra={
                "lookback_hours": lookback_hours,
                "stale_pending_hours": stale_pending_hours,
                "max_records": max_records,
            },
        )

        lock = reconciliation_lock()
        try:
            lock.acquire()
        except LockAcquisitionError as e:
            cls.get_logger().warning(
                "Another reconciliation run is in progress",
                extra={"lock_key": lock.key},
            )
            raise ReconciliationLockError(
                "Another reconciliation run is in progress",
                details={"lock_key": lock.key},
            ) from e

        try:
            return cls._run_reconciliation_with_lock(
                lock=lock,
                lookback_hours=lookback_hours,
                stale_pending_hours=stale_pending_hours,
                max_records=max_records,
            )
        finally:
            lock.release()

    # =========================================================================
    # Internal: Run Orchestration
    # =========================================================================

    @classmethod
    def _run_reconciliation_with_lock(
        cls,
        lock,
        lookback_hours: int,
        stale_pending_hours: int,
        max_records: int,
    ) -> ServiceResult[ReconciliationRunResult]:
        started_at = timezone.now()

        run = ReconciliationRun.objects.create(
            started_at=started_at,
            lookback_hours=lookback_hours,
            stale_pending_hours=stale_pending_hours,
            status=ReconciliationRunStatus.RUNNING,
        )

        results: list[HealingResult] = []

        try:
            cls.get_logger().info(
                "Phase 1: Checking projects against settled payments",
                extra={"run_id": str(run.id)},
            )
            phase_results, run.payments_checked = cls._reconcile_project_drift(
                run, lookback_hours, max_records
            )
            results.extend(phase_results)
            lock.extend()

            cls.get_logger().info(
                "Phase 2: Resuming stuck refund claims",
                extra={"run_id": str(run.id)},
            )
            phase_results, run.refund_claims_checked = cls._reconcile_refund_claims(
                run, max_records
            )
            results.extend(phase_results)
            lock.extend()

            cls.get_logger().info(
                "Phase 3: Checking stale pending intents",
                extra={"run_id": str(run.id)},
            )
            phase_results, run.pending_intents_checked = cls._reconcile_pending_intents(
                run, stale_pending_hours, max_records
            )
            results.extend(phase_results)

            completed_at = timezone.now()
            run.completed_at = completed_at
            run.discrepancies_found = len(results)
            run.auto_healed = cls._count(results, DiscrepancyResolution.AUTO_HEALED)
            run.flagged_for_review = cls._count(
                results, DiscrepancyResolution.FLAGGED_FOR_REVIEW
            )
            run.failed_to_heal = cls._count(results, DiscrepancyResolution.FAILED_TO_HEAL)
            run.status = ReconciliationRunStatus.COMPLETED
            run.save()

            cls.get_logger().info(
                "Reconciliation run completed",
                extra={
                    "run_id": str(run.id),
                    "payments_checked": run.payments_checked,
                    "refund_claims_checked": run.refund_claims_checked,
                    "pending_intents_checked": run.pending_intents_checked,
                    "discrepancies_found": run.discrepancies_found,
                    "auto_healed": run.auto_healed,
                    "flagged_for_review": run.flagged_for_review,
                    "failed_to_heal": run.failed_to_heal,
                    "duration_seconds": run.duration_seconds,
                },
            )

            return ServiceResult.success(
                ReconciliationRunResult(
                    run_id=run.id,
                    started_at=started_at,
                    completed_at=completed_at,
                    payments_checked=run.payments_checked,
                    refund_claims_checked=run.refund_claims_checked,
                    pending_intents_checked=run.pending_intents_checked,
                    discrepancies_found=run.discrepancies_found,
                    auto_healed=run.auto_healed,
                    flagged_for_review=run.flagged_for_review,
                    failed_to_heal=run.failed_to_heal,
                    results=results,
                )
            )

        except Exception as e:
            run.completed_at = timezone.now()
            run.status = ReconciliationRunStatus.FAILED
            run.error_message = str(e)
            run.save()

            cls.get_logger().error(
                "Reconciliation run failed",
                extra={"run_id": str(run.id), "error": str(e)},
                exc_info=True,
            )

            raise ReconciliationError(
                f"Reconciliation run failed: {e}",
                details={"run_id": str(run.id)},
            ) from e

    @staticmethod
    def _count(results: list[HealingResult], resolution: str) -> int:
        return sum(1 for r in results if r.resolution == resolution)

    # =========================================================================
    # Phase 1: Project Drift
    # =========================================================================

    @classmethod
    def _reconcile_project_drift(
        cls,
        run: ReconciliationRun,
        lookback_hours: int,
        limit: int,
    ) -> tuple[list[HealingResult], int]:
        """Returns tuple of (healing_results, total_checked)."""
        cutoff = timezone.now() - timedelta(hours=lookback_hours)
        dead_lettered = list(
            ReconciliationDiscrepancy.objects.filter(
                discrepancy_type=DiscrepancyType.PROJECT_UPDATE_FAILED,
                resolution=DiscrepancyResolution.FLAGGED_FOR_REVIEW,
                reviewed=False,
                entity_type="payment",
            ).values_list("entity_id", flat=True)
        )
        payments = (
            Payment.objects.select_related("project")
            .filter(status__in=ProjectSyncService.PROPAGATED_STATUSES)
            .filter(Q(updated_at__gte=cutoff) | Q(pk__in=dead_lettered))
            .order_by("updated_at")[:limit]
        )

        results: list[HealingResult] = []
        total_checked = 0

        for payment in payments:
            total_checked += 1
            if ProjectSyncService.project_reflects(payment):
                continue

            discrepancy = Discrepancy(
                discrepancy_type=DiscrepancyType.PROJECT_OUT_OF_SYNC,
                payment=payment,
                local_state=payment.status,
                details={
                    "project_id": str(payment.project_id),
                    "project_payment_status": payment.project.payment_status,
                },
            )
            try:
                # Project snapshot may be stale; sync re-reads and may no-op
                if not ProjectSyncService.sync_payment(payment.id):
                    continue
                result = HealingResult(
                    discrepancy=discrepancy,
                    resolution=DiscrepancyResolution.AUTO_HEALED,
                    action_taken=f"Propagated {payment.status} to project",
                )
            except Exception as e:
                cls.get_logger().error(
                    "Error re-driving project update",
                    extra={"payment_id": str(payment.id), "error": str(e)},
                    exc_info=True,
                )
                result = HealingResult(
                    discrepancy=discrepancy,
                    resolution=DiscrepancyResolution.FAILED_TO_HEAL,
                    error=f"{type(e).__name__}: {e}",
                )

            cls._record_discrepancy(run, result)
            results.append(result)

        return results, total_checked

    # =========================================================================
    # Phase 2: Stuck Refund Claims
    # =========================================================================

    @classmethod
    def _reconcile_refund_claims(
        cls,
        run: ReconciliationRun,
        limit: int,
    ) -> tuple[list[HealingResult], int]:
        """Returns tuple of (healing_results, total_checked)."""
        claimed = Payment.objects.filter(pending_refund__isnull=False).order_by("updated_at")

        results: list[HealingResult] = []
        total_checked = 0

        for payment in claimed.iterator():
            if total_checked >= limit:
                break
            claim = payment.pending_refund
            if not claim or not RefundService.claim_is_stale(claim):
                continue
            total_checked += 1

            discrepancy = Discrepancy(
                discrepancy_type=DiscrepancyType.REFUND_CLAIM_STUCK,
                payment=payment,
                local_state=payment.status,
                details={
                    "idempotency_key": claim.get("idempotency_key"),
                    "amount_cents": claim.get("amount_cents"),
                    "requested_at": claim.get("requested_at"),
                },
            )
            try:
                execution = RefundService.resume_refund(payment.id)
            except Exception as e:
                cls.get_logger().warning(
                    "Could not resume stuck refund claim",
                    extra={"payment_id": str(payment.id), "error": str(e)},
                )
                result = HealingResult(
                    discrepancy=discrepancy,
                    resolution=DiscrepancyResolution.FAILED_TO_HEAL,
                    error=f"{type(e).__name__}: {e}",
                )
            else:
                if execution is None:
                    # Claim finished or released between the scan and the lock
                    continue
                result = HealingResult(
                    discrepancy=discrepancy,
                    resolution=DiscrepancyResolution.AUTO_HEALED,
                    action_taken=f"Completed refund {execution.stripe_refund_id}",
                )

            cls._record_discrepancy(run, result)
            results.append(result)

        return results, total_checked

    # =========================================================================
    # Phase 3: Stale Pending Intents
    # =========================================================================

    @staticmethod
    def _remote_terminal_status(intent: PaymentIntentResult) -> str | None:
        """
        The ledger status Stripe's intent implies, or None while it is open.

        A failed attempt leaves the intent in requires_payment_method with
        the error attached; without an error the customer simply has not
        paid yet.
        """
        if intent.status == "succeeded":
            return PaymentStatus.SUCCEEDED
        if intent.status == "canceled":
            return PaymentStatus.CANCELED
        if intent.status == "requires_payment_method" and intent.last_payment_error:
            return PaymentStatus.FAILED
        return None

    @classmethod
    def _reconcile_pending_intents(
        cls,
        run: ReconciliationRun,
        stale_pending_hours: int,
        limit: int,
    ) -> tuple[list[HealingResult], int]:
        """Returns tuple of (healing_results, total_checked)."""
        from payments.webhooks.handlers import apply_intent_status

        cutoff = timezone.now() - timedelta(hours=stale_pending_hours)
        payments = Payment.objects.filter(
            status=PaymentStatus.PENDING,
            created_at__lt=cutoff,
        ).order_by("created_at")[:limit]

        adapter = cls.get_stripe_adapter()
        results: list[HealingResult] = []
        total_checked = 0

        for payment in payments:
            total_checked += 1
            intent_id = payment.stripe_payment_intent_id

            try:
                intent = adapter.retrieve_payment_intent(intent_id)
            except Exception as e:
                cls.get_logger().warning(
                    "Stripe error during pending intent check, skipping",
                    extra={"payment_id": str(payment.id), "error": str(e)},
                )
                continue

            target = cls._remote_terminal_status(intent)
            if target is None:
                continue

            discrepancy = Discrepancy(
                discrepancy_type=DiscrepancyType.STALE_PENDING_INTENT,
                payment=payment,
                local_state=payment.status,
                stripe_state=intent.status,
            )
            try:
                apply_intent_status(
                    intent_id,
                    target,
                    event_id=f"reconcile:{intent_id}:{intent.status}",
                    failure_message=intent.last_payment_error,
                )
                result = HealingResult(
                    discrepancy=discrepancy,
                    resolution=DiscrepancyResolution.AUTO_HEALED,
                    action_taken=f"Applied {target} from Stripe",
                )
            except Exception as e:
                cls.get_logger().error(
                    "Error applying Stripe intent status",
                    extra={"payment_id": str(payment.id), "error": str(e)},
                    exc_info=True,
                )
                result = HealingResult(
                    discrepancy=discrepancy,
                    resolution=DiscrepancyResolution.FAILED_TO_HEAL,
                    error=f"{type(e).__name__}: {e}",
                )

            cls._record_discrepancy(run, result)
            results.append(result)

        return results, total_checked

    # =========================================================================
    # Internal: Persistence
    # =========================================================================

    @classmethod
    def _record_discrepancy(cls, run: ReconciliationRun, result: HealingResult) -> None:
        """Persist discrepancy record to database for audit and review."""
        discrepancy = result.discrepancy
        try:
            ReconciliationDiscrepancy.objects.create(
                run=run,
                entity_type="payment",
                entity_id=str(discrepancy.payment.id),
                stripe_id=discrepancy.payment.stripe_payment_intent_id,
                discrepancy_type=discrepancy.discrepancy_type,
                local_state=discrepancy.local_state,
                stripe_state=discrepancy.stripe_state,
                details=discrepancy.details,
                resolution=result.resolution,
                action_taken=result.action_taken,
                error_message=result.error,
            )
        except Exception as e:
            cls.get_logger().error(
                "Failed to record discrepancy",
                extra={
                    "run_id": str(run.id),
                    "discrepancy_type": discrepancy.discrepancy_type,
                    "error": str(e),
                },
                exc_info=True,
            )


__all__ = [
    "Discrepancy",
    "HealingResult",
    "ReconciliationRunResult",
    "ReconciliationService",
]
