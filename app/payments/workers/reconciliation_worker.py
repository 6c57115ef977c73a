"""
Reconciliation worker for periodic state consistency checks.

Tasks:
- run_scheduled_reconciliation: Periodic task that runs the full sweep

Usage:
    # Typically called via celery-beat (see migration 0002)
    from payments.workers import run_scheduled_reconciliation

    # Or manually trigger reconciliation
    run_scheduled_reconciliation.delay()
"""

from __future__ import annotations

import logging

from celery import shared_task

from payments.exceptions import ReconciliationLockError

logger = logging.getLogger(__name__)


DEFAULT_MAX_RECORDS = 500


@shared_task(bind=True)
def run_scheduled_reconciliation(
    self,
    lookback_hours: int | None = None,
    stale_pending_hours: int | None = None,
    max_records: int = DEFAULT_MAX_RECORDS,
) -> dict:
    """
    Run a full reconciliation pass.

    If another run still holds the lock after the short acquire timeout,
    the task returns "skipped" rather than raising, so beat does not retry
    it and slow runs don't pile up in the queue.

    Returns:
        Dict with:
        - status: "completed", "skipped" (lock held), or "failed"
        - run_id and the run counters when completed
        - error: Error message if failed
    """
    from payments.services import ReconciliationService

    logger.info(
        "Starting scheduled reconciliation run",
        extra={
            "lookback_hours": lookback_hours,
            "stale_pending_hours": stale_pending_hours,
            "max_records": max_records,
        },
    )

    try:
        result = ReconciliationService.run_reconciliation(
            lookback_hours=lookback_hours,
            stale_pending_hours=stale_pending_hours,
            max_records=max_records,
        )

    except ReconciliationLockError:
        logger.info(
            "Reconciliation run skipped - another run in progress",
            extra={"task_id": self.request.id},
        )
        return {
            "status": "skipped",
            "reason": "Another reconciliation run is in progress",
        }

    except Exception as e:
        logger.exception(
            f"Unexpected error during reconciliation: {e}",
            extra={"error": str(e)},
        )
        return {
            "status": "failed",
            "error": str(e),
            "error_code": getattr(e, "error_code", "UNEXPECTED_ERROR"),
        }

    run_result = result.data
    return {
        "status": "completed",
        "run_id": str(run_result.run_id),
        "payments_checked": run_result.payments_checked,
        "refund_claims_checked": run_result.refund_claims_checked,
        "pending_intents_checked": run_result.pending_intents_checked,
        "discrepancies_found": run_result.discrepancies_found,
        "auto_healed": run_result.auto_healed,
        "flagged_for_review": run_result.flagged_for_review,
        "failed_to_heal": run_result.failed_to_heal,
    }


__all__ = [
    "run_scheduled_reconciliation",
]
