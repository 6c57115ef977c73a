"""
Workers for async payment processing.

- ReconciliationWorker: Runs the scheduled reconciliation sweep

Usage:
    from payments.workers import run_scheduled_reconciliation

    run_scheduled_reconciliation.delay()
"""

from payments.workers.reconciliation_worker import run_scheduled_reconciliation

__all__ = [
    "run_scheduled_reconciliation",
]
