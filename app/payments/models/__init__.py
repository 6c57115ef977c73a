"""
Payment domain models.

- Payment: Ledger record for one Stripe PaymentIntent
- WebhookEvent: Stripe webhook event tracking for idempotent processing
- ReconciliationRun: Tracks reconciliation sweep executions
- ReconciliationDiscrepancy: Mismatches found by the sweep, and alerts
"""

from payments.models.payment import Payment
from payments.models.reconciliation import (
    DiscrepancyResolution,
    DiscrepancyType,
    ReconciliationDiscrepancy,
    ReconciliationRun,
    ReconciliationRunStatus,
)
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "DiscrepancyResolution",
    "DiscrepancyType",
    "Payment",
    "ReconciliationDiscrepancy",
    "ReconciliationRun",
    "ReconciliationRunStatus",
    "WebhookEvent",
]
