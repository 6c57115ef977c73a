"""
Payment services for coordinating payment operations.

This module provides:
- PaymentOrchestrator: Intent creation, confirmation, stats and history
- CustomerService: Lazily creates the user's Stripe customer
- PaymentMethodService: Saved cards and setup intents
- RefundService: Claim/call/complete refund protocol
- ProjectSyncService: Propagates ledger outcomes to projects
- ReconciliationService: Detects and heals state discrepancies

Usage:
    from payments.services import PaymentOrchestrator

    created = PaymentOrchestrator.create_payment_intent(
        project_id=project.id,
        client_id=user.id,
        amount_cents=5000,
        currency="eur",
    )

    # Create a refund
    from payments.services import RefundService

    result = RefundService.create_refund(
        payment_id=payment.id,
        amount_cents=2500,
        reason="Customer request",
    )

    # Run reconciliation
    from payments.services import ReconciliationService

    result = ReconciliationService.run_reconciliation(lookback_hours=24)
"""

from payments.services.customer_service import CustomerService
from payments.services.payment_method_service import PaymentMethodService
from payments.services.payment_orchestrator import (
    IntentCreation,
    PaymentHistory,
    PaymentOrchestrator,
    PaymentStats,
)
from payments.services.project_sync import ProjectSyncService
from payments.services.reconciliation_service import (
    Discrepancy,
    HealingResult,
    ReconciliationRunResult,
    ReconciliationService,
)
from payments.services.refund_service import (
    RefundExecutionResult,
    RefundService,
)

__all__ = [
    "CustomerService",
    "Discrepancy",
    "HealingResult",
    "IntentCreation",
    "PaymentHistory",
    "PaymentMethodService",
    "PaymentOrchestrator",
    "PaymentStats",
    "ProjectSyncService",
    "ReconciliationRunResult",
    "ReconciliationService",
    "RefundExecutionResult",
    "RefundService",
]
