"""
Payments app: the payment ledger and its Stripe integration.

This app handles:
- Payment intent creation with a captured platform fee split
- Refunds with a claim / call / complete protocol
- Webhook ingestion, deduplication and application to the ledger
- Propagation of payment outcomes to projects
- Periodic reconciliation of the ledger against projects and Stripe

Related apps:
    - projects: Project aggregate updated with payment outcomes
    - authentication: User model and Stripe customer ids

Usage:
    from payments.services import PaymentOrchestrator, RefundService

    creation = PaymentOrchestrator.create_payment_intent(
        project_id=project.id,
        client_id=user.id,
        amount_cents=5000,
    )
"""
