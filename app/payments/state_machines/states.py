"""
State enums for payment models.

These are Django TextChoices for database storage and admin integration;
the Payment status is driven by django-fsm transitions.

State Machines Overview:

Payment Status:
    pending → succeeded → refunded
    pending → failed
    pending → canceled

Payout Status (informational, set outside the payment lifecycle):
    pending → paid
    pending → failed

WebhookEvent Status:
    pending → processing → processed
    pending → processing → failed → processing (retry)
"""

from django.db import models


class PaymentStatus(models.TextChoices):
    """
    States for the Payment lifecycle.

    Terminal states: FAILED, CANCELED, REFUNDED

    State Flow:
        PENDING → SUCCEEDED (payment_intent.succeeded)
        PENDING → FAILED (payment_intent.payment_failed)
        PENDING → CANCELED (payment_intent.canceled)
        SUCCEEDED → REFUNDED (refund completed)

    Any other edge is rejected, including re-entering the current state.
    """

    PENDING = "pending", "Pending"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"
    CANCELED = "canceled", "Canceled"
    REFUNDED = "refunded", "Refunded"


class PayoutStatus(models.TextChoices):
    """Whether the expert's share has been paid out."""

    PENDING = "pending", "Pending"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for Stripe webhook events.

    Used to ensure idempotent webhook processing and enable retry of
    failed events.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


# Allowed edges, used by callers that want to check before attempting a transition
PAYMENT_TRANSITIONS: dict[str, frozenset[str]] = {
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.SUCCEEDED, PaymentStatus.FAILED, PaymentStatus.CANCELED}
    ),
    PaymentStatus.SUCCEEDED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    """True if ``current → target`` is an edge of the payment state machine."""
    return target in PAYMENT_TRANSITIONS.get(current, frozenset())
