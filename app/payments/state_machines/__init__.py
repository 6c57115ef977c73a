"""
State machine enums and helpers for payment models.

This module defines the state enums used by payment models with django-fsm.
"""

from payments.state_machines.states import (
    PAYMENT_TRANSITIONS,
    PaymentStatus,
    PayoutStatus,
    WebhookEventStatus,
    can_transition,
)

__all__ = [
    "PAYMENT_TRANSITIONS",
    "PaymentStatus",
    "PayoutStatus",
    "WebhookEventStatus",
    "can_transition",
]
