"""
External service adapters for payment processing.

All Stripe calls go through StripeAdapter.
"""

from payments.adapters.stripe_adapter import (
    CreatePaymentIntentParams,
    CustomerResult,
    IdempotencyKeyGenerator,
    PaymentIntentResult,
    PaymentMethodResult,
    RefundResult,
    SetupIntentResult,
    StripeAdapter,
    backoff_delay,
    is_retryable_stripe_error,
)

__all__ = [
    "CreatePaymentIntentParams",
    "CustomerResult",
    "IdempotencyKeyGenerator",
    "PaymentIntentResult",
    "PaymentMethodResult",
    "RefundResult",
    "SetupIntentResult",
    "StripeAdapter",
    "backoff_delay",
    "is_retryable_stripe_error",
]
