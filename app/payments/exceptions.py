"""
Payment-specific exceptions.

Exception Hierarchy:
    ValidationError (core)
    └── PaymentValidationError - Amount, currency, refund amount rules
    NotFoundError (core)
    └── PaymentNotFoundError - Payment lookup failures
    ConflictError (core)
    ├── InvalidStateError - Operation not allowed in the payment's status
    └── ConcurrencyConflictError - Another writer got there first
        ├── StaleRecordError - Optimistic locking conflict
        ├── LockAcquisitionError - Distributed lock timeout
        │   └── ReconciliationLockError - A sweep is already running
        ├── RefundInProgressError - A refund claim is already held
        └── AlreadyRefundedError - Payment was refunded already
    ExternalServiceError (core)
    └── ExternalProcessorError - Base for all Stripe errors
        ├── StripeCardDeclinedError - Card declined (permanent)
        ├── StripeInsufficientFundsError - Insufficient funds (permanent)
        ├── StripeInvalidRequestError - Invalid request params (permanent)
        ├── StripeRateLimitError - Rate limited (transient, retry)
        ├── StripeAPIUnavailableError - API unavailable (transient, retry)
        └── StripeTimeoutError - Request timeout (transient, retry)
    ReconciliationError - A whole reconciliation run failed
    SignatureVerificationError - Webhook could not be authenticated
    └── WebhookSecretMissingError - No signing secret configured

Usage:
    from payments.exceptions import ConcurrencyConflictError, InvalidStateError

    if payment.status != PaymentStatus.SUCCEEDED:
        raise InvalidStateError(
            "Only succeeded payments can be refunded",
            details={"payment_id": str(payment.id), "status": payment.status},
        )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentValidationError(ValidationError):
    """
    Raised when payment input breaks a business rule.

    Example:
        if amount_cents < settings.PAYMENT_MIN_AMOUNT_CENTS:
            raise PaymentValidationError(
                "Amount is below the minimum",
                error_code="AMOUNT_TOO_SMALL",
                details={"amount_cents": amount_cents},
            )
    """

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"


class PaymentNotFoundError(NotFoundError):
    """Raised when a payment record cannot be found."""

    default_error_code: str = "PAYMENT_NOT_FOUND"


class InvalidStateError(ConflictError):
    """
    Raised when an operation is not allowed in the payment's current status.

    Example:
        raise InvalidStateError(
            "Cannot refund a pending payment",
            details={"current_state": "pending", "target_state": "refunded"},
        )
    """

    default_error_code: str = "INVALID_STATE"


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class ConcurrencyConflictError(ConflictError):
    """
    Raised when a concurrent writer won a race for the same payment.

    The caller's operation had no effect and may be retried after
    re-reading the payment.
    """

    default_error_code: str = "CONCURRENCY_CONFLICT"


class StaleRecordError(ConcurrencyConflictError):
    """
    Raised when optimistic locking detects concurrent modification.

    Details include pk, expected_version and current_version.
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConcurrencyConflictError):
    """
    Raised when a distributed lock cannot be acquired within the timeout.

    Details include the lock key and timeout.
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class RefundInProgressError(ConcurrencyConflictError):
    """Raised when another request holds an active refund claim on the payment."""

    default_error_code: str = "REFUND_IN_PROGRESS"


class AlreadyRefundedError(ConcurrencyConflictError):
    """Raised when the payment was already refunded."""

    default_error_code: str = "ALREADY_REFUNDED"


class ReconciliationLockError(LockAcquisitionError):
    """Raised when another reconciliation sweep is already running."""

    default_error_code: str = "RECONCILIATION_LOCKED"


# =============================================================================
# Reconciliation Exceptions
# =============================================================================


class ReconciliationError(BaseApplicationError):
    """
    Raised when a reconciliation run fails as a whole.

    Failures of individual records are recorded as discrepancies and do
    not raise. Details include the run_id.
    """

    default_error_code: str = "RECONCILIATION_FAILED"
    http_status: int = 500


# =============================================================================
# Stripe Exceptions
# =============================================================================


class ExternalProcessorError(ExternalServiceError):
    """
    Base exception for all Stripe failures.

    Attributes:
        stripe_code: Stripe's internal error code
        decline_code: Card decline code (if applicable)
        is_retryable: True for transient failures that are safe to retry
            with the same idempotency key

    Example:
        try:
            StripeAdapter.create_refund(...)
        except ExternalProcessorError as e:
            if e.is_retryable:
                time.sleep(backoff_delay(attempt))
            else:
                raise
    """

    default_error_code: str = "PROCESSOR_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class StripeCardDeclinedError(ExternalProcessorError):
    """
    Card was declined by the issuing bank.

    The decline_code attribute contains the specific reason
    (generic_decline, expired_card, incorrect_cvc, ...).
    """

    default_error_code: str = "CARD_DECLINED"
    is_retryable: bool = False


class StripeInsufficientFundsError(ExternalProcessorError):
    """Insufficient funds on the payment method. User action is required."""

    default_error_code: str = "INSUFFICIENT_FUNDS"
    is_retryable: bool = False


class StripeInvalidRequestError(ExternalProcessorError):
    """
    Invalid request parameters sent to Stripe.

    The request will never succeed with the same parameters, e.g. an
    unknown intent id or a refund larger than the charge.
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"
    is_retryable: bool = False


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with backoff)
# -----------------------------------------------------------------------------


class StripeRateLimitError(ExternalProcessorError):
    """Rate limited by the Stripe API."""

    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(ExternalProcessorError):
    """
    Stripe API is temporarily unavailable.

    Covers network connectivity issues and Stripe server errors (5xx).
    """

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(ExternalProcessorError):
    """
    Stripe API call timed out.

    The operation may have succeeded on Stripe's side. Retry with the same
    idempotency key so Stripe returns the original result.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Webhook Exceptions
# =============================================================================


class SignatureVerificationError(BaseApplicationError):
    """Raised when a webhook payload fails signature verification."""

    default_error_code: str = "INVALID_SIGNATURE"
    http_status: int = 400


class WebhookSecretMissingError(SignatureVerificationError):
    """Raised when no webhook signing secret is configured."""

    default_error_code: str = "WEBHOOK_SECRET_MISSING"
