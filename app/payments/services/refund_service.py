"""
Refund service for returning money to clients.

This module provides the RefundService class which handles the critical path
for refunding a succeeded payment. It follows a claim / call / complete
protocol so a refund is never issued twice, even when requests race or a
Stripe call times out after Stripe already refunded.

The service implements:
1. Precondition checks (payment succeeded, amount within the original)
2. A refund claim recorded on the Payment before Stripe is called
3. The Stripe refund call, outside any transaction, with the claim's
   idempotency key and inline retries for transient failures
4. A compare-and-set completion that moves the Payment to REFUNDED
5. Post-commit propagation of the refund to the project

Usage:
    from payments.services import RefundService

    result = RefundService.create_refund(
        payment_id=payment.id,
        amount_cents=5000,  # None for a full refund
        reason="Client request",
    )
    print(result.stripe_refund_id)
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from django.conf import settings
from django.db import DatabaseError
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from core.services import BaseService
from payments.adapters import (
    IdempotencyKeyGenerator,
    RefundResult,
    StripeAdapter,
    backoff_delay,
)
from payments.exceptions import (
    AlreadyRefundedError,
    ConcurrencyConflictError,
    ExternalProcessorError,
    InvalidStateError,
    LockAcquisitionError,
    PaymentNotFoundError,
    PaymentValidationError,
    RefundInProgressError,
)
from payments.locks import check_version, lock_row, refund_lock
from payments.models import DiscrepancyType, Payment, ReconciliationDiscrepancy
from payments.services.project_sync import ProjectSyncService
from payments.state_machines import PaymentStatus

# Base delay for inline retries of transient Stripe errors (seconds)
REFUND_RETRY_BASE_DELAY = 0.5

# Stripe refund statuses that mean the refund will not happen
FAILED_REFUND_STATUSES = frozenset({"failed", "canceled"})


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class RefundExecutionResult:
    """
    Result of a completed refund.

    Attributes:
        payment: The Payment, now REFUNDED
        stripe_refund_id: Stripe Refund ID (re_xxx)
        amount_cents: Amount refunded
        resumed: True if an earlier, interrupted claim was completed
    """

    payment: Payment
    stripe_refund_id: str
    amount_cents: int
    resumed: bool = False


class RefundService(BaseService):
    """
    Service for processing refunds.

    Claim / Call / Complete:
        1. Acquire the per-payment distributed lock
        2. Claim: under a row lock and version check, store a pending_refund
           with a deterministic idempotency key
        3. Call Stripe OUTSIDE the transaction with that key
        4. Complete: under a row lock, require the same claim, transition
           SUCCEEDED -> REFUNDED and clear the claim

    Safety Guarantees:
        - A fresh claim held by another request rejects the caller before
          Stripe is called
        - Retrying with the claim's key makes Stripe return the original
          refund instead of creating a second one
        - A claim left behind by a crash or by exhausted retries is
          finished by resume_refund (reconciliation sweep)
        - If completion fails after Stripe refunded, a discrepancy is
          recorded and the sweep completes it
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
    # Entry Points
    # =========================================================================

    @classmethod
    def create_refund(
        cls,
        payment_id: uuid.UUID | str,
        amount_cents: int | None = None,
        reason: str | None = None,
    ) -> RefundExecutionResult:
        """
        Refund a succeeded payment.

        Args:
            payment_id: Payment to refund
            amount_cents: Amount to refund (None for the full amount)
            reason: Free-text reason, stored on the Payment and the project

        Returns:
            RefundExecutionResult

        Raises:
            PaymentNotFoundError: No such payment
            PaymentValidationError: Amount not positive or above the original
            InvalidStateError: Payment has not succeeded
            AlreadyRefundedError: Payment was already refunded
            RefundInProgressError: Another request holds the refund claim
            LockAcquisitionError: Another request holds the refund lock
            ConcurrencyConflictError: Completion lost a race after Stripe
                refunded; reconciliation will finish it
            ExternalProcessorError: Stripe refused the refund or stayed
                unavailable through all retries
        """
        if amount_cents is not None and (
            isinstance(amount_cents, bool)
            or not isinstance(amount_cents, int)
            or amount_cents <= 0
        ):
            raise PaymentValidationError(
                "Refund amount must be a positive integer",
                error_code="INVALID_REFUND_AMOUNT",
                details={"amount_cents": repr(amount_cents)},
            )

        cls.get_logger().info(
            "Starting refund",
            extra={"payment_id": str(payment_id), "amount_cents": amount_cents},
        )

        try:
            with refund_lock(payment_id):
                return cls._execute_refund_with_lock(payment_id, amount_cents, reason)
        except LockAcquisitionError as e:
            cls.get_logger().warning(
                "Failed to acquire lock for refund execution",
                extra={"payment_id": str(payment_id), "error": str(e)},
            )
            raise

    @classmethod
    def resume_refund(cls, payment_id: uuid.UUID | str) -> RefundExecutionResult | None:
        """
        Finish a stale refund claim with its original idempotency key.

        Called by the reconciliation sweep. Returns None when there is no
        stale claim to finish.

        Raises:
            Same as create_refund, minus the input validation errors
        """
        with refund_lock(payment_id):
            payment = cls._get_payment(payment_id)
            claim = payment.pending_refund
            if not claim or not cls.claim_is_stale(claim):
                return None
            if payment.status != PaymentStatus.SUCCEEDED:
                raise InvalidStateError(
                    "Refund claim on a payment that is not succeeded",
                    details={"payment_id": str(payment.id), "status": payment.status},
                )

            cls.get_logger().info(
                "Resuming stale refund claim",
                extra={
                    "payment_id": str(payment.id),
                    "idempotency_key": claim.get("idempotency_key"),
                    "requested_at": claim.get("requested_at"),
                },
            )
            result = cls._call_and_complete(payment, claim)
            result.resumed = True
            return result

    # =========================================================================
    # Protocol Steps
    # =========================================================================

    @classmethod
    def _execute_refund_with_lock(
        cls,
        payment_id: uuid.UUID | str,
        amount_cents: int | None,
        reason: str | None,
    ) -> RefundExecutionResult:
        payment = cls._get_payment(payment_id)
        cls._check_refundable(payment)

        refund_amount = payment.amount_cents if amount_cents is None else amount_cents
        if refund_amount > payment.amount_cents:
            raise PaymentValidationError(
                f"Refund amount ({refund_amount}) exceeds payment amount "
                f"({payment.amount_cents})",
                error_code="AMOUNT_EXCEEDS_PAYMENT",
                details={
                    "payment_id": str(payment.id),
                    "amount_cents": refund_amount,
                    "payment_amount_cents": payment.amount_cents,
                },
            )

        claim = cls._claim(payment, refund_amount, reason or "")
        return cls._call_and_complete(payment, claim)

    @classmethod
    def _claim(cls, payment: Payment, amount_cents: int, reason: str) -> dict[str, Any]:
        """
        Phase 1: record the refund claim under a version check.

        A stale claim is taken over with its original key and amount.
        """
        with cls.atomic():
            locked = check_version(Payment, payment.pk, payment.version)
            cls._check_refundable(locked)

            existing = locked.pending_refund
            if existing:
                if not cls.claim_is_stale(existing):
                    raise RefundInProgressError(
                        "A refund for this payment is already in progress",
                        details={
                            "payment_id": str(locked.id),
                            "requested_at": existing.get("requested_at"),
                        },
                    )
                cls.get_logger().warning(
                    "Taking over stale refund claim",
                    extra={
                        "payment_id": str(locked.id),
                        "idempotency_key": existing.get("idempotency_key"),
                        "claimed_amount_cents": existing.get("amount_cents"),
                        "requested_amount_cents": amount_cents,
                    },
                )
                return existing

            claim = {
                "idempotency_key": IdempotencyKeyGenerator.generate(
                    operation="refund",
                    entity_id=locked.id,
                    attempt=locked.version,
                ),
                "amount_cents": amount_cents,
                "reason": reason,
                "requested_at": timezone.now().isoformat(),
            }
            locked.pending_refund = claim
            locked.save(update_fields=["pending_refund", "updated_at"])

        payment.version = locked.version
        cls.get_logger().info(
            "Refund claimed",
            extra={
                "payment_id": str(payment.id),
                "idempotency_key": claim["idempotency_key"],
                "amount_cents": amount_cents,
            },
        )
        return claim

    @classmethod
    def _call_and_complete(
        cls,
        payment: Payment,
        claim: dict[str, Any],
    ) -> RefundExecutionResult:
        """Phases 2 and 3."""
        try:
            stripe_result = cls._create_stripe_refund(payment, claim)
        except ExternalProcessorError as e:
            if e.is_retryable:
                cls.get_logger().warning(
                    "Stripe unavailable, refund claim left for reconciliation",
                    extra={
                        "payment_id": str(payment.id),
                        "idempotency_key": claim.get("idempotency_key"),
                        "error": str(e),
                    },
                )
            else:
                cls.get_logger().error(
                    "Stripe rejected refund",
                    extra={
                        "payment_id": str(payment.id),
                        "error": str(e),
                        "error_code": e.error_code,
                    },
                )
                cls._release_claim(payment.pk, claim)
            raise

        if stripe_result.status in FAILED_REFUND_STATUSES:
            cls._release_claim(payment.pk, claim)
            raise ExternalProcessorError(
                f"Stripe refund {stripe_result.id} {stripe_result.status}",
                error_code="REFUND_FAILED",
                details={
                    "payment_id": str(payment.id),
                    "stripe_refund_id": stripe_result.id,
                    "status": stripe_result.status,
                },
            )

        return cls._complete(payment.pk, claim, stripe_result)

    @classmethod
    def _create_stripe_refund(cls, payment: Payment, claim: dict[str, Any]) -> RefundResult:
        """
        Phase 2: call Stripe, retrying transient errors with the same key.

        Raises:
            ExternalProcessorError: Permanent error, or transient errors
                past STRIPE_MAX_RETRIES
        """
        adapter = cls.get_stripe_adapter()
        max_retries = getattr(settings, "STRIPE_MAX_RETRIES", 3)

        attempt = 0
        while True:
            try:
                return adapter.create_refund(
                    payment_intent_id=payment.stripe_payment_intent_id,
                    idempotency_key=claim["idempotency_key"],
                    amount_cents=claim["amount_cents"],
                    reason=claim.get("reason") or None,
                    metadata={"payment_id": str(payment.id)},
                )
            except ExternalProcessorError as e:
                if not e.is_retryable or attempt >= max_retries:
                    raise
                delay = backoff_delay(attempt, base=REFUND_RETRY_BASE_DELAY)
                cls.get_logger().warning(
                    f"Transient Stripe error, retrying refund: {type(e).__name__}",
                    extra={
                        "payment_id": str(payment.id),
                        "attempt": attempt + 1,
                        "delay_seconds": delay,
                    },
                )
                time.sleep(delay)
                attempt += 1

    @classmethod
    def _complete(
        cls,
        payment_id: uuid.UUID,
        claim: dict[str, Any],
        stripe_result: RefundResult,
    ) -> RefundExecutionResult:
        """
        Phase 3: compare-and-set SUCCEEDED -> REFUNDED.

        The write only happens if the Payment still carries our claim.
        """
        try:
            with cls.atomic():
                payment = lock_row(Payment, pk=payment_id)

                if (
                    payment is not None
                    and payment.status == PaymentStatus.REFUNDED
                    and payment.stripe_refund_id == stripe_result.id
                ):
                    # Completed by a concurrent resume
                    return RefundExecutionResult(
                        payment=payment,
                        stripe_refund_id=stripe_result.id,
                        amount_cents=payment.refund_amount_cents or stripe_result.amount_cents,
                    )

                current_key = (payment.pending_refund or {}).get("idempotency_key") if payment else None
                if (
                    payment is None
                    or payment.status != PaymentStatus.SUCCEEDED
                    or current_key != claim["idempotency_key"]
                ):
                    raise ConcurrencyConflictError(
                        "Payment changed while the refund was in flight",
                        details={
                            "payment_id": str(payment_id),
                            "status": payment.status if payment else None,
                        },
                    )

                payment.mark_refunded(
                    amount_cents=stripe_result.amount_cents,
                    reason=claim.get("reason", ""),
                    refund_id=stripe_result.id,
                )
                payment.save()
                ProjectSyncService.schedule(payment.id)

        except (ConcurrencyConflictError, DatabaseError) as e:
            cls.get_logger().error(
                "Failed to complete refund after Stripe success - reconciliation needed",
                extra={
                    "payment_id": str(payment_id),
                    "stripe_refund_id": stripe_result.id,
                    "idempotency_key": claim["idempotency_key"],
                    "error": str(e),
                },
                exc_info=True,
            )
            ReconciliationDiscrepancy.flag(
                discrepancy_type=DiscrepancyType.REFUND_COMPLETION_CONFLICT,
                entity_type="payment",
                entity_id=str(payment_id),
                stripe_id=stripe_result.id,
                stripe_state=stripe_result.status,
                details={
                    "idempotency_key": claim["idempotency_key"],
                    "amount_cents": stripe_result.amount_cents,
                },
                error_message=str(e),
            )
            if isinstance(e, ConcurrencyConflictError):
                raise
            raise ConcurrencyConflictError(
                "Refund issued but could not be recorded; reconciliation will complete it",
                details={"payment_id": str(payment_id), "stripe_refund_id": stripe_result.id},
            ) from e

        cls.get_logger().info(
            "Refund completed successfully",
            extra={
                "payment_id": str(payment.id),
                "stripe_refund_id": stripe_result.id,
                "amount_cents": stripe_result.amount_cents,
            },
        )
        return RefundExecutionResult(
            payment=payment,
            stripe_refund_id=stripe_result.id,
            amount_cents=stripe_result.amount_cents,
        )

    @classmethod
    def _release_claim(cls, payment_id: uuid.UUID, claim: dict[str, Any]) -> None:
        """Drop our claim after a permanent Stripe failure."""
        with cls.atomic():
            payment = lock_row(Payment, pk=payment_id)
            if payment is None:
                return
            if (payment.pending_refund or {}).get("idempotency_key") != claim["idempotency_key"]:
                return
            payment.pending_refund = None
            payment.save(update_fields=["pending_refund", "updated_at"])

    # =========================================================================
    # Helpers
    # =========================================================================

    @classmethod
    def _get_payment(cls, payment_id: uuid.UUID | str) -> Payment:
        payment = Payment.objects.filter(pk=payment_id).first()
        if payment is None:
            raise PaymentNotFoundError(
                f"Payment {payment_id} not found",
                details={"payment_id": str(payment_id)},
            )
        return payment

    @staticmethod
    def _check_refundable(payment: Payment) -> None:
        if payment.status == PaymentStatus.REFUNDED:
            raise AlreadyRefundedError(
                "Payment has already been refunded",
                details={
                    "payment_id": str(payment.id),
                    "stripe_refund_id": payment.stripe_refund_id,
                },
            )
        if payment.status != PaymentStatus.SUCCEEDED:
            raise InvalidStateError(
                f"Cannot refund a {payment.status} payment",
                details={
                    "payment_id": str(payment.id),
                    "current_state": payment.status,
                    "target_state": PaymentStatus.REFUNDED,
                },
            )

    @staticmethod
    def claim_is_stale(claim: dict[str, Any]) -> bool:
        """True if the claim is older than REFUND_CLAIM_STALE_SECONDS."""
        requested_at = parse_datetime(claim.get("requested_at") or "")
        if requested_at is None:
            return True
        max_age = timedelta(seconds=settings.REFUND_CLAIM_STALE_SECONDS)
        return timezone.now() - requested_at > max_age
