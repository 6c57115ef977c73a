"""
Stripe API adapter for payment operations.

This module provides the StripeAdapter class which encapsulates all
Stripe API interactions. All Stripe calls should go through this
adapter to ensure consistent error handling, timeouts, idempotency,
and observability.

Features:
- Configurable timeouts on all API calls
- Automatic error translation to domain exceptions
- Structured logging with timing metrics
- Idempotency support for safe retries

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: Max retry attempts for transient errors (default: 3)

Usage:
    from payments.adapters import StripeAdapter, CreatePaymentIntentParams

    result = StripeAdapter.create_payment_intent(
        CreatePaymentIntentParams(
            amount_cents=5000,
            currency="eur",
            customer_id="cus_xxx",
            metadata={"project_id": str(project.id)},
            idempotency_key=IdempotencyKeyGenerator.generate("create_intent", project.id),
        )
    )

    refund = StripeAdapter.create_refund(
        payment_intent_id="pi_xxx",
        amount_cents=2500,
        idempotency_key=claim["idempotency_key"],
    )
"""

from __future__ import annotations

import hashlib
import logging
import random
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

from payments.exceptions import (
    ExternalProcessorError,
    SignatureVerificationError,
    StripeAPIUnavailableError,
    StripeCardDeclinedError,
    StripeInsufficientFundsError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
    WebhookSecretMissingError,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

# Reasons Stripe accepts on a Refund; anything else only goes in metadata
STRIPE_REFUND_REASONS = frozenset({"duplicate", "fraudulent", "requested_by_customer"})


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreatePaymentIntentParams:
    """
    Parameters for creating a Stripe PaymentIntent.

    Attributes:
        amount_cents: Payment amount in smallest currency unit (e.g., cents)
        currency: ISO 4217 currency code, lowercase
        idempotency_key: Unique key for idempotent creation
        customer_id: Stripe Customer ID the intent is charged to
        description: Shown in the Stripe dashboard and on receipts
        metadata: Key-value pairs to attach to the PaymentIntent
    """

    amount_cents: int
    currency: str
    idempotency_key: str
    customer_id: str | None = None
    description: str = ""
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if not self.currency:
            raise ValueError("currency is required")


@dataclass
class PaymentIntentResult:
    """
    Result from Stripe PaymentIntent operations.

    Attributes:
        id: PaymentIntent ID (pi_xxx)
        status: Stripe status (requires_payment_method, succeeded, canceled, ...)
        amount_cents: Amount in cents
        currency: Currency code
        client_secret: Secret for client-side confirmation
        last_payment_error: Message of the last failed attempt, if any
        metadata: Attached metadata
        raw_response: Full Stripe response dict (for debugging)
    """

    id: str
    status: str
    amount_cents: int
    currency: str
    client_secret: str | None = None
    last_payment_error: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class RefundResult:
    """
    Result from Stripe Refund operations.

    Attributes:
        id: Refund ID (re_xxx)
        amount_cents: Refunded amount in cents
        currency: Currency code
        status: Refund status (succeeded, pending, failed)
        payment_intent_id: Original PaymentIntent ID
    """

    id: str
    amount_cents: int
    currency: str
    status: str
    payment_intent_id: str
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class CustomerResult:
    id: str
    email: str | None = None


@dataclass
class PaymentMethodResult:
    """A saved card. Only card payment methods are exposed."""

    id: str
    brand: str | None = None
    last4: str | None = None
    exp_month: int | None = None
    exp_year: int | None = None
    customer_id: str | None = None


@dataclass
class SetupIntentResult:
    id: str
    client_secret: str | None
    status: str


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    Keys are deterministic: the same operation on the same entity and
    attempt always produces the same key, so a retried call is collapsed
    by Stripe into the original one.

    Example:
        key = IdempotencyKeyGenerator.generate(
            operation="refund",
            entity_id=payment.id,
            attempt=payment.version,
        )
        # "refund:550e8400-e29b-41d4-a716-446655440000:3:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"

    @staticmethod
    def fingerprint(*parts: Any) -> str:
        """
        Short digest of request parameters.

        Folded into entity_id so a key is never reused with a different
        request body, which Stripe rejects with an IdempotencyError.
        """
        payload = "|".join(
            repr(sorted(part.items())) if isinstance(part, dict) else str(part)
            for part in parts
        )
        return hashlib.sha256(payload.encode()).hexdigest()[:12]


# =============================================================================
# Retry Logic Helpers
# =============================================================================


def is_retryable_stripe_error(error: Exception) -> bool:
    """
    Check if an error is a transient Stripe failure.

    Transient failures (rate limits, connection errors, timeouts, Stripe 5xx)
    are safe to retry with the same idempotency key.
    """
    if isinstance(error, ExternalProcessorError):
        return error.is_retryable
    return False


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)

    Returns:
        Delay in seconds with jitter (0-25% of calculated delay)

    Example:
        # Attempt 0: 1.0 - 1.25 seconds
        # Attempt 2: 4.0 - 5.0 seconds
        delay = backoff_delay(attempt=2)
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations.

    All methods are classmethods - no instance state is maintained.
    Thread-safe for use from Celery workers.

    Every operation logs "Starting Stripe operation" and
    "Stripe operation completed" with duration_ms, and translates Stripe
    SDK errors to ExternalProcessorError subclasses.
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _configure_stripe() -> None:
        """Configure Stripe client with API key and timeout."""
        stripe.api_key = settings.STRIPE_SECRET_KEY
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def _operation(
        cls,
        log_context: dict[str, Any],
        level: int = logging.INFO,
    ) -> Iterator[dict[str, Any]]:
        """
        Wrap one Stripe call: configure, log start, translate errors.

        The body adds result fields to the yielded dict; they are logged
        with the completion message.
        """
        cls._configure_stripe()
        logger = cls.get_logger()
        result_context: dict[str, Any] = {}

        start_time = time.monotonic()
        logger.log(level, "Starting Stripe operation", extra=log_context)
        try:
            yield result_context
        except Exception as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.monotonic() - start_time) * 1000
        logger.log(
            level,
            "Stripe operation completed",
            extra={**log_context, **result_context, "duration_ms": duration_ms},
        )

    @staticmethod
    def _intent_result(intent: Any) -> PaymentIntentResult:
        last_error = getattr(intent, "last_payment_error", None)
        return PaymentIntentResult(
            id=intent.id,
            status=intent.status,
            amount_cents=intent.amount,
            currency=intent.currency,
            client_secret=intent.client_secret,
            last_payment_error=getattr(last_error, "message", None) if last_error else None,
            metadata=dict(intent.metadata or {}),
            raw_response=intent.to_dict(),
        )

    @staticmethod
    def _payment_method_result(method: Any) -> PaymentMethodResult:
        card = getattr(method, "card", None)
        return PaymentMethodResult(
            id=method.id,
            brand=getattr(card, "brand", None) if card else None,
            last4=getattr(card, "last4", None) if card else None,
            exp_month=getattr(card, "exp_month", None) if card else None,
            exp_year=getattr(card, "exp_year", None) if card else None,
            customer_id=getattr(method, "customer", None),
        )

    # =========================================================================
    # Customers
    # =========================================================================

    @classmethod
    def create_customer(
        cls,
        email: str,
        name: str | None = None,
        metadata: dict[str, str] | None = None,
        idempotency_key: str | None = None,
    ) -> CustomerResult:
        """
        Create a Stripe Customer.

        Raises:
            ExternalProcessorError: Any Stripe failure
        """
        log_context = {
            "operation": "create_customer",
            "idempotency_key": idempotency_key,
        }
        with cls._operation(log_context) as result_context:
            params: dict[str, Any] = {"email": email, "metadata": metadata or {}}
            if name:
                params["name"] = name
            if idempotency_key:
                params["idempotency_key"] = idempotency_key
            customer = stripe.Customer.create(**params)
            result_context["customer_id"] = customer.id

        return CustomerResult(id=customer.id, email=getattr(customer, "email", email))

    # =========================================================================
    # Payment Intents
    # =========================================================================

    @classmethod
    def create_payment_intent(cls, params: CreatePaymentIntentParams) -> PaymentIntentResult:
        """
        Create a Stripe PaymentIntent.

        Returns:
            PaymentIntentResult including client_secret

        Raises:
            StripeCardDeclinedError: Card was declined
            StripeInvalidRequestError: Invalid parameters
            StripeAPIUnavailableError: Stripe service unavailable
            StripeTimeoutError: Request timed out
        """
        log_context = {
            "operation": "create_payment_intent",
            "amount_cents": params.amount_cents,
            "currency": params.currency,
            "idempotency_key": params.idempotency_key,
        }
        with cls._operation(log_context) as result_context:
            intent = stripe.PaymentIntent.create(
                amount=params.amount_cents,
                currency=params.currency,
                customer=params.customer_id,
                description=params.description or None,
                metadata=params.metadata,
                idempotency_key=params.idempotency_key,
            )
            result_context.update(payment_intent_id=intent.id, status=intent.status)

        return cls._intent_result(intent)

    @classmethod
    def confirm_payment_intent(cls, payment_intent_id: str) -> PaymentIntentResult:
        """
        Confirm a PaymentIntent on Stripe.

        The resulting status is reported back to the ledger by webhook only.
        """
        log_context = {
            "operation": "confirm_payment_intent",
            "payment_intent_id": payment_intent_id,
        }
        with cls._operation(log_context) as result_context:
            intent = stripe.PaymentIntent.confirm(payment_intent_id)
            result_context["status"] = intent.status

        return cls._intent_result(intent)

    @classmethod
    def retrieve_payment_intent(cls, payment_intent_id: str) -> PaymentIntentResult:
        """
        Retrieve a PaymentIntent by ID.

        Raises:
            StripeInvalidRequestError: PaymentIntent not found
        """
        log_context = {
            "operation": "retrieve_payment_intent",
            "payment_intent_id": payment_intent_id,
        }
        with cls._operation(log_context, level=logging.DEBUG) as result_context:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id)
            result_context["status"] = intent.status

        return cls._intent_result(intent)

    # =========================================================================
    # Refunds
    # =========================================================================

    @classmethod
    def create_refund(
        cls,
        payment_intent_id: str,
        idempotency_key: str,
        amount_cents: int | None = None,
        reason: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        """
        Create a refund for a PaymentIntent.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx)
            idempotency_key: Key from the refund claim; retries must reuse it
            amount_cents: Amount to refund (None for full refund)
            reason: Free text; sent as Stripe's reason only when it is one of
                the values Stripe accepts, always kept in metadata
            metadata: Optional metadata dict

        Raises:
            StripeInvalidRequestError: Refund not possible
        """
        log_context = {
            "operation": "create_refund",
            "payment_intent_id": payment_intent_id,
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
        }
        with cls._operation(log_context) as result_context:
            refund_metadata = dict(metadata or {})
            refund_params: dict[str, Any] = {"payment_intent": payment_intent_id}
            if amount_cents is not None:
                refund_params["amount"] = amount_cents
            if reason:
                refund_metadata["reason"] = reason[:500]
                if reason in STRIPE_REFUND_REASONS:
                    refund_params["reason"] = reason

            refund = stripe.Refund.create(
                idempotency_key=idempotency_key,
                metadata=refund_metadata,
                **refund_params,
            )
            result_context.update(refund_id=refund.id, status=refund.status)

        return RefundResult(
            id=refund.id,
            amount_cents=refund.amount,
            currency=refund.currency,
            status=refund.status,
            payment_intent_id=refund.payment_intent,
            metadata=dict(refund.metadata or {}),
            raw_response=refund.to_dict(),
        )

    # =========================================================================
    # Payment Methods
    # =========================================================================

    @classmethod
    def list_payment_methods(cls, customer_id: str) -> list[PaymentMethodResult]:
        log_context = {"operation": "list_payment_methods", "customer_id": customer_id}
        with cls._operation(log_context, level=logging.DEBUG) as result_context:
            methods = stripe.PaymentMethod.list(customer=customer_id, type="card")
            result_context["count"] = len(methods.data)

        return [cls._payment_method_result(method) for method in methods.data]

    @classmethod
    def attach_payment_method(
        cls,
        payment_method_id: str,
        customer_id: str,
    ) -> PaymentMethodResult:
        log_context = {
            "operation": "attach_payment_method",
            "payment_method_id": payment_method_id,
            "customer_id": customer_id,
        }
        with cls._operation(log_context):
            method = stripe.PaymentMethod.attach(payment_method_id, customer=customer_id)

        return cls._payment_method_result(method)

    @classmethod
    def detach_payment_method(cls, payment_method_id: str) -> PaymentMethodResult:
        log_context = {
            "operation": "detach_payment_method",
            "payment_method_id": payment_method_id,
        }
        with cls._operation(log_context):
            method = stripe.PaymentMethod.detach(payment_method_id)

        return cls._payment_method_result(method)

    @classmethod
    def create_setup_intent(cls, customer_id: str) -> SetupIntentResult:
        """Create a SetupIntent for saving a card for later off-session use."""
        log_context = {"operation": "create_setup_intent", "customer_id": customer_id}
        with cls._operation(log_context) as result_context:
            setup_intent = stripe.SetupIntent.create(
                customer=customer_id,
                usage="off_session",
            )
            result_context["setup_intent_id"] = setup_intent.id

        return SetupIntentResult(
            id=setup_intent.id,
            client_secret=setup_intent.client_secret,
            status=setup_intent.status,
        )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    @classmethod
    def verify_webhook_signature(
        cls,
        payload: bytes,
        signature: str,
    ) -> dict[str, Any]:
        """
        Verify and parse a Stripe webhook event.

        Args:
            payload: Raw webhook payload bytes
            signature: Stripe-Signature header value

        Returns:
            Parsed event data dict

        Raises:
            WebhookSecretMissingError: STRIPE_WEBHOOK_SECRET is not configured
            SignatureVerificationError: Missing or invalid signature, or a
                payload that is not a valid event
        """
        secret = getattr(settings, "STRIPE_WEBHOOK_SECRET", "")
        if not secret:
            cls.get_logger().error("Stripe webhook secret is not configured")
            raise WebhookSecretMissingError("Webhook secret not configured")
        if not signature:
            raise SignatureVerificationError("Missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as e:
            raise SignatureVerificationError(
                "Invalid webhook signature",
                details={"error": str(e)},
            ) from e
        except ValueError as e:
            raise SignatureVerificationError(
                "Invalid webhook payload",
                details={"error": str(e)},
            ) from e

        return event.to_dict()

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to domain exceptions.

        Raises:
            StripeCardDeclinedError: Card was declined
            StripeInsufficientFundsError: Insufficient funds
            StripeInvalidRequestError: Invalid request, bad idempotency reuse,
                or authentication failure
            StripeRateLimitError: Rate limited
            StripeTimeoutError: Request timed out
            StripeAPIUnavailableError: Connection failure or Stripe 5xx
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, ExternalProcessorError):
            raise error

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )

            if decline_code == "insufficient_funds":
                raise StripeInsufficientFundsError(
                    str(error.user_message or error),
                    stripe_code=error.code,
                    decline_code=decline_code,
                ) from error

            raise StripeCardDeclinedError(
                str(error.user_message or error),
                stripe_code=error.code,
                decline_code=decline_code,
            ) from error

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            raise StripeInvalidRequestError(
                str(error.user_message or error),
                stripe_code=error.code,
            ) from error

        if isinstance(error, stripe.IdempotencyError):
            logger.error(
                "Idempotency key reused with different parameters",
                extra=log_context,
            )
            raise StripeInvalidRequestError(
                "Idempotency key reused with different parameters",
                stripe_code="idempotency_error",
            ) from error

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise StripeRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            ) from error

        if isinstance(error, stripe.APIConnectionError):
            if "timed out" in str(error).lower() or "timeout" in str(error).lower():
                logger.error("Stripe request timed out", extra=log_context)
                raise StripeTimeoutError(
                    "Stripe request timed out. Please retry.",
                    stripe_code="timeout",
                ) from error

            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            raise StripeAPIUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            ) from error

        if isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise StripeInvalidRequestError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            ) from error

        if isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise StripeAPIUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            ) from error

        if isinstance(error, stripe.StripeError):
            logger.error(
                f"Unexpected Stripe error: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                f"Unexpected Stripe error: {error}",
                stripe_code="unknown_error",
            ) from error

        # Not a Stripe error (programming error, etc.): let it propagate unchanged
        logger.error(
            f"Unexpected error during Stripe operation: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
