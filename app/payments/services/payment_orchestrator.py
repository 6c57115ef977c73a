"""
Payment orchestrator service for coordinating payment operations.

This module provides the PaymentOrchestrator class which serves as the
entry point for creating payments and reading a user's payment history.

The orchestrator:
- Validates amount and currency
- Resolves the client's Stripe customer
- Captures the platform fee split at creation time
- Creates the Stripe PaymentIntent, then the Payment row
- Leaves all settlement to the webhook pipeline

Usage:
    from payments.services import PaymentOrchestrator

    creation = PaymentOrchestrator.create_payment_intent(
        project_id=project.id,
        client_id=user.id,
        amount_cents=5000,
        currency="eur",
    )
    return {
        "client_secret": creation.client_secret,
        "payment_intent_id": creation.payment_intent_id,
    }
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import IntegrityError
from django.db.models import Count, Q, Sum
from django.db.models.functions import Coalesce

from authentication.services import UserService
from core.exceptions import PermissionDeniedError
from core.helpers import calculate_pagination, page_bounds
from core.services import BaseService
from payments.adapters import (
    CreatePaymentIntentParams,
    IdempotencyKeyGenerator,
    PaymentIntentResult,
    StripeAdapter,
)
from payments.exceptions import (
    InvalidStateError,
    PaymentNotFoundError,
    PaymentValidationError,
)
from payments.fees import current_fee_rate, split
from payments.models import Payment
from payments.services.customer_service import CustomerService
from payments.state_machines import PaymentStatus
from projects.services import ProjectService

if TYPE_CHECKING:
    import uuid


ROLE_CLIENT = "client"
ROLE_EXPERT = "expert"
HISTORY_MAX_LIMIT = 100


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class IntentCreation:
    """
    Result of create_payment_intent.

    Attributes:
        client_secret: Token the frontend uses to confirm the intent
        payment_intent_id: Stripe PaymentIntent ID
        payment: The pending Payment row
    """

    client_secret: str | None
    payment_intent_id: str
    payment: Payment


@dataclass
class PaymentStats:
    total_amount_cents: int = 0
    total_payments: int = 0
    successful_payments: int = 0
    pending_payments: int = 0
    failed_payments: int = 0
    refunded_payments: int = 0
    total_refunded_cents: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class PaymentHistory:
    payments: list[Payment]
    pagination: dict[str, Any]


# =============================================================================
# Orchestrator
# =============================================================================


class PaymentOrchestrator(BaseService):
    """
    Central coordinator for payment creation and payment reads.

    All methods are class methods - no instance state is maintained.

    The ledger is only ever written here on creation. Confirmation is
    advisory: the status change arrives by webhook.
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
    # Validation
    # =========================================================================

    @classmethod
    def validate_amount(cls, amount_cents: Any) -> int:
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
            raise PaymentValidationError(
                "Amount must be an integer number of minor units",
                error_code="INVALID_AMOUNT",
                details={"amount_cents": repr(amount_cents)},
            )
        minimum = settings.PAYMENT_MIN_AMOUNT_CENTS
        if amount_cents < minimum:
            raise PaymentValidationError(
                f"Amount must be at least {minimum} minor units",
                error_code="AMOUNT_TOO_SMALL",
                details={"amount_cents": amount_cents, "minimum": minimum},
            )
        return amount_cents

    @classmethod
    def validate_currency(cls, currency: str | None) -> str:
        normalized = (currency or settings.PAYMENT_DEFAULT_CURRENCY).strip().lower()
        supported = [c.lower() for c in settings.PAYMENT_SUPPORTED_CURRENCIES]
        if normalized not in supported:
            raise PaymentValidationError(
                f"Currency '{normalized}' is not supported",
                error_code="UNSUPPORTED_CURRENCY",
                details={"currency": normalized, "supported": supported},
            )
        return normalized

    # =========================================================================
    # Intent Creation
    # =========================================================================

    @classmethod
    def create_payment_intent(
        cls,
        project_id: uuid.UUID | str,
        client_id: Any,
        amount_cents: int,
        currency: str | None = None,
    ) -> IntentCreation:
        """
        Create a Stripe PaymentIntent and its pending Payment row.

        Args:
            project_id: Project being paid for
            client_id: Paying user; must be the project's client
            amount_cents: Gross amount in minor units
            currency: ISO code, defaults to PAYMENT_DEFAULT_CURRENCY

        Returns:
            IntentCreation with the client secret and the Payment

        Raises:
            PaymentValidationError: Bad amount or currency, or the project
                has no expert assigned
            NotFoundError: Project or client does not exist
            PermissionDeniedError: The client is not the project's client
            InvalidStateError: The project already has a succeeded payment
            ExternalProcessorError: Stripe call failed; nothing was written
        """
        amount_cents = cls.validate_amount(amount_cents)
        currency = cls.validate_currency(currency)

        project = ProjectService.get_project(project_id)
        client = UserService.get_user(client_id)

        if project.client_id != client.pk:
            raise PermissionDeniedError(
                "Only the project's client can pay for it",
                error_code="NOT_PROJECT_CLIENT",
                details={"project_id": str(project.id)},
            )
        if project.expert_id is None:
            raise PaymentValidationError(
                "Project has no expert assigned",
                error_code="PROJECT_HAS_NO_EXPERT",
                details={"project_id": str(project.id)},
            )
        paid = Payment.objects.filter(
            project=project, status=PaymentStatus.SUCCEEDED
        ).first()
        if paid is not None:
            raise InvalidStateError(
                "Project has already been paid",
                error_code="PROJECT_ALREADY_PAID",
                details={"project_id": str(project.id), "payment_id": str(paid.id)},
            )

        log_context = {
            "project_id": str(project.id),
            "client_id": str(client.pk),
            "amount_cents": amount_cents,
            "currency": currency,
        }
        cls.get_logger().info("Creating payment intent", extra=log_context)

        # Captured once; refunds and reconciliation read the stored split
        fee_rate = current_fee_rate()
        fee_split = split(amount_cents, fee_rate)

        customer_id = CustomerService.ensure_customer(client)

        description = f"Payment for project: {project.title}"
        metadata = {
            "project_id": str(project.id),
            "client_id": str(client.pk),
            "expert_id": str(project.expert_id),
        }
        # A new attempt number after every closed intent for this project
        attempt = (
            Payment.objects.filter(
                project=project,
                status__in=[
                    PaymentStatus.FAILED,
                    PaymentStatus.CANCELED,
                    PaymentStatus.REFUNDED,
                ],
            ).count()
            + 1
        )
        fingerprint = IdempotencyKeyGenerator.fingerprint(customer_id, description, metadata)
        intent = cls.get_stripe_adapter().create_payment_intent(
            CreatePaymentIntentParams(
                amount_cents=amount_cents,
                currency=currency,
                customer_id=customer_id,
                description=description,
                metadata=metadata,
                idempotency_key=IdempotencyKeyGenerator.generate(
                    operation="create_intent",
                    entity_id=f"{project.id}:{client.pk}:{amount_cents}:{currency}:{fingerprint}",
                    attempt=attempt,
                ),
            )
        )

        payment = cls._record_intent(
            intent=intent,
            project=project,
            client=client,
            customer_id=customer_id,
            amount_cents=amount_cents,
            currency=currency,
            fee_rate=fee_rate,
            fee_split=fee_split,
            description=description,
        )

        cls.get_logger().info(
            "Payment intent created",
            extra={
                **log_context,
                "payment_id": str(payment.id),
                "payment_intent_id": intent.id,
                "platform_fee_cents": payment.platform_fee_cents,
                "expert_payout_cents": payment.expert_payout_cents,
            },
        )
        return IntentCreation(
            client_secret=intent.client_secret,
            payment_intent_id=intent.id,
            payment=payment,
        )

    @classmethod
    def _record_intent(
        cls,
        intent: PaymentIntentResult,
        project,
        client,
        customer_id: str,
        amount_cents: int,
        currency: str,
        fee_rate,
        fee_split,
        description: str,
    ) -> Payment:
        """
        Write the Payment row for a created intent, exactly once.

        A replayed idempotency key returns an intent we may already have
        recorded; in that case the existing row is returned.
        """
        existing = Payment.objects.filter(stripe_payment_intent_id=intent.id).first()
        if existing is not None:
            cls.get_logger().info(
                "Payment intent already recorded",
                extra={"payment_id": str(existing.id), "payment_intent_id": intent.id},
            )
            return existing

        try:
            with cls.atomic():
                return Payment.objects.create(
                    stripe_payment_intent_id=intent.id,
                    stripe_customer_id=customer_id,
                    project=project,
                    client=client,
                    expert_id=project.expert_id,
                    amount_cents=amount_cents,
                    currency=currency,
                    fee_rate=fee_rate,
                    platform_fee_cents=fee_split.platform_fee_cents,
                    expert_payout_cents=fee_split.payout_cents,
                    description=description,
                )
        except IntegrityError:
            existing = Payment.objects.filter(stripe_payment_intent_id=intent.id).first()
            if existing is None:
                raise
            return existing

    @classmethod
    def confirm_payment_intent(cls, payment_intent_id: str) -> PaymentIntentResult:
        """
        Ask Stripe to confirm an intent.

        Does not touch the ledger; the result reaches the Payment through
        the payment_intent.* webhooks.
        """
        cls.get_logger().info(
            "Confirming payment intent",
            extra={"payment_intent_id": payment_intent_id},
        )
        return cls.get_stripe_adapter().confirm_payment_intent(payment_intent_id)

    # =========================================================================
    # Lookups
    # =========================================================================

    @classmethod
    def get_payment(cls, payment_id: uuid.UUID | str) -> Payment:
        """
        Raises:
            PaymentNotFoundError: No such payment
        """
        payment = (
            Payment.objects.select_related("project", "client", "expert")
            .filter(pk=payment_id)
            .first()
        )
        if payment is None:
            raise PaymentNotFoundError(
                f"Payment {payment_id} not found",
                details={"payment_id": str(payment_id)},
            )
        return payment

    @classmethod
    def get_payment_by_intent(cls, payment_intent_id: str) -> Payment | None:
        return Payment.objects.filter(stripe_payment_intent_id=payment_intent_id).first()

    @staticmethod
    def _role_filter(user_id: Any, role: str) -> Q:
        if role == ROLE_CLIENT:
            return Q(client_id=user_id)
        if role == ROLE_EXPERT:
            return Q(expert_id=user_id)
        raise PaymentValidationError(
            f"Unknown role '{role}'",
            error_code="INVALID_ROLE",
            details={"role": role},
        )

    @classmethod
    def get_payment_stats(cls, user_id: Any, role: str) -> PaymentStats:
        """
        Aggregate a user's payments as client or as expert.

        Returns zeros when the user has no payments.
        """
        totals = Payment.objects.filter(cls._role_filter(user_id, role)).aggregate(
            total_amount_cents=Coalesce(Sum("amount_cents"), 0),
            total_payments=Count("id"),
            successful_payments=Count("id", filter=Q(status=PaymentStatus.SUCCEEDED)),
            pending_payments=Count("id", filter=Q(status=PaymentStatus.PENDING)),
            failed_payments=Count("id", filter=Q(status=PaymentStatus.FAILED)),
            refunded_payments=Count("id", filter=Q(status=PaymentStatus.REFUNDED)),
            total_refunded_cents=Coalesce(Sum("refund_amount_cents"), 0),
        )
        return PaymentStats(**totals)

    @classmethod
    def get_payment_history(
        cls,
        user_id: Any,
        role: str,
        page: int = 1,
        limit: int = 10,
    ) -> PaymentHistory:
        """
        A user's payments, newest first, one page at a time.

        Raises:
            PaymentValidationError: page < 1 or limit outside [1, 100]
        """
        if page < 1:
            raise PaymentValidationError(
                "page must be at least 1",
                error_code="INVALID_PAGE",
                details={"page": page},
            )
        if not 1 <= limit <= HISTORY_MAX_LIMIT:
            raise PaymentValidationError(
                f"limit must be between 1 and {HISTORY_MAX_LIMIT}",
                error_code="INVALID_LIMIT",
                details={"limit": limit},
            )

        queryset = (
            Payment.objects.filter(cls._role_filter(user_id, role))
            .select_related("project", "client", "expert")
            .order_by("-created_at")
        )
        total = queryset.count()
        start, end = page_bounds(page, limit)

        return PaymentHistory(
            payments=list(queryset[start:end]),
            pagination=calculate_pagination(total=total, page=page, limit=limit),
        )
