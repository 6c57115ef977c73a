"""
Payment ledger record.

One row per Stripe PaymentIntent. The row is the system of record for the
payment: webhooks, refunds and the reconciliation sweep all converge on it,
and the linked Project is only a projection of its state.

Usage:
    from payments.models import Payment
    from payments.state_machines import PaymentStatus

    payment = Payment.objects.create(
        stripe_payment_intent_id="pi_123",
        project=project,
        client=client,
        expert=expert,
        amount_cents=10000,
        currency="eur",
        fee_rate=Decimal("0.10"),
        platform_fee_cents=1000,
        expert_payout_cents=9000,
    )

    # State transitions using django-fsm
    payment.mark_succeeded()
    payment.record_event("evt_123")
    payment.save()  # version 1 -> 2
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone
from django_fsm import FSMField, transition

from core.models import BaseModel, UUIDPrimaryKeyMixin, VersionedModel
from payments.exceptions import InvalidStateError
from payments.state_machines import PaymentStatus, PayoutStatus


class Payment(UUIDPrimaryKeyMixin, VersionedModel, BaseModel):
    """
    Ledger entry for a single payment intent.

    State Flow:
        PENDING -> SUCCEEDED -> REFUNDED
        PENDING -> FAILED
        PENDING -> CANCELED

    Fields:
        stripe_payment_intent_id: Stripe PaymentIntent ID, unique
        project/client/expert: Parties, never deleted while a payment exists
        amount_cents/currency: Gross amount in minor units
        fee_rate: Platform fee rate captured at creation
        platform_fee_cents/expert_payout_cents: Split computed once at creation
        pending_refund: Refund claim written before calling Stripe
        applied_event_ids: Stripe event ids already applied to this row
        version: Optimistic locking version (VersionedModel)

    Note:
        Once REFUNDED the row is frozen except for payout fields. Rows are
        never deleted.
    """

    # Fields that may still change after a refund
    POST_REFUND_MUTABLE_FIELDS = frozenset(
        {"payout_status", "payout_date", "updated_at", "version"}
    )

    # ==========================================================================
    # Stripe Integration
    # ==========================================================================

    stripe_payment_intent_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe PaymentIntent ID (pi_xxx)",
    )

    stripe_customer_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Customer ID (cus_xxx) the intent was created for",
    )

    # ==========================================================================
    # Relationships
    # ==========================================================================

    project = models.ForeignKey(
        "projects.Project",
        on_delete=models.PROTECT,
        related_name="payments",
        help_text="Project this payment settles",
    )

    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="client_payments",
        help_text="User paying",
    )

    expert = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="expert_payments",
        help_text="User receiving the payout",
    )

    # ==========================================================================
    # Amount & Fees
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Gross amount in smallest currency unit (e.g., cents)",
    )

    currency = models.CharField(
        max_length=3,
        default="eur",
        help_text="ISO 4217 currency code (lowercase)",
    )

    fee_rate = models.DecimalField(
        max_digits=5,
        decimal_places=4,
        help_text="Platform fee rate in effect when the intent was created",
    )

    platform_fee_cents = models.PositiveBigIntegerField(
        help_text="Platform share of the amount",
    )

    expert_payout_cents = models.PositiveBigIntegerField(
        help_text="Expert share of the amount",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=PaymentStatus.PENDING,
        choices=PaymentStatus.choices,
        db_index=True,
        protected=True,  # Prevent direct assignment outside transitions
        help_text="Current payment status (managed by FSM)",
    )

    applied_event_ids = models.JSONField(
        default=list,
        blank=True,
        help_text="Stripe event ids already applied to this payment",
    )

    # ==========================================================================
    # Refund
    # ==========================================================================

    refund_amount_cents = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Refunded amount in smallest currency unit",
    )

    refund_reason = models.CharField(
        max_length=500,
        blank=True,
        default="",
        help_text="Reason given for the refund",
    )

    stripe_refund_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Refund ID (re_xxx)",
    )

    pending_refund = models.JSONField(
        null=True,
        blank=True,
        help_text=(
            "Refund claim held while the Stripe refund call is in flight: "
            "idempotency_key, amount_cents, reason, requested_at"
        ),
    )

    # ==========================================================================
    # Payout
    # ==========================================================================

    payout_status = models.CharField(
        max_length=20,
        choices=PayoutStatus.choices,
        default=PayoutStatus.PENDING,
        db_index=True,
        help_text="Whether the expert payout has been made",
    )

    payout_date = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the expert payout was made",
    )

    # ==========================================================================
    # State Timestamps
    # ==========================================================================

    succeeded_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When Stripe reported the payment succeeded",
    )

    failed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When Stripe reported the payment failed",
    )

    canceled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the intent was canceled",
    )

    refunded_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the refund completed",
    )

    # ==========================================================================
    # Metadata & Error Info
    # ==========================================================================

    description = models.CharField(
        max_length=500,
        blank=True,
        default="",
        help_text="Description sent to Stripe with the intent",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata for extensibility",
    )

    failure_reason = models.TextField(
        blank=True,
        default="",
        help_text="Stripe's failure message if the payment failed",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        indexes = [
            models.Index(fields=["client", "-created_at"], name="payment_client_created_idx"),
            models.Index(fields=["expert", "-created_at"], name="payment_expert_created_idx"),
            models.Index(fields=["status", "updated_at"], name="payment_status_updated_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount_cents__gt=0),
                name="payment_amount_positive",
            ),
            models.CheckConstraint(
                condition=Q(platform_fee_cents__gte=0)
                & Q(expert_payout_cents__gte=0)
                & Q(amount_cents=F("platform_fee_cents") + F("expert_payout_cents")),
                name="payment_fee_split_sums_to_amount",
            ),
            models.CheckConstraint(
                condition=Q(refund_amount_cents__isnull=True)
                | Q(refund_amount_cents__lte=F("amount_cents")),
                name="payment_refund_within_amount",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount_cents / 100:.2f} {self.currency.upper()}"
        return f"Payment({self.id}, {self.status}, {amount_display})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_status = instance.__dict__.get("status")
        return instance

    def save(self, *args, **kwargs):
        """
        Save with the refunded-record freeze enforced.

        A row that was loaded as REFUNDED may only be saved with
        ``update_fields`` restricted to the payout fields.
        """
        if getattr(self, "_loaded_status", None) == PaymentStatus.REFUNDED:
            update_fields = kwargs.get("update_fields")
            if update_fields is None or not set(update_fields) <= self.POST_REFUND_MUTABLE_FIELDS:
                raise InvalidStateError(
                    "Refunded payments can only change payout fields",
                    details={
                        "payment_id": str(self.pk),
                        "update_fields": sorted(update_fields or []),
                    },
                )
        super().save(*args, **kwargs)
        self._loaded_status = self.status

    # ==========================================================================
    # Event Ledger
    # ==========================================================================

    def has_applied_event(self, event_id: str) -> bool:
        return event_id in (self.applied_event_ids or [])

    def record_event(self, event_id: str) -> None:
        """Append an event id; saved together with the transition it caused."""
        if not self.has_applied_event(event_id):
            self.applied_event_ids = [*(self.applied_event_ids or []), event_id]

    # ==========================================================================
    # Status Helpers
    # ==========================================================================

    @property
    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING

    @property
    def is_succeeded(self) -> bool:
        return self.status == PaymentStatus.SUCCEEDED

    @property
    def is_refunded(self) -> bool:
        return self.status == PaymentStatus.REFUNDED

    @property
    def has_refund_claim(self) -> bool:
        return bool(self.pending_refund)

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.SUCCEEDED,
    )
    def mark_succeeded(self):
        """
        Transition: PENDING -> SUCCEEDED

        Called when Stripe reports payment_intent.succeeded.
        """
        self.succeeded_at = timezone.now()

    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.FAILED,
    )
    def mark_failed(self, reason: str | None = None):
        """
        Transition: PENDING -> FAILED

        Args:
            reason: Stripe's last_payment_error message, if any
        """
        self.failed_at = timezone.now()
        if reason:
            self.failure_reason = reason

    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.CANCELED,
    )
    def mark_canceled(self):
        """Transition: PENDING -> CANCELED"""
        self.canceled_at = timezone.now()

    @transition(
        field=status,
        source=PaymentStatus.SUCCEEDED,
        target=PaymentStatus.REFUNDED,
    )
    def mark_refunded(self, amount_cents: int, reason: str = "", refund_id: str = ""):
        """
        Transition: SUCCEEDED -> REFUNDED

        Records the refund and clears the refund claim. Only one refund is
        recorded per payment.

        Args:
            amount_cents: Amount Stripe refunded
            reason: Free-text reason from the requester
            refund_id: Stripe Refund ID
        """
        self.refund_amount_cents = amount_cents
        self.refund_reason = reason or ""
        self.stripe_refund_id = refund_id or ""
        self.refunded_at = timezone.now()
        self.pending_refund = None
