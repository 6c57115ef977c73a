"""
Serializers for the payments API.

Serializers:
    CreatePaymentIntentSerializer: Input for intent creation
    PaymentIntentCreatedSerializer: Response for intent creation
    PaymentIntentSerializer: Stripe intent state after confirmation
    RefundRequestSerializer: Input for refunds
    RefundResponseSerializer: Response for refunds
    PaymentSerializer: Read-only ledger row
    PaymentStatsSerializer: Aggregates for the stats endpoint
    PaymentHistorySerializer: Page of payments plus pagination metadata
    PaymentMethodSerializer / AttachPaymentMethodSerializer: Saved cards
    SetupIntentSerializer: Setup intent for saving cards
    StripeConfigSerializer: Publishable key

Usage:
    from payments.serializers import PaymentSerializer

    serializer = PaymentSerializer(payment)
    data = serializer.data
"""

from __future__ import annotations

from rest_framework import serializers

from payments.models import Payment


class CreatePaymentIntentSerializer(serializers.Serializer):
    """
    Input for POST create-payment-intent/.

    Amount and currency rules are enforced by PaymentOrchestrator so that
    every caller gets the same error codes.
    """

    project_id = serializers.UUIDField()
    amount_cents = serializers.IntegerField()
    currency = serializers.CharField(max_length=3, required=False, allow_blank=True)


class PaymentIntentCreatedSerializer(serializers.Serializer):
    client_secret = serializers.CharField(allow_null=True)
    payment_intent_id = serializers.CharField()
    payment_id = serializers.UUIDField(source="payment.id")
    platform_fee_cents = serializers.IntegerField(source="payment.platform_fee_cents")
    expert_payout_cents = serializers.IntegerField(source="payment.expert_payout_cents")


class PaymentIntentSerializer(serializers.Serializer):
    id = serializers.CharField()
    status = serializers.CharField()
    amount_cents = serializers.IntegerField()
    currency = serializers.CharField()
    client_secret = serializers.CharField(allow_null=True)
    last_payment_error = serializers.CharField(allow_null=True)


class RefundRequestSerializer(serializers.Serializer):
    """
    Input for POST refund/<payment_id>/.

    Fields:
        amount_cents: Partial amount; defaults to the full payment
        reason: Free text, stored on the payment
    """

    amount_cents = serializers.IntegerField(required=False, allow_null=True)
    reason = serializers.CharField(
        max_length=500, required=False, allow_blank=True, default=""
    )


class RefundResponseSerializer(serializers.Serializer):
    payment_id = serializers.UUIDField(source="payment.id")
    status = serializers.CharField(source="payment.status")
    stripe_refund_id = serializers.CharField()
    amount_cents = serializers.IntegerField()


class PaymentSerializer(serializers.ModelSerializer):
    """
    Read-only view of a ledger row.

    Internal bookkeeping (applied_event_ids, pending_refund, version) is
    not exposed.
    """

    project_id = serializers.UUIDField(read_only=True)
    client_id = serializers.UUIDField(read_only=True)
    expert_id = serializers.UUIDField(read_only=True)
    project_title = serializers.CharField(source="project.title", read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "project_id",
            "project_title",
            "client_id",
            "expert_id",
            "stripe_payment_intent_id",
            "amount_cents",
            "currency",
            "fee_rate",
            "platform_fee_cents",
            "expert_payout_cents",
            "status",
            "refund_amount_cents",
            "refund_reason",
            "payout_status",
            "payout_date",
            "failure_reason",
            "succeeded_at",
            "refunded_at",
            "created_at",
        ]
        read_only_fields = fields


class PaymentStatsSerializer(serializers.Serializer):
    total_amount_cents = serializers.IntegerField()
    total_payments = serializers.IntegerField()
    successful_payments = serializers.IntegerField()
    pending_payments = serializers.IntegerField()
    failed_payments = serializers.IntegerField()
    refunded_payments = serializers.IntegerField()
    total_refunded_cents = serializers.IntegerField()


class PaginationSerializer(serializers.Serializer):
    page = serializers.IntegerField()
    limit = serializers.IntegerField()
    total = serializers.IntegerField()
    pages = serializers.IntegerField()
    has_next = serializers.BooleanField()
    has_previous = serializers.BooleanField()


class PaymentHistorySerializer(serializers.Serializer):
    payments = PaymentSerializer(many=True)
    pagination = PaginationSerializer()


class PaymentMethodSerializer(serializers.Serializer):
    id = serializers.CharField()
    brand = serializers.CharField(allow_null=True)
    last4 = serializers.CharField(allow_null=True)
    exp_month = serializers.IntegerField(allow_null=True)
    exp_year = serializers.IntegerField(allow_null=True)


class AttachPaymentMethodSerializer(serializers.Serializer):
    payment_method_id = serializers.CharField(max_length=255)


class SetupIntentSerializer(serializers.Serializer):
    id = serializers.CharField()
    client_secret = serializers.CharField(allow_null=True)
    status = serializers.CharField()


class StripeConfigSerializer(serializers.Serializer):
    publishable_key = serializers.CharField()
