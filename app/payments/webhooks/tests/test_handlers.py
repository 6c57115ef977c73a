"""
Tests for webhook event handlers.

Tests cover:
- Handler registration and dispatch
- payment_intent.succeeded / payment_failed / canceled handling
- Redelivered events and out-of-order events
- Events for unknown payment intents
- Post-commit project propagation
"""

from unittest.mock import patch

import pytest

from core.services import ServiceResult
from payments.models import DiscrepancyType, Payment, ReconciliationDiscrepancy
from payments.state_machines import PaymentStatus
from payments.tests.factories import WebhookEventFactory, intent_event_payload
from payments.webhooks.handlers import (
    WEBHOOK_HANDLERS,
    apply_intent_status,
    dispatch_webhook,
    handle_payment_intent_canceled,
    handle_payment_intent_failed,
    handle_payment_intent_succeeded,
    register_handler,
)


# =============================================================================
# Registry
# =============================================================================


class TestRegisterHandler:
    def test_intent_handlers_are_registered(self):
        assert WEBHOOK_HANDLERS["payment_intent.succeeded"] == handle_payment_intent_succeeded
        assert WEBHOOK_HANDLERS["payment_intent.payment_failed"] == handle_payment_intent_failed
        assert WEBHOOK_HANDLERS["payment_intent.canceled"] == handle_payment_intent_canceled

    def test_register_custom_handler(self, db):
        @register_handler("test.custom_event")
        def handle_custom(webhook_event):
            return ServiceResult.success("handled")

        try:
            event = WebhookEventFactory(event_type="test.custom_event")
            assert dispatch_webhook(event).data == "handled"
        finally:
            WEBHOOK_HANDLERS.pop("test.custom_event")


class TestDispatchWebhook:
    def test_unknown_event_type_is_acknowledged(self, db):
        event = WebhookEventFactory(event_type="customer.created")

        result = dispatch_webhook(event)

        assert result.success
        assert result.data is None

    def test_routes_to_handler(self, succeeded_event):
        with patch.dict(
            WEBHOOK_HANDLERS,
            {"payment_intent.succeeded": lambda e: ServiceResult.success("routed")},
        ):
            result = dispatch_webhook(succeeded_event)

        assert result.data == "routed"


# =============================================================================
# Intent Handlers
# =============================================================================


class TestPaymentIntentSucceeded:
    def test_pending_payment_succeeds(self, pending_payment, succeeded_event):
        result = handle_payment_intent_succeeded(succeeded_event)

        assert result.success
        payment = Payment.objects.get(pk=pending_payment.pk)
        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.succeeded_at is not None
        assert payment.applied_event_ids == [succeeded_event.stripe_event_id]

    def test_redelivered_event_is_applied_once(self, pending_payment, succeeded_event):
        handle_payment_intent_succeeded(succeeded_event)
        version = Payment.objects.get(pk=pending_payment.pk).version

        result = handle_payment_intent_succeeded(succeeded_event)

        assert result.success
        payment = Payment.objects.get(pk=pending_payment.pk)
        assert payment.version == version
        assert payment.applied_event_ids == [succeeded_event.stripe_event_id]

    def test_schedules_project_propagation(
        self, pending_payment, succeeded_event, django_capture_on_commit_callbacks
    ):
        with patch("payments.tasks.propagate_project_update") as mock_task:
            with django_capture_on_commit_callbacks(execute=True):
                handle_payment_intent_succeeded(succeeded_event)

        mock_task.delay.assert_called_once_with(str(pending_payment.id))

    def test_redelivered_event_propagates_once(
        self, pending_payment, succeeded_event, django_capture_on_commit_callbacks
    ):
        with patch("payments.tasks.propagate_project_update") as mock_task:
            with django_capture_on_commit_callbacks(execute=True):
                handle_payment_intent_succeeded(succeeded_event)
            with django_capture_on_commit_callbacks(execute=True):
                handle_payment_intent_succeeded(succeeded_event)

        mock_task.delay.assert_called_once_with(str(pending_payment.id))
        payment = Payment.objects.get(pk=pending_payment.pk)
        assert payment.applied_event_ids.count(succeeded_event.stripe_event_id) == 1

    def test_missing_intent_id_fails(self, db):
        event = WebhookEventFactory(payload={"id": "evt_bad", "data": {"object": {}}})

        result = handle_payment_intent_succeeded(event)

        assert not result.success
        assert result.error_code == "INVALID_WEBHOOK_PAYLOAD"


class TestPaymentIntentFailed:
    def test_pending_payment_fails_with_reason(self, pending_payment, failed_event):
        result = handle_payment_intent_failed(failed_event)

        assert result.success
        payment = Payment.objects.get(pk=pending_payment.pk)
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "Your card was declined."

    def test_default_reason_without_error(self, pending_payment):
        event = WebhookEventFactory(
            event_type="payment_intent.payment_failed",
            payload=intent_event_payload(
                "payment_intent.payment_failed", pending_payment.stripe_payment_intent_id
            ),
        )

        handle_payment_intent_failed(event)

        assert Payment.objects.get(pk=pending_payment.pk).failure_reason == "Payment failed"

    def test_failure_after_success_is_ignored(self, pending_payment, succeeded_event, failed_event):
        """
        Given a payment that already succeeded
        When a late payment_failed event arrives
        Then the payment stays succeeded and the event is acknowledged
        """
        handle_payment_intent_succeeded(succeeded_event)

        result = handle_payment_intent_failed(failed_event)

        assert result.success
        payment = Payment.objects.get(pk=pending_payment.pk)
        assert payment.status == PaymentStatus.SUCCEEDED
        assert failed_event.stripe_event_id not in payment.applied_event_ids


class TestPaymentIntentCanceled:
    def test_pending_payment_is_canceled(self, pending_payment, canceled_event):
        handle_payment_intent_canceled(canceled_event)

        payment = Payment.objects.get(pk=pending_payment.pk)
        assert payment.status == PaymentStatus.CANCELED
        assert payment.canceled_at is not None

    def test_cancel_after_success_is_ignored(
        self, pending_payment, succeeded_event, canceled_event
    ):
        handle_payment_intent_succeeded(succeeded_event)

        result = handle_payment_intent_canceled(canceled_event)

        assert result.success
        payment = Payment.objects.get(pk=pending_payment.pk)
        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.canceled_at is None
        assert canceled_event.stripe_event_id not in payment.applied_event_ids

    def test_cancel_is_not_propagated(
        self, pending_payment, canceled_event, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks() as callbacks:
            handle_payment_intent_canceled(canceled_event)

        assert callbacks == []


# =============================================================================
# apply_intent_status
# =============================================================================


class TestApplyIntentStatus:
    def test_unknown_intent_is_flagged(self, db):
        result = apply_intent_status("pi_nobody", PaymentStatus.SUCCEEDED, event_id="evt_orphan")

        assert result.success
        assert result.data is None
        discrepancy = ReconciliationDiscrepancy.objects.get()
        assert discrepancy.discrepancy_type == DiscrepancyType.MISSING_PAYMENT_RECORD
        assert discrepancy.entity_type == "webhook_event"
        assert discrepancy.stripe_id == "pi_nobody"
        assert discrepancy.details == {"event_id": "evt_orphan"}

    def test_refunded_payment_ignores_late_success(self, refunded_payment):
        result = apply_intent_status(
            refunded_payment.stripe_payment_intent_id,
            PaymentStatus.SUCCEEDED,
            event_id="evt_late",
        )

        assert result.success
        assert Payment.objects.get(pk=refunded_payment.pk).status == PaymentStatus.REFUNDED

    @pytest.mark.parametrize("target", [PaymentStatus.REFUNDED, PaymentStatus.PENDING])
    def test_non_intent_targets_are_ignored(self, pending_payment, target):
        result = apply_intent_status(
            pending_payment.stripe_payment_intent_id, target, event_id="evt_odd"
        )

        assert result.success
        assert Payment.objects.get(pk=pending_payment.pk).status == PaymentStatus.PENDING
