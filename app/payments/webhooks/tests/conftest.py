"""
Pytest fixtures for webhook tests.

Provides WebhookEvent rows in each processing state, built around the
shared pending_payment fixture.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from payments.state_machines import WebhookEventStatus
from payments.tests.factories import WebhookEventFactory, intent_event_payload


@pytest.fixture
def succeeded_event(pending_payment):
    """A payment_intent.succeeded event for the pending payment."""
    payload = intent_event_payload(
        "payment_intent.succeeded",
        pending_payment.stripe_payment_intent_id,
        status="succeeded",
    )
    return WebhookEventFactory(
        stripe_event_id=payload["id"],
        event_type="payment_intent.succeeded",
        payload=payload,
    )


@pytest.fixture
def failed_event(pending_payment):
    payload = intent_event_payload(
        "payment_intent.payment_failed",
        pending_payment.stripe_payment_intent_id,
        status="requires_payment_method",
        last_payment_error={"message": "Your card was declined."},
    )
    return WebhookEventFactory(
        stripe_event_id=payload["id"],
        event_type="payment_intent.payment_failed",
        payload=payload,
    )


@pytest.fixture
def canceled_event(pending_payment):
    payload = intent_event_payload(
        "payment_intent.canceled",
        pending_payment.stripe_payment_intent_id,
        status="canceled",
    )
    return WebhookEventFactory(
        stripe_event_id=payload["id"],
        event_type="payment_intent.canceled",
        payload=payload,
    )


@pytest.fixture
def processed_webhook_event(db):
    return WebhookEventFactory(
        status=WebhookEventStatus.PROCESSED,
        processed_at=timezone.now(),
        retry_count=1,
    )


@pytest.fixture
def failed_webhook_event(db):
    return WebhookEventFactory(
        status=WebhookEventStatus.FAILED,
        error_message="Processing error",
        retry_count=2,
    )


@pytest.fixture
def stuck_webhook_event(db):
    """A PROCESSING event whose worker died an hour ago."""
    event = WebhookEventFactory(status=WebhookEventStatus.PROCESSING, retry_count=1)
    type(event).objects.filter(pk=event.pk).update(
        updated_at=timezone.now() - timedelta(hours=1)
    )
    event.refresh_from_db()
    return event
