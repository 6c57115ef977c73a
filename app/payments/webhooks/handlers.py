"""
Webhook event handlers for Stripe events.

This module provides a handler registry and the handlers that apply
payment intent outcomes to the Payment ledger.

The handler registry allows:
- Clean separation between event routing and handling
- Easy extension for new event types

Usage:
    from payments.webhooks.handlers import dispatch_webhook, register_handler

    # Register a custom handler
    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    # Dispatch an event to its handler
    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from typing import Callable

from django.db import transaction
from django_fsm import TransitionNotAllowed

from core.services import ServiceResult
from payments.locks import lock_row
from payments.models import DiscrepancyType, Payment, ReconciliationDiscrepancy, WebhookEvent
from payments.services.project_sync import ProjectSyncService
from payments.state_machines import PaymentStatus, can_transition

logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Usage:
        @register_handler("payment_intent.succeeded")
        def handle_payment_succeeded(webhook_event: WebhookEvent) -> ServiceResult:
            ...

    Args:
        event_type: The Stripe event type (e.g., "payment_intent.succeeded")
    """

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Dispatch a webhook event to the appropriate handler.

    Unknown event types are acknowledged (success) without touching any
    record, so Stripe stops redelivering them.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )

    return handler(webhook_event)


# =============================================================================
# Ledger Application
# =============================================================================


def _apply_transition(payment: Payment, target: str, failure_message: str | None) -> None:
    if not can_transition(payment.status, target):
        raise TransitionNotAllowed(f"No transition {payment.status} -> {target}")

    if target == PaymentStatus.SUCCEEDED:
        payment.mark_succeeded()
    elif target == PaymentStatus.FAILED:
        payment.mark_failed(failure_message)
    elif target == PaymentStatus.CANCELED:
        payment.mark_canceled()
    else:
        raise TransitionNotAllowed(f"No webhook transition to {target}")


def apply_intent_status(
    payment_intent_id: str,
    target: str,
    event_id: str,
    failure_message: str | None = None,
) -> ServiceResult:
    """
    Apply a terminal intent status reported by Stripe to the Payment.

    Shared by the webhook handlers and the reconciliation sweep (which
    passes a synthetic ``reconcile:<intent>:<status>`` event id).

    The payment row is locked, the transition and the applied event id are
    saved together, and project propagation is queued for after commit.
    Redelivered events and disallowed edges are acknowledged as no-ops.

    Returns:
        ServiceResult with the Payment (None if no payment matches the intent)
    """
    with transaction.atomic():
        payment = lock_row(Payment, stripe_payment_intent_id=payment_intent_id)

        if payment is None:
            logger.error(
                "Webhook for unknown payment intent",
                extra={"payment_intent_id": payment_intent_id, "event_id": event_id},
            )
            ReconciliationDiscrepancy.flag(
                DiscrepancyType.MISSING_PAYMENT_RECORD,
                entity_type="webhook_event",
                stripe_id=payment_intent_id,
                stripe_state=target,
                details={"event_id": event_id},
            )
            return ServiceResult.success(None)

        if payment.has_applied_event(event_id):
            logger.info(
                "Event already applied to payment",
                extra={"payment_id": str(payment.id), "event_id": event_id},
            )
            return ServiceResult.success(payment)

        current = payment.status
        try:
            _apply_transition(payment, target, failure_message)
        except TransitionNotAllowed:
            logger.warning(
                f"Ignoring {target} for payment in {current}",
                extra={
                    "payment_id": str(payment.id),
                    "payment_intent_id": payment_intent_id,
                    "event_id": event_id,
                    "current_status": current,
                    "target_status": target,
                },
            )
            return ServiceResult.success(payment)

        payment.record_event(event_id)
        payment.save()

        logger.info(
            f"Payment {current} -> {payment.status}",
            extra={
                "payment_id": str(payment.id),
                "payment_intent_id": payment_intent_id,
                "event_id": event_id,
            },
        )

        if payment.status in ProjectSyncService.PROPAGATED_STATUSES:
            ProjectSyncService.schedule(payment.id)

        return ServiceResult.success(payment)


def _intent_id_or_failure(webhook_event: WebhookEvent) -> str | ServiceResult:
    payment_intent_id = webhook_event.get_object_id()
    if not payment_intent_id:
        logger.error(
            f"{webhook_event.event_type}: Could not extract payment_intent_id",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.failure(
            "Could not extract payment_intent_id from webhook",
            error_code="INVALID_WEBHOOK_PAYLOAD",
        )
    return payment_intent_id


# =============================================================================
# Payment Intent Handlers
# =============================================================================


@register_handler("payment_intent.succeeded")
def handle_payment_intent_succeeded(webhook_event: WebhookEvent) -> ServiceResult:
    """pending -> succeeded, then the project is marked paid."""
    payment_intent_id = _intent_id_or_failure(webhook_event)
    if isinstance(payment_intent_id, ServiceResult):
        return payment_intent_id

    return apply_intent_status(
        payment_intent_id,
        PaymentStatus.SUCCEEDED,
        webhook_event.stripe_event_id,
    )


@register_handler("payment_intent.payment_failed")
def handle_payment_intent_failed(webhook_event: WebhookEvent) -> ServiceResult:
    """pending -> failed, keeping Stripe's failure message."""
    payment_intent_id = _intent_id_or_failure(webhook_event)
    if isinstance(payment_intent_id, ServiceResult):
        return payment_intent_id

    last_error = webhook_event.get_event_object().get("last_payment_error") or {}
    reason = last_error.get("message", "Payment failed")

    return apply_intent_status(
        payment_intent_id,
        PaymentStatus.FAILED,
        webhook_event.stripe_event_id,
        failure_message=reason,
    )


@register_handler("payment_intent.canceled")
def handle_payment_intent_canceled(webhook_event: WebhookEvent) -> ServiceResult:
    payment_intent_id = _intent_id_or_failure(webhook_event)
    if isinstance(payment_intent_id, ServiceResult):
        return payment_intent_id

    return apply_intent_status(
        payment_intent_id,
        PaymentStatus.CANCELED,
        webhook_event.stripe_event_id,
    )


__all__ = [
    "WEBHOOK_HANDLERS",
    "apply_intent_status",
    "dispatch_webhook",
    "register_handler",
]
