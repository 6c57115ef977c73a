"""
Webhook handling for payment events from Stripe.

Webhooks are verified, stored idempotently, and processed asynchronously
via Celery tasks.

Usage:
    # In urls.py
    from payments.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from payments.webhooks.handlers import apply_intent_status, dispatch_webhook, register_handler
from payments.webhooks.views import stripe_webhook

__all__ = [
    "apply_intent_status",
    "dispatch_webhook",
    "register_handler",
    "stripe_webhook",
]
