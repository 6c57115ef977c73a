"""
Payments app configuration.

This app holds the payment ledger:
- Payment records and their fee split
- Stripe integration (intents, refunds, payment methods)
- Webhook ingestion and reconciliation
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
