"""
Celery configuration for the payments service.

Celery runs everything that must not block a request:
- Applying verified Stripe webhook events to the ledger
- Propagating settled payments and refunds to projects
- The periodic reconciliation sweep and webhook store housekeeping

Redis is both the message broker and result backend. Periodic schedules
live in the database (django-celery-beat) and are created by migrations.

Usage:
    from payments.tasks import process_webhook_event

    process_webhook_event.delay(webhook_event.id)
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Picks up payments/tasks.py (which re-exports payments.workers)
app.autodiscover_tasks()
