"""
Tests for the payments app.

This package contains test modules for:
- test_models.py: Payment, WebhookEvent and reconciliation model tests
- test_fees.py: Platform fee split
- test_locks.py: Distributed locks and row compare-and-set
- test_views.py: API endpoint tests

Service, webhook, adapter and worker tests live beside their packages.

Usage:
    pytest payments/
    pytest payments/tests/test_models.py
"""
