"""
Tests for payment Celery tasks.

Tests cover:
- process_webhook_event task
- retry_failed_webhooks task
- cleanup_stuck_webhooks task
- cleanup_old_webhooks task
- propagate_project_update task, including the dead letter
"""

from datetime import timedelta
from unittest.mock import patch
from uuid import uuid4

import pytest
from django.utils import timezone

from core.services import ServiceResult
from payments.models import DiscrepancyType, Payment, ReconciliationDiscrepancy, WebhookEvent
from payments.state_machines import PaymentStatus, WebhookEventStatus
from payments.tasks import (
    MAX_PROPAGATION_RETRIES,
    MAX_WEBHOOK_RETRIES,
    cleanup_old_webhooks,
    cleanup_stuck_webhooks,
    process_webhook_event,
    propagate_project_update,
    retry_failed_webhooks,
)
from payments.tests.factories import SucceededPaymentFactory, WebhookEventFactory
from projects.models import ProjectPaymentStatus


# =============================================================================
# process_webhook_event Tests
# =============================================================================


class TestProcessWebhookEvent:
    def test_process_pending_event_success(self, succeeded_event):
        with patch("payments.webhooks.handlers.dispatch_webhook") as mock_dispatch:
            mock_dispatch.return_value = ServiceResult.success(None)

            result = process_webhook_event(str(succeeded_event.id))

        assert result["status"] == "processed"
        assert result["stripe_event_id"] == succeeded_event.stripe_event_id

        succeeded_event.refresh_from_db()
        assert succeeded_event.status == WebhookEventStatus.PROCESSED
        assert succeeded_event.processed_at is not None
        assert succeeded_event.retry_count == 1

    def test_applies_event_to_ledger(self, pending_payment, succeeded_event):
        process_webhook_event(str(succeeded_event.id))

        assert Payment.objects.get(pk=pending_payment.pk).status == PaymentStatus.SUCCEEDED

    def test_skip_already_processed_event(self, processed_webhook_event):
        with patch("payments.webhooks.handlers.dispatch_webhook") as mock_dispatch:
            result = process_webhook_event(str(processed_webhook_event.id))

        assert result["status"] == "already_processed"
        mock_dispatch.assert_not_called()

    def test_event_not_found(self, db):
        assert process_webhook_event(str(uuid4()))["status"] == "not_found"

    def test_malformed_id(self, db):
        assert process_webhook_event("not-a-uuid")["status"] == "not_found"

    def test_handler_failure_marks_event_failed(self, succeeded_event):
        with patch("payments.webhooks.handlers.dispatch_webhook") as mock_dispatch:
            mock_dispatch.return_value = ServiceResult.failure(
                "Handler error", error_code="HANDLER_ERROR"
            )

            result = process_webhook_event(str(succeeded_event.id))

        assert result["status"] == "handler_failed"
        succeeded_event.refresh_from_db()
        assert succeeded_event.status == WebhookEventStatus.FAILED
        assert "Handler error" in succeeded_event.error_message

    def test_exception_marks_event_failed_and_raises(self, succeeded_event):
        with patch("payments.webhooks.handlers.dispatch_webhook") as mock_dispatch:
            mock_dispatch.side_effect = Exception("Database connection lost")

            with pytest.raises(Exception, match="Database connection lost"):
                process_webhook_event(str(succeeded_event.id))

        succeeded_event.refresh_from_db()
        assert succeeded_event.status == WebhookEventStatus.FAILED
        assert "Database connection lost" in succeeded_event.error_message


# =============================================================================
# retry_failed_webhooks Tests
# =============================================================================


class TestRetryFailedWebhooks:
    def test_requeues_failed_events_with_retries_left(self, failed_webhook_event):
        WebhookEventFactory(
            status=WebhookEventStatus.FAILED, retry_count=MAX_WEBHOOK_RETRIES
        )

        with patch("payments.tasks.process_webhook_event.delay") as mock_delay:
            result = retry_failed_webhooks()

        assert result["queued_count"] == 1
        mock_delay.assert_called_once_with(str(failed_webhook_event.id))

    def test_requeues_old_unqueued_events(self, db):
        event = WebhookEventFactory()
        WebhookEvent.objects.filter(pk=event.pk).update(
            created_at=timezone.now() - timedelta(hours=1)
        )
        WebhookEventFactory()

        with patch("payments.tasks.process_webhook_event.delay") as mock_delay:
            result = retry_failed_webhooks()

        assert result["queued_count"] == 1
        mock_delay.assert_called_once_with(str(event.id))

    def test_broker_error_skips_event(self, failed_webhook_event):
        with patch(
            "payments.tasks.process_webhook_event.delay",
            side_effect=ConnectionError("broker down"),
        ):
            result = retry_failed_webhooks()

        assert result["queued_count"] == 0


# =============================================================================
# Cleanup Tests
# =============================================================================


class TestCleanupStuckWebhooks:
    def test_resets_stuck_processing_events(self, stuck_webhook_event):
        result = cleanup_stuck_webhooks()

        assert result["reset_count"] == 1
        stuck_webhook_event.refresh_from_db()
        assert stuck_webhook_event.status == WebhookEventStatus.FAILED
        assert "timed out" in stuck_webhook_event.error_message

    def test_recent_processing_event_is_left(self, db):
        WebhookEventFactory(status=WebhookEventStatus.PROCESSING)

        assert cleanup_stuck_webhooks()["reset_count"] == 0


class TestCleanupOldWebhooks:
    def test_deletes_old_processed_events_only(self, db):
        old = timezone.now() - timedelta(days=100)
        WebhookEventFactory(status=WebhookEventStatus.PROCESSED, processed_at=old)
        WebhookEventFactory(status=WebhookEventStatus.FAILED, processed_at=old)
        recent = WebhookEventFactory(
            status=WebhookEventStatus.PROCESSED, processed_at=timezone.now()
        )

        result = cleanup_old_webhooks()

        assert result["deleted_count"] == 1
        assert WebhookEvent.objects.count() == 2
        assert WebhookEvent.objects.filter(pk=recent.pk).exists()

    def test_custom_retention(self, db):
        WebhookEventFactory(
            status=WebhookEventStatus.PROCESSED,
            processed_at=timezone.now() - timedelta(days=10),
        )

        assert cleanup_old_webhooks(days=7)["deleted_count"] == 1


# =============================================================================
# propagate_project_update Tests
# =============================================================================


def run_propagation(payment_id, retries=0):
    """Run the bound task body directly with a given retry count."""
    propagate_project_update.push_request(retries=retries)
    try:
        return propagate_project_update.run(str(payment_id))
    finally:
        propagate_project_update.pop_request()


class TestPropagateProjectUpdate:
    def test_updates_project(self, project):
        payment = SucceededPaymentFactory(project=project)

        result = propagate_project_update(str(payment.id))

        assert result["status"] == "updated"
        project.refresh_from_db()
        assert project.payment_status == ProjectPaymentStatus.COMPLETED

    def test_pending_payment_is_skipped(self, pending_payment):
        assert propagate_project_update(str(pending_payment.id))["status"] == "skipped"

    def test_failure_before_last_retry_raises(self, succeeded_payment):
        with patch(
            "payments.services.ProjectSyncService.sync_payment",
            side_effect=RuntimeError("project locked"),
        ):
            with pytest.raises(RuntimeError):
                run_propagation(succeeded_payment.id, retries=1)

        assert not ReconciliationDiscrepancy.objects.exists()

    def test_last_retry_is_dead_lettered(self, succeeded_payment):
        """
        Given a project update that keeps failing
        When the final retry fails
        Then a discrepancy is recorded and the payment is untouched
        """
        with patch(
            "payments.services.ProjectSyncService.sync_payment",
            side_effect=RuntimeError("project locked"),
        ):
            result = run_propagation(succeeded_payment.id, retries=MAX_PROPAGATION_RETRIES)

        assert result["status"] == "dead_lettered"
        discrepancy = ReconciliationDiscrepancy.objects.get()
        assert discrepancy.discrepancy_type == DiscrepancyType.PROJECT_UPDATE_FAILED
        assert discrepancy.entity_id == str(succeeded_payment.id)
        assert discrepancy.stripe_id == "pi_test_succeeded"
        assert discrepancy.details["retries"] == MAX_PROPAGATION_RETRIES
        assert "project locked" in discrepancy.error_message
        assert Payment.objects.get(pk=succeeded_payment.pk).status == PaymentStatus.SUCCEEDED

    def test_retries_run_out_into_dead_letter(self, succeeded_payment):
        """
        Given a project update that fails on every attempt
        When the task runs eagerly through all its retries
        Then sync is attempted once per retry and one discrepancy is recorded
        """
        with patch(
            "payments.services.ProjectSyncService.sync_payment",
            side_effect=RuntimeError("project locked"),
        ) as mock_sync:
            propagate_project_update.apply(args=[str(succeeded_payment.id)])

        assert mock_sync.call_count == MAX_PROPAGATION_RETRIES + 1
        discrepancy = ReconciliationDiscrepancy.objects.get()
        assert discrepancy.discrepancy_type == DiscrepancyType.PROJECT_UPDATE_FAILED
        assert discrepancy.entity_id == str(succeeded_payment.id)
