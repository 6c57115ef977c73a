"""
Tests for RefundService.

Covers:
- Full and partial refunds through claim / call / complete
- Precondition failures (amount, status, already refunded)
- Fresh claims blocking concurrent requests, stale claims taken over
- Transient Stripe errors retried with the same idempotency key
- Permanent Stripe errors releasing the claim
- Completion conflicts recorded as discrepancies
- Post-commit project propagation
- resume_refund for interrupted claims
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from payments.exceptions import (
    AlreadyRefundedError,
    ConcurrencyConflictError,
    ExternalProcessorError,
    InvalidStateError,
    LockAcquisitionError,
    PaymentNotFoundError,
    PaymentValidationError,
    RefundInProgressError,
    StripeAPIUnavailableError,
    StripeInvalidRequestError,
)
from payments.models import DiscrepancyType, Payment, ReconciliationDiscrepancy
from payments.services import RefundService
from payments.state_machines import PaymentStatus
from payments.tests.factories import make_refund_result


def stale_claim(**overrides):
    claim = {
        "idempotency_key": "refund:stale:1:abcd1234",
        "amount_cents": 6000,
        "reason": "Original reason",
        "requested_at": (timezone.now() - timedelta(minutes=30)).isoformat(),
    }
    claim.update(overrides)
    return claim


@pytest.fixture(autouse=True)
def no_sleep(mocker):
    return mocker.patch("payments.services.refund_service.time.sleep")


@pytest.fixture
def propagate_task(mocker):
    return mocker.patch("payments.tasks.propagate_project_update")


class TestCreateRefund:
    def test_full_refund(self, succeeded_payment, stripe_adapter, mock_redis):
        """
        Given a succeeded payment
        When a full refund is requested
        Then Stripe is called once and the payment is REFUNDED with the claim cleared
        """
        result = RefundService.create_refund(succeeded_payment.id, reason="Client request")

        assert result.stripe_refund_id == "re_test_123"
        assert result.amount_cents == 10000
        assert result.resumed is False

        payment = Payment.objects.get(pk=succeeded_payment.pk)
        assert payment.status == PaymentStatus.REFUNDED
        assert payment.refund_amount_cents == 10000
        assert payment.refund_reason == "Client request"
        assert payment.stripe_refund_id == "re_test_123"
        assert payment.pending_refund is None

        call_kwargs = stripe_adapter.create_refund.call_args.kwargs
        assert call_kwargs["payment_intent_id"] == "pi_test_succeeded"
        assert call_kwargs["amount_cents"] == 10000
        assert call_kwargs["idempotency_key"].startswith(f"refund:{payment.id}:1:")

    def test_partial_refund(self, succeeded_payment, stripe_adapter, mock_redis):
        stripe_adapter.create_refund.return_value = make_refund_result(amount_cents=4000)

        RefundService.create_refund(succeeded_payment.id, amount_cents=4000)

        payment = Payment.objects.get(pk=succeeded_payment.pk)
        assert payment.refund_amount_cents == 4000
        assert stripe_adapter.create_refund.call_args.kwargs["amount_cents"] == 4000

    def test_refund_lock_is_per_payment(self, succeeded_payment, stripe_adapter, mock_redis):
        RefundService.create_refund(succeeded_payment.id)

        assert mock_redis.set.call_args[0][0] == f"lock:refund:execute:{succeeded_payment.id}"

    def test_propagates_to_project_after_commit(
        self,
        succeeded_payment,
        stripe_adapter,
        mock_redis,
        propagate_task,
        django_capture_on_commit_callbacks,
    ):
        with django_capture_on_commit_callbacks(execute=True):
            RefundService.create_refund(succeeded_payment.id)

        propagate_task.delay.assert_called_once_with(str(succeeded_payment.id))

    def test_amount_above_payment_rejected(self, succeeded_payment, stripe_adapter, mock_redis):
        with pytest.raises(PaymentValidationError) as exc_info:
            RefundService.create_refund(succeeded_payment.id, amount_cents=10001)

        assert exc_info.value.error_code == "AMOUNT_EXCEEDS_PAYMENT"
        stripe_adapter.create_refund.assert_not_called()

    @pytest.mark.parametrize("amount", [0, -5, 10.0])
    def test_invalid_amount_rejected(self, succeeded_payment, stripe_adapter, amount):
        with pytest.raises(PaymentValidationError) as exc_info:
            RefundService.create_refund(succeeded_payment.id, amount_cents=amount)

        assert exc_info.value.error_code == "INVALID_REFUND_AMOUNT"

    def test_pending_payment_cannot_be_refunded(
        self, pending_payment, stripe_adapter, mock_redis
    ):
        with pytest.raises(InvalidStateError):
            RefundService.create_refund(pending_payment.id)

        stripe_adapter.create_refund.assert_not_called()

    def test_refunded_payment_cannot_be_refunded_again(
        self, refunded_payment, stripe_adapter, mock_redis
    ):
        with pytest.raises(AlreadyRefundedError):
            RefundService.create_refund(refunded_payment.id)

        stripe_adapter.create_refund.assert_not_called()

    def test_missing_payment(self, db, stripe_adapter, mock_redis):
        with pytest.raises(PaymentNotFoundError):
            RefundService.create_refund("00000000-0000-0000-0000-000000000000")

    def test_lock_held_elsewhere(self, succeeded_payment, stripe_adapter, mock_redis, mocker):
        mocker.patch("payments.locks.REFUND_LOCK_TIMEOUT_SECONDS", 0.05)
        mock_redis.set.return_value = False

        with pytest.raises(LockAcquisitionError):
            RefundService.create_refund(succeeded_payment.id)

        stripe_adapter.create_refund.assert_not_called()


class TestRefundClaims:
    def test_fresh_claim_blocks_second_request(
        self, succeeded_payment, stripe_adapter, mock_redis
    ):
        Payment.objects.filter(pk=succeeded_payment.pk).update(
            pending_refund=stale_claim(requested_at=timezone.now().isoformat())
        )

        with pytest.raises(RefundInProgressError):
            RefundService.create_refund(succeeded_payment.id)

        stripe_adapter.create_refund.assert_not_called()

    def test_racing_refunds_issue_one_stripe_refund(
        self, succeeded_payment, stripe_adapter, mock_redis
    ):
        """
        Given a second refund request arriving while the first is at Stripe
        When both finish
        Then exactly one succeeds and Stripe saw exactly one refund call
        """
        losers = []

        def second_request_during_stripe_call(**kwargs):
            with pytest.raises(ConcurrencyConflictError) as exc_info:
                RefundService.create_refund(succeeded_payment.id)
            losers.append(exc_info.value)
            return make_refund_result()

        stripe_adapter.create_refund.side_effect = second_request_during_stripe_call

        result = RefundService.create_refund(succeeded_payment.id)

        assert result.amount_cents == 10000
        assert len(losers) == 1
        assert isinstance(losers[0], RefundInProgressError)
        assert stripe_adapter.create_refund.call_count == 1
        assert Payment.objects.get(pk=succeeded_payment.pk).status == PaymentStatus.REFUNDED

        with pytest.raises(AlreadyRefundedError):
            RefundService.create_refund(succeeded_payment.id)
        assert stripe_adapter.create_refund.call_count == 1

    def test_stale_claim_is_taken_over_with_original_key(
        self, succeeded_payment, stripe_adapter, mock_redis
    ):
        """
        Given a claim left behind by a crashed request
        When a new refund for a different amount is requested
        Then the original key and amount are reused so Stripe refunds only once
        """
        Payment.objects.filter(pk=succeeded_payment.pk).update(pending_refund=stale_claim())
        stripe_adapter.create_refund.return_value = make_refund_result(amount_cents=6000)

        RefundService.create_refund(succeeded_payment.id, amount_cents=2000)

        call_kwargs = stripe_adapter.create_refund.call_args.kwargs
        assert call_kwargs["idempotency_key"] == "refund:stale:1:abcd1234"
        assert call_kwargs["amount_cents"] == 6000
        payment = Payment.objects.get(pk=succeeded_payment.pk)
        assert payment.status == PaymentStatus.REFUNDED
        assert payment.refund_reason == "Original reason"

    def test_claim_written_before_stripe_call(
        self, succeeded_payment, stripe_adapter, mock_redis
    ):
        seen_claims = []

        def record_claim(**kwargs):
            seen_claims.append(Payment.objects.get(pk=succeeded_payment.pk).pending_refund)
            return make_refund_result()

        stripe_adapter.create_refund.side_effect = record_claim

        RefundService.create_refund(succeeded_payment.id, reason="Late delivery")

        assert seen_claims[0]["amount_cents"] == 10000
        assert seen_claims[0]["reason"] == "Late delivery"
        assert seen_claims[0]["idempotency_key"].startswith("refund:")


class TestStripeFailures:
    def test_transient_error_retried_with_same_key(
        self, succeeded_payment, stripe_adapter, mock_redis, no_sleep
    ):
        stripe_adapter.create_refund.side_effect = [
            StripeAPIUnavailableError("Stripe 503"),
            make_refund_result(),
        ]

        RefundService.create_refund(succeeded_payment.id)

        keys = {
            call.kwargs["idempotency_key"]
            for call in stripe_adapter.create_refund.call_args_list
        }
        assert stripe_adapter.create_refund.call_count == 2
        assert len(keys) == 1
        no_sleep.assert_called_once()
        assert Payment.objects.get(pk=succeeded_payment.pk).status == PaymentStatus.REFUNDED

    def test_exhausted_transient_errors_keep_claim(
        self, succeeded_payment, stripe_adapter, mock_redis, settings
    ):
        settings.STRIPE_MAX_RETRIES = 2
        stripe_adapter.create_refund.side_effect = StripeAPIUnavailableError("Stripe 503")

        with pytest.raises(StripeAPIUnavailableError):
            RefundService.create_refund(succeeded_payment.id)

        assert stripe_adapter.create_refund.call_count == 3
        payment = Payment.objects.get(pk=succeeded_payment.pk)
        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.pending_refund is not None

    def test_permanent_error_releases_claim(
        self, succeeded_payment, stripe_adapter, mock_redis
    ):
        stripe_adapter.create_refund.side_effect = StripeInvalidRequestError(
            "Charge already refunded"
        )

        with pytest.raises(StripeInvalidRequestError):
            RefundService.create_refund(succeeded_payment.id)

        assert stripe_adapter.create_refund.call_count == 1
        payment = Payment.objects.get(pk=succeeded_payment.pk)
        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.pending_refund is None

    def test_failed_refund_status_releases_claim(
        self, succeeded_payment, stripe_adapter, mock_redis
    ):
        stripe_adapter.create_refund.return_value = make_refund_result(status="failed")

        with pytest.raises(ExternalProcessorError) as exc_info:
            RefundService.create_refund(succeeded_payment.id)

        assert exc_info.value.error_code == "REFUND_FAILED"
        assert Payment.objects.get(pk=succeeded_payment.pk).pending_refund is None


class TestCompletionConflict:
    def test_changed_claim_is_flagged_for_reconciliation(
        self, succeeded_payment, stripe_adapter, mock_redis
    ):
        def refund_while_claim_replaced(**kwargs):
            Payment.objects.filter(pk=succeeded_payment.pk).update(
                pending_refund={"idempotency_key": "someone-else"}
            )
            return make_refund_result(refund_id="re_orphan")

        stripe_adapter.create_refund.side_effect = refund_while_claim_replaced

        with pytest.raises(ConcurrencyConflictError):
            RefundService.create_refund(succeeded_payment.id)

        assert Payment.objects.get(pk=succeeded_payment.pk).status == PaymentStatus.SUCCEEDED
        discrepancy = ReconciliationDiscrepancy.objects.get()
        assert discrepancy.discrepancy_type == DiscrepancyType.REFUND_COMPLETION_CONFLICT
        assert discrepancy.stripe_id == "re_orphan"
        assert discrepancy.entity_id == str(succeeded_payment.id)


class TestResumeRefund:
    def test_resumes_stale_claim(self, succeeded_payment, stripe_adapter, mock_redis):
        Payment.objects.filter(pk=succeeded_payment.pk).update(pending_refund=stale_claim())
        stripe_adapter.create_refund.return_value = make_refund_result(amount_cents=6000)

        result = RefundService.resume_refund(succeeded_payment.id)

        assert result.resumed is True
        assert result.amount_cents == 6000
        assert (
            stripe_adapter.create_refund.call_args.kwargs["idempotency_key"]
            == "refund:stale:1:abcd1234"
        )
        assert Payment.objects.get(pk=succeeded_payment.pk).status == PaymentStatus.REFUNDED

    def test_nothing_to_resume(self, succeeded_payment, stripe_adapter, mock_redis):
        assert RefundService.resume_refund(succeeded_payment.id) is None
        stripe_adapter.create_refund.assert_not_called()

    def test_fresh_claim_is_left_alone(self, succeeded_payment, stripe_adapter, mock_redis):
        Payment.objects.filter(pk=succeeded_payment.pk).update(
            pending_refund=stale_claim(requested_at=timezone.now().isoformat())
        )

        assert RefundService.resume_refund(succeeded_payment.id) is None


class TestClaimIsStale:
    def test_recent_claim(self):
        assert not RefundService.claim_is_stale({"requested_at": timezone.now().isoformat()})

    def test_old_claim(self, settings):
        settings.REFUND_CLAIM_STALE_SECONDS = 60
        requested_at = (timezone.now() - timedelta(seconds=61)).isoformat()

        assert RefundService.claim_is_stale({"requested_at": requested_at})

    def test_claim_without_timestamp_is_stale(self):
        assert RefundService.claim_is_stale({"idempotency_key": "k"})
