"""
Tests for PaymentOrchestrator.

Covers:
- create_payment_intent validation, authorization and fee capture
- Exactly one Payment per intent, nothing written when Stripe fails
- Idempotency key attempts after closed intents, refusal of paid projects
- confirm_payment_intent leaving the ledger alone
- Payment lookups, stats and paginated history
"""

from decimal import Decimal

import pytest
from freezegun import freeze_time

from authentication.tests.factories import UserFactory
from core.exceptions import NotFoundError, PermissionDeniedError
from payments.exceptions import (
    InvalidStateError,
    PaymentNotFoundError,
    PaymentValidationError,
    StripeAPIUnavailableError,
)
from payments.models import Payment
from payments.services import PaymentOrchestrator
from payments.services.payment_orchestrator import ROLE_CLIENT, ROLE_EXPERT
from payments.state_machines import PaymentStatus
from payments.tests.factories import (
    PaymentFactory,
    RefundedPaymentFactory,
    SucceededPaymentFactory,
    make_intent_result,
)
from projects.tests.factories import ProjectFactory


def create_intent(project, client, amount_cents=10000, currency="eur"):
    return PaymentOrchestrator.create_payment_intent(
        project_id=project.id,
        client_id=client.id,
        amount_cents=amount_cents,
        currency=currency,
    )


class TestCreatePaymentIntent:
    def test_creates_pending_payment_with_fee_split(
        self, project, client_user, stripe_adapter
    ):
        """
        Given a project with a client and an expert
        When the client creates a 100.00 EUR intent
        Then a pending Payment stores the 10% split captured at creation
        """
        creation = create_intent(project, client_user)

        payment = Payment.objects.get(stripe_payment_intent_id="pi_test_123")
        assert creation.payment == payment
        assert creation.client_secret == "pi_test_123_secret_abc"
        assert payment.status == PaymentStatus.PENDING
        assert payment.client == client_user
        assert payment.expert_id == project.expert_id
        assert payment.fee_rate == Decimal("0.10")
        assert payment.platform_fee_cents == 1000
        assert payment.expert_payout_cents == 9000
        assert payment.stripe_customer_id == "cus_test_123"

    def test_sends_metadata_and_customer_to_stripe(
        self, project, client_user, stripe_adapter
    ):
        create_intent(project, client_user)

        params = stripe_adapter.create_payment_intent.call_args[0][0]
        assert params.amount_cents == 10000
        assert params.currency == "eur"
        assert params.customer_id == "cus_test_123"
        assert params.metadata["project_id"] == str(project.id)
        assert params.metadata["expert_id"] == str(project.expert_id)
        assert params.description == f"Payment for project: {project.title}"

    def test_currency_defaults_and_is_lowercased(
        self, project, client_user, stripe_adapter, settings
    ):
        settings.PAYMENT_DEFAULT_CURRENCY = "usd"

        create_intent(project, client_user, currency=None)
        create_intent(project, client_user, currency="EUR")

        currencies = [
            call[0][0].currency for call in stripe_adapter.create_payment_intent.call_args_list
        ]
        assert currencies == ["usd", "eur"]

    def test_fee_rate_change_does_not_touch_existing_payment(
        self, project, client_user, stripe_adapter, settings
    ):
        create_intent(project, client_user)
        settings.PLATFORM_FEE_RATE = Decimal("0.25")

        payment = Payment.objects.get(stripe_payment_intent_id="pi_test_123")
        assert payment.platform_fee_cents == 1000

    def test_creates_customer_on_first_payment(self, stripe_adapter, db):
        client = UserFactory()
        project = ProjectFactory(client=client)

        create_intent(project, client)

        client.refresh_from_db()
        assert client.stripe_customer_id == "cus_new_123"
        params = stripe_adapter.create_payment_intent.call_args[0][0]
        assert params.customer_id == "cus_new_123"

    @pytest.mark.parametrize(
        "amount, error_code",
        [(50, "AMOUNT_TOO_SMALL"), (0, "AMOUNT_TOO_SMALL"), (99.5, "INVALID_AMOUNT")],
    )
    def test_invalid_amount_rejected_before_stripe(
        self, project, client_user, stripe_adapter, amount, error_code
    ):
        with pytest.raises(PaymentValidationError) as exc_info:
            create_intent(project, client_user, amount_cents=amount)

        assert exc_info.value.error_code == error_code
        stripe_adapter.create_payment_intent.assert_not_called()
        assert not Payment.objects.exists()

    def test_unsupported_currency_rejected(self, project, client_user, stripe_adapter):
        with pytest.raises(PaymentValidationError) as exc_info:
            create_intent(project, client_user, currency="jpy")

        assert exc_info.value.error_code == "UNSUPPORTED_CURRENCY"

    def test_missing_project(self, client_user, stripe_adapter):
        with pytest.raises(NotFoundError) as exc_info:
            PaymentOrchestrator.create_payment_intent(
                project_id="00000000-0000-0000-0000-000000000000",
                client_id=client_user.id,
                amount_cents=10000,
            )

        assert exc_info.value.error_code == "PROJECT_NOT_FOUND"

    def test_other_user_cannot_pay(self, project, stripe_adapter):
        stranger = UserFactory()

        with pytest.raises(PermissionDeniedError) as exc_info:
            create_intent(project, stranger)

        assert exc_info.value.error_code == "NOT_PROJECT_CLIENT"
        stripe_adapter.create_payment_intent.assert_not_called()

    def test_project_without_expert_rejected(self, client_user, stripe_adapter):
        project = ProjectFactory(client=client_user, expert=None)

        with pytest.raises(PaymentValidationError) as exc_info:
            create_intent(project, client_user)

        assert exc_info.value.error_code == "PROJECT_HAS_NO_EXPERT"

    def test_stripe_failure_writes_nothing(self, project, client_user, stripe_adapter):
        stripe_adapter.create_payment_intent.side_effect = StripeAPIUnavailableError(
            "Stripe down"
        )

        with pytest.raises(StripeAPIUnavailableError):
            create_intent(project, client_user)

        assert not Payment.objects.exists()

    def test_replayed_intent_returns_existing_payment(
        self, project, client_user, stripe_adapter
    ):
        first = create_intent(project, client_user)
        second = create_intent(project, client_user)

        assert first.payment.pk == second.payment.pk
        assert Payment.objects.count() == 1

    def test_idempotency_key_is_deterministic(self, project, client_user, stripe_adapter):
        create_intent(project, client_user)
        create_intent(project, client_user)

        keys = [
            call[0][0].idempotency_key
            for call in stripe_adapter.create_payment_intent.call_args_list
        ]
        assert keys[0] == keys[1]
        assert keys[0].startswith("create_intent:")

    def test_new_attempt_after_failed_intent(self, project, client_user, stripe_adapter):
        PaymentFactory(project=project, status=PaymentStatus.FAILED)
        stripe_adapter.create_payment_intent.return_value = make_intent_result("pi_retry")

        create_intent(project, client_user)

        key = stripe_adapter.create_payment_intent.call_args[0][0].idempotency_key
        assert key.split(":")[-2] == "2"

    def test_new_attempt_after_refunded_payment(self, project, client_user, stripe_adapter):
        RefundedPaymentFactory(project=project)
        stripe_adapter.create_payment_intent.return_value = make_intent_result("pi_again")

        creation = create_intent(project, client_user)

        key = stripe_adapter.create_payment_intent.call_args[0][0].idempotency_key
        assert key.split(":")[-2] == "2"
        assert creation.payment.status == PaymentStatus.PENDING
        assert creation.payment_intent_id == "pi_again"

    def test_changed_request_gets_a_new_key(self, project, client_user, stripe_adapter):
        create_intent(project, client_user)
        project.title = "Renamed project"
        project.save()

        create_intent(project, client_user)

        keys = [
            call[0][0].idempotency_key
            for call in stripe_adapter.create_payment_intent.call_args_list
        ]
        assert keys[0] != keys[1]

    def test_paid_project_is_rejected(self, project, client_user, stripe_adapter):
        SucceededPaymentFactory(project=project)

        with pytest.raises(InvalidStateError) as exc_info:
            create_intent(project, client_user)

        assert exc_info.value.error_code == "PROJECT_ALREADY_PAID"
        stripe_adapter.create_payment_intent.assert_not_called()


class TestConfirmPaymentIntent:
    def test_confirm_does_not_change_ledger(self, pending_payment, stripe_adapter):
        stripe_adapter.confirm_payment_intent.return_value = make_intent_result(
            pending_payment.stripe_payment_intent_id, status="succeeded"
        )

        result = PaymentOrchestrator.confirm_payment_intent(
            pending_payment.stripe_payment_intent_id
        )

        assert result.status == "succeeded"
        assert Payment.objects.get(pk=pending_payment.pk).status == PaymentStatus.PENDING


class TestLookups:
    def test_get_payment(self, pending_payment):
        assert PaymentOrchestrator.get_payment(pending_payment.id) == pending_payment

    def test_get_missing_payment(self, db):
        with pytest.raises(PaymentNotFoundError):
            PaymentOrchestrator.get_payment("00000000-0000-0000-0000-000000000000")

    def test_get_payment_by_intent(self, pending_payment):
        assert PaymentOrchestrator.get_payment_by_intent("pi_test_pending") == pending_payment
        assert PaymentOrchestrator.get_payment_by_intent("pi_unknown") is None


class TestPaymentStats:
    def test_stats_for_client(self, project, client_user):
        PaymentFactory(project=project)
        SucceededPaymentFactory(project=project, amount_cents=5000, platform_fee_cents=500, expert_payout_cents=4500)
        RefundedPaymentFactory(project=project, refund_amount_cents=4000)
        PaymentFactory(project=project, status=PaymentStatus.FAILED)

        stats = PaymentOrchestrator.get_payment_stats(client_user.id, ROLE_CLIENT)

        assert stats.total_payments == 4
        assert stats.total_amount_cents == 35000
        assert stats.successful_payments == 1
        assert stats.pending_payments == 1
        assert stats.failed_payments == 1
        assert stats.refunded_payments == 1
        assert stats.total_refunded_cents == 4000

    def test_stats_for_expert_only_count_their_payments(self, project, expert_user):
        SucceededPaymentFactory(project=project)
        SucceededPaymentFactory()

        stats = PaymentOrchestrator.get_payment_stats(expert_user.id, ROLE_EXPERT)

        assert stats.total_payments == 1

    def test_stats_are_zero_without_payments(self, client_user):
        stats = PaymentOrchestrator.get_payment_stats(client_user.id, ROLE_CLIENT)

        assert stats.to_dict() == {
            "total_amount_cents": 0,
            "total_payments": 0,
            "successful_payments": 0,
            "pending_payments": 0,
            "failed_payments": 0,
            "refunded_payments": 0,
            "total_refunded_cents": 0,
        }

    def test_unknown_role(self, client_user):
        with pytest.raises(PaymentValidationError) as exc_info:
            PaymentOrchestrator.get_payment_stats(client_user.id, "admin")

        assert exc_info.value.error_code == "INVALID_ROLE"


class TestPaymentHistory:
    def test_paginates_newest_first(self, project, client_user):
        payments = []
        for day in (1, 2, 3):
            with freeze_time(f"2026-03-0{day} 12:00:00"):
                payments.append(PaymentFactory(project=project))

        history = PaymentOrchestrator.get_payment_history(
            client_user.id, ROLE_CLIENT, page=1, limit=2
        )

        assert [p.pk for p in history.payments] == [payments[2].pk, payments[1].pk]
        assert history.pagination == {
            "page": 1,
            "limit": 2,
            "total": 3,
            "pages": 2,
            "has_next": True,
            "has_previous": False,
        }

    def test_page_past_the_end_is_empty(self, project, client_user):
        PaymentFactory(project=project)

        history = PaymentOrchestrator.get_payment_history(
            client_user.id, ROLE_CLIENT, page=5, limit=10
        )

        assert history.payments == []
        assert history.pagination["total"] == 1

    @pytest.mark.parametrize(
        "page, limit, error_code",
        [(0, 10, "INVALID_PAGE"), (1, 0, "INVALID_LIMIT"), (1, 101, "INVALID_LIMIT")],
    )
    def test_invalid_paging(self, client_user, page, limit, error_code):
        with pytest.raises(PaymentValidationError) as exc_info:
            PaymentOrchestrator.get_payment_history(
                client_user.id, ROLE_CLIENT, page=page, limit=limit
            )

        assert exc_info.value.error_code == error_code
