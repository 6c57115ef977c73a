"""
Pytest fixtures shared by all payment tests.

Provides users, a project, payments in each state, a mocked Redis for the
distributed locks and a mocked Stripe adapter injected into the services.

Usage:
    def test_refund(succeeded_payment, stripe_adapter, mock_redis):
        stripe_adapter.create_refund.return_value = make_refund_result(...)
        RefundService.create_refund(succeeded_payment.id)
"""

from unittest.mock import MagicMock

import pytest

from authentication.tests.factories import AdminUserFactory, ExpertFactory, UserFactory
from payments.adapters import CustomerResult, SetupIntentResult
from payments.services import (
    CustomerService,
    PaymentMethodService,
    PaymentOrchestrator,
    ReconciliationService,
    RefundService,
)
from payments.tests.factories import (
    PaymentFactory,
    RefundedPaymentFactory,
    SucceededPaymentFactory,
    make_card,
    make_intent_result,
    make_refund_result,
)
from projects.tests.factories import ProjectFactory

INJECTABLE_SERVICES = (
    CustomerService,
    PaymentMethodService,
    PaymentOrchestrator,
    ReconciliationService,
    RefundService,
)


# =============================================================================
# Users and Projects
# =============================================================================


@pytest.fixture
def client_user(db):
    """Paying client with an existing Stripe customer."""
    return UserFactory(stripe_customer_id="cus_test_123")


@pytest.fixture
def expert_user(db):
    return ExpertFactory()


@pytest.fixture
def admin_user(db):
    return AdminUserFactory()


@pytest.fixture
def project(db, client_user, expert_user):
    return ProjectFactory(client=client_user, expert=expert_user)


# =============================================================================
# Payments by Status
# =============================================================================


@pytest.fixture
def pending_payment(db, project):
    return PaymentFactory(project=project, stripe_payment_intent_id="pi_test_pending")


@pytest.fixture
def succeeded_payment(db, project):
    return SucceededPaymentFactory(
        project=project, stripe_payment_intent_id="pi_test_succeeded"
    )


@pytest.fixture
def refunded_payment(db, project):
    return RefundedPaymentFactory(project=project, stripe_payment_intent_id="pi_test_refunded")


# =============================================================================
# Infrastructure Mocks
# =============================================================================


@pytest.fixture
def mock_redis(mocker):
    """
    Mock Redis client for distributed lock tests.

    Locks are free by default; set ``set.return_value = False`` to simulate
    a lock held elsewhere.
    """
    mock_client = mocker.MagicMock()
    mock_client.set.return_value = True
    mock_client.get.return_value = None
    mock_client.eval.return_value = 1

    mocker.patch("payments.locks.get_redis_connection", return_value=mock_client)
    return mock_client


@pytest.fixture
def stripe_adapter():
    """
    Mock StripeAdapter injected into every payment service.

    Methods return sensible defaults and can be overridden per test.
    """
    adapter = MagicMock()
    adapter.create_customer.return_value = CustomerResult(id="cus_new_123", email=None)
    adapter.create_payment_intent.return_value = make_intent_result()
    adapter.confirm_payment_intent.return_value = make_intent_result(status="processing")
    adapter.retrieve_payment_intent.return_value = make_intent_result()
    adapter.create_refund.return_value = make_refund_result()
    adapter.list_payment_methods.return_value = [make_card()]
    adapter.attach_payment_method.return_value = make_card()
    adapter.detach_payment_method.return_value = make_card(customer_id=None)
    adapter.create_setup_intent.return_value = SetupIntentResult(
        id="seti_test_123", client_secret="seti_test_123_secret", status="requires_payment_method"
    )

    for service in INJECTABLE_SERVICES:
        service.set_stripe_adapter(adapter)
    yield adapter
    for service in INJECTABLE_SERVICES:
        service.set_stripe_adapter(None)
