"""
Pytest fixtures for Stripe adapter tests.

Sections:
    - Mock Stripe Client Fixtures
    - Mock Stripe Response Fixtures
    - Mock Stripe Error Fixtures
"""

from dataclasses import dataclass
from typing import Any

import pytest
import stripe


# =============================================================================
# Mock Stripe Client Fixtures
# =============================================================================


@pytest.fixture
def mock_stripe_http_client(mocker):
    """Replace the HTTP client so no request can leave the test."""
    return mocker.patch("stripe.RequestsClient")


@pytest.fixture
def mock_stripe_payment_intent(mocker, mock_stripe_http_client):
    return mocker.patch("stripe.PaymentIntent")


@pytest.fixture
def mock_stripe_refund(mocker, mock_stripe_http_client):
    return mocker.patch("stripe.Refund")


@pytest.fixture
def mock_stripe_customer(mocker, mock_stripe_http_client):
    return mocker.patch("stripe.Customer")


@pytest.fixture
def mock_stripe_payment_method(mocker, mock_stripe_http_client):
    return mocker.patch("stripe.PaymentMethod")


@pytest.fixture
def mock_stripe_setup_intent(mocker, mock_stripe_http_client):
    return mocker.patch("stripe.SetupIntent")


@pytest.fixture
def mock_stripe_webhook(mocker):
    webhook = mocker.patch("stripe.Webhook")
    webhook.construct_event.return_value = MockStripeObject(
        {
            "id": "evt_test123",
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_test123"}},
        }
    )
    return webhook


# =============================================================================
# Mock Stripe Response Fixtures
# =============================================================================


@dataclass
class MockStripeObject:
    """Mock Stripe API object with to_dict support."""

    data: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "data":
            return self.__dict__["data"]
        return self.data.get(name)

    def to_dict(self) -> dict[str, Any]:
        return self.data


@dataclass
class MockStripeList:
    items: list[MockStripeObject]

    @property
    def data(self) -> list[MockStripeObject]:
        return self.items


@pytest.fixture
def mock_payment_intent():
    """Create a mock PaymentIntent response."""

    def _create(
        id: str = "pi_test123456",
        status: str = "requires_payment_method",
        amount: int = 5000,
        currency: str = "eur",
        client_secret: str = "pi_test123456_secret_abc123",
        last_payment_error: str | None = None,
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "payment_intent",
                "status": status,
                "amount": amount,
                "currency": currency,
                "client_secret": client_secret,
                "last_payment_error": (
                    MockStripeObject({"message": last_payment_error})
                    if last_payment_error
                    else None
                ),
                "metadata": metadata or {},
            }
        )

    return _create


@pytest.fixture
def mock_refund():
    """Create a mock Refund response."""

    def _create(
        id: str = "re_test123456",
        amount: int = 5000,
        currency: str = "eur",
        status: str = "succeeded",
        payment_intent: str = "pi_test123456",
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "refund",
                "amount": amount,
                "currency": currency,
                "status": status,
                "payment_intent": payment_intent,
                "metadata": metadata or {},
            }
        )

    return _create


@pytest.fixture
def mock_card():
    def _create(id: str = "pm_test123", customer: str | None = "cus_test123") -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "payment_method",
                "customer": customer,
                "card": MockStripeObject(
                    {"brand": "visa", "last4": "4242", "exp_month": 12, "exp_year": 2030}
                ),
            }
        )

    return _create


# =============================================================================
# Mock Stripe Error Fixtures
# =============================================================================


@pytest.fixture
def card_error():
    def _create(
        message: str = "Your card was declined.",
        code: str = "card_declined",
        decline_code: str | None = "generic_decline",
    ) -> stripe.CardError:
        error = stripe.CardError(message=message, param=None, code=code)
        error.decline_code = decline_code
        return error

    return _create


@pytest.fixture
def invalid_request_error():
    def _create(
        message: str = "No such payment_intent: 'pi_missing'",
        code: str = "resource_missing",
    ) -> stripe.InvalidRequestError:
        return stripe.InvalidRequestError(message=message, param="id", code=code)

    return _create
