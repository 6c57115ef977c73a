"""
Saved card management for a user's Stripe customer.

Usage:
    from payments.services import PaymentMethodService

    cards = PaymentMethodService.list_payment_methods(user)
    setup = PaymentMethodService.create_setup_intent(user)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import PermissionDeniedError
from core.services import BaseService
from payments.adapters import PaymentMethodResult, SetupIntentResult, StripeAdapter
from payments.exceptions import PaymentValidationError
from payments.services.customer_service import CustomerService

if TYPE_CHECKING:
    from authentication.models import User


class PaymentMethodService(BaseService):
    """List, attach and detach cards, and start card setup."""

    # Stripe adapter - can be injected for testing
    _stripe_adapter: type | None = None

    @classmethod
    def get_stripe_adapter(cls) -> type:
        return cls._stripe_adapter or StripeAdapter

    @classmethod
    def set_stripe_adapter(cls, adapter: type | None) -> None:
        """Set the Stripe adapter class (for testing)."""
        cls._stripe_adapter = adapter

    @classmethod
    def list_payment_methods(cls, user: User) -> list[PaymentMethodResult]:
        """Cards saved on the user's customer; empty if there is no customer yet."""
        if not user.stripe_customer_id:
            return []
        return cls.get_stripe_adapter().list_payment_methods(user.stripe_customer_id)

    @classmethod
    def attach_payment_method(cls, user: User, payment_method_id: str) -> PaymentMethodResult:
        """
        Raises:
            PaymentValidationError: The user has no Stripe customer
        """
        if not user.stripe_customer_id:
            raise PaymentValidationError(
                "User has no Stripe customer",
                error_code="NO_STRIPE_CUSTOMER",
                details={"user_id": str(user.pk)},
            )
        method = cls.get_stripe_adapter().attach_payment_method(
            payment_method_id, user.stripe_customer_id
        )
        cls.get_logger().info(
            "Payment method attached",
            extra={"user_id": str(user.pk), "payment_method_id": payment_method_id},
        )
        return method

    @classmethod
    def detach_payment_method(cls, user: User, payment_method_id: str) -> PaymentMethodResult:
        """
        Detach a card, but only one that belongs to the user.

        Raises:
            PermissionDeniedError: The card is not saved on the user's customer
        """
        owned = {method.id for method in cls.list_payment_methods(user)}
        if payment_method_id not in owned:
            raise PermissionDeniedError(
                "Payment method does not belong to this user",
                error_code="PAYMENT_METHOD_NOT_OWNED",
                details={"payment_method_id": payment_method_id},
            )
        method = cls.get_stripe_adapter().detach_payment_method(payment_method_id)
        cls.get_logger().info(
            "Payment method detached",
            extra={"user_id": str(user.pk), "payment_method_id": payment_method_id},
        )
        return method

    @classmethod
    def create_setup_intent(cls, user: User) -> SetupIntentResult:
        """Start saving a card for off-session use, creating the customer if needed."""
        customer_id = CustomerService.ensure_customer(user)
        return cls.get_stripe_adapter().create_setup_intent(customer_id)
