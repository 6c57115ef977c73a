"""
Stripe customer resolution.

Each user maps to at most one Stripe Customer. The mapping is created the
first time the user pays or saves a card, with a create-if-absent write on
the user row so two concurrent requests cannot both attach a customer.

Usage:
    from payments.services import CustomerService

    customer_id = CustomerService.ensure_customer(user)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from authentication.services import UserService
from core.services import BaseService
from payments.adapters import IdempotencyKeyGenerator, StripeAdapter

if TYPE_CHECKING:
    from authentication.models import User


class CustomerService(BaseService):
    """Resolve or create the Stripe Customer for a user."""

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
    def ensure_customer(cls, user: User) -> str:
        """
        Return the user's Stripe customer id, creating the customer if needed.

        The Stripe call carries an idempotency key derived from the user id,
        so concurrent first calls usually get the same customer back from
        Stripe. If they don't, the conditional write keeps the first id and
        the other customer is logged as orphaned.

        Raises:
            ExternalProcessorError: Stripe customer creation failed
            NotFoundError: The user no longer exists
        """
        if user.stripe_customer_id:
            return user.stripe_customer_id

        adapter = cls.get_stripe_adapter()
        customer = adapter.create_customer(
            email=user.email,
            name=user.get_full_name() or None,
            metadata={"user_id": str(user.pk)},
            idempotency_key=IdempotencyKeyGenerator.generate(
                operation="create_customer",
                entity_id=user.pk,
            ),
        )

        stored_id = UserService.set_stripe_customer_id(user.pk, customer.id)
        if stored_id != customer.id:
            cls.get_logger().warning(
                "Orphaned Stripe customer created during concurrent resolution",
                extra={
                    "user_id": str(user.pk),
                    "stripe_customer_id": stored_id,
                    "orphaned_customer_id": customer.id,
                },
            )

        user.stripe_customer_id = stored_id
        return stored_id
