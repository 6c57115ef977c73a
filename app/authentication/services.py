"""
User services.

UserService is the client store that payments reads users from and writes
Stripe customer references to.

Related files:
    - models.py: User, Profile
    - payments/services/customer_service.py: creates Stripe customers
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from core.exceptions import NotFoundError

if TYPE_CHECKING:
    from authentication.models import User

logger = logging.getLogger(__name__)


class UserService:
    """
    Read users and attach their Stripe customer.

    Usage:
        from authentication.services import UserService

        user = UserService.get_user(user_id)
        stored_id = UserService.set_stripe_customer_id(user.id, "cus_123")
    """

    @staticmethod
    def get_user(user_id) -> User:
        """
        Load a user by primary key.

        Raises:
            NotFoundError: If no such user exists
        """
        from authentication.models import User

        user = User.objects.select_related("profile").filter(pk=user_id).first()
        if user is None:
            raise NotFoundError(
                f"User {user_id} not found",
                error_code="USER_NOT_FOUND",
                details={"user_id": str(user_id)},
            )
        return user

    @staticmethod
    def set_stripe_customer_id(user_id, customer_id: str) -> str:
        """
        Store a Stripe customer id if the user has none yet.

        The write is conditional on the column still being empty, so when two
        requests race only the first id is kept. The stored value is returned
        either way; callers compare it with their own to learn whether they won.

        Raises:
            NotFoundError: If no such user exists
        """
        from authentication.models import User

        updated = User.objects.filter(
            pk=user_id, stripe_customer_id__isnull=True
        ).update(stripe_customer_id=customer_id)

        stored = (
            User.objects.filter(pk=user_id)
            .values_list("stripe_customer_id", flat=True)
            .first()
        )
        if stored is None:
            raise NotFoundError(
                f"User {user_id} not found",
                error_code="USER_NOT_FOUND",
                details={"user_id": str(user_id)},
            )

        if updated:
            logger.info(
                "Stripe customer attached to user",
                extra={"user_id": user_id, "stripe_customer_id": customer_id},
            )
        elif stored != customer_id:
            logger.info(
                "User already had a Stripe customer, keeping existing",
                extra={
                    "user_id": user_id,
                    "stripe_customer_id": stored,
                    "discarded_customer_id": customer_id,
                },
            )
        return stored
