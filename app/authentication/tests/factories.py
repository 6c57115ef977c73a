"""
Factory Boy factories for authentication models.

Usage:
    from authentication.tests.factories import UserFactory

    client = UserFactory()
    expert = UserFactory(role="expert")
    customer = UserFactory(stripe_customer_id="cus_test_123")
"""

import factory

from authentication.models import User, UserRole


class UserFactory(factory.django.DjangoModelFactory):
    """
    Factory for User model.

    Users are active clients without a Stripe customer by default.
    """

    class Meta:
        model = User
        skip_postgeneration_save = True

    email = factory.Sequence(lambda n: f"user{n}@example.com")
    role = UserRole.CLIENT
    is_active = True
    is_staff = False
    first_name = factory.Faker("first_name")
    last_name = factory.Faker("last_name")

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        """Create through UserManager.create_user() so the profile is filled."""
        password = kwargs.pop("password", "TestPass123!")
        return model_class.objects.create_user(
            email=kwargs.pop("email"), password=password, **kwargs
        )


class ExpertFactory(UserFactory):
    role = UserRole.EXPERT


class AdminUserFactory(UserFactory):
    role = UserRole.ADMIN
    is_staff = True
