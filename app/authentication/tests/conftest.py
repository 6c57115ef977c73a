"""
Fixtures for authentication tests.
"""

import pytest

from authentication.models import User
from authentication.tests.factories import ExpertFactory, UserFactory


@pytest.fixture
def user(db):
    """A client user with an auto-created profile."""
    return UserFactory(first_name="Ada", last_name="Client")


@pytest.fixture
def expert(db):
    return ExpertFactory()


@pytest.fixture
def superuser(db):
    return User.objects.create_superuser(
        email="admin@example.com", password="AdminPass123!"
    )
