"""
User test factory.

Generates shop users (customers, mechanics, admins) for authorization tests.
"""

import factory
from faker import Faker

fake = Faker()


class UserFactory(factory.Factory):
    """
    Factory for generating User test data.

    Usage:
        user = User(**UserFactory())
        user = User(**UserFactory(email="custom@example.com"))
    """

    class Meta:
        model = dict

    name = factory.LazyFunction(fake.name)
    email = factory.Sequence(lambda n: f"user{n}@{fake.free_email_domain()}")
    phone = factory.LazyFunction(lambda: fake.numerify("555-###-####"))
    role = "customer"
    is_active = True


class MechanicFactory(UserFactory):
    """Factory for mechanics."""

    role = "mechanic"


class AdminFactory(UserFactory):
    """Factory for shop administrators."""

    role = "admin"


class InactiveUserFactory(MechanicFactory):
    """Factory for disabled accounts."""

    is_active = False
