"""
Factory Boy factories for program test data.

Usage:
    from programs.tests.factories import ProgramFactory, UserFactory

    program = ProgramFactory(max_clients=2)
    coach = program.owner
"""

import uuid

import factory
from django.contrib.auth import get_user_model

from programs.models import BillingInterval, Program


class UserFactory(factory.django.DjangoModelFactory):
    """Factory for creating User instances (coaches and clients)."""

    class Meta:
        model = get_user_model()
        skip_postgeneration_save = True

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.Sequence(lambda n: f"user{n}@example.com")
    first_name = factory.Faker("first_name")
    last_name = factory.Faker("last_name")
    password = factory.PostGenerationMethodCall("set_password", "testpass123")
    is_active = True


class ProgramFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating Program instances.

    Default creates an active, published monthly program with no capacity
    limit and no trial.

    Example:
        program = ProgramFactory(max_clients=1)
        trial_program = ProgramFactory(trial_enabled=True, trial_days=7)
    """

    class Meta:
        model = Program

    owner = factory.SubFactory(UserFactory)
    title = factory.Sequence(lambda n: f"Program {n}")
    price_amount = 4900
    currency = "usd"
    billing_interval = BillingInterval.MONTH
    external_product_id = factory.LazyFunction(lambda: f"prod_{uuid.uuid4().hex[:14]}")
    external_price_id = factory.LazyFunction(lambda: f"price_{uuid.uuid4().hex[:14]}")
    max_clients = None
    current_clients = 0
    is_active = True
