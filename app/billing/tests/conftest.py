"""
Pytest fixtures for billing tests.

Stripe is never called: the adapter is patched at its classmethods by the
fixtures below. Stream Chat is patched by the project-wide stream_chat
fixture.

Usage:
    def test_checkout(client_user, sellable_program, stripe_checkout):
        result = CheckoutService.initiate_checkout(client_user, sellable_program.id)
        assert result.success
"""

import pytest

from billing.adapters import CheckoutSessionResult, StripeAdapter
from billing.tests.factories import ConnectedAccountFactory
from programs.tests.factories import ProgramFactory, UserFactory


@pytest.fixture
def coach(db):
    return UserFactory(first_name="Casey", last_name="Coach")


@pytest.fixture
def client_user(db):
    return UserFactory(first_name="Robin", last_name="Client")


@pytest.fixture
def connected_account(coach):
    """Coach's fully onboarded Stripe account."""
    return ConnectedAccountFactory(owner=coach)


@pytest.fixture
def sellable_program(coach, connected_account):
    """Published program with capacity 10 whose coach accepts charges."""
    return ProgramFactory(owner=coach, max_clients=10)


@pytest.fixture
def stripe_checkout(mocker):
    """Successful Stripe checkout session creation."""
    counter = iter(range(1, 1000))

    def create(params):
        n = next(counter)
        return CheckoutSessionResult(
            session_id=f"cs_test_mock_{n}",
            url=f"https://checkout.stripe.com/c/pay/cs_test_mock_{n}",
        )

    return mocker.patch.object(StripeAdapter, "create_checkout_session", side_effect=create)

