"""
Tests for CheckoutService.

These tests verify:
- Preconditions are checked in order with no writes on refusal
- A successful checkout leaves one PENDING row holding one slot
- Capacity is never oversold, including under concurrent checkouts
- A gateway failure or unexpected error releases the reservation
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from django.db import connection

from billing.adapters import CheckoutSessionResult, StripeAdapter
from billing.exceptions import GatewayRequestError, GatewayUnavailableError
from billing.models import Subscription
from billing.services import CheckoutService
from billing.state_machines import OnboardingStatus, SubscriptionStatus
from billing.tests.factories import ConnectedAccountFactory, SubscriptionFactory
from programs.models import Program
from programs.tests.factories import ProgramFactory, UserFactory


def clients_of(program) -> int:
    return Program.objects.get(pk=program.pk).current_clients


@pytest.mark.django_db
class TestInitiateCheckout:
    def test_success_creates_pending_row_with_slot(
        self, client_user, sellable_program, stripe_checkout
    ):
        result = CheckoutService.initiate_checkout(client_user, sellable_program.id)

        assert result.success
        subscription = Subscription.objects.get(pk=result.data.subscription.pk)
        assert subscription.status == SubscriptionStatus.PENDING
        assert subscription.slot_held is True
        assert subscription.checkout_session_id == result.data.session_id
        assert subscription.checkout_url == result.data.url
        assert clients_of(sellable_program) == 1

    def test_session_params(self, client_user, sellable_program, connected_account, stripe_checkout, settings):
        settings.PLATFORM_FEE_PERCENT = 15

        result = CheckoutService.initiate_checkout(
            client_user,
            sellable_program.id,
            success_url="https://app.example.com/done",
        )

        params = stripe_checkout.call_args.args[0]
        assert params.subscription_id == result.data.subscription.id
        assert params.price_id == sellable_program.external_price_id
        assert params.destination_account_id == connected_account.stripe_account_id
        assert params.success_url == "https://app.example.com/done"
        assert params.cancel_url == settings.CHECKOUT_CANCEL_URL
        assert params.application_fee_percent == 15
        assert params.metadata["subscription_id"] == str(result.data.subscription.id)

    def test_trial_days_passed_to_gateway(self, client_user, coach, connected_account, stripe_checkout):
        program = ProgramFactory(owner=coach, trial_enabled=True, trial_days=14)

        CheckoutService.initiate_checkout(client_user, program.id)

        assert stripe_checkout.call_args.args[0].trial_days == 14

    def test_deactivated_program_unavailable(self, client_user, coach, connected_account, stripe_checkout):
        program = ProgramFactory(owner=coach, is_active=False)

        result = CheckoutService.initiate_checkout(client_user, program.id)

        assert result.error_code == "PROGRAM_UNAVAILABLE"
        assert not Subscription.objects.exists()
        stripe_checkout.assert_not_called()

    def test_unpublished_program_unavailable(self, client_user, coach, connected_account, stripe_checkout):
        program = ProgramFactory(owner=coach, external_price_id="")

        result = CheckoutService.initiate_checkout(client_user, program.id)

        assert result.error_code == "PROGRAM_UNAVAILABLE"

    def test_coach_without_account(self, client_user, stripe_checkout):
        program = ProgramFactory()

        result = CheckoutService.initiate_checkout(client_user, program.id)

        assert result.error_code == "ONBOARDING_INCOMPLETE"
        assert clients_of(program) == 0

    def test_coach_with_restricted_account(self, client_user, stripe_checkout):
        account = ConnectedAccountFactory(
            onboarding_status=OnboardingStatus.RESTRICTED, charges_enabled=False
        )
        program = ProgramFactory(owner=account.owner)

        result = CheckoutService.initiate_checkout(client_user, program.id)

        assert result.error_code == "ONBOARDING_INCOMPLETE"

    def test_already_subscribed(self, client_user, sellable_program, stripe_checkout):
        SubscriptionFactory(
            client=client_user, program=sellable_program, status=SubscriptionStatus.ACTIVE
        )

        result = CheckoutService.initiate_checkout(client_user, sellable_program.id)

        assert result.error_code == "ALREADY_SUBSCRIBED"
        stripe_checkout.assert_not_called()

    def test_resubscribe_after_cancel(self, client_user, sellable_program, stripe_checkout):
        SubscriptionFactory(
            client=client_user,
            program=sellable_program,
            status=SubscriptionStatus.CANCELED,
            slot_held=False,
        )

        result = CheckoutService.initiate_checkout(client_user, sellable_program.id)

        assert result.success

    def test_capacity_is_never_oversold(self, coach, connected_account, stripe_checkout):
        program = ProgramFactory(owner=coach, max_clients=3)
        clients = [UserFactory() for _ in range(5)]

        results = [CheckoutService.initiate_checkout(c, program.id) for c in clients]

        assert sum(1 for r in results if r.success) == 3
        assert [r.error_code for r in results if not r.success] == ["CAPACITY_EXCEEDED"] * 2
        assert clients_of(program) == 3
        assert Subscription.objects.filter(program=program, slot_held=True).count() == 3

    def test_gateway_unavailable_releases_reservation(self, client_user, sellable_program, mocker):
        mocker.patch.object(
            StripeAdapter,
            "create_checkout_session",
            side_effect=GatewayUnavailableError("timeout", service_name="stripe"),
        )

        result = CheckoutService.initiate_checkout(client_user, sellable_program.id)

        assert result.error_code == "GATEWAY_UNAVAILABLE"
        assert result.retryable is True
        assert not Subscription.objects.exists()
        assert clients_of(sellable_program) == 0

    def test_gateway_rejection_releases_reservation(self, client_user, sellable_program, mocker):
        mocker.patch.object(
            StripeAdapter,
            "create_checkout_session",
            side_effect=GatewayRequestError("bad price", service_name="stripe"),
        )

        result = CheckoutService.initiate_checkout(client_user, sellable_program.id)

        assert result.error_code == "GATEWAY_REQUEST_FAILED"
        assert clients_of(sellable_program) == 0

    def test_retry_after_gateway_failure_succeeds(self, client_user, sellable_program, mocker):
        mocker.patch.object(
            StripeAdapter,
            "create_checkout_session",
            side_effect=[
                GatewayUnavailableError("timeout", service_name="stripe"),
                CheckoutSessionResult(session_id="cs_retry", url="https://checkout.stripe.com/x"),
            ],
        )

        first = CheckoutService.initiate_checkout(client_user, sellable_program.id)
        second = CheckoutService.initiate_checkout(client_user, sellable_program.id)

        assert not first.success
        assert second.success
        assert second.data.session_id == "cs_retry"
        assert clients_of(sellable_program) == 1

    def test_unexpected_error_releases_reservation_and_propagates(
        self, client_user, sellable_program, mocker
    ):
        mocker.patch.object(
            StripeAdapter,
            "create_checkout_session",
            side_effect=RuntimeError("unexpected SDK response"),
        )

        with pytest.raises(RuntimeError):
            CheckoutService.initiate_checkout(client_user, sellable_program.id)

        assert not Subscription.objects.exists()
        assert clients_of(sellable_program) == 0


@pytest.mark.django_db(transaction=True)
class TestConcurrentCheckout:
    """Checkouts racing from separate threads, each on its own connection."""

    def test_concurrent_checkouts_never_oversell(
        self, transactional_db, coach, connected_account, mocker
    ):
        if connection.vendor == "sqlite" and connection.is_in_memory_db():
            pytest.skip("threads need a file-backed or server database")

        mocker.patch.object(
            StripeAdapter,
            "create_checkout_session",
            side_effect=lambda params: CheckoutSessionResult(
                session_id=f"cs_{params.subscription_id.hex}",
                url=f"https://checkout.stripe.com/c/pay/cs_{params.subscription_id.hex}",
            ),
        )
        capacity, overflow = 4, 4
        program = ProgramFactory(owner=coach, max_clients=capacity)
        clients = [UserFactory() for _ in range(capacity + overflow)]
        start = threading.Barrier(len(clients), timeout=10)

        def checkout(client):
            try:
                start.wait()
                return CheckoutService.initiate_checkout(client, program.id)
            finally:
                connection.close()

        with ThreadPoolExecutor(max_workers=len(clients)) as pool:
            results = list(pool.map(checkout, clients))

        assert sum(1 for r in results if r.success) == capacity
        assert [r.error_code for r in results if not r.success] == (
            ["CAPACITY_EXCEEDED"] * overflow
        )
        assert clients_of(program) == capacity
        assert Subscription.objects.filter(program=program, slot_held=True).count() == capacity
