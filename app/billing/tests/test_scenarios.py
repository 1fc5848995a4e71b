"""
End-to-end billing journeys.

Each test drives the system the way production does: checkout through the
service, Stripe events through the webhook endpoint, maintenance through
the tasks. Only the Stripe and Stream Chat adapters are patched.
"""

import json

import pytest
from django.urls import reverse
from freezegun import freeze_time

from billing import tasks
from billing.adapters import StripeAdapter
from billing.exceptions import GatewayUnavailableError, SignatureInvalidError
from billing.models import Subscription, WebhookEvent
from billing.services import CancellationService, CheckoutService
from billing.state_machines import SubscriptionStatus
from billing.tests.factories import (
    SubscriptionFactory,
    checkout_session_object,
    stripe_event,
    subscription_object,
)
from billing.webhooks.transitions import SubscriptionSnapshot
from programs.models import Program
from programs.tests.factories import ProgramFactory, UserFactory


@pytest.fixture
def deliver(client, mocker):
    """Deliver a Stripe event to the webhook endpoint with a valid signature."""
    verify = mocker.patch.object(StripeAdapter, "verify_webhook_signature")

    def _deliver(event):
        verify.return_value = event
        return client.post(
            reverse("billing:stripe_webhook"),
            data=json.dumps(event),
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE="t=1,v1=valid",
        )

    return _deliver


def reload(subscription):
    return Subscription.objects.get(pk=subscription.pk)


def clients_of(program):
    return Program.objects.get(pk=program.pk).current_clients


@pytest.mark.django_db
class TestCapacityJourney:
    def test_single_seat_program(
        self, coach, connected_account, stripe_checkout, stream_chat, deliver, mocker
    ):
        program = ProgramFactory(owner=coach, max_clients=1)
        client_a = UserFactory()
        client_b = UserFactory()

        # A reserves the only seat
        result = CheckoutService.initiate_checkout(client_a, program.id)
        assert result.success
        s1 = result.data.subscription
        assert reload(s1).status == SubscriptionStatus.PENDING
        assert clients_of(program) == 1

        # Stripe delivers the completion twice
        completed = stripe_event("checkout.session.completed", checkout_session_object(reload(s1)))
        assert deliver(completed).status_code == 200
        duplicate = deliver(completed)
        assert duplicate.status_code == 200
        assert duplicate.content == b"Already processed"

        s1 = reload(s1)
        assert s1.status == SubscriptionStatus.ACTIVE
        assert clients_of(program) == 1
        stream_chat.create_channel.assert_called_once()

        # B is turned away while A holds the seat
        refused = CheckoutService.initiate_checkout(client_b, program.id)
        assert refused.error_code == "CAPACITY_EXCEEDED"

        # A cancels; the seat frees only when Stripe confirms
        mocker.patch.object(
            StripeAdapter,
            "cancel_subscription",
            return_value=SubscriptionSnapshot(status="canceled", external_id=s1.external_subscription_id),
        )
        assert CancellationService.request_cancellation(client_a, s1.id, immediate=True).success
        assert clients_of(program) == 1

        deleted = stripe_event(
            "customer.subscription.deleted",
            subscription_object(s1.external_subscription_id, "canceled"),
        )
        assert deliver(deleted).status_code == 200
        assert reload(s1).status == SubscriptionStatus.CANCELED
        assert clients_of(program) == 0

        # B gets the seat
        retry = CheckoutService.initiate_checkout(client_b, program.id)
        assert retry.success
        assert clients_of(program) == 1

    def test_invalid_signature_changes_nothing(
        self, client, client_user, sellable_program, stripe_checkout, mocker
    ):
        s1 = CheckoutService.initiate_checkout(client_user, sellable_program.id).data.subscription
        mocker.patch.object(
            StripeAdapter,
            "verify_webhook_signature",
            side_effect=SignatureInvalidError("Invalid webhook signature"),
        )
        version = reload(s1).version

        response = client.post(
            reverse("billing:stripe_webhook"),
            data=json.dumps(stripe_event("checkout.session.completed", checkout_session_object(s1))),
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE="t=1,v1=forged",
        )

        assert response.status_code == 400
        assert not WebhookEvent.objects.exists()
        s1 = reload(s1)
        assert s1.status == SubscriptionStatus.PENDING
        assert s1.version == version
        assert clients_of(sellable_program) == 1


@pytest.mark.django_db
class TestAbandonedCheckoutJourney:
    def test_sweep_then_late_completion(
        self, client_user, sellable_program, stripe_checkout, stream_chat, deliver
    ):
        with freeze_time("2026-03-01 10:00:00"):
            s1 = CheckoutService.initiate_checkout(client_user, sellable_program.id).data.subscription

        with freeze_time("2026-03-01 12:00:00"):
            assert tasks.sweep_abandoned_checkouts() == {"abandoned_count": 1}
            # A second sweep finds nothing and releases nothing
            assert tasks.sweep_abandoned_checkouts() == {"abandoned_count": 0}

        assert reload(s1).status == SubscriptionStatus.CANCELED
        assert clients_of(sellable_program) == 0

        # Payment lands after the sweep: stays canceled, flagged for an operator
        late = stripe_event("checkout.session.completed", checkout_session_object(reload(s1)))
        assert deliver(late).status_code == 200

        s1 = reload(s1)
        assert s1.status == SubscriptionStatus.CANCELED
        assert s1.needs_review
        assert clients_of(sellable_program) == 0

    def test_client_can_check_out_again_after_sweep(self, client_user, sellable_program, stripe_checkout):
        with freeze_time("2026-03-01 10:00:00"):
            first = CheckoutService.initiate_checkout(client_user, sellable_program.id)
        with freeze_time("2026-03-01 12:00:00"):
            tasks.sweep_abandoned_checkouts()

            second = CheckoutService.initiate_checkout(client_user, sellable_program.id)

        assert second.success
        assert second.data.subscription.id != first.data.subscription.id
        assert clients_of(sellable_program) == 1


@pytest.mark.django_db
class TestLifecycleJourney:
    def test_trial_payment_failure_recovery_and_end(
        self, coach, connected_account, stripe_checkout, stream_chat, deliver, settings
    ):
        settings.PLATFORM_FEE_PERCENT = 20
        program = ProgramFactory(owner=coach, trial_enabled=True, trial_days=7, max_clients=5)
        client_user = UserFactory()
        s1 = CheckoutService.initiate_checkout(client_user, program.id).data.subscription
        external_id = f"sub_{s1.id.hex[:12]}"

        deliver(stripe_event("checkout.session.completed", checkout_session_object(reload(s1))))
        assert reload(s1).status == SubscriptionStatus.TRIALING

        deliver(stripe_event("customer.subscription.updated", subscription_object(external_id, "active")))
        assert reload(s1).status == SubscriptionStatus.ACTIVE

        deliver(
            stripe_event(
                "invoice.paid",
                {
                    "id": "in_1",
                    "object": "invoice",
                    "subscription": external_id,
                    "amount_paid": program.price_amount,
                },
            )
        )
        deliver(stripe_event("customer.subscription.updated", subscription_object(external_id, "past_due")))
        s1 = reload(s1)
        assert s1.status == SubscriptionStatus.PAST_DUE
        assert not s1.is_entitled
        assert clients_of(program) == 1

        deliver(stripe_event("customer.subscription.updated", subscription_object(external_id, "active")))
        assert reload(s1).status == SubscriptionStatus.ACTIVE

        deliver(stripe_event("customer.subscription.deleted", subscription_object(external_id, "canceled")))
        s1 = reload(s1)
        assert s1.status == SubscriptionStatus.CANCELED
        assert s1.total_paid == program.price_amount
        assert s1.coach_earnings == program.price_amount - program.price_amount * 20 // 100
        assert clients_of(program) == 0
        stream_chat.archive_channel.assert_called_once()

    def test_archive_failure_does_not_undo_cancellation(self, sellable_program, stream_chat, deliver):
        stream_chat.archive_channel.side_effect = GatewayUnavailableError(
            "stream down", service_name="stream-chat"
        )
        Program.objects.filter(pk=sellable_program.pk).update(current_clients=1)
        s1 = SubscriptionFactory(
            program=sellable_program,
            status=SubscriptionStatus.ACTIVE,
            external_subscription_id="sub_arch",
            channel_id="coaching-arch",
        )

        response = deliver(
            stripe_event("customer.subscription.deleted", subscription_object("sub_arch", "canceled"))
        )

        assert response.status_code == 200
        assert reload(s1).status == SubscriptionStatus.CANCELED
        assert clients_of(sellable_program) == 0
        stream_chat.archive_channel.assert_called_once_with("coaching-arch")
