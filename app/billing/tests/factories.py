"""
Factory Boy factories for billing test data.

Usage:
    from billing.tests.factories import (
        ConnectedAccountFactory,
        SubscriptionFactory,
        WebhookEventFactory,
    )

    # Provisional checkout row holding a slot
    subscription = SubscriptionFactory()

    # Confirmed subscription
    subscription = SubscriptionFactory(
        status=SubscriptionStatus.ACTIVE,
        external_subscription_id="sub_123",
    )

Note: Subscription.status is a protected FSM field. It can be set when the
row is created, after that only through transitions. Re-read rows with
Subscription.objects.get() rather than refresh_from_db().
"""

import uuid

import factory
from django.utils import timezone

from billing.models import ConnectedAccount, Subscription, WebhookEvent
from billing.state_machines import OnboardingStatus, SubscriptionStatus, WebhookEventStatus
from programs.tests.factories import ProgramFactory, UserFactory


class ConnectedAccountFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating ConnectedAccount instances.

    Default creates a fully onboarded account that accepts charges.
    """

    class Meta:
        model = ConnectedAccount

    owner = factory.SubFactory(UserFactory)
    stripe_account_id = factory.Sequence(lambda n: f"acct_test_{n}_{uuid.uuid4().hex[:8]}")
    onboarding_status = OnboardingStatus.COMPLETE
    charges_enabled = True
    payouts_enabled = True
    details_submitted = True
    metadata = factory.LazyFunction(dict)


class SubscriptionFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating Subscription instances.

    Default creates a PENDING row holding one slot. The slot is not
    reserved on the program counter: pass a program whose current_clients
    already accounts for it when the counter matters.
    """

    class Meta:
        model = Subscription

    client = factory.SubFactory(UserFactory)
    program = factory.SubFactory(ProgramFactory)
    coach = factory.SelfAttribute("program.owner")
    status = SubscriptionStatus.PENDING
    slot_held = True
    checkout_session_id = factory.Sequence(lambda n: f"cs_test_{n}")
    channel_id = None
    # Rows built with a channel have already been welcomed
    channel_welcomed_at = factory.LazyAttribute(
        lambda o: timezone.now() if o.channel_id else None
    )
    metadata = factory.LazyFunction(dict)


class WebhookEventFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating WebhookEvent instances.

    Example:
        event = WebhookEventFactory(
            event_type="customer.subscription.deleted",
            payload=stripe_event("customer.subscription.deleted", {...}),
        )
    """

    class Meta:
        model = WebhookEvent

    stripe_event_id = factory.Sequence(lambda n: f"evt_test_{n}")
    event_type = "customer.subscription.updated"
    payload = factory.LazyAttribute(
        lambda o: {"id": o.stripe_event_id, "type": o.event_type, "data": {"object": {}}}
    )
    status = WebhookEventStatus.PENDING
    retry_count = 0


# =============================================================================
# Stripe payload builders
# =============================================================================


def stripe_event(event_type: str, data_object: dict, event_id: str | None = None) -> dict:
    """A verified Stripe event as StripeAdapter.verify_webhook_signature returns it."""
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "data": {"object": data_object},
    }


def checkout_session_object(subscription: Subscription, **overrides) -> dict:
    session = {
        "id": subscription.checkout_session_id,
        "object": "checkout.session",
        "mode": "subscription",
        "payment_status": "paid",
        "subscription": f"sub_{subscription.id.hex[:12]}",
        "customer": "cus_test",
        "client_reference_id": str(subscription.id),
        "metadata": {"subscription_id": str(subscription.id)},
    }
    session.update(overrides)
    return session


def subscription_object(external_id: str, status: str, subscription_id=None, **overrides) -> dict:
    obj = {
        "id": external_id,
        "object": "subscription",
        "status": status,
        "customer": "cus_test",
        "current_period_start": 1767225600,
        "current_period_end": 1769904000,
        "cancel_at_period_end": False,
        "metadata": {"subscription_id": str(subscription_id)} if subscription_id else {},
    }
    obj.update(overrides)
    return obj


def invoice_object(external_id: str, invoice_id: str = "in_test_1", amount_paid: int = 4900, **overrides) -> dict:
    obj = {
        "id": invoice_id,
        "object": "invoice",
        "subscription": external_id,
        "amount_paid": amount_paid,
        "status_transitions": {"paid_at": 1767225600},
    }
    obj.update(overrides)
    return obj
