"""Tests for CancellationService."""

import uuid

import pytest

from billing.adapters import StripeAdapter
from billing.exceptions import GatewayUnavailableError
from billing.models import Subscription
from billing.services import CancellationService
from billing.state_machines import SubscriptionStatus
from billing.tests.factories import SubscriptionFactory
from billing.webhooks.transitions import SubscriptionSnapshot
from programs.tests.factories import UserFactory


@pytest.fixture
def gateway_cancel(mocker):
    return mocker.patch.object(
        StripeAdapter,
        "cancel_subscription",
        return_value=SubscriptionSnapshot(status="active", external_id="sub_1", cancel_at_period_end=True),
    )


@pytest.fixture
def active(db):
    return SubscriptionFactory(
        status=SubscriptionStatus.ACTIVE, external_subscription_id="sub_1"
    )


@pytest.mark.django_db
class TestRequestCancellation:
    def test_period_end_cancellation(self, active, gateway_cancel):
        result = CancellationService.request_cancellation(active.client, active.id)

        assert result.success
        gateway_cancel.assert_called_once_with("sub_1", at_period_end=True)
        subscription = Subscription.objects.get(pk=active.pk)
        assert subscription.cancel_at_period_end is True
        assert subscription.status == SubscriptionStatus.ACTIVE

    def test_immediate_cancellation_waits_for_webhook(self, active, gateway_cancel):
        result = CancellationService.request_cancellation(active.client, active.id, immediate=True)

        assert result.success
        gateway_cancel.assert_called_once_with("sub_1", at_period_end=False)
        subscription = Subscription.objects.get(pk=active.pk)
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.slot_held is True
        assert subscription.cancellation_requested_at is not None

    def test_repeat_period_end_request_skips_gateway(self, gateway_cancel):
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.ACTIVE,
            external_subscription_id="sub_2",
            cancel_at_period_end=True,
        )

        result = CancellationService.request_cancellation(subscription.client, subscription.id)

        assert result.success
        gateway_cancel.assert_not_called()

    def test_past_due_can_cancel(self, gateway_cancel):
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE, external_subscription_id="sub_3"
        )

        assert CancellationService.request_cancellation(subscription.client, subscription.id).success

    def test_missing_subscription(self, db, gateway_cancel):
        result = CancellationService.request_cancellation(UserFactory(), uuid.uuid4())

        assert result.error_code == "NOT_FOUND"

    def test_other_user_denied(self, active, gateway_cancel):
        result = CancellationService.request_cancellation(UserFactory(), active.id)

        assert result.error_code == "PERMISSION_DENIED"
        gateway_cancel.assert_not_called()

    def test_coach_cannot_cancel_for_client(self, active, gateway_cancel):
        result = CancellationService.request_cancellation(active.coach, active.id)

        assert result.error_code == "PERMISSION_DENIED"

    @pytest.mark.parametrize("status", [SubscriptionStatus.PENDING, SubscriptionStatus.CANCELED])
    def test_invalid_state(self, status, gateway_cancel):
        subscription = SubscriptionFactory(status=status, slot_held=False)

        result = CancellationService.request_cancellation(subscription.client, subscription.id)

        assert result.error_code == "INVALID_SUBSCRIPTION_STATE"
        gateway_cancel.assert_not_called()

    def test_gateway_failure_leaves_row_untouched(self, active, mocker):
        mocker.patch.object(
            StripeAdapter,
            "cancel_subscription",
            side_effect=GatewayUnavailableError("timeout", service_name="stripe"),
        )

        result = CancellationService.request_cancellation(active.client, active.id)

        assert result.error_code == "GATEWAY_UNAVAILABLE"
        subscription = Subscription.objects.get(pk=active.pk)
        assert subscription.cancel_at_period_end is False
        assert subscription.cancellation_requested_at is None
