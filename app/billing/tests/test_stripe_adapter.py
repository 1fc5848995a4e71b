"""
Tests for StripeAdapter.

The SDK resources are patched; webhook signatures are computed for real
against the configured signing secret.
"""

import hashlib
import hmac
import json
import time
import uuid
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import stripe

from billing.adapters import CheckoutSessionParams, IdempotencyKeyGenerator, StripeAdapter
from billing.exceptions import (
    GatewayRequestError,
    GatewayUnavailableError,
    SignatureInvalidError,
)

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
def params():
    return CheckoutSessionParams(
        subscription_id=uuid.UUID("11111111-2222-3333-4444-555555555555"),
        program_id=uuid.UUID("66666666-7777-8888-9999-000000000000"),
        client_id=8,
        coach_id=7,
        price_id="price_123",
        destination_account_id="acct_coach",
        success_url="https://app.example.com/success",
        cancel_url="https://app.example.com/cancel",
        expires_at=datetime(2026, 3, 1, 11, 0, tzinfo=timezone.utc),
        application_fee_percent=20,
    )


@pytest.fixture
def session_create(mocker):
    return mocker.patch(
        "stripe.checkout.Session.create",
        return_value=MagicMock(id="cs_123", url="https://checkout.stripe.com/c/pay/cs_123"),
    )


def sign(payload: str, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signature = hmac.new(
        secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


class TestCreateCheckoutSession:
    def test_request_fields(self, params, session_create):
        result = StripeAdapter.create_checkout_session(params)

        assert result.session_id == "cs_123"
        assert result.url == "https://checkout.stripe.com/c/pay/cs_123"

        kwargs = session_create.call_args.kwargs
        assert kwargs["mode"] == "subscription"
        assert kwargs["line_items"] == [{"price": "price_123", "quantity": 1}]
        assert kwargs["client_reference_id"] == str(params.subscription_id)
        assert kwargs["metadata"]["subscription_id"] == str(params.subscription_id)
        assert kwargs["expires_at"] == int(params.expires_at.timestamp())
        assert kwargs["subscription_data"]["application_fee_percent"] == 20
        assert kwargs["subscription_data"]["transfer_data"] == {"destination": "acct_coach"}
        assert "trial_period_days" not in kwargs["subscription_data"]
        assert kwargs["idempotency_key"] == IdempotencyKeyGenerator.generate(
            "checkout", params.subscription_id
        )

    def test_trial_days_passed_through(self, params, session_create):
        params.trial_days = 14

        StripeAdapter.create_checkout_session(params)

        assert session_create.call_args.kwargs["subscription_data"]["trial_period_days"] == 14

    @pytest.mark.parametrize(
        "error",
        [
            stripe.RateLimitError("slow down"),
            stripe.APIConnectionError("timed out"),
            stripe.APIError("internal error"),
        ],
    )
    def test_transient_errors_are_unavailable(self, params, mocker, error):
        mocker.patch("stripe.checkout.Session.create", side_effect=error)

        with pytest.raises(GatewayUnavailableError) as exc_info:
            StripeAdapter.create_checkout_session(params)

        assert exc_info.value.is_retryable

    @pytest.mark.parametrize(
        "error",
        [
            stripe.InvalidRequestError("No such price", param="line_items"),
            stripe.AuthenticationError("bad key"),
        ],
    )
    def test_rejections_are_request_errors(self, params, mocker, error):
        mocker.patch("stripe.checkout.Session.create", side_effect=error)

        with pytest.raises(GatewayRequestError) as exc_info:
            StripeAdapter.create_checkout_session(params)

        assert not exc_info.value.is_retryable


class TestSubscriptions:
    def test_cancel_at_period_end_modifies(self, mocker):
        modify = mocker.patch(
            "stripe.Subscription.modify",
            return_value=MagicMock(
                to_dict=lambda: {"id": "sub_1", "status": "active", "cancel_at_period_end": True}
            ),
        )
        cancel = mocker.patch("stripe.Subscription.cancel")

        snapshot = StripeAdapter.cancel_subscription("sub_1", at_period_end=True)

        assert modify.call_args.args == ("sub_1",)
        assert modify.call_args.kwargs["cancel_at_period_end"] is True
        cancel.assert_not_called()
        assert snapshot.cancel_at_period_end is True

    def test_immediate_cancel(self, mocker):
        cancel = mocker.patch(
            "stripe.Subscription.cancel",
            return_value=MagicMock(to_dict=lambda: {"id": "sub_1", "status": "canceled"}),
        )

        snapshot = StripeAdapter.cancel_subscription("sub_1", at_period_end=False)

        cancel.assert_called_once_with("sub_1")
        assert snapshot.status == "canceled"

    def test_get_subscription_reads_item_periods(self, mocker):
        mocker.patch(
            "stripe.Subscription.retrieve",
            return_value=MagicMock(
                to_dict=lambda: {
                    "id": "sub_1",
                    "status": "active",
                    "customer": {"id": "cus_1"},
                    "items": {
                        "data": [
                            {"current_period_start": 1767225600, "current_period_end": 1769904000}
                        ]
                    },
                }
            ),
        )

        snapshot = StripeAdapter.get_subscription("sub_1")

        assert snapshot.customer_id == "cus_1"
        assert snapshot.current_period_end == datetime(2026, 2, 1, tzinfo=timezone.utc)


class TestVerifyWebhookSignature:
    @pytest.fixture(autouse=True)
    def webhook_secret(self, settings):
        settings.STRIPE_WEBHOOK_SECRET = WEBHOOK_SECRET

    def test_valid_signature(self):
        payload = json.dumps(
            {
                "id": "evt_1",
                "object": "event",
                "type": "invoice.paid",
                "data": {"object": {"id": "in_1", "object": "invoice"}},
            }
        )

        event = StripeAdapter.verify_webhook_signature(payload.encode(), sign(payload))

        assert event["id"] == "evt_1"
        assert event["data"]["object"]["id"] == "in_1"

    def test_wrong_secret(self):
        payload = json.dumps({"id": "evt_1", "object": "event"})

        with pytest.raises(SignatureInvalidError):
            StripeAdapter.verify_webhook_signature(
                payload.encode(), sign(payload, secret="whsec_other")
            )

    def test_tampered_payload(self):
        payload = json.dumps({"id": "evt_1", "object": "event"})
        header = sign(payload)

        with pytest.raises(SignatureInvalidError):
            StripeAdapter.verify_webhook_signature(
                json.dumps({"id": "evt_2", "object": "event"}).encode(), header
            )

    def test_malformed_header(self):
        with pytest.raises(SignatureInvalidError):
            StripeAdapter.verify_webhook_signature(b"{}", "not-a-signature")


class TestIdempotencyKeyGenerator:
    def test_deterministic(self):
        entity = uuid.uuid4()

        assert IdempotencyKeyGenerator.generate("checkout", entity) == (
            IdempotencyKeyGenerator.generate("checkout", entity)
        )

    def test_varies_by_operation_and_attempt(self):
        entity = uuid.uuid4()
        keys = {
            IdempotencyKeyGenerator.generate("checkout", entity),
            IdempotencyKeyGenerator.generate("cancel_at_period_end", entity),
            IdempotencyKeyGenerator.generate("checkout", entity, attempt=2),
        }

        assert len(keys) == 3
