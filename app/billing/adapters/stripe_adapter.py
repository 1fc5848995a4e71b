"""
Stripe API adapter for billing operations.

All Stripe calls go through StripeAdapter so that every call gets the same
timeout, idempotency key, timing log and error translation.

Features:
- Configurable timeouts and network retries on all API calls
- Stripe SDK errors translated to GatewayRequestError / GatewayUnavailableError
- Structured logging with timing metrics
- Idempotency keys derived from local ids, so a retried checkout or
  cancellation returns Stripe's original response

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: SDK network retries (default: 2)
- PLATFORM_FEE_PERCENT: application fee on each subscription invoice

Usage:
    from billing.adapters import StripeAdapter, CheckoutSessionParams

    session = StripeAdapter.create_checkout_session(params)
    redirect(session.url)
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

from billing.exceptions import (
    GatewayRequestError,
    GatewayUnavailableError,
    SignatureInvalidError,
)
from billing.webhooks.transitions import SubscriptionSnapshot

if TYPE_CHECKING:
    from collections.abc import Callable

    from programs.models import Program

SERVICE_NAME = "stripe"


# =============================================================================
# Data Classes for Adapter Parameters and Results
# =============================================================================


@dataclass
class CheckoutSessionParams:
    """
    Parameters for a hosted subscription checkout.

    The local subscription id travels in both the session and the
    subscription metadata, so every later webhook can be matched to its row
    even when events arrive out of order.
    """

    subscription_id: uuid.UUID
    program_id: uuid.UUID
    client_id: int
    coach_id: int
    price_id: str
    destination_account_id: str
    success_url: str
    cancel_url: str
    expires_at: datetime
    trial_days: int = 0
    customer_email: str | None = None
    application_fee_percent: int = field(
        default_factory=lambda: settings.PLATFORM_FEE_PERCENT
    )

    @property
    def metadata(self) -> dict[str, str]:
        return {
            "subscription_id": str(self.subscription_id),
            "program_id": str(self.program_id),
            "client_id": str(self.client_id),
            "coach_id": str(self.coach_id),
        }


@dataclass
class CheckoutSessionResult:
    session_id: str
    url: str


@dataclass
class ConnectedAccountResult:
    account_id: str
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool


@dataclass
class ProgramPriceResult:
    product_id: str
    price_id: str


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The same (operation, entity) always yields the same key, so a checkout
    retried after a timeout returns the session Stripe already created.

    Example:
        key = IdempotencyKeyGenerator.generate("checkout", subscription.id)
        # "checkout:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(operation: str, entity_id: uuid.UUID | str, attempt: int = 1) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]
        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Payment gateway adapter over the Stripe SDK.

    All methods are classmethods; the SDK is configured from settings on
    every call so Celery workers and web workers behave identically.
    """

    @staticmethod
    def _configure_stripe() -> None:
        """Configure Stripe client with API key, timeout and retries."""
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.max_network_retries = settings.STRIPE_MAX_RETRIES
        stripe.default_http_client = stripe.RequestsClient(
            timeout=settings.STRIPE_API_TIMEOUT_SECONDS
        )

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def _execute(cls, operation: str, log_context: dict[str, Any], call: Callable[[], Any]) -> Any:
        """Run one SDK call with timing logs and error translation."""
        cls._configure_stripe()
        logger = cls.get_logger()
        log_context = {"operation": operation, **log_context}

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)
        try:
            response = call()
        except stripe.StripeError as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Stripe operation completed",
            extra={**log_context, "duration_ms": duration_ms},
        )
        return response

    # =========================================================================
    # Checkout & Subscriptions
    # =========================================================================

    @classmethod
    def create_checkout_session(cls, params: CheckoutSessionParams) -> CheckoutSessionResult:
        """
        Create a hosted Checkout Session in subscription mode.

        The charge is a destination charge to the creator's connected
        account with the platform fee taken as application_fee_percent.

        Raises:
            GatewayRequestError: Stripe rejected the parameters
            GatewayUnavailableError: Timeout, connection error, rate limit, 5xx
        """
        subscription_data: dict[str, Any] = {
            "application_fee_percent": params.application_fee_percent,
            "transfer_data": {"destination": params.destination_account_id},
            "metadata": params.metadata,
        }
        if params.trial_days > 0:
            subscription_data["trial_period_days"] = params.trial_days

        request: dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": params.price_id, "quantity": 1}],
            "success_url": params.success_url,
            "cancel_url": params.cancel_url,
            "client_reference_id": str(params.subscription_id),
            "metadata": params.metadata,
            "subscription_data": subscription_data,
            "expires_at": int(params.expires_at.timestamp()),
        }
        if params.customer_email:
            request["customer_email"] = params.customer_email

        idempotency_key = IdempotencyKeyGenerator.generate(
            "checkout", params.subscription_id
        )
        session = cls._execute(
            "create_checkout_session",
            {
                "subscription_id": str(params.subscription_id),
                "program_id": str(params.program_id),
                "idempotency_key": idempotency_key,
            },
            lambda: stripe.checkout.Session.create(
                **request, idempotency_key=idempotency_key
            ),
        )
        return CheckoutSessionResult(session_id=session.id, url=session.url)

    @classmethod
    def cancel_subscription(cls, external_id: str, at_period_end: bool) -> SubscriptionSnapshot:
        """
        Cancel a Stripe subscription.

        Args:
            external_id: Stripe Subscription ID (sub_xxx)
            at_period_end: True schedules cancellation at the end of the
                current period; False cancels now

        Returns:
            Snapshot of the subscription as Stripe reports it afterwards.
            Status still changes locally only through the webhook.
        """
        log_context = {"subscription_id": external_id, "at_period_end": at_period_end}
        if at_period_end:
            subscription = cls._execute(
                "schedule_subscription_cancel",
                log_context,
                lambda: stripe.Subscription.modify(
                    external_id,
                    cancel_at_period_end=True,
                    idempotency_key=IdempotencyKeyGenerator.generate(
                        "cancel_at_period_end", external_id
                    ),
                ),
            )
        else:
            subscription = cls._execute(
                "cancel_subscription",
                log_context,
                lambda: stripe.Subscription.cancel(external_id),
            )
        return SubscriptionSnapshot.from_stripe_object(subscription.to_dict())

    @classmethod
    def get_subscription(cls, external_id: str) -> SubscriptionSnapshot:
        """Retrieve Stripe's current view of a subscription."""
        subscription = cls._execute(
            "retrieve_subscription",
            {"subscription_id": external_id},
            lambda: stripe.Subscription.retrieve(external_id),
        )
        return SubscriptionSnapshot.from_stripe_object(subscription.to_dict())

    # =========================================================================
    # Connect & Catalog
    # =========================================================================

    @classmethod
    def create_connected_account(cls, email: str, user_id: int) -> ConnectedAccountResult:
        """Create an Express connected account for a creator."""
        account = cls._execute(
            "create_connected_account",
            {"user_id": user_id},
            lambda: stripe.Account.create(
                type="express",
                email=email,
                metadata={"user_id": str(user_id)},
                capabilities={
                    "card_payments": {"requested": True},
                    "transfers": {"requested": True},
                },
                idempotency_key=IdempotencyKeyGenerator.generate("connect_account", user_id),
            ),
        )
        return ConnectedAccountResult(
            account_id=account.id,
            charges_enabled=bool(account.charges_enabled),
            payouts_enabled=bool(account.payouts_enabled),
            details_submitted=bool(account.details_submitted),
        )

    @classmethod
    def create_onboarding_link(cls, account_id: str, return_url: str, refresh_url: str) -> str:
        """Create a one-time Connect onboarding link."""
        link = cls._execute(
            "create_onboarding_link",
            {"account_id": account_id},
            lambda: stripe.AccountLink.create(
                account=account_id,
                return_url=return_url,
                refresh_url=refresh_url,
                type="account_onboarding",
            ),
        )
        return link.url

    @classmethod
    def create_program_price(cls, program: Program) -> ProgramPriceResult:
        """Create the Stripe product and recurring price a program sells at."""
        metadata = {"program_id": str(program.id), "coach_id": str(program.owner_id)}

        product = cls._execute(
            "create_product",
            {"program_id": str(program.id)},
            lambda: stripe.Product.create(
                name=program.title,
                description=program.description or None,
                metadata=metadata,
                idempotency_key=IdempotencyKeyGenerator.generate("product", program.id),
            ),
        )
        price = cls._execute(
            "create_price",
            {"program_id": str(program.id), "product_id": product.id},
            lambda: stripe.Price.create(
                product=product.id,
                unit_amount=program.price_amount,
                currency=program.currency,
                recurring={"interval": program.billing_interval},
                metadata=metadata,
                idempotency_key=IdempotencyKeyGenerator.generate(
                    f"price:{program.price_amount}:{program.billing_interval}",
                    program.id,
                ),
            ),
        )
        return ProgramPriceResult(product_id=product.id, price_id=price.id)

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    @classmethod
    def verify_webhook_signature(cls, payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify and parse a Stripe webhook event.

        Args:
            payload: Raw request body, exactly as received
            signature: Stripe-Signature header value

        Returns:
            Parsed event dict

        Raises:
            SignatureInvalidError: Signature missing, malformed, stale or wrong
        """
        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                settings.STRIPE_WEBHOOK_SECRET,
            )
        except (stripe.SignatureVerificationError, ValueError) as e:
            raise SignatureInvalidError(
                "Invalid webhook signature",
                details={"error": str(e)},
            )
        return event.to_dict()

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: stripe.StripeError,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to gateway exceptions.

        Raises:
            GatewayUnavailableError: Rate limited, connection failure or
                timeout, Stripe 5xx
            GatewayRequestError: Invalid request, authentication or
                permission failure, card error
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}
        details = {"stripe_code": error.code} if error.code else {}

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise GatewayUnavailableError(
                "Stripe rate limit exceeded. Please retry.",
                details=details,
                service_name=SERVICE_NAME,
            )

        if isinstance(error, stripe.APIConnectionError):
            # Covers timeouts: the request may have reached Stripe
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            raise GatewayUnavailableError(
                "Could not connect to Stripe. Please retry.",
                details=details,
                service_name=SERVICE_NAME,
            )

        if isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise GatewayUnavailableError(
                "Stripe service error. Please retry.",
                details=details,
                service_name=SERVICE_NAME,
            )

        if isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key", extra=log_context
            )
            raise GatewayRequestError(
                "Stripe authentication failed",
                details=details,
                service_name=SERVICE_NAME,
            )

        logger.error(
            f"Stripe rejected request: {type(error).__name__}",
            extra={**log_context, "stripe_code": error.code},
        )
        raise GatewayRequestError(
            str(error.user_message or error),
            details=details,
            service_name=SERVICE_NAME,
        )
