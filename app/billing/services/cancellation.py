"""
Cancellation Initiator: client-requested cancellation.

Asks Stripe to cancel and records the client's intent. The status never
changes here; the customer.subscription.deleted webhook moves the row to
CANCELED and releases the slot, so the reconciler stays the single writer
of status.

Usage:
    from billing.services import CancellationService

    result = CancellationService.request_cancellation(request.user, subscription_id)
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from billing.adapters import StripeAdapter
from billing.exceptions import GatewayError
from billing.models import Subscription
from billing.services.entitlement_ledger import EntitlementLedger
from billing.state_machines import CANCELABLE_STATUSES
from core.services import BaseService, ServiceResult

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser


class CancellationService(BaseService):

    @classmethod
    def request_cancellation(
        cls,
        user: AbstractBaseUser,
        subscription_id: uuid.UUID,
        immediate: bool = False,
    ) -> ServiceResult[Subscription]:
        """
        Cancel a subscription at period end (default) or immediately.

        The gateway is called before any local write: if Stripe cannot be
        reached the row is untouched and the caller may retry.

        Returns:
            ServiceResult with the subscription, or failure with one of:
            NOT_FOUND, PERMISSION_DENIED, INVALID_SUBSCRIPTION_STATE,
            GATEWAY_UNAVAILABLE (retryable), GATEWAY_REQUEST_FAILED
        """
        logger = cls.get_logger()

        subscription = Subscription.objects.filter(pk=subscription_id).first()
        if subscription is None:
            return ServiceResult.failure("Subscription not found", error_code="NOT_FOUND")

        if subscription.client_id != user.pk:
            return ServiceResult.failure(
                "You can only cancel your own subscriptions",
                error_code="PERMISSION_DENIED",
            )

        if subscription.status not in CANCELABLE_STATUSES or not (
            subscription.external_subscription_id
        ):
            return ServiceResult.failure(
                f"Cannot cancel a subscription that is {subscription.status}",
                error_code="INVALID_SUBSCRIPTION_STATE",
            )

        if not immediate and subscription.cancel_at_period_end:
            return ServiceResult.success(subscription)

        log_context = {
            "subscription_id": str(subscription.id),
            "external_subscription_id": subscription.external_subscription_id,
            "immediate": immediate,
        }

        try:
            StripeAdapter.cancel_subscription(
                subscription.external_subscription_id,
                at_period_end=not immediate,
            )
        except GatewayError as e:
            logger.warning(
                "Gateway cancellation failed",
                extra={**log_context, **e.log_context()},
            )
            return ServiceResult.from_exception(e)

        subscription = EntitlementLedger.record_cancellation_request(
            subscription.id, immediate=immediate
        )
        logger.info("Cancellation requested", extra=log_context)
        return ServiceResult.success(subscription)
