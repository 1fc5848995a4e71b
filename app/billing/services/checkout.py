"""
Checkout Initiator: start a hosted Stripe checkout for a program.

Flow:
    1. Preconditions, in order, each short-circuiting with no writes:
       program active -> creator onboarded -> no open subscription
    2. One transaction: reserve a slot + create the PENDING row
    3. After commit, outside any lock: create the Stripe Checkout Session
    4. Gateway failure: delete the row and release the slot (compensation)
       Success: bind session id and url to the row

Capacity is reserved before the client sees the checkout page, because the
time between opening checkout and paying is unbounded. Abandoned
reservations are released by EntitlementLedger.sweep_abandoned.

Usage:
    from billing.services import CheckoutService

    result = CheckoutService.initiate_checkout(request.user, program_id)
    if result.success:
        redirect_to(result.data.url)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError
from django.utils import timezone

from billing.adapters import CheckoutSessionParams, StripeAdapter
from billing.exceptions import (
    CapacityExceededError,
    GatewayError,
    PreconditionFailedError,
)
from billing.models import ConnectedAccount
from billing.services.entitlement_ledger import EntitlementLedger
from core.exceptions import NotFoundError
from core.services import BaseService, ServiceResult
from programs.registry import ProgramRegistry

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

    from billing.models import Subscription
    from programs.models import Program


@dataclass
class CheckoutResult:
    subscription: Subscription
    session_id: str
    url: str


class CheckoutService(BaseService):
    """Validates checkout preconditions and opens the hosted session."""

    @classmethod
    def initiate_checkout(
        cls,
        client: AbstractBaseUser,
        program_id: uuid.UUID,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> ServiceResult[CheckoutResult]:
        """
        Reserve a slot and create a Stripe Checkout Session.

        Returns:
            ServiceResult with CheckoutResult, or failure with one of:
            PROGRAM_UNAVAILABLE, ONBOARDING_INCOMPLETE, ALREADY_SUBSCRIBED,
            CAPACITY_EXCEEDED, GATEWAY_UNAVAILABLE (retryable),
            GATEWAY_REQUEST_FAILED
        """
        logger = cls.get_logger()
        log_context = {"program_id": str(program_id), "client_id": client.pk}

        try:
            program, account = cls._check_preconditions(client, program_id)
            with cls.atomic():
                reservation = ProgramRegistry.reserve_slot(program.id)
                if not reservation.success:
                    exc_class = (
                        CapacityExceededError
                        if reservation.error_code == "CAPACITY_EXCEEDED"
                        else PreconditionFailedError
                    )
                    raise exc_class(reservation.error, error_code=reservation.error_code)
                subscription = EntitlementLedger.create_provisional(
                    client, program, reservation.data
                )
        except (PreconditionFailedError, CapacityExceededError) as e:
            logger.info(
                "Checkout refused",
                extra={**log_context, "error_code": e.error_code},
            )
            return ServiceResult.from_exception(e)
        except IntegrityError:
            # Concurrent checkout for the same client and program won
            logger.info("Duplicate checkout rejected by constraint", extra=log_context)
            return ServiceResult.failure(
                "You already have a subscription to this program",
                error_code="ALREADY_SUBSCRIBED",
            )

        params = CheckoutSessionParams(
            subscription_id=subscription.id,
            program_id=program.id,
            client_id=client.pk,
            coach_id=program.owner_id,
            price_id=program.external_price_id,
            destination_account_id=account.stripe_account_id,
            success_url=success_url or settings.CHECKOUT_SUCCESS_URL,
            cancel_url=cancel_url or settings.CHECKOUT_CANCEL_URL,
            expires_at=timezone.now()
            + timedelta(minutes=settings.CHECKOUT_SESSION_TTL_MINUTES),
            trial_days=subscription.trial_days,
            customer_email=getattr(client, "email", None) or None,
        )

        try:
            session = StripeAdapter.create_checkout_session(params)
        except GatewayError as e:
            logger.warning(
                "Checkout session creation failed, releasing reservation",
                extra={
                    **log_context,
                    "subscription_id": str(subscription.id),
                    **e.log_context(),
                },
            )
            EntitlementLedger.discard_provisional(subscription)
            return ServiceResult.from_exception(e)
        except Exception:
            logger.exception(
                "Checkout session creation raised, releasing reservation",
                extra={**log_context, "subscription_id": str(subscription.id)},
            )
            EntitlementLedger.discard_provisional(subscription)
            raise

        EntitlementLedger.bind_checkout_session(subscription, session)

        logger.info(
            "Checkout session created",
            extra={
                **log_context,
                "subscription_id": str(subscription.id),
                "checkout_session_id": session.session_id,
            },
        )
        return ServiceResult.success(
            CheckoutResult(
                subscription=subscription,
                session_id=session.session_id,
                url=session.url,
            )
        )

    @classmethod
    def _check_preconditions(
        cls, client: AbstractBaseUser, program_id: uuid.UUID
    ) -> tuple[Program, ConnectedAccount]:
        """
        Checked in order: program active, creator onboarded, no open subscription.

        Raises:
            PreconditionFailedError: With the first failing precondition's code
        """
        try:
            program = ProgramRegistry.get_program(program_id)
        except NotFoundError:
            raise PreconditionFailedError(
                "Program is not available",
                error_code="PROGRAM_UNAVAILABLE",
            )

        if not program.external_price_id:
            raise PreconditionFailedError(
                "Program is not available for purchase yet",
                error_code="PROGRAM_UNAVAILABLE",
                details={"program_id": str(program.id)},
            )

        account = ConnectedAccount.objects.filter(owner_id=program.owner_id).first()
        if account is None or not account.can_accept_charges:
            raise PreconditionFailedError(
                "Creator cannot accept payments yet",
                error_code="ONBOARDING_INCOMPLETE",
            )

        if EntitlementLedger.open_subscription_exists(client, program):
            raise PreconditionFailedError(
                "You already have a subscription to this program",
                error_code="ALREADY_SUBSCRIBED",
            )

        return program, account
