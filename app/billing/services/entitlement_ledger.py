"""
Entitlement Ledger: the only writer of Subscription rows.

Every change to a subscription goes through this service:
- checkout creates and binds (or discards) the provisional PENDING row
- the webhook reconciler applies gateway events via apply_event()
- the abandonment sweep cancels PENDING rows nobody paid for
- the cancellation service records the client's intent
- the channel provisioner stores its channel id

Capacity Bookkeeping:
    A row holds at most one program slot, tracked by Subscription.slot_held.
    The flag and the program counter always change in the same transaction,
    so Program.current_clients equals the number of rows with slot_held set.

Usage:
    from billing.services import EntitlementLedger

    with transaction.atomic():
        subscription = EntitlementLedger.locate_for_update(
            external_subscription_id="sub_123"
        )
        plan = EntitlementLedger.apply_event(subscription, event)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from django.conf import settings
from django.db.models import F, Q, Sum
from django.utils import timezone
from django_fsm import TransitionNotAllowed

from billing.adapters import StripeAdapter
from billing.exceptions import (
    GatewayError,
    InvalidStateTransitionError,
    UnknownSubscriptionReferenceError,
)
from billing.models import Subscription
from billing.state_machines import ENTITLED_STATUSES, OPEN_STATUSES, SubscriptionStatus
from billing.webhooks.transitions import (
    LedgerEvent,
    LedgerEventKind,
    LedgerSnapshot,
    TransitionPlan,
    plan_transition,
)
from core.services import BaseService, ServiceResult
from programs.models import Program
from programs.registry import ProgramRegistry, Reservation

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

    from billing.adapters import CheckoutSessionResult


@dataclass(frozen=True)
class CapacityDrift:
    """A program whose counter disagreed with its held slots."""

    program_id: uuid.UUID
    recorded: int
    held: int
    corrected: bool


@dataclass(frozen=True)
class RevenueSummary:
    """Lifetime totals across a creator's subscriptions, in minor units."""

    subscriber_count: int
    gross_paid: int
    platform_fee: int

    @property
    def net_earnings(self) -> int:
        return self.gross_paid - self.platform_fee


class EntitlementLedger(BaseService):
    """Local source of truth for who has access to which program."""

    # =========================================================================
    # Queries
    # =========================================================================

    @classmethod
    def open_subscription_exists(cls, client: AbstractBaseUser, program: Program) -> bool:
        return Subscription.objects.filter(
            client=client,
            program=program,
            status__in=OPEN_STATUSES,
        ).exists()

    @classmethod
    def has_access(cls, client: AbstractBaseUser, program_id: uuid.UUID) -> bool:
        """Whether the client is currently entitled to the program."""
        return Subscription.objects.filter(
            client=client,
            program_id=program_id,
            status__in=ENTITLED_STATUSES,
        ).exists()

    @classmethod
    def revenue_summary(cls, coach: AbstractBaseUser) -> RevenueSummary:
        subscriptions = Subscription.objects.filter(coach=coach).exclude(
            status=SubscriptionStatus.PENDING
        )
        totals = subscriptions.aggregate(
            gross=Sum("total_paid"),
            fee=Sum("total_platform_fee"),
        )
        return RevenueSummary(
            subscriber_count=subscriptions.filter(status__in=ENTITLED_STATUSES).count(),
            gross_paid=totals["gross"] or 0,
            platform_fee=totals["fee"] or 0,
        )

    # =========================================================================
    # Checkout
    # =========================================================================

    @classmethod
    def create_provisional(
        cls,
        client: AbstractBaseUser,
        program: Program,
        reservation: Reservation,
    ) -> Subscription:
        """
        Create the PENDING row that holds a fresh reservation.

        Must run in the same transaction as the reserve_slot call that
        produced the reservation. A concurrent duplicate raises
        IntegrityError from the one-open-subscription constraint, which
        rolls the reservation back with it.
        """
        subscription = Subscription.objects.create(
            client=client,
            program=program,
            coach_id=program.owner_id,
            slot_held=True,
            trial_days=program.effective_trial_days,
            metadata={"reserved_at": reservation.reserved_at.isoformat()},
        )
        cls.get_logger().info(
            "Created provisional subscription",
            extra={
                "subscription_id": str(subscription.id),
                "program_id": str(program.id),
                "client_id": client.pk,
            },
        )
        return subscription

    @classmethod
    def bind_checkout_session(
        cls, subscription: Subscription, session: CheckoutSessionResult
    ) -> Subscription:
        subscription.checkout_session_id = session.session_id
        subscription.checkout_url = session.url
        subscription.save(update_fields=["checkout_session_id", "checkout_url"])
        return subscription

    @classmethod
    def discard_provisional(cls, subscription: Subscription) -> None:
        """
        Undo checkout: delete the PENDING row and return its slot.

        Used when the gateway refused or could not be reached, so no
        hosted session was handed to the client.
        """
        with cls.atomic():
            locked = (
                Subscription.objects.select_for_update()
                .filter(pk=subscription.pk, status=SubscriptionStatus.PENDING)
                .first()
            )
            if locked is None:
                return
            if locked.slot_held:
                ProgramRegistry.release_slot(locked.program_id)
            locked.delete()

        cls.get_logger().info(
            "Discarded provisional subscription",
            extra={"subscription_id": str(subscription.pk)},
        )

    # =========================================================================
    # Event Application
    # =========================================================================

    @classmethod
    def locate_for_update(
        cls,
        *,
        checkout_session_id: str | None = None,
        external_subscription_id: str | None = None,
        subscription_id: str | uuid.UUID | None = None,
    ) -> Subscription:
        """
        Find and lock the row an event refers to.

        Tries the checkout session id, then the Stripe subscription id, then
        the local id the checkout put in Stripe metadata, which is the only
        reference an out-of-order update event may carry.

        Raises:
            UnknownSubscriptionReferenceError: No local row matches
        """
        lookups = []
        if checkout_session_id:
            lookups.append(Q(checkout_session_id=checkout_session_id))
        if external_subscription_id:
            lookups.append(Q(external_subscription_id=external_subscription_id))
        if subscription_id:
            try:
                lookups.append(Q(pk=uuid.UUID(str(subscription_id))))
            except ValueError:
                pass

        queryset = Subscription.objects.select_for_update()
        for lookup in lookups:
            subscription = queryset.filter(lookup).first()
            if subscription is not None:
                return subscription

        raise UnknownSubscriptionReferenceError(
            "No subscription matches the event",
            details={
                "checkout_session_id": checkout_session_id,
                "external_subscription_id": external_subscription_id,
                "subscription_id": str(subscription_id) if subscription_id else None,
            },
        )

    @classmethod
    def apply_event(cls, subscription: Subscription, event: LedgerEvent) -> TransitionPlan:
        """
        Plan and persist one event against a locked row.

        Must run inside the caller's transaction, with the row locked by
        locate_for_update(). Slot changes, the status transition and field
        updates are saved together. A replayed event changes nothing and
        does not save.

        Raises:
            InvalidStateTransitionError: Plan named a transition the FSM
                refused (rolls back the caller's transaction)
        """
        logger = cls.get_logger()
        plan = plan_transition(
            LedgerSnapshot.from_subscription(subscription),
            event,
            platform_fee_percent=settings.PLATFORM_FEE_PERCENT,
        )
        log_context = {
            "subscription_id": str(subscription.id),
            "program_id": str(subscription.program_id),
            "event_kind": event.kind.value,
            "from_status": subscription.status,
        }

        changed = False

        if plan.reserve_slot and not subscription.slot_held:
            # Payment is already taken, so a deactivated program still counts
            reservation = ProgramRegistry.reserve_slot(
                subscription.program_id, require_active=False
            )
            if reservation.success:
                subscription.slot_held = True
            else:
                logger.warning(
                    "Confirmed subscription could not reserve a slot",
                    extra={**log_context, "error_code": reservation.error_code},
                )
                subscription.flag_for_review(
                    f"Confirmed without a capacity slot ({reservation.error_code})"
                )
            changed = True

        if plan.release_slot and subscription.slot_held:
            ProgramRegistry.release_slot(subscription.program_id)
            subscription.slot_held = False
            changed = True

        if plan.transition:
            try:
                getattr(subscription, plan.transition)()
            except TransitionNotAllowed as e:
                raise InvalidStateTransitionError(
                    f"Cannot {plan.transition} from {subscription.status}",
                    details=log_context,
                ) from e
            changed = True

        for name, value in plan.field_updates.items():
            if getattr(subscription, name) != value:
                setattr(subscription, name, value)
                changed = True

        if plan.flag_reason and not (
            subscription.needs_review and subscription.review_reason == plan.flag_reason
        ):
            logger.warning(
                f"Subscription flagged for review: {plan.flag_reason}",
                extra=log_context,
            )
            subscription.flag_for_review(plan.flag_reason)
            changed = True

        if not changed:
            logger.info(
                "Event changed nothing",
                extra={**log_context, "reason": plan.noop_reason},
            )
            return plan

        subscription.save()
        logger.info(
            "Applied ledger event",
            extra={
                **log_context,
                "to_status": subscription.status,
                "transition": plan.transition,
                "slot_held": subscription.slot_held,
            },
        )
        return plan

    # =========================================================================
    # Writes outside webhook processing
    # =========================================================================

    @classmethod
    def attach_channel(cls, subscription_id: uuid.UUID, channel_id: str) -> bool:
        """
        Store a provisioned chat channel id.

        Returns:
            True if this call stored it, False if a channel was already set
        """
        updated = Subscription.objects.filter(
            pk=subscription_id, channel_id__isnull=True
        ).update(
            channel_id=channel_id,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
        return bool(updated)

    @classmethod
    def claim_channel_welcome(cls, subscription_id: uuid.UUID) -> bool:
        """
        Claim the right to post the welcome message.

        Returns:
            True if this call claimed it. False if the welcome was already
            posted or another worker holds the claim.
        """
        updated = Subscription.objects.filter(
            pk=subscription_id,
            channel_id__isnull=False,
            channel_welcomed_at__isnull=True,
        ).update(
            channel_welcomed_at=timezone.now(),
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
        return bool(updated)

    @classmethod
    def release_channel_welcome(cls, subscription_id: uuid.UUID) -> None:
        """Give the claim back after a failed send; the reprovision task retries it."""
        Subscription.objects.filter(pk=subscription_id).update(
            channel_welcomed_at=None,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )

    @classmethod
    def record_cancellation_request(
        cls, subscription_id: uuid.UUID, immediate: bool
    ) -> Subscription:
        """
        Record that the client asked to cancel. Status is left alone.

        The deletion webhook moves the row to CANCELED; an at-period-end
        request only sets the intent flag that the next update event from
        Stripe will confirm.
        """
        with cls.atomic():
            subscription = Subscription.objects.select_for_update().get(pk=subscription_id)
            update_fields = ["cancellation_requested_at"]
            subscription.cancellation_requested_at = timezone.now()
            if not immediate:
                subscription.cancel_at_period_end = True
                update_fields.append("cancel_at_period_end")
            subscription.save(update_fields=update_fields)
        return subscription

    @classmethod
    def sweep_abandoned(cls, older_than: datetime, batch_size: int = 500) -> int:
        """
        Cancel PENDING rows created before ``older_than`` and free their slots.

        Each row is handled in its own transaction. Rows locked by a webhook
        in flight are skipped and picked up by the next sweep; a row a
        webhook just confirmed is no longer PENDING and is left alone.

        Returns:
            Number of subscriptions abandoned
        """
        candidate_ids = list(
            Subscription.objects.filter(
                status=SubscriptionStatus.PENDING,
                created_at__lt=older_than,
            ).values_list("pk", flat=True)[:batch_size]
        )

        abandoned = 0
        for subscription_id in candidate_ids:
            with cls.atomic():
                subscription = (
                    Subscription.objects.select_for_update(skip_locked=True)
                    .filter(pk=subscription_id, status=SubscriptionStatus.PENDING)
                    .first()
                )
                if subscription is None:
                    continue
                plan = cls.apply_event(
                    subscription, LedgerEvent(kind=LedgerEventKind.ABANDONED)
                )
                if plan.transition:
                    abandoned += 1

        if abandoned:
            cls.get_logger().info(
                f"Abandoned {abandoned} stale checkouts",
                extra={"cutoff": older_than.isoformat()},
            )
        return abandoned

    # =========================================================================
    # Maintenance
    # =========================================================================

    @classmethod
    def audit_capacity(cls, fix: bool = True) -> list[CapacityDrift]:
        """
        Compare every program counter with the slots its rows hold.

        Runs per program under the program row lock, so no reservation or
        release can interleave with the count.
        """
        logger = cls.get_logger()
        drifts: list[CapacityDrift] = []

        for program_id in Program.objects.values_list("pk", flat=True):
            with cls.atomic():
                program = Program.objects.select_for_update().get(pk=program_id)
                held = Subscription.objects.filter(
                    program_id=program_id, slot_held=True
                ).count()
                if held == program.current_clients:
                    continue

                over_capacity = program.max_clients is not None and held > program.max_clients
                corrected = False
                if fix and not over_capacity:
                    corrected = ProgramRegistry.correct_client_count(program_id, held)

                logger.error(
                    "Program capacity counter drifted",
                    extra={
                        "program_id": str(program_id),
                        "recorded": program.current_clients,
                        "held": held,
                        "corrected": corrected,
                    },
                )
                drifts.append(
                    CapacityDrift(
                        program_id=program_id,
                        recorded=program.current_clients,
                        held=held,
                        corrected=corrected,
                    )
                )

        return drifts

    @classmethod
    def resync_from_gateway(cls, subscription_id: uuid.UUID) -> ServiceResult[TransitionPlan]:
        """
        Apply Stripe's current view of a subscription as a status update.

        Repairs rows whose webhooks were lost. The gateway call happens
        before the row is locked.
        """
        subscription = Subscription.objects.filter(pk=subscription_id).first()
        if subscription is None:
            return ServiceResult.failure("Subscription not found", error_code="NOT_FOUND")
        if not subscription.external_subscription_id:
            return ServiceResult.failure(
                "Subscription was never confirmed by the gateway",
                error_code="INVALID_SUBSCRIPTION_STATE",
            )

        try:
            snapshot = StripeAdapter.get_subscription(subscription.external_subscription_id)
        except GatewayError as e:
            return ServiceResult.from_exception(e)

        with cls.atomic():
            subscription = Subscription.objects.select_for_update().get(pk=subscription_id)
            plan = cls.apply_event(
                subscription,
                LedgerEvent(kind=LedgerEventKind.STATUS_UPDATED, subscription=snapshot),
            )
        return ServiceResult.success(plan)
