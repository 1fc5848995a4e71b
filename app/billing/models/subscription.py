"""
Subscription model: one row per (client, program) subscription attempt.

A Subscription is created provisionally by checkout in PENDING, holding a
capacity reservation, and from then on is only changed through the
entitlement ledger. The webhook reconciler drives status; the cancellation
service may set the cancel_at_period_end intent; the channel provisioner
stores its channel id through the ledger.

Usage:
    from billing.models import Subscription
    from billing.state_machines import SubscriptionStatus

    subscription.confirm_active()  # pending -> active
    subscription.save()

The status field is protected: assign it only through the transitions
below. Re-read rows with Subscription.objects.get(), not refresh_from_db().
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django_fsm import FSMField, transition

from billing.state_machines import (
    ENTITLED_STATUSES,
    OPEN_STATUSES,
    SubscriptionStatus,
)
from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel


class Subscription(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A client's subscription to a creator's program.

    State Flow:
        PENDING -> TRIALING | ACTIVE (checkout confirmed)
        TRIALING -> ACTIVE (trial converted)
        TRIALING | ACTIVE -> PAST_DUE (payment failed)
        PAST_DUE -> ACTIVE (payment recovered)
        TRIALING | ACTIVE | PAST_DUE -> CANCELED (deleted at gateway)
        PENDING -> CANCELED (checkout abandoned)

    Fields:
        slot_held: Whether this row currently holds one unit of the
            program's capacity. Never derived from status.
        checkout_session_id: Stripe Checkout Session ID (cs_xxx), the
            confirmation idempotency key
        external_subscription_id: Stripe Subscription ID (sub_xxx), set on
            confirmation
        needs_review: Set when an anomaly needs an operator (e.g. payment
            confirmed for a deactivated program)
        version: Row version (VersionedMixin)
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="subscriptions",
        help_text="Client paying for the program",
    )

    program = models.ForeignKey(
        "programs.Program",
        on_delete=models.PROTECT,
        related_name="subscriptions",
    )

    coach = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="client_subscriptions",
        help_text="Creator who owns the program at checkout time",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=SubscriptionStatus.PENDING,
        choices=SubscriptionStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the subscription (managed by FSM)",
    )

    slot_held = models.BooleanField(
        default=False,
        help_text="Whether this subscription holds a program capacity slot",
    )

    # ==========================================================================
    # Stripe Integration
    # ==========================================================================

    checkout_session_id = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Stripe Checkout Session ID (cs_xxx)",
    )

    checkout_url = models.URLField(max_length=2048, blank=True, default="")

    external_subscription_id = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Stripe Subscription ID (sub_xxx)",
    )

    external_customer_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Customer ID (cus_xxx)",
    )

    # ==========================================================================
    # Billing Period
    # ==========================================================================

    trial_days = models.PositiveSmallIntegerField(
        default=0,
        help_text="Trial length offered at checkout",
    )
    trial_end = models.DateTimeField(null=True, blank=True)
    current_period_start = models.DateTimeField(null=True, blank=True)
    current_period_end = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Cancellation
    # ==========================================================================

    cancel_at_period_end = models.BooleanField(
        default=False,
        help_text="Client asked to cancel at the end of the current period",
    )
    cancellation_requested_at = models.DateTimeField(null=True, blank=True)
    canceled_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Messaging
    # ==========================================================================

    channel_id = models.CharField(
        max_length=128,
        null=True,
        blank=True,
        help_text="Coaching chat channel id, set once provisioned",
    )
    channel_welcomed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the welcome message was posted; unset while it is still owed",
    )

    # ==========================================================================
    # Payment Tracking
    # ==========================================================================

    total_paid = models.PositiveBigIntegerField(
        default=0,
        help_text="Cumulative amount paid in smallest currency unit",
    )
    total_platform_fee = models.PositiveBigIntegerField(
        default=0,
        help_text="Cumulative platform fee in smallest currency unit",
    )
    last_invoice_id = models.CharField(max_length=255, null=True, blank=True)
    last_payment_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Operator Review
    # ==========================================================================

    needs_review = models.BooleanField(default=False, db_index=True)
    review_reason = models.CharField(max_length=255, blank=True, default="")

    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Subscription"
        verbose_name_plural = "Subscriptions"
        indexes = [
            models.Index(fields=["client", "status"], name="subscription_client_idx"),
            models.Index(fields=["coach", "status"], name="subscription_coach_idx"),
            models.Index(fields=["program", "slot_held"], name="subscription_slot_idx"),
            models.Index(fields=["status", "created_at"], name="subscription_sweep_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["client", "program"],
                condition=Q(status__in=OPEN_STATUSES),
                name="subscription_one_open_per_client_program",
            ),
        ]

    def __str__(self) -> str:
        return f"Subscription({self.id}, {self.status})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=SubscriptionStatus.PENDING,
        target=SubscriptionStatus.TRIALING,
    )
    def confirm_trial(self):
        """Checkout confirmed with a free trial."""

    @transition(
        field=status,
        source=SubscriptionStatus.PENDING,
        target=SubscriptionStatus.ACTIVE,
    )
    def confirm_active(self):
        """Checkout confirmed and first payment collected."""

    @transition(
        field=status,
        source=SubscriptionStatus.TRIALING,
        target=SubscriptionStatus.ACTIVE,
    )
    def end_trial(self):
        """Trial converted into a paid period."""

    @transition(
        field=status,
        source=[SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE],
        target=SubscriptionStatus.PAST_DUE,
    )
    def mark_past_due(self):
        """
        Renewal payment failed.

        Stripe's own retry schedule decides what happens next; the slot
        stays held until a deletion event arrives.
        """

    @transition(
        field=status,
        source=SubscriptionStatus.PAST_DUE,
        target=SubscriptionStatus.ACTIVE,
    )
    def recover(self):
        """Outstanding payment collected."""

    @transition(
        field=status,
        source=[
            SubscriptionStatus.TRIALING,
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.PAST_DUE,
        ],
        target=SubscriptionStatus.CANCELED,
    )
    def cancel(self):
        """Subscription ended at the gateway."""
        self.canceled_at = timezone.now()

    @transition(
        field=status,
        source=SubscriptionStatus.PENDING,
        target=SubscriptionStatus.CANCELED,
    )
    def abandon(self):
        """Checkout never confirmed."""
        self.canceled_at = timezone.now()

    # ==========================================================================
    # Helper Properties
    # ==========================================================================

    @property
    def is_entitled(self) -> bool:
        """Whether the client currently has access to the program."""
        return self.status in ENTITLED_STATUSES

    @property
    def is_canceled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELED

    @property
    def will_cancel_at_period_end(self) -> bool:
        return self.cancel_at_period_end and not self.is_canceled

    @property
    def coach_earnings(self) -> int:
        return self.total_paid - self.total_platform_fee

    def flag_for_review(self, reason: str) -> None:
        """Mark for operator attention. Does not save."""
        self.needs_review = True
        self.review_reason = reason[:255]
