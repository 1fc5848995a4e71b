"""
State enums for billing models.

Subscription States:
    pending → trialing → active ⇄ past_due → canceled
    pending → active
    pending → canceled (abandoned checkout)
    trialing → past_due

Only canceled is terminal. django-fsm transitions on Subscription enforce
the arrows; these enums only name the states.
"""

from django.db import models


class SubscriptionStatus(models.TextChoices):
    """
    Lifecycle of a client's subscription to a program.

    PENDING is provisional: created at checkout, holds a capacity
    reservation, not yet billable.
    """

    PENDING = "pending", "Pending"
    TRIALING = "trialing", "Trialing"
    ACTIVE = "active", "Active"
    PAST_DUE = "past_due", "Past Due"
    CANCELED = "canceled", "Canceled"


# Statuses that block a second checkout for the same client and program
OPEN_STATUSES = (
    SubscriptionStatus.PENDING,
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
)

# Statuses a client may ask to cancel
CANCELABLE_STATUSES = (
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
)

# Statuses that grant access to the program
ENTITLED_STATUSES = (
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.ACTIVE,
)


class OnboardingStatus(models.TextChoices):
    """
    Stripe Connect onboarding status for a creator's ConnectedAccount.

    Only COMPLETE (with charges enabled) lets clients check out.
    """

    NOT_STARTED = "not_started", "Not Started"
    IN_PROGRESS = "in_progress", "In Progress"
    COMPLETE = "complete", "Complete"
    RESTRICTED = "restricted", "Restricted"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSED (committed with the ledger write)
        PENDING → FAILED → PROCESSED (retried by the maintenance task)
    """

    PENDING = "pending", "Pending"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"
