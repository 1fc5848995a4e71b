"""
ConnectedAccount model: a creator's Stripe Connect Express account.

Checkout charges are destination charges to this account, so a program can
only be sold once its owner's account accepts charges.

Usage:
    from billing.models import ConnectedAccount

    account = ConnectedAccount.objects.get(owner=program.owner)
    if account.can_accept_charges:
        ...
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from billing.state_machines import OnboardingStatus
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class ConnectedAccount(UUIDPrimaryKeyMixin, BaseModel):
    """
    Creator payout account at Stripe.

    Fields:
        owner: Creator user
        stripe_account_id: Stripe Account ID (acct_xxx)
        onboarding_status: Derived from Stripe's account.updated payloads
        charges_enabled / payouts_enabled / details_submitted: Stripe flags
    """

    owner = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="connected_account",
    )

    stripe_account_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Connect Account ID (acct_xxx)",
    )

    onboarding_status = models.CharField(
        max_length=20,
        choices=OnboardingStatus.choices,
        default=OnboardingStatus.NOT_STARTED,
        db_index=True,
    )

    charges_enabled = models.BooleanField(default=False)
    payouts_enabled = models.BooleanField(default=False)
    details_submitted = models.BooleanField(default=False)

    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Connected Account"
        verbose_name_plural = "Connected Accounts"

    def __str__(self) -> str:
        return f"ConnectedAccount({self.stripe_account_id}, {self.onboarding_status})"

    @property
    def can_accept_charges(self) -> bool:
        """Fully onboarded: clients may check out into this account."""
        return (
            self.onboarding_status == OnboardingStatus.COMPLETE and self.charges_enabled
        )

    def apply_stripe_flags(
        self, *, charges_enabled: bool, payouts_enabled: bool, details_submitted: bool
    ) -> None:
        """
        Update flags and derive onboarding status. Does not save.

        Stripe reports details_submitted without charges_enabled while it
        verifies the account, or when it has restricted the account.
        """
        self.charges_enabled = charges_enabled
        self.payouts_enabled = payouts_enabled
        self.details_submitted = details_submitted

        if charges_enabled and details_submitted:
            self.onboarding_status = OnboardingStatus.COMPLETE
        elif details_submitted:
            self.onboarding_status = OnboardingStatus.RESTRICTED
        else:
            self.onboarding_status = OnboardingStatus.IN_PROGRESS
