"""
Program model for creator offerings.

Usage:
    from programs.models import Program

    program = Program.objects.create(
        owner=coach,
        title="12 Week Strength",
        price_amount=4900,
        billing_interval=BillingInterval.MONTH,
        max_clients=10,
    )

The capacity counter is never written through save(). Use
ProgramRegistry.reserve_slot / release_slot, which update it with a single
conditional statement.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class BillingInterval(models.TextChoices):
    WEEK = "week", "Weekly"
    MONTH = "month", "Monthly"


class Program(UUIDPrimaryKeyMixin, BaseModel):
    """
    A creator's recurring program with optional capacity limit.

    Fields:
        owner: Creator who sells the program and receives payouts
        price_amount: Price per billing interval in smallest currency unit
        external_price_id: Stripe Price ID (price_xxx) used at checkout
        max_clients: Capacity, null means unlimited
        current_clients: Slots currently held by subscriptions
        trial_enabled / trial_days: Free trial offered at checkout
    """

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="programs",
        help_text="Creator who owns this program",
    )

    title = models.CharField(max_length=200)
    description = models.TextField(blank=True, default="")

    # ==========================================================================
    # Pricing
    # ==========================================================================

    price_amount = models.PositiveIntegerField(
        help_text="Price per billing interval in smallest currency unit (e.g., cents)",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    billing_interval = models.CharField(
        max_length=10,
        choices=BillingInterval.choices,
        default=BillingInterval.MONTH,
    )

    external_product_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Product ID (prod_xxx)",
    )

    external_price_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Price ID (price_xxx)",
    )

    # ==========================================================================
    # Capacity
    # ==========================================================================

    max_clients = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Maximum concurrent clients, empty for unlimited",
    )

    current_clients = models.PositiveIntegerField(
        default=0,
        help_text="Slots held by pending, trialing, active and past-due subscriptions",
    )

    is_active = models.BooleanField(default=True, db_index=True)

    # ==========================================================================
    # Trial
    # ==========================================================================

    trial_enabled = models.BooleanField(default=False)
    trial_days = models.PositiveSmallIntegerField(default=0)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Program"
        verbose_name_plural = "Programs"
        indexes = [
            models.Index(fields=["owner", "is_active"], name="program_owner_active_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(max_clients__isnull=True)
                | models.Q(current_clients__lte=models.F("max_clients")),
                name="program_clients_within_capacity",
                violation_error_message="current_clients exceeds max_clients",
            ),
        ]

    def __str__(self) -> str:
        capacity = self.max_clients if self.max_clients is not None else "unlimited"
        return f"Program({self.title}, {self.current_clients}/{capacity})"

    @property
    def effective_trial_days(self) -> int:
        """Trial length offered at checkout, 0 when trials are off."""
        return self.trial_days if self.trial_enabled else 0

    @property
    def has_capacity(self) -> bool:
        return self.max_clients is None or self.current_clients < self.max_clients
