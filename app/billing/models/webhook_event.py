"""
WebhookEvent model for Stripe webhook event tracking.

Every verified webhook is stored before it is applied. The unique
stripe_event_id is the first idempotency layer: a redelivered event finds
its row already PROCESSED and is acknowledged without touching the ledger.
The handlers themselves are idempotent as well, because Stripe can emit
two distinct events describing the same change.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from billing.state_machines import WebhookEventStatus
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks Stripe webhook events for idempotent processing.

    Processing Flow:
        1. Webhook arrives, Stripe signature verified
        2. get_or_create WebhookEvent by stripe_event_id
        3. Row locked; PROCESSED -> acknowledge as duplicate
        4. Dispatch to handler and mark_processed in one transaction
        5. On handler error: rolled back, then mark_failed in its own save;
           retried by Celery beat until WEBHOOK_MAX_RETRIES
    """

    stripe_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Stripe event type (e.g., 'customer.subscription.updated')",
    )

    payload = models.JSONField(help_text="Full webhook payload from Stripe (JSON)")

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
    )

    processed_at = models.DateTimeField(null=True, blank=True)

    error_message = models.TextField(null=True, blank=True)

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of failed processing attempts",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="webhook_status_idx"),
            models.Index(fields=["status", "retry_count"], name="webhook_retry_idx"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.stripe_event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def can_retry(self) -> bool:
        return (
            self.status == WebhookEventStatus.FAILED
            and self.retry_count < settings.WEBHOOK_MAX_RETRIES
        )

    def mark_processed(self, note: str | None = None) -> None:
        """
        Mark event as successfully applied (or deliberately dropped).

        Args:
            note: Why the event changed nothing, e.g. an unknown
                subscription reference. Kept in error_message for audit.
        """
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = note

    def mark_failed(self, error_message: str) -> None:
        """Record a failed attempt. Does not save."""
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message
        self.retry_count += 1

    @property
    def data_object(self) -> dict:
        """The Stripe object snapshot carried by the event (data.object)."""
        data = self.payload.get("data") if isinstance(self.payload, dict) else None
        obj = data.get("object") if isinstance(data, dict) else None
        return obj if isinstance(obj, dict) else {}
