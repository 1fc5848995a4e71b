"""
Webhook Reconciler: applies verified Stripe events to the ledger.

Processing Order:
    1. Verify the signature (no writes before this succeeds)
    2. Record the event (unique stripe_event_id)
    3. One transaction: lock the event row, skip if already processed,
       dispatch to the handler (which locks the subscription row),
       mark processed, commit
    4. After commit: run side effects (chat channels), each in its own
       error boundary

A handler exception rolls back step 3 entirely, marks the event failed
and propagates, so the endpoint answers 500 and Stripe redelivers. A side
effect failure is only logged: billing state is already committed.

Duplicate deliveries serialize on the event row lock; two different
events for the same subscription serialize on the subscription row lock.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from billing.adapters import StripeAdapter
from billing.exceptions import BillingError
from billing.models import WebhookEvent
from billing.webhooks.handlers import dispatch_webhook
from billing.webhooks.transitions import SideEffect
from core.services import BaseService
from messaging.provisioner import ChannelProvisioner


@dataclass
class ReconcileOutcome:
    stripe_event_id: str
    event_type: str
    duplicate: bool = False
    subscription_id: uuid.UUID | None = None
    side_effects: tuple[SideEffect, ...] = field(default_factory=tuple)
    note: str | None = None


class WebhookReconciler(BaseService):

    @classmethod
    def handle(cls, raw_body: bytes, signature: str) -> ReconcileOutcome:
        """
        Verify, record and apply one webhook delivery.

        Raises:
            SignatureInvalidError: Signature did not verify; nothing written
            Exception: Handler failure; the event is stored as FAILED
        """
        event = StripeAdapter.verify_webhook_signature(raw_body, signature)

        webhook_event, created = WebhookEvent.objects.get_or_create(
            stripe_event_id=event["id"],
            defaults={
                "event_type": event.get("type", ""),
                "payload": event,
            },
        )

        cls.get_logger().info(
            f"Received Stripe webhook: {webhook_event.event_type}",
            extra={
                "stripe_event_id": webhook_event.stripe_event_id,
                "event_type": webhook_event.event_type,
                "redelivery": not created,
            },
        )
        return cls.process(webhook_event.pk)

    @classmethod
    def process(cls, webhook_event_id: uuid.UUID) -> ReconcileOutcome:
        """
        Apply a stored event. Safe to call any number of times.

        Used by handle() and by the retry tasks.
        """
        logger = cls.get_logger()

        try:
            with cls.atomic():
                webhook_event = WebhookEvent.objects.select_for_update().get(
                    pk=webhook_event_id
                )
                log_context = {
                    "stripe_event_id": webhook_event.stripe_event_id,
                    "event_type": webhook_event.event_type,
                }

                if webhook_event.is_processed:
                    logger.info("Webhook already processed, skipping", extra=log_context)
                    return ReconcileOutcome(
                        stripe_event_id=webhook_event.stripe_event_id,
                        event_type=webhook_event.event_type,
                        duplicate=True,
                    )

                result = dispatch_webhook(webhook_event)
                if not result.success:
                    raise BillingError(
                        result.error or "Handler returned failure",
                        error_code=result.error_code,
                    )

                handled = result.data
                webhook_event.mark_processed(note=handled.note)
                webhook_event.save(
                    update_fields=["status", "processed_at", "error_message", "updated_at"]
                )
        except Exception as e:
            cls._record_failure(webhook_event_id, e)
            raise

        logger.info(
            "Webhook processed",
            extra={
                **log_context,
                "subscription_id": str(handled.subscription_id)
                if handled.subscription_id
                else None,
                "note": handled.note,
            },
        )

        outcome = ReconcileOutcome(
            stripe_event_id=webhook_event.stripe_event_id,
            event_type=webhook_event.event_type,
            subscription_id=handled.subscription_id,
            side_effects=handled.side_effects,
            note=handled.note,
        )
        cls.run_side_effects(outcome)
        return outcome

    @classmethod
    def run_side_effects(cls, outcome: ReconcileOutcome) -> None:
        """Best-effort: a failure here never reaches the webhook response."""
        if not outcome.side_effects or outcome.subscription_id is None:
            return
        try:
            ChannelProvisioner.run_side_effects(outcome.subscription_id, outcome.side_effects)
        except Exception:
            cls.get_logger().exception(
                "Side effects failed after webhook commit",
                extra={
                    "stripe_event_id": outcome.stripe_event_id,
                    "subscription_id": str(outcome.subscription_id),
                },
            )

    @classmethod
    def _record_failure(cls, webhook_event_id: uuid.UUID, error: Exception) -> None:
        error_msg = f"{type(error).__name__}: {error}"
        webhook_event = WebhookEvent.objects.filter(pk=webhook_event_id).first()
        if webhook_event is None:
            return
        webhook_event.mark_failed(error_msg)
        webhook_event.save(update_fields=["status", "error_message", "retry_count", "updated_at"])
        cls.get_logger().error(
            "Webhook processing failed",
            extra={
                "stripe_event_id": webhook_event.stripe_event_id,
                "event_type": webhook_event.event_type,
                "retry_count": webhook_event.retry_count,
                "error": error_msg,
            },
            exc_info=True,
        )
