"""
Celery tasks for billing maintenance.

This module provides periodic tasks for:
- Releasing reservations of abandoned checkouts
- Auditing program capacity counters
- Retrying failed webhook events
- Reprocessing webhook events a crashed worker left pending
- Provisioning chat channels that failed the first time

Schedules are created by migration 0002_add_celery_beat_schedules.

Usage:
    from billing.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from billing.models import Subscription, WebhookEvent
from billing.services import EntitlementLedger
from billing.state_machines import ENTITLED_STATUSES, WebhookEventStatus

logger = logging.getLogger(__name__)

# Age before a channel-less subscription is considered degraded, so the
# reprovision task does not race the webhook that is provisioning it
REPROVISION_GRACE_MINUTES = 5
BATCH_SIZE = 100


# =============================================================================
# Webhook Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Apply one stored webhook event.

    Returns:
        Dict with processing result status

    Raises:
        Exception: Re-raised to trigger Celery retry
    """
    from billing.webhooks.reconciler import WebhookReconciler

    if isinstance(webhook_event_id, str):
        webhook_event_id = UUID(webhook_event_id)

    if not WebhookEvent.objects.filter(pk=webhook_event_id).exists():
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    outcome = WebhookReconciler.process(webhook_event_id)
    return {
        "status": "already_processed" if outcome.duplicate else "processed",
        "webhook_event_id": str(webhook_event_id),
        "stripe_event_id": outcome.stripe_event_id,
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Periodic task to retry failed webhook events.

    Events over WEBHOOK_MAX_RETRIES stay FAILED for an operator.
    """
    failed_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retry_count__lt=settings.WEBHOOK_MAX_RETRIES,
    ).order_by("created_at")[:BATCH_SIZE]

    queued_count = 0
    for webhook in failed_webhooks:
        process_webhook_event.delay(str(webhook.id))
        queued_count += 1
        logger.info(
            "Queued failed webhook for retry",
            extra={
                "webhook_event_id": str(webhook.id),
                "stripe_event_id": webhook.stripe_event_id,
                "retry_count": webhook.retry_count,
            },
        )

    logger.info(
        f"Queued {queued_count} failed webhooks for retry",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}


@shared_task
def process_stale_webhooks() -> dict:
    """
    Periodic task to process events stuck in PENDING.

    An event stays PENDING when its worker died between recording it and
    committing the ledger change. Stripe redelivers eventually; this gets
    there sooner.
    """
    threshold = timezone.now() - timedelta(minutes=settings.WEBHOOK_STALE_MINUTES)
    stale_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PENDING,
        created_at__lt=threshold,
    ).order_by("created_at")[:BATCH_SIZE]

    queued_count = 0
    for webhook in stale_webhooks:
        process_webhook_event.delay(str(webhook.id))
        queued_count += 1

    if queued_count:
        logger.warning(
            f"Queued {queued_count} stale pending webhooks",
            extra={"queued_count": queued_count},
        )
    return {"queued_count": queued_count}


# =============================================================================
# Ledger Maintenance Tasks
# =============================================================================


@shared_task
def sweep_abandoned_checkouts() -> dict:
    """
    Periodic task to release reservations of checkouts nobody completed.

    A pending row is swept once its hosted session has expired plus a grace
    period for a late checkout.session.completed webhook.
    """
    cutoff = timezone.now() - timedelta(
        minutes=settings.CHECKOUT_SESSION_TTL_MINUTES
        + settings.CHECKOUT_ABANDONMENT_GRACE_MINUTES
    )
    abandoned = EntitlementLedger.sweep_abandoned(older_than=cutoff)
    return {"abandoned_count": abandoned}


@shared_task
def audit_program_capacity() -> dict:
    """Periodic task to correct capacity counters that drifted."""
    drifts = EntitlementLedger.audit_capacity(fix=True)
    return {
        "drift_count": len(drifts),
        "corrected_count": sum(1 for drift in drifts if drift.corrected),
    }


@shared_task
def reprovision_missing_channels() -> dict:
    """Periodic task to provision channels, or post welcomes, whose first attempt failed."""
    from messaging.provisioner import ChannelProvisioner

    threshold = timezone.now() - timedelta(minutes=REPROVISION_GRACE_MINUTES)
    subscriptions = (
        Subscription.objects.select_related("client", "coach", "program")
        .filter(
            Q(channel_id__isnull=True) | Q(channel_welcomed_at__isnull=True),
            status__in=ENTITLED_STATUSES,
            updated_at__lt=threshold,
        )
        .order_by("updated_at")[:BATCH_SIZE]
    )

    provisioned = failed = 0
    for subscription in subscriptions:
        if ChannelProvisioner.provision(subscription).success:
            provisioned += 1
        else:
            failed += 1

    if provisioned or failed:
        logger.info(
            "Reprovisioned missing channels",
            extra={"provisioned": provisioned, "failed": failed},
        )
    return {"provisioned_count": provisioned, "failed_count": failed}
