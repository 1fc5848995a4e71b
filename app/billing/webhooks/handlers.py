"""
Webhook event handlers for Stripe events.

Each handler turns one Stripe event into a LedgerEvent, locks the
subscription it refers to and applies it through the EntitlementLedger.
Handlers run inside the reconciler's transaction and must not call any
external service: side effects are returned and run after commit.

Usage:
    from billing.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult[HandledEvent]:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

from django.utils import timezone

from billing.exceptions import UnknownSubscriptionReferenceError
from billing.models import WebhookEvent
from billing.services.creator_billing import CreatorBillingService
from billing.services.entitlement_ledger import EntitlementLedger
from billing.webhooks.transitions import (
    InvoicePayment,
    LedgerEvent,
    LedgerEventKind,
    SideEffect,
    SubscriptionSnapshot,
)
from core.services import ServiceResult

if TYPE_CHECKING:
    from billing.webhooks.transitions import TransitionPlan


logger = logging.getLogger(__name__)


@dataclass
class HandledEvent:
    """
    Outcome of one handler call.

    Attributes:
        subscription_id: Row the event was applied to, if any
        side_effects: Actions for the reconciler to run after commit
        note: Why the event was dropped or ignored, kept on the WebhookEvent
    """

    subscription_id: uuid.UUID | None = None
    side_effects: tuple[SideEffect, ...] = field(default_factory=tuple)
    note: str | None = None

    @classmethod
    def from_plan(cls, subscription_id: uuid.UUID, plan: TransitionPlan) -> HandledEvent:
        return cls(
            subscription_id=subscription_id,
            side_effects=plan.side_effects,
            note=plan.noop_reason if plan.is_noop else None,
        )


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult[HandledEvent]]] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Usage:
        @register_handler("invoice.paid")
        def handle_invoice_paid(webhook_event: WebhookEvent) -> ServiceResult:
            ...
    """

    def decorator(func: Callable[[WebhookEvent], ServiceResult[HandledEvent]]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult[HandledEvent]:
    """
    Dispatch a webhook event to the appropriate handler.

    Unregistered event types are acknowledged: Stripe sends every event
    type the endpoint subscribes to, and an unknown type is not an error.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.success(HandledEvent(note="event type not handled"))

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )
    return handler(webhook_event)


def _apply(webhook_event: WebhookEvent, event: LedgerEvent, **references) -> ServiceResult[HandledEvent]:
    """Locate, lock and apply. Unknown references are logged and dropped."""
    try:
        subscription = EntitlementLedger.locate_for_update(**references)
    except UnknownSubscriptionReferenceError as e:
        logger.warning(
            f"{webhook_event.event_type}: no matching subscription, dropping event",
            extra={"stripe_event_id": webhook_event.stripe_event_id, **e.details},
        )
        return ServiceResult.success(HandledEvent(note=e.message))

    plan = EntitlementLedger.apply_event(subscription, event)
    return ServiceResult.success(HandledEvent.from_plan(subscription.id, plan))


# =============================================================================
# Checkout Handlers
# =============================================================================


@register_handler("checkout.session.completed")
def handle_checkout_completed(webhook_event: WebhookEvent) -> ServiceResult[HandledEvent]:
    """
    Confirm the PENDING subscription created by checkout.

    The checkout session id is the confirmation key: a second delivery, or a
    status update that already confirmed the row, leaves nothing to do.
    """
    session = webhook_event.data_object
    if session.get("mode") != "subscription":
        return ServiceResult.success(HandledEvent(note="not a subscription checkout"))

    metadata = session.get("metadata") or {}
    subscription_ref = session.get("subscription")
    external_id = (
        subscription_ref.get("id") if isinstance(subscription_ref, dict) else subscription_ref
    )

    try:
        subscription = EntitlementLedger.locate_for_update(
            checkout_session_id=session.get("id"),
            external_subscription_id=external_id,
            subscription_id=metadata.get("subscription_id") or session.get("client_reference_id"),
        )
    except UnknownSubscriptionReferenceError as e:
        logger.error(
            "checkout.session.completed for unknown subscription, dropping event",
            extra={"stripe_event_id": webhook_event.stripe_event_id, **e.details},
        )
        return ServiceResult.success(HandledEvent(note=e.message))

    snapshot = SubscriptionSnapshot.from_checkout_session(
        session, trial_days=subscription.trial_days, now=timezone.now()
    )
    plan = EntitlementLedger.apply_event(
        subscription,
        LedgerEvent(
            kind=LedgerEventKind.CONFIRMED,
            subscription=snapshot,
            checkout_session_id=session.get("id"),
        ),
    )
    return ServiceResult.success(HandledEvent.from_plan(subscription.id, plan))


@register_handler("checkout.session.expired")
def handle_checkout_expired(webhook_event: WebhookEvent) -> ServiceResult[HandledEvent]:
    """Stripe expired the hosted session: release the reservation now."""
    session = webhook_event.data_object
    metadata = session.get("metadata") or {}
    return _apply(
        webhook_event,
        LedgerEvent(kind=LedgerEventKind.ABANDONED),
        checkout_session_id=session.get("id"),
        subscription_id=metadata.get("subscription_id"),
    )


# =============================================================================
# Subscription Handlers
# =============================================================================


@register_handler("customer.subscription.updated")
def handle_subscription_updated(webhook_event: WebhookEvent) -> ServiceResult[HandledEvent]:
    """Overwrite status and period fields with Stripe's current view."""
    snapshot = SubscriptionSnapshot.from_stripe_object(webhook_event.data_object)
    return _apply(
        webhook_event,
        LedgerEvent(kind=LedgerEventKind.STATUS_UPDATED, subscription=snapshot),
        external_subscription_id=snapshot.external_id,
        subscription_id=snapshot.metadata.get("subscription_id"),
    )


@register_handler("customer.subscription.deleted")
def handle_subscription_deleted(webhook_event: WebhookEvent) -> ServiceResult[HandledEvent]:
    """Subscription ended at Stripe: cancel, release slot, archive channel."""
    snapshot = SubscriptionSnapshot.from_stripe_object(webhook_event.data_object)
    return _apply(
        webhook_event,
        LedgerEvent(kind=LedgerEventKind.DELETED, subscription=snapshot),
        external_subscription_id=snapshot.external_id,
        subscription_id=snapshot.metadata.get("subscription_id"),
    )


# =============================================================================
# Invoice Handlers
# =============================================================================


def _invoice_subscription_id(invoice: dict) -> str | None:
    """Subscription reference on an invoice, across API versions."""
    reference = invoice.get("subscription")
    if not reference:
        details = ((invoice.get("parent") or {}).get("subscription_details")) or {}
        reference = details.get("subscription")
    if isinstance(reference, dict):
        return reference.get("id")
    return reference or None


def _invoice_local_subscription_id(invoice: dict) -> str | None:
    """Local subscription id that checkout stored in the Stripe subscription metadata."""
    details = (
        (invoice.get("parent") or {}).get("subscription_details")
        or invoice.get("subscription_details")
        or {}
    )
    return (details.get("metadata") or {}).get("subscription_id")


@register_handler("invoice.paid")
def handle_invoice_paid(webhook_event: WebhookEvent) -> ServiceResult[HandledEvent]:
    """
    Accumulate paid and platform-fee totals.

    Never changes status: the matching customer.subscription.updated event
    does that. The first invoice can arrive before checkout.session.completed
    has stored the Stripe subscription id, so the row is also located by the
    local id in the subscription metadata.
    """
    invoice = webhook_event.data_object
    external_id = _invoice_subscription_id(invoice)
    local_id = _invoice_local_subscription_id(invoice)
    if not (external_id or local_id) or not invoice.get("id"):
        return ServiceResult.success(HandledEvent(note="invoice without subscription"))

    return _apply(
        webhook_event,
        LedgerEvent(
            kind=LedgerEventKind.INVOICE_PAID,
            invoice=InvoicePayment.from_stripe_object(invoice),
        ),
        external_subscription_id=external_id,
        subscription_id=local_id,
    )


# =============================================================================
# Connect Handlers
# =============================================================================


@register_handler("account.updated")
def handle_account_updated(webhook_event: WebhookEvent) -> ServiceResult[HandledEvent]:
    """Creator onboarding progressed (or was restricted) at Stripe."""
    result = CreatorBillingService.sync_account(webhook_event.data_object)
    if result.success and result.data is None:
        return ServiceResult.success(HandledEvent(note="unknown connected account"))
    return ServiceResult.success(HandledEvent())
