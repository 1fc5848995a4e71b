"""
Pure subscription transition planning.

Each gateway event is reduced to a LedgerEvent, each subscription row to a
LedgerSnapshot, and plan_transition() decides what should happen:

    plan_transition(LedgerSnapshot, LedgerEvent) -> TransitionPlan

No database, no network, no clock. The EntitlementLedger executes the plan
inside the webhook transaction; the side effects it lists (chat channel
provisioning) run after commit.

Slot rules:
    - Entering {trialing, active} reserves a slot only if none is held.
    - Leaving for canceled releases the held slot.
    - slot_held is the only source of truth, never status.

Usage:
    from billing.webhooks.transitions import LedgerEvent, LedgerEventKind, plan_transition

    plan = plan_transition(
        LedgerSnapshot.from_subscription(subscription),
        LedgerEvent(kind=LedgerEventKind.DELETED, subscription=snapshot),
    )
    if plan.release_slot:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from billing.state_machines import SubscriptionStatus

# Stripe subscription status -> local status. None means "no status change".
GATEWAY_STATUS_MAP: dict[str, str | None] = {
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "incomplete": None,
}


def map_gateway_status(gateway_status: str | None) -> str | None:
    """Translate a Stripe status. Unknown statuses change nothing."""
    return GATEWAY_STATUS_MAP.get(gateway_status or "")


def _timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _object_id(value: Any) -> str | None:
    """Stripe references are either an id string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


# =============================================================================
# Inputs
# =============================================================================


class LedgerEventKind(str, Enum):
    CONFIRMED = "confirmed"
    STATUS_UPDATED = "status_updated"
    DELETED = "deleted"
    INVOICE_PAID = "invoice_paid"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """
    The gateway's view of a subscription at the time an event was emitted.

    Built from Stripe subscription objects; fields Stripe adds later are
    ignored.
    """

    status: str | None
    external_id: str | None = None
    customer_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    trial_end: datetime | None = None
    cancel_at_period_end: bool = False
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_stripe_object(cls, obj: dict[str, Any]) -> SubscriptionSnapshot:
        # Newer API versions report the period on the subscription items
        items = (obj.get("items") or {}).get("data") or []
        first_item = items[0] if items and isinstance(items[0], dict) else {}

        return cls(
            status=obj.get("status"),
            external_id=obj.get("id"),
            customer_id=_object_id(obj.get("customer")),
            current_period_start=_timestamp(
                obj.get("current_period_start") or first_item.get("current_period_start")
            ),
            current_period_end=_timestamp(
                obj.get("current_period_end") or first_item.get("current_period_end")
            ),
            trial_end=_timestamp(obj.get("trial_end")),
            cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
            metadata=dict(obj.get("metadata") or {}),
        )

    @classmethod
    def from_checkout_session(
        cls, session: dict[str, Any], trial_days: int, now: datetime
    ) -> SubscriptionSnapshot:
        """
        Snapshot for a completed checkout whose subscription was not expanded.

        The session only names the subscription, so status is inferred from
        the trial offered at checkout. An unpaid session (delayed payment
        method) is reported as incomplete and confirms nothing yet.
        """
        subscription = session.get("subscription")
        if isinstance(subscription, dict):
            return cls.from_stripe_object(subscription)

        if session.get("payment_status") == "unpaid":
            status = "incomplete"
        elif trial_days > 0:
            status = "trialing"
        else:
            status = "active"

        return cls(
            status=status,
            external_id=subscription or None,
            customer_id=_object_id(session.get("customer")),
            current_period_start=now,
            trial_end=now + timedelta(days=trial_days) if status == "trialing" else None,
            metadata=dict(session.get("metadata") or {}),
        )


@dataclass(frozen=True)
class InvoicePayment:
    invoice_id: str
    amount_paid: int
    application_fee_amount: int | None = None
    paid_at: datetime | None = None

    @classmethod
    def from_stripe_object(cls, invoice: dict[str, Any]) -> InvoicePayment:
        transitions = invoice.get("status_transitions") or {}
        return cls(
            invoice_id=invoice["id"],
            amount_paid=int(invoice.get("amount_paid") or 0),
            application_fee_amount=invoice.get("application_fee_amount"),
            paid_at=_timestamp(transitions.get("paid_at") or invoice.get("created")),
        )

    def platform_fee(self, fee_percent: int) -> int:
        """Fee Stripe reported, else the configured percentage of the amount."""
        if self.application_fee_amount is not None:
            return int(self.application_fee_amount)
        return self.amount_paid * fee_percent // 100


@dataclass(frozen=True)
class LedgerEvent:
    kind: LedgerEventKind
    subscription: SubscriptionSnapshot | None = None
    checkout_session_id: str | None = None
    invoice: InvoicePayment | None = None


@dataclass(frozen=True)
class LedgerSnapshot:
    """The local row, reduced to what planning needs."""

    status: str
    slot_held: bool
    program_active: bool = True
    external_subscription_id: str | None = None
    last_invoice_id: str | None = None
    total_paid: int = 0
    total_platform_fee: int = 0

    @classmethod
    def from_subscription(cls, subscription) -> LedgerSnapshot:
        return cls(
            status=subscription.status,
            slot_held=subscription.slot_held,
            program_active=subscription.program.is_active,
            external_subscription_id=subscription.external_subscription_id,
            last_invoice_id=subscription.last_invoice_id,
            total_paid=subscription.total_paid,
            total_platform_fee=subscription.total_platform_fee,
        )


# =============================================================================
# Output
# =============================================================================


class SideEffect(str, Enum):
    PROVISION_CHANNEL = "provision_channel"
    ARCHIVE_CHANNEL = "archive_channel"


@dataclass(frozen=True)
class TransitionPlan:
    """
    What to do to one subscription row.

    Attributes:
        transition: Name of the Subscription FSM method to call, or None
        field_updates: Attribute values to set on the row
        reserve_slot: Claim a program slot (only when none is held)
        release_slot: Return the held slot
        flag_reason: Flag the row for operator review
        side_effects: Best-effort actions to run after commit
        noop_reason: Why nothing changes (duplicate, terminal state, ...)
    """

    transition: str | None = None
    field_updates: dict[str, Any] = field(default_factory=dict)
    reserve_slot: bool = False
    release_slot: bool = False
    flag_reason: str | None = None
    side_effects: tuple[SideEffect, ...] = ()
    noop_reason: str | None = None

    @property
    def is_noop(self) -> bool:
        return not (
            self.transition
            or self.field_updates
            or self.reserve_slot
            or self.release_slot
            or self.flag_reason
        )


# =============================================================================
# Planning
# =============================================================================


def _gateway_fields(snapshot: SubscriptionSnapshot) -> dict[str, Any]:
    """Period and intent fields overwritten from the gateway (last event wins)."""
    updates: dict[str, Any] = {"cancel_at_period_end": snapshot.cancel_at_period_end}
    if snapshot.current_period_start is not None:
        updates["current_period_start"] = snapshot.current_period_start
    if snapshot.current_period_end is not None:
        updates["current_period_end"] = snapshot.current_period_end
    if snapshot.trial_end is not None:
        updates["trial_end"] = snapshot.trial_end
    return updates


def _identity_fields(current: LedgerSnapshot, snapshot: SubscriptionSnapshot) -> dict[str, Any]:
    updates: dict[str, Any] = {}
    if snapshot.external_id and not current.external_subscription_id:
        updates["external_subscription_id"] = snapshot.external_id
    if snapshot.customer_id:
        updates["external_customer_id"] = snapshot.customer_id
    return updates


def _plan_confirmation(
    current: LedgerSnapshot,
    snapshot: SubscriptionSnapshot,
    checkout_session_id: str | None,
) -> TransitionPlan:
    target = map_gateway_status(snapshot.status)
    updates = {**_identity_fields(current, snapshot), **_gateway_fields(snapshot)}
    if checkout_session_id:
        updates["checkout_session_id"] = checkout_session_id

    if target is None:
        # Payment still processing; wait for the status update
        return TransitionPlan(
            field_updates=updates,
            noop_reason=f"gateway status {snapshot.status!r} does not confirm",
        )

    if target == SubscriptionStatus.CANCELED:
        return TransitionPlan(
            transition="abandon",
            field_updates=updates,
            release_slot=current.slot_held,
        )

    flag_reason = None
    if not current.program_active:
        flag_reason = "Payment confirmed for a deactivated program"

    # past_due right after checkout still starts as active; the update
    # event that follows moves it
    transition = "confirm_trial" if target == SubscriptionStatus.TRIALING else "confirm_active"
    return TransitionPlan(
        transition=transition,
        field_updates=updates,
        reserve_slot=not current.slot_held,
        flag_reason=flag_reason,
        side_effects=(SideEffect.PROVISION_CHANNEL,),
    )


def _plan_end(current: LedgerSnapshot, snapshot: SubscriptionSnapshot | None) -> TransitionPlan:
    if current.status == SubscriptionStatus.CANCELED:
        return TransitionPlan(noop_reason="already canceled")

    updates = _gateway_fields(snapshot) if snapshot is not None else {}

    if current.status == SubscriptionStatus.PENDING:
        return TransitionPlan(
            transition="abandon",
            field_updates=updates,
            release_slot=current.slot_held,
        )

    return TransitionPlan(
        transition="cancel",
        field_updates=updates,
        release_slot=current.slot_held,
        side_effects=(SideEffect.ARCHIVE_CHANNEL,),
    )


# (current, target) -> FSM method for status updates on confirmed rows
_UPDATE_TRANSITIONS = {
    (SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE): "end_trial",
    (SubscriptionStatus.TRIALING, SubscriptionStatus.PAST_DUE): "mark_past_due",
    (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE): "mark_past_due",
    (SubscriptionStatus.PAST_DUE, SubscriptionStatus.ACTIVE): "recover",
}


def _plan_status_update(current: LedgerSnapshot, snapshot: SubscriptionSnapshot) -> TransitionPlan:
    target = map_gateway_status(snapshot.status)

    if current.status == SubscriptionStatus.CANCELED:
        return TransitionPlan(noop_reason="canceled is terminal")

    if target == SubscriptionStatus.CANCELED:
        return _plan_end(current, snapshot)

    if current.status == SubscriptionStatus.PENDING:
        # Update delivered before checkout completion
        return _plan_confirmation(current, snapshot, checkout_session_id=None)

    updates = {**_identity_fields(current, snapshot), **_gateway_fields(snapshot)}
    transition = _UPDATE_TRANSITIONS.get((current.status, target))
    noop_reason = None
    if transition is None and target is not None and target != current.status:
        noop_reason = f"no transition from {current.status} to {target}"

    return TransitionPlan(
        transition=transition,
        field_updates=updates,
        noop_reason=noop_reason,
    )


def _plan_invoice(
    current: LedgerSnapshot, invoice: InvoicePayment, fee_percent: int
) -> TransitionPlan:
    if invoice.invoice_id == current.last_invoice_id:
        return TransitionPlan(noop_reason="invoice already recorded")

    updates: dict[str, Any] = {
        "total_paid": current.total_paid + invoice.amount_paid,
        "total_platform_fee": current.total_platform_fee + invoice.platform_fee(fee_percent),
        "last_invoice_id": invoice.invoice_id,
    }
    if invoice.paid_at is not None:
        updates["last_payment_at"] = invoice.paid_at
    return TransitionPlan(field_updates=updates)


def plan_transition(
    current: LedgerSnapshot,
    event: LedgerEvent,
    *,
    platform_fee_percent: int = 0,
) -> TransitionPlan:
    """
    Decide how an event changes a subscription.

    Every branch is safe to replay: applying the resulting plan and then
    planning the same event again yields a no-op (or, for status updates,
    the same field values).
    """
    if event.kind == LedgerEventKind.CONFIRMED:
        if current.status == SubscriptionStatus.PENDING:
            return _plan_confirmation(current, event.subscription, event.checkout_session_id)
        if current.status == SubscriptionStatus.CANCELED:
            return TransitionPlan(
                flag_reason="Checkout completed after the subscription was canceled",
                noop_reason="canceled is terminal",
            )
        return TransitionPlan(noop_reason="already confirmed")

    if event.kind == LedgerEventKind.STATUS_UPDATED:
        return _plan_status_update(current, event.subscription)

    if event.kind == LedgerEventKind.DELETED:
        return _plan_end(current, event.subscription)

    if event.kind == LedgerEventKind.INVOICE_PAID:
        return _plan_invoice(current, event.invoice, platform_fee_percent)

    if event.kind == LedgerEventKind.ABANDONED:
        if current.status != SubscriptionStatus.PENDING:
            return TransitionPlan(noop_reason=f"not pending ({current.status})")
        return _plan_end(current, None)

    raise ValueError(f"Unknown ledger event kind: {event.kind}")
