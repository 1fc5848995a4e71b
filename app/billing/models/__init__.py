"""
Billing domain models.

- Subscription: a client's subscription to a program (entitlement ledger row)
- WebhookEvent: Stripe webhook event log for idempotent processing
- ConnectedAccount: creator Stripe Connect account
"""

from billing.models.connected_account import ConnectedAccount
from billing.models.subscription import Subscription
from billing.models.webhook_event import WebhookEvent

__all__ = [
    "ConnectedAccount",
    "Subscription",
    "WebhookEvent",
]
