"""
Billing app configuration.

This app provides the subscription lifecycle and billing reconciliation:
- Hosted checkout with capacity reservation
- Entitlement ledger (subscription state machine)
- Stripe webhook reconciliation
- Client cancellation requests
- Creator Stripe Connect onboarding
"""

from django.apps import AppConfig


class BillingConfig(AppConfig):
    """Configuration for the billing application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "billing"
    verbose_name = "Billing"

    def ready(self):
        # Registers webhook handlers with the dispatcher
        from billing.webhooks import handlers  # noqa: F401
