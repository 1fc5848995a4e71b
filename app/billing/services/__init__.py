"""
Billing services.

- EntitlementLedger: the only writer of Subscription rows
- CheckoutService: precondition checks, reservation, hosted checkout
- CancellationService: client-requested cancellation
- CreatorBillingService: Stripe Connect onboarding and price publishing

Usage:
    from billing.services import CheckoutService

    result = CheckoutService.initiate_checkout(request.user, program_id)
"""

from billing.services.cancellation import CancellationService
from billing.services.checkout import CheckoutResult, CheckoutService
from billing.services.creator_billing import CreatorBillingService
from billing.services.entitlement_ledger import (
    CapacityDrift,
    EntitlementLedger,
    RevenueSummary,
)

__all__ = [
    "CancellationService",
    "CapacityDrift",
    "CheckoutResult",
    "CheckoutService",
    "CreatorBillingService",
    "EntitlementLedger",
    "RevenueSummary",
]
