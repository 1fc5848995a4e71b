"""
Payment gateway adapter.

All Stripe API calls go through StripeAdapter to get consistent timeouts,
idempotency keys, error translation and timing logs.

Usage:
    from billing.adapters import StripeAdapter

    snapshot = StripeAdapter.get_subscription("sub_123")
"""

from billing.adapters.stripe_adapter import (
    CheckoutSessionParams,
    CheckoutSessionResult,
    ConnectedAccountResult,
    IdempotencyKeyGenerator,
    ProgramPriceResult,
    StripeAdapter,
)

__all__ = [
    "CheckoutSessionParams",
    "CheckoutSessionResult",
    "ConnectedAccountResult",
    "IdempotencyKeyGenerator",
    "ProgramPriceResult",
    "StripeAdapter",
]
