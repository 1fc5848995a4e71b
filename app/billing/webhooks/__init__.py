"""
Stripe webhook reconciliation.

- transitions: pure (state, event) -> plan functions
- handlers: per-event-type handlers and the dispatch registry
- reconciler: verify, record, apply, commit, then run side effects
- views: the HTTP endpoint

Usage:
    # In urls.py
    from billing.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""
