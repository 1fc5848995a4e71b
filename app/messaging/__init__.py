"""
Messaging: coaching chat channels provisioned from billing events.

This app has no models. Channel ids are stored on billing.Subscription.
"""
