"""
URL configuration for the billing app.

Routes:
    - POST programs/<program_id>/checkout/     - Start hosted checkout
    - GET  subscriptions/                      - Caller's subscriptions
    - GET  subscriptions/<id>/                 - Subscription detail
    - POST subscriptions/<id>/cancel/          - Request cancellation
    - GET  subscribers/                        - Creator's subscribers
    - POST onboarding/                         - Stripe Connect onboarding
    - POST webhooks/stripe/                    - Stripe webhook endpoint

All routes are prefixed with /api/v1/billing/ when included in the main URLconf.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from billing.views import (
    CheckoutView,
    OnboardingView,
    SubscribersView,
    SubscriptionViewSet,
)
from billing.webhooks.views import stripe_webhook

app_name = "billing"

router = DefaultRouter()
router.register("subscriptions", SubscriptionViewSet, basename="subscription")

urlpatterns = [
    path(
        "programs/<uuid:program_id>/checkout/",
        CheckoutView.as_view(),
        name="checkout",
    ),
    path("subscribers/", SubscribersView.as_view(), name="subscribers"),
    path("onboarding/", OnboardingView.as_view(), name="onboarding"),
    # Webhook endpoints
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    path("", include(router.urls)),
]
