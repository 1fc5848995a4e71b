"""
URL configuration for the billing service.

URL Structure:
    /                                   - ReDoc API documentation
    /schema/                            - OpenAPI schema (YAML)
    /admin/                             - Django admin interface
    /health/                            - Health check endpoint
    /api/v1/billing/                    - Billing endpoints
        programs/{id}/checkout/         - Start hosted checkout (POST)
        subscriptions/                  - Caller's subscriptions
        subscriptions/{id}/             - Subscription detail
        subscriptions/{id}/cancel/      - Request cancellation (POST)
        subscribers/                    - Creator's subscribers and revenue
        onboarding/                     - Creator payout onboarding link (POST)
        webhooks/stripe/                - Stripe webhook endpoint (POST)
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# All routes here are prefixed with /api/v1/
api_v1_patterns = [
    path("billing/", include("billing.urls")),
]

urlpatterns = [
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    path("admin/", admin.site.urls),
    path("health/", health_check, name="health_check"),
    path("api/v1/", include(api_v1_patterns)),
]

admin.site.site_header = "Coaching Billing Admin"
admin.site.site_title = "Billing Admin"
admin.site.index_title = "Programs and subscriptions"
