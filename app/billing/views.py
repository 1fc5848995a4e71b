"""
DRF views for billing app.

Endpoints:
    POST /api/v1/billing/programs/{id}/checkout/       - Start checkout
    GET  /api/v1/billing/subscriptions/                - Caller's subscriptions
    GET  /api/v1/billing/subscriptions/{id}/           - One subscription
    POST /api/v1/billing/subscriptions/{id}/cancel/    - Request cancellation
    GET  /api/v1/billing/subscribers/                  - Creator's subscribers
    POST /api/v1/billing/onboarding/                   - Stripe Connect link
    POST /api/v1/billing/webhooks/stripe/              - Stripe webhook

Security:
    - All endpoints require authentication except the webhook
    - The webhook verifies the Stripe signature
"""

from __future__ import annotations

from django.db.models import Q
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.models import Subscription
from billing.serializers import (
    CancelSubscriptionSerializer,
    CheckoutRequestSerializer,
    CheckoutResponseSerializer,
    OnboardingRequestSerializer,
    OnboardingResponseSerializer,
    RevenueSummarySerializer,
    SubscriberSerializer,
    SubscriptionSerializer,
)
from billing.services import (
    CancellationService,
    CheckoutService,
    CreatorBillingService,
    EntitlementLedger,
)
from billing.state_machines import SubscriptionStatus
from core.services import ServiceResult

# Service error codes -> HTTP status
ERROR_STATUS = {
    "PROGRAM_UNAVAILABLE": status.HTTP_409_CONFLICT,
    "ONBOARDING_INCOMPLETE": status.HTTP_409_CONFLICT,
    "ALREADY_SUBSCRIBED": status.HTTP_409_CONFLICT,
    "CAPACITY_EXCEEDED": status.HTTP_409_CONFLICT,
    "INVALID_SUBSCRIPTION_STATE": status.HTTP_400_BAD_REQUEST,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PERMISSION_DENIED": status.HTTP_403_FORBIDDEN,
    "GATEWAY_UNAVAILABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
    "CIRCUIT_OPEN": status.HTTP_503_SERVICE_UNAVAILABLE,
    "GATEWAY_REQUEST_FAILED": status.HTTP_502_BAD_GATEWAY,
}


def failure_response(result: ServiceResult) -> Response:
    return Response(
        result.to_response(),
        status=ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST),
    )


class CheckoutView(APIView):
    """Start a hosted checkout for a program."""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_checkout",
        summary="Start program checkout",
        description=(
            "Reserves a slot in the program and returns a Stripe Checkout URL. "
            "The subscription stays pending until Stripe confirms payment."
        ),
        request=CheckoutRequestSerializer,
        responses={
            201: OpenApiResponse(response=CheckoutResponseSerializer),
            409: OpenApiResponse(
                description="Program unavailable, creator not onboarded, "
                "already subscribed, or program full"
            ),
            502: OpenApiResponse(description="Stripe rejected the request"),
            503: OpenApiResponse(description="Stripe unavailable, retry later"),
        },
        tags=["Billing"],
    )
    def post(self, request, program_id):
        serializer = CheckoutRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = CheckoutService.initiate_checkout(
            request.user,
            program_id,
            success_url=serializer.validated_data.get("success_url"),
            cancel_url=serializer.validated_data.get("cancel_url"),
        )
        if not result.success:
            return failure_response(result)

        return Response(
            CheckoutResponseSerializer(result.data).data,
            status=status.HTTP_201_CREATED,
        )


@extend_schema(tags=["Billing"])
class SubscriptionViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Subscriptions the caller is a client or coach of.

    GET /api/v1/billing/subscriptions/
    GET /api/v1/billing/subscriptions/{id}/
    POST /api/v1/billing/subscriptions/{id}/cancel/
    """

    serializer_class = SubscriptionSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        user = self.request.user
        return (
            Subscription.objects.select_related("program")
            .filter(Q(client=user) | Q(coach=user))
            .order_by("-created_at")
        )

    @extend_schema(
        operation_id="cancel_subscription",
        summary="Cancel subscription",
        description=(
            "Asks Stripe to cancel at period end (default) or immediately. "
            "Status changes when Stripe confirms through its webhook."
        ),
        request=CancelSubscriptionSerializer,
        responses={
            200: OpenApiResponse(response=SubscriptionSerializer),
            400: OpenApiResponse(description="Subscription cannot be canceled"),
            403: OpenApiResponse(description="Not the subscribing client"),
            404: OpenApiResponse(description="Subscription not found"),
            503: OpenApiResponse(description="Stripe unavailable, retry later"),
        },
    )
    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        subscription = self.get_object()
        serializer = CancelSubscriptionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = CancellationService.request_cancellation(
            request.user,
            subscription.id,
            immediate=serializer.validated_data["immediate"],
        )
        if not result.success:
            return failure_response(result)

        return Response(SubscriptionSerializer(result.data).data)


class SubscribersView(APIView):
    """Creator's subscribers and lifetime revenue."""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_subscribers",
        summary="List subscribers and revenue",
        responses={200: OpenApiResponse(description="Subscribers and revenue summary")},
        tags=["Billing"],
    )
    def get(self, request):
        subscriptions = (
            Subscription.objects.select_related("program", "client")
            .filter(coach=request.user)
            .exclude(status=SubscriptionStatus.PENDING)
            .order_by("-created_at")
        )
        summary = EntitlementLedger.revenue_summary(request.user)
        return Response(
            {
                "summary": RevenueSummarySerializer(summary).data,
                "subscribers": SubscriberSerializer(subscriptions, many=True).data,
            }
        )


class OnboardingView(APIView):
    """Stripe Connect onboarding link for the calling creator."""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="start_onboarding",
        summary="Start Stripe Connect onboarding",
        request=OnboardingRequestSerializer,
        responses={
            200: OpenApiResponse(response=OnboardingResponseSerializer),
            503: OpenApiResponse(description="Stripe unavailable, retry later"),
        },
        tags=["Billing"],
    )
    def post(self, request):
        serializer = OnboardingRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = CreatorBillingService.start_onboarding(
            request.user,
            return_url=serializer.validated_data["return_url"],
            refresh_url=serializer.validated_data["refresh_url"],
        )
        if not result.success:
            return failure_response(result)

        return Response(OnboardingResponseSerializer({"url": result.data}).data)
