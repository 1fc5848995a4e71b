"""
DRF serializers for billing app.

This module provides serializers for:
- Subscription display (client and coach views)
- Checkout and cancellation requests
- Creator subscriber list and revenue summary
- Connect onboarding requests

Usage:
    serializer = SubscriptionSerializer(subscription)
    data = serializer.data
"""

from __future__ import annotations

from rest_framework import serializers

from billing.models import Subscription


class SubscriptionSerializer(serializers.ModelSerializer):
    """
    Subscription serializer for API responses.

    Money fields are in the smallest currency unit. Internal bookkeeping
    (slot_held, version, review flags) is not exposed.
    """

    program_id = serializers.UUIDField(read_only=True)
    program_title = serializers.CharField(source="program.title", read_only=True)
    client_id = serializers.IntegerField(read_only=True)
    coach_id = serializers.IntegerField(read_only=True)
    is_entitled = serializers.BooleanField(read_only=True)

    class Meta:
        model = Subscription
        fields = [
            "id",
            "program_id",
            "program_title",
            "client_id",
            "coach_id",
            "status",
            "is_entitled",
            "trial_end",
            "current_period_start",
            "current_period_end",
            "cancel_at_period_end",
            "cancellation_requested_at",
            "canceled_at",
            "channel_id",
            "created_at",
        ]
        read_only_fields = fields


class SubscriberSerializer(SubscriptionSerializer):
    """Subscription as its coach sees it, with payment totals."""

    client_name = serializers.SerializerMethodField()
    coach_earnings = serializers.IntegerField(read_only=True)

    class Meta(SubscriptionSerializer.Meta):
        fields = SubscriptionSerializer.Meta.fields + [
            "client_name",
            "total_paid",
            "total_platform_fee",
            "coach_earnings",
            "last_payment_at",
        ]
        read_only_fields = fields

    def get_client_name(self, obj) -> str:
        return obj.client.get_full_name() or obj.client.get_username()


class CheckoutRequestSerializer(serializers.Serializer):
    success_url = serializers.URLField(required=False)
    cancel_url = serializers.URLField(required=False)


class CheckoutResponseSerializer(serializers.Serializer):
    subscription_id = serializers.UUIDField(source="subscription.id")
    session_id = serializers.CharField()
    url = serializers.URLField()


class CancelSubscriptionSerializer(serializers.Serializer):
    """
    Request body:
        {"immediate": false}  # Cancel at period end (default)
        {"immediate": true}   # Cancel now
    """

    immediate = serializers.BooleanField(default=False)


class RevenueSummarySerializer(serializers.Serializer):
    subscriber_count = serializers.IntegerField()
    gross_paid = serializers.IntegerField()
    platform_fee = serializers.IntegerField()
    net_earnings = serializers.IntegerField()


class OnboardingRequestSerializer(serializers.Serializer):
    return_url = serializers.URLField()
    refresh_url = serializers.URLField()


class OnboardingResponseSerializer(serializers.Serializer):
    url = serializers.URLField()
