"""
Billing admin configuration.

Subscription status and slot bookkeeping are read-only here: they are
written only by the entitlement ledger. Operators repair rows through the
actions, which go through the same services as the webhooks.
"""

from django.contrib import admin, messages

from billing.models import ConnectedAccount, Subscription, WebhookEvent
from billing.services import EntitlementLedger
from billing.state_machines import WebhookEventStatus
from billing.tasks import process_webhook_event


@admin.register(ConnectedAccount)
class ConnectedAccountAdmin(admin.ModelAdmin):
    """
    Admin configuration for ConnectedAccount.

    Provides visibility into Stripe Connect account status.
    """

    list_display = [
        "id",
        "owner",
        "stripe_account_id",
        "onboarding_status",
        "charges_enabled",
        "payouts_enabled",
        "created_at",
    ]
    list_filter = ["onboarding_status", "charges_enabled", "payouts_enabled"]
    search_fields = ["id", "stripe_account_id", "owner__email"]
    readonly_fields = [
        "id",
        "stripe_account_id",
        "onboarding_status",
        "charges_enabled",
        "payouts_enabled",
        "details_submitted",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "client",
        "program",
        "status",
        "slot_held",
        "cancel_at_period_end",
        "needs_review",
        "created_at",
    ]
    list_filter = ["status", "slot_held", "needs_review", "cancel_at_period_end"]
    search_fields = [
        "id",
        "checkout_session_id",
        "external_subscription_id",
        "client__email",
        "program__title",
    ]
    readonly_fields = [
        "id",
        "client",
        "program",
        "coach",
        "status",
        "slot_held",
        "checkout_session_id",
        "checkout_url",
        "external_subscription_id",
        "external_customer_id",
        "trial_days",
        "trial_end",
        "current_period_start",
        "current_period_end",
        "cancel_at_period_end",
        "cancellation_requested_at",
        "canceled_at",
        "channel_id",
        "channel_welcomed_at",
        "total_paid",
        "total_platform_fee",
        "last_invoice_id",
        "last_payment_at",
        "version",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["resync_from_stripe", "clear_review_flag"]

    fieldsets = (
        (None, {"fields": ("id", "client", "program", "coach", "status", "slot_held")}),
        (
            "Stripe",
            {
                "fields": (
                    "checkout_session_id",
                    "checkout_url",
                    "external_subscription_id",
                    "external_customer_id",
                ),
            },
        ),
        (
            "Billing Period",
            {
                "fields": (
                    "trial_days",
                    "trial_end",
                    "current_period_start",
                    "current_period_end",
                ),
            },
        ),
        (
            "Cancellation",
            {
                "fields": (
                    "cancel_at_period_end",
                    "cancellation_requested_at",
                    "canceled_at",
                ),
            },
        ),
        (
            "Payments",
            {"fields": ("total_paid", "total_platform_fee", "last_invoice_id", "last_payment_at")},
        ),
        ("Review", {"fields": ("needs_review", "review_reason")}),
        (
            "Metadata",
            {
                "fields": ("channel_id", "channel_welcomed_at", "metadata", "version"),
                "classes": ("collapse",),
            },
        ),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )

    @admin.action(description="Resync selected subscriptions from Stripe")
    def resync_from_stripe(self, request, queryset):
        resynced = 0
        for subscription_id in queryset.values_list("pk", flat=True):
            result = EntitlementLedger.resync_from_gateway(subscription_id)
            if result.success:
                resynced += 1
            else:
                self.message_user(
                    request,
                    f"{subscription_id}: {result.error}",
                    level=messages.WARNING,
                )
        self.message_user(request, f"Resynced {resynced} subscriptions.")

    @admin.action(description="Clear review flag")
    def clear_review_flag(self, request, queryset):
        count = queryset.filter(needs_review=True).update(needs_review=False, review_reason="")
        self.message_user(request, f"Cleared {count} review flags.")

    def has_add_permission(self, request) -> bool:
        """Subscriptions are created by checkout only."""
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for subscriptions (audit trail)."""
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Events beyond the retry cap stay FAILED until an operator requeues them.
    """

    list_display = [
        "stripe_event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "stripe_event_id", "event_type"]
    readonly_fields = [
        "id",
        "stripe_event_id",
        "event_type",
        "payload",
        "status",
        "processed_at",
        "error_message",
        "retry_count",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["requeue"]

    @admin.action(description="Requeue selected events for processing")
    def requeue(self, request, queryset):
        queued = 0
        for event in queryset.exclude(status=WebhookEventStatus.PROCESSED):
            process_webhook_event.delay(str(event.id))
            queued += 1
        self.message_user(request, f"Queued {queued} webhook events.")

    def has_add_permission(self, request) -> bool:
        return False
