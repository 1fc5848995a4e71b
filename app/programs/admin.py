"""
Program admin configuration.

The capacity counter is read-only here: it is owned by ProgramRegistry and
corrected only by the capacity audit task.
"""

from django.contrib import admin, messages

from programs.models import Program


@admin.register(Program)
class ProgramAdmin(admin.ModelAdmin):
    list_display = [
        "title",
        "owner",
        "price_amount",
        "billing_interval",
        "current_clients",
        "max_clients",
        "is_active",
        "created_at",
    ]
    list_filter = ["is_active", "billing_interval", "trial_enabled"]
    search_fields = ["id", "title", "owner__email", "external_price_id"]
    readonly_fields = ["id", "current_clients", "created_at", "updated_at"]
    ordering = ["-created_at"]

    fieldsets = (
        (None, {"fields": ("id", "owner", "title", "description", "is_active")}),
        (
            "Pricing",
            {
                "fields": (
                    "price_amount",
                    "currency",
                    "billing_interval",
                    "external_product_id",
                    "external_price_id",
                ),
            },
        ),
        ("Capacity", {"fields": ("max_clients", "current_clients")}),
        ("Trial", {"fields": ("trial_enabled", "trial_days")}),
        (
            "Timestamps",
            {"fields": ("created_at", "updated_at"), "classes": ("collapse",)},
        ),
    )

    actions = ["publish_price"]

    @admin.action(description="Publish price to Stripe")
    def publish_price(self, request, queryset):
        from billing.services import CreatorBillingService

        published = 0
        for program in queryset:
            result = CreatorBillingService.publish_program_price(program)
            if result.success:
                published += 1
            else:
                self.message_user(
                    request,
                    f"{program.title}: {result.error}",
                    level=messages.WARNING,
                )
        self.message_user(request, f"Published {published} program prices.")
