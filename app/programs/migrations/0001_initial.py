import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Program",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("title", models.CharField(max_length=200)),
                ("description", models.TextField(blank=True, default="")),
                (
                    "price_amount",
                    models.PositiveIntegerField(
                        help_text="Price per billing interval in smallest currency unit (e.g., cents)"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "billing_interval",
                    models.CharField(
                        choices=[("week", "Weekly"), ("month", "Monthly")],
                        default="month",
                        max_length=10,
                    ),
                ),
                (
                    "external_product_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Stripe Product ID (prod_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "external_price_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Stripe Price ID (price_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "max_clients",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Maximum concurrent clients, empty for unlimited",
                        null=True,
                    ),
                ),
                (
                    "current_clients",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Slots held by pending, trialing, active and past-due subscriptions",
                    ),
                ),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("trial_enabled", models.BooleanField(default=False)),
                ("trial_days", models.PositiveSmallIntegerField(default=0)),
                (
                    "owner",
                    models.ForeignKey(
                        help_text="Creator who owns this program",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="programs",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Program",
                "verbose_name_plural": "Programs",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["owner", "is_active"],
                        name="program_owner_active_idx",
                    )
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            ("max_clients__isnull", True),
                            ("current_clients__lte", models.F("max_clients")),
                            _connector="OR",
                        ),
                        name="program_clients_within_capacity",
                        violation_error_message="current_clients exceeds max_clients",
                    )
                ],
            },
        ),
    ]
