"""
Track whether a subscription's coaching channel has been welcomed.

Channels provisioned before this migration already received their welcome,
so they are backfilled from updated_at and the reprovision task leaves them
alone.
"""

from django.db import migrations, models
from django.db.models import F


def backfill_welcomed(apps, schema_editor):
    Subscription = apps.get_model("billing", "Subscription")

    Subscription.objects.filter(channel_id__isnull=False).update(
        channel_welcomed_at=F("updated_at")
    )


class Migration(migrations.Migration):
    dependencies = [
        ("billing", "0002_add_celery_beat_schedules"),
    ]

    operations = [
        migrations.AddField(
            model_name="subscription",
            name="channel_welcomed_at",
            field=models.DateTimeField(
                blank=True,
                help_text="When the welcome message was posted; unset while it is still owed",
                null=True,
            ),
        ),
        migrations.RunPython(backfill_welcomed, migrations.RunPython.noop),
    ]
