"""
Add celery-beat schedules for billing maintenance tasks.

- Sweep abandoned checkouts: every 15 minutes
- Retry failed webhooks: every 15 minutes
- Process stale pending webhooks: every 30 minutes
- Audit program capacity: every hour
- Reprovision missing chat channels: every hour
"""

from django.db import migrations

SCHEDULES = [
    (
        "Billing: Sweep Abandoned Checkouts",
        "billing.tasks.sweep_abandoned_checkouts",
        15,
        "minutes",
        "Cancels pending subscriptions whose checkout expired and releases "
        "their capacity reservations.",
    ),
    (
        "Billing: Retry Failed Webhooks",
        "billing.tasks.retry_failed_webhooks",
        15,
        "minutes",
        "Re-queues failed Stripe webhook events under the retry cap.",
    ),
    (
        "Billing: Process Stale Webhooks",
        "billing.tasks.process_stale_webhooks",
        30,
        "minutes",
        "Processes webhook events left pending by a worker that died.",
    ),
    (
        "Billing: Audit Program Capacity",
        "billing.tasks.audit_program_capacity",
        1,
        "hours",
        "Recounts held slots per program and corrects drifted counters.",
    ),
    (
        "Billing: Reprovision Missing Channels",
        "billing.tasks.reprovision_missing_channels",
        1,
        "hours",
        "Creates coaching chat channels that failed to provision.",
    ),
]


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for billing maintenance."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for name, task, every, period, description in SCHEDULES:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=every,
            period=period,
        )
        PeriodicTask.objects.get_or_create(
            name=name,
            defaults={
                "task": task,
                "interval": schedule,
                "enabled": True,
                "description": description,
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[name for name, *_ in SCHEDULES],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("billing", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
