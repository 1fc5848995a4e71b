"""
Celery configuration for the billing service.

Celery runs the background side of the billing engine:
- Periodic sweeps (abandoned checkouts, capacity audit)
- Webhook maintenance (retrying failed events, resetting stuck ones)
- Repair of subscriptions whose chat channel was never provisioned

Redis is both the message broker and result backend. Periodic schedules are
stored in the database via django-celery-beat and created by a billing data
migration.

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
