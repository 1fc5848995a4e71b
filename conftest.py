"""
Root pytest configuration for the Django project.

Supplies environment defaults so the test suite runs without Docker:
a file-backed SQLite test database (threads share it), a local-memory
cache and dummy provider secrets. Django itself is configured in
app/conftest.py.
"""

import os
import tempfile

TEST_ENVIRONMENT = {
    "DJANGO_SETTINGS_MODULE": "config.settings",
    "SECRET_KEY": "test-secret-key-not-for-production",
    "DATABASE_URL": "sqlite://:memory:",
    "SQLITE_TEST_NAME": os.path.join(tempfile.gettempdir(), "coaching_billing_test.sqlite3"),
    "CACHE_BACKEND": "django.core.cache.backends.locmem.LocMemCache",
    "CELERY_BROKER_URL": "memory://",
    "CELERY_RESULT_BACKEND": "cache+memory://",
    "STRIPE_SECRET_KEY": "sk_test_dummy",
    "STRIPE_WEBHOOK_SECRET": "whsec_test_dummy",
    "STREAM_API_KEY": "stream-test-key",
    "STREAM_API_SECRET": "stream-test-secret",
    "SECURE_SSL_REDIRECT": "False",
    "LOG_LEVEL": "WARNING",
    "LOG_FILE_NAME": "test.log",
}

for key, value in TEST_ENVIRONMENT.items():
    os.environ.setdefault(key, value)
