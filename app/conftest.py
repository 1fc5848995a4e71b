"""
Pytest configuration for the Django project.

This module configures pytest-django and provides project-wide fixtures.
App-specific fixtures are defined in each app's tests/conftest.py.
"""

import os
from unittest.mock import MagicMock

import django
import pytest

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()

    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # Use fast password hasher for tests
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_scenarios.py → e2e (multi-step billing journeys)
    - test_views.py, test_tasks.py, test_webhooks.py, etc. → integration
    - test_models.py, test_transitions.py, test_adapters.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_scenarios.py"]

    unit_patterns = [
        "test_models.py",
        "test_serializers.py",
        "test_transitions.py",
        "test_adapters.py",
        "test_stripe_adapter.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def api_client():
    """DRF test client."""
    from rest_framework.test import APIClient

    return APIClient()


@pytest.fixture(autouse=True)
def _clear_cache():
    """Circuit breaker state lives in the cache; start each test closed."""
    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def stream_chat(mocker):
    """
    Stream Chat adapter with every operation mocked.

    Returns a namespace of the patched methods.
    """
    from messaging.adapters import StreamChatAdapter

    mocks = MagicMock()
    mocks.upsert_members = mocker.patch.object(StreamChatAdapter, "upsert_members")
    mocks.create_channel = mocker.patch.object(StreamChatAdapter, "create_channel")
    mocks.send_system_message = mocker.patch.object(StreamChatAdapter, "send_system_message")
    mocks.archive_channel = mocker.patch.object(StreamChatAdapter, "archive_channel")
    return mocks
