"""
Core views providing infrastructure endpoints.
"""

from django.core.cache import cache
from django.db import DatabaseError, connection
from django.http import JsonResponse

from messaging.adapters import StreamChatAdapter


def health_check(request):
    """
    Health check endpoint for Docker, Kubernetes health checks and load balancers.

    Only the database is critical. The cache and the chat provider circuit
    are reported so a degraded deployment is visible, but they never turn
    the check red: billing keeps working without them.

    HTTP Status Codes:
        200: Database reachable
        503: Database unreachable
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
        "chat_provider": "unknown",
    }
    status_code = 200

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except DatabaseError:
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        status_code = 503

    # Cache and circuit state share the cache backend; not critical
    try:
        cache.set("health_check", "ok", timeout=1)
        health_status["cache"] = (
            "connected" if cache.get("health_check") == "ok" else "disconnected"
        )
        health_status["chat_provider"] = StreamChatAdapter.circuit_state().value
    except Exception:
        health_status["cache"] = "disconnected"

    return JsonResponse(health_status, status=status_code)
