"""
Core views providing infrastructure endpoints.
"""

import logging

from django.db import connection
from django.http import JsonResponse
from django_redis import get_redis_connection

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Health check endpoint for load balancers and orchestration probes.

    The database is required. Redis backs refund and reconciliation
    locks, so its absence degrades the service but is reported rather
    than failing the probe.

    Returns:
        200 {"status": "healthy", "database": "connected", "redis": "connected"}
        503 when the database is unreachable
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "redis": "unknown",
    }
    is_healthy = True

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except Exception:
        logger.exception("Health check: database unreachable")
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        is_healthy = False

    try:
        get_redis_connection("default").ping()
        health_status["redis"] = "connected"
    except Exception:
        logger.warning("Health check: redis unreachable", exc_info=True)
        health_status["redis"] = "disconnected"

    return JsonResponse(health_status, status=200 if is_healthy else 503)
