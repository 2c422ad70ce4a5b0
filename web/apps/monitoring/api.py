"""Health endpoint: database reachability plus outbound circuit breaker states."""

import logging

from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.donations.http_adapters import breaker_states

logger = logging.getLogger("donations.health")


def health_view(_request):
    db_ok = True
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
    except DatabaseError:
        logger.exception("health check: database unreachable")
        db_ok = False

    breakers = breaker_states()
    # an open breaker degrades the service but does not make it unhealthy
    code = 200 if db_ok else 503
    return JsonResponse(
        {
            "ok": db_ok,
            "degraded": any(state != "CLOSED" for state in breakers.values()),
            "components": {
                "db": {"ok": db_ok},
                "breakers": breakers,
            },
        },
        status=code,
    )
