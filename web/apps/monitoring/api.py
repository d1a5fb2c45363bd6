"""Liveness/readiness endpoint.

Reports database connectivity and which payment providers have complete
credentials. Only the database decides the status code: a provider without
credentials is simply not offered at checkout.
"""

import logging

from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.payments.registry import build_registry

logger = logging.getLogger("orders")


def health_view(_request):
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError:
        logger.exception("health check: database unreachable")

    providers = {
        adapter.method.value: {"configured": adapter.is_configured()}
        for adapter in build_registry(settings)
    }
    code = 200 if db_ok else 503
    return JsonResponse(
        {
            "ok": db_ok,
            "components": {
                "db": {"ok": db_ok},
                "payment_providers": providers,
                "http_adapters": bool(settings.USE_HTTP_ADAPTERS),
            },
        },
        status=code,
    )
