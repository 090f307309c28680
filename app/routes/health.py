# app/routes/health.py
"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter

from app.config import settings
from app.db.pool import db_health_check
from app.infrastructure.observability.logging import log_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "credit-operations"}


@router.get("/readyz")
async def readyz():
    """Ready when the pool serves a query and the database DSN is configured."""
    t0 = time.time()
    try:
        db_health = await db_health_check()
    except Exception as e:
        db_health = {"healthy": False, "error": f"{type(e).__name__}: {e}"}

    is_healthy = db_health.get("healthy", False)
    latency_ms = round((time.time() - t0) * 1000, 1)
    database = {"ok": is_healthy, "latency_ms": latency_ms}
    for key in ("pool_size", "pool_available", "requests_waiting", "connection_time_ms"):
        if key in db_health:
            database[key] = db_health[key]
    if not is_healthy:
        database["error"] = db_health.get("error", "Database unhealthy")
        if "error_type" in db_health:
            database["error_type"] = db_health["error_type"]
    log_health_check("database", is_healthy, latency_ms, database.get("error"))

    config_issues = [] if settings.SUPABASE_DB_URL else ["SUPABASE_DB_URL not set"]
    checks = {
        "database": database,
        "configuration": {
            "ok": not config_issues,
            "issues": config_issues or None,
            "environment": settings.environment,
        },
    }
    overall_ok = is_healthy and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()
