"""Health and readiness endpoints.

LIVENESS vs READINESS
----------------------
  /health (liveness):
    "Is this process alive?"  Always 200; the body reports each
    dependency so a degraded Redis or database is visible without the
    orchestrator restarting a process that could recover on its own.

  /ready (readiness):
    "Can this instance handle traffic right now?"  503 when the database
    is configured but unreachable: every enrollment and certificate
    operation needs it.  Redis stays optional (in-memory fallbacks).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response

from lms.db import engine as db
from lms.db.redis import redis_pool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_redis() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
        return "ok"
    except Exception:
        logger.warning("Redis health check failed", exc_info=True)
        return "degraded"


async def _check_database() -> str:
    if db.engine is None:
        return "not_configured"
    try:
        await db.ping_database()
        return "ok"
    except Exception:
        logger.warning("Database health check failed", exc_info=True)
        return "degraded"


@router.get("/health")
async def health() -> dict:
    """Liveness probe + dependency status.

    Returns 200 even when degraded; the status field carries the answer.
    """
    checks = {
        "redis": await _check_redis(),
        "database": await _check_database(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    """Readiness probe: 503 while a configured database is unreachable."""
    if await _check_database() == "degraded":
        return Response(status_code=503)
    return Response(status_code=200)
