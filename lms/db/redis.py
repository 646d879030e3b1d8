"""Redis connection management.

Mirrors engine.py: when REDIS_URL is configured a single connection pool
is created at import time and shared by the certificate task queue and
the progress cache; when it is None both fall back to in-memory
implementations and no Redis server is needed (local dev, tests).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from lms.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,  # return str instead of bytes
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Startup/shutdown hook for Redis, mirrors lifespan_db().

    Pings on startup and closes the pool on shutdown.  A failed ping is
    logged but does not stop the process: the API can still serve reads,
    and certificate jobs enqueued later will surface the error.
    """
    if redis_pool is None:
        logger.info("No REDIS_URL configured; queue and cache use in-memory fallbacks")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]  # redis stubs mistype async ping as bool
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
