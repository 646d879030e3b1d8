"""Read-through cache for learner progress summaries.

  GET  progress  → cache hit  → return
                 → cache miss → load from repositories → store (TTL) → return
  lesson complete / reset → delete the learner's entry for that course

Two safety nets cover each other: the TTL bounds staleness if an
invalidation is ever missed, and explicit deletes make fresh progress
visible immediately after a completion.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from lms.core.metrics import CACHE_OPERATIONS
from lms.db.redis import redis_pool

logger = logging.getLogger(__name__)


def progress_cache_key(learner_id: object, course_id: object) -> str:
    return f"progress:{learner_id}:{course_id}"


async def invalidate_progress(learner_id: object, course_id: object) -> None:
    """Drop the learner's cached progress for a course.

    Best effort: the write it follows is already committed, so a cache
    outage is logged and the TTL bounds how long the stale entry lives.
    """
    key = progress_cache_key(learner_id, course_id)
    try:
        await cache_service.delete(key)
    except Exception:
        logger.exception("Progress cache invalidation failed", extra={"cache_key": key})


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on cache miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value with a TTL (time to live)."""
        ...

    async def delete(self, key: str) -> None:
        """Explicitly invalidate a cached entry."""
        ...


class InMemoryCacheService:
    """In-memory cache for testing; no TTL enforcement."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        value = self._store.get(key)
        CACHE_OPERATIONS.labels(operation="miss" if value is None else "hit").inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = value

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)


class RedisCacheService:
    """Redis-backed cache shared across all API instances."""

    # Key prefix keeps cache entries apart from task queue lists.
    _PREFIX = "cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        value = await self._redis.get(f"{self._PREFIX}{key}")
        CACHE_OPERATIONS.labels(operation="miss" if value is None else "hit").inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{key}")


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()
