"""Shared Redis connection helper for worker processes."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

import redis
import redis.asyncio as aioredis

from apps.kyc_worker.config import get_worker_settings

logger = logging.getLogger(__name__)


@lru_cache
def _get_pool() -> aioredis.ConnectionPool:
    settings = get_worker_settings()
    try:
        return aioredis.ConnectionPool.from_url(
            settings.redis_url,
            max_connections=16,
            decode_responses=True,
        )
    except redis.RedisError as exc:  # pragma: no cover - configuration issue
        logger.exception("Unable to configure Redis pool: %s", exc)
        raise


def get_redis_connection(*, health_check_interval: Optional[int] = 30) -> aioredis.Redis:
    """Return an asyncio Redis client backed by a cached pool."""

    return aioredis.Redis(connection_pool=_get_pool(), health_check_interval=health_check_interval)


async def close_redis_connection(client: aioredis.Redis) -> None:
    """Close the client and drop the cached pool."""

    await client.aclose()
    pool = _get_pool()
    await pool.disconnect()
    reset_worker_redis_cache()
    logger.info("Redis connection closed gracefully")


def reset_worker_redis_cache() -> None:
    """Reset connection pool cache (for testing)."""

    _get_pool.cache_clear()
