# app/core/redis.py
"""
Redis connection and caching utilities.
Redis is used for:
- Short-lived caching of effective permission sets (per user, per clinic)
- The authorization epoch counter that invalidates those entries on mutation

The app should boot even if Redis is unavailable (degraded mode): every
helper then behaves like a cache miss and authorization reads the database.
"""

import json
import logging
from functools import lru_cache
from typing import Any, Optional

import redis

from app.core.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache
def get_redis_client() -> Optional[redis.Redis]:
    """
    Get the shared Redis client.
    Returns None if Redis is not configured or did not answer a ping at
    startup. The result is cached for the process lifetime.
    """
    settings = get_settings()

    if not settings.redis_url:
        logger.warning("REDIS_URL not set. Authorization cache is disabled.")
        return None

    client = redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,
    )
    try:
        client.ping()
    except redis.RedisError as e:
        logger.warning("Failed to connect to Redis: %s. Running without authorization cache.", e)
        return None

    logger.info("Redis connection established.")
    return client


def is_redis_available() -> bool:
    client = get_redis_client()
    if not client:
        return False
    try:
        return bool(client.ping())
    except redis.RedisError:
        return False


def cache_get(key: str) -> Optional[str]:
    """Get a raw value. None if Redis is unavailable or the key is missing."""
    client = get_redis_client()
    if not client:
        return None
    try:
        return client.get(key)
    except redis.RedisError as e:
        logger.warning("Redis GET error for key '%s': %s", key, e)
        return None


def cache_set(key: str, value: str, ttl: int = 60) -> bool:
    """Set a raw value with TTL (seconds). False if Redis is unavailable."""
    client = get_redis_client()
    if not client:
        return False
    try:
        client.setex(key, ttl, value)
        return True
    except redis.RedisError as e:
        logger.warning("Redis SET error for key '%s': %s", key, e)
        return False


def cache_get_json(key: str) -> Any:
    raw = cache_get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Discarding malformed cache entry '%s'", key)
        return None


def cache_set_json(key: str, value: Any, ttl: int = 60) -> bool:
    return cache_set(key, json.dumps(value), ttl=ttl)


def cache_incr(key: str) -> Optional[int]:
    """Atomically increment a counter. None if Redis is unavailable."""
    client = get_redis_client()
    if not client:
        return None
    try:
        return int(client.incr(key))
    except redis.RedisError as e:
        logger.warning("Redis INCR error for key '%s': %s", key, e)
        return None
