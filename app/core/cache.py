"""
Redis access for the Student Leave Service.

Thin JSON helpers over a shared redis-py client. Redis is an optimisation
only: when CACHE_ENABLED is off, or Redis errors, reads are misses and
writes report False. Callers never see a Redis exception.
"""

import json
from datetime import date, datetime
from typing import Any, Optional

import redis
from redis import Redis

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

KEY_NAMESPACE = "leave"


class RedisClient:
    """Lazily created, process-wide Redis client."""

    _instance: Optional[Redis] = None

    @classmethod
    def get_client(cls) -> Redis:
        if cls._instance is None:
            cls._instance = redis.Redis(
                host=settings.REDIS_HOST,
                port=settings.REDIS_PORT,
                password=settings.REDIS_PASSWORD or None,
                db=settings.REDIS_DB,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
            logger.info(f"Redis client created for {settings.REDIS_HOST}:{settings.REDIS_PORT}")
        return cls._instance

    @classmethod
    def close(cls):
        if cls._instance:
            cls._instance.close()
            cls._instance = None
            logger.info("Redis client closed")

    @classmethod
    def ping(cls) -> bool:
        if not settings.CACHE_ENABLED:
            return False
        try:
            return bool(cls.get_client().ping())
        except redis.RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False


def _encode(obj: Any) -> Any:
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    raise TypeError(f"Type {type(obj)} not serializable")


def cache_key(*parts: str | int) -> str:
    """Namespaced key, e.g. cache_key("usage", "stu-1", "2025-03") -> "leave:usage:stu-1:2025-03"."""
    return ":".join([KEY_NAMESPACE, *[str(part) for part in parts]])


def get_json(key: str) -> Optional[Any]:
    """Decoded value stored at key, or None on a miss."""
    if not settings.CACHE_ENABLED:
        return None
    try:
        raw = RedisClient.get_client().get(key)
    except redis.RedisError as e:
        logger.error(f"Cache read failed for {key}: {e}")
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Ignoring undecodable cache entry {key}: {e}")
        return None


def set_json(key: str, value: Any, ttl: int) -> bool:
    """Store value as JSON for ttl seconds."""
    if not settings.CACHE_ENABLED:
        return False
    try:
        RedisClient.get_client().setex(key, ttl, json.dumps(value, default=_encode))
        return True
    except redis.RedisError as e:
        logger.error(f"Cache write failed for {key}: {e}")
        return False


def delete_matching(pattern: str) -> bool:
    """Delete every key matching a glob pattern."""
    if not settings.CACHE_ENABLED:
        return False
    try:
        client = RedisClient.get_client()
        keys = list(client.scan_iter(match=pattern))
        if keys:
            client.delete(*keys)
            logger.debug(f"Deleted {len(keys)} cache entries matching {pattern}")
        return True
    except redis.RedisError as e:
        logger.error(f"Cache delete failed for {pattern}: {e}")
        return False


def get_counter(key: str) -> Optional[int]:
    """Integer counter at key (0 when unset), or None when the cache is unavailable."""
    if not settings.CACHE_ENABLED:
        return None
    try:
        raw = RedisClient.get_client().get(key)
    except redis.RedisError as e:
        logger.error(f"Counter read failed for {key}: {e}")
        return None
    try:
        return int(raw or 0)
    except ValueError:
        logger.warning(f"Ignoring non-integer counter {key}")
        return None


def bump_counter(key: str) -> bool:
    if not settings.CACHE_ENABLED:
        return False
    try:
        RedisClient.get_client().incr(key)
        return True
    except redis.RedisError as e:
        logger.error(f"Counter increment failed for {key}: {e}")
        return False


def set_json_if_unchanged(
    key: str, value: Any, ttl: int, guard_key: str, expected: int
) -> bool:
    """
    Store value as JSON for ttl seconds, but only while the counter at
    guard_key still equals expected. The guard is watched, so a bump that
    lands between the check and the write also cancels it.
    """
    if not settings.CACHE_ENABLED:
        return False
    try:
        with RedisClient.get_client().pipeline() as pipe:
            pipe.watch(guard_key)
            if int(pipe.get(guard_key) or 0) != expected:
                logger.debug(f"Skipped cache write for {key}: {guard_key} moved on")
                return False
            pipe.multi()
            pipe.setex(key, ttl, json.dumps(value, default=_encode))
            pipe.execute()
            return True
    except redis.WatchError:
        logger.debug(f"Skipped cache write for {key}: {guard_key} changed during write")
        return False
    except (redis.RedisError, ValueError) as e:
        logger.error(f"Guarded cache write failed for {key}: {e}")
        return False
