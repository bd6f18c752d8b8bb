"""
Redis Connection Pool Management.

Order mutations are synchronous, so notifications use the blocking client
backed by a shared connection pool.
"""

from __future__ import annotations

import threading

import redis

from pos_shared.config.settings import settings, REDIS_URL
from pos_shared.config.logging import get_logger

logger = get_logger(__name__)


_redis_pool: redis.ConnectionPool | None = None
_pool_lock = threading.Lock()


def _get_redis_pool() -> redis.ConnectionPool:
    """Get or create the connection pool (double-checked under a lock)."""
    global _redis_pool
    if _redis_pool is None:
        with _pool_lock:
            if _redis_pool is None:
                _redis_pool = redis.ConnectionPool.from_url(
                    REDIS_URL,
                    max_connections=settings.redis_pool_max_connections,
                    decode_responses=True,
                    socket_connect_timeout=settings.redis_socket_timeout,
                    socket_timeout=settings.redis_socket_timeout,
                    health_check_interval=30,
                )
                logger.info(
                    "Redis pool initialized",
                    max_connections=settings.redis_pool_max_connections,
                    timeout=settings.redis_socket_timeout,
                )
    return _redis_pool


def get_redis_client() -> redis.Redis:
    """
    Get a Redis client from the shared pool.

    Each call returns a lightweight client; connections come from the pool.
    """
    return redis.Redis(connection_pool=_get_redis_pool())


def close_redis_pool() -> None:
    """Close pooled connections on application shutdown."""
    global _redis_pool
    with _pool_lock:
        if _redis_pool is not None:
            try:
                _redis_pool.disconnect()
                logger.info("Redis pool closed")
            except redis.RedisError as e:
                logger.warning("Error closing Redis pool", error=str(e))
            finally:
                _redis_pool = None
