"""
Redis Connection
Pooled client for the RQ sweep queue.

Only sweeps travel through Redis. Job state lives in the database, so the
API keeps working (sweeping inline) when Redis is unreachable.
"""

import logging
from functools import lru_cache
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from redis import ConnectionPool, Redis
from redis.exceptions import RedisError

from cadence.core.config import get_settings

logger = logging.getLogger(__name__)


class Queues:
    """Queue names used by the engine."""
    RECONCILE = "reconcile"
    DEFAULT = "default"

    ALL = (RECONCILE, DEFAULT)


def mask_url(url: str) -> str:
    """Redis URL with any password replaced, for logs and health output."""
    parts = urlsplit(url)
    if not parts.password:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    user = parts.username or ""
    return urlunsplit((parts.scheme, f"{user}:***@{host}", parts.path, parts.query, parts.fragment))


class RedisManager:
    """Lazily created pool shared by the API and the sweep workers."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or get_settings().REDIS_URL
        self._client: Optional[Redis] = None

    def get_connection(self) -> Redis:
        if self._client is None:
            pool = ConnectionPool.from_url(
                self.url,
                max_connections=10,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                decode_responses=False,  # RQ stores pickled payloads
            )
            self._client = Redis(connection_pool=pool)
            logger.info(f"[Redis] Pool created for {mask_url(self.url)}")
        return self._client

    def health_check(self) -> dict:
        """Ping Redis and report how many sweeps are waiting."""
        try:
            client = self.get_connection()
            client.ping()
            version = client.info("server").get("redis_version", "unknown")
            pending = client.llen(f"rq:queue:{Queues.RECONCILE}")
        except RedisError as e:
            logger.warning(f"[Redis] Health check failed: {e}")
            return {"connected": False, "error": str(e), "url": mask_url(self.url)}

        return {
            "connected": True,
            "redis_version": version,
            "pending_sweeps": pending,
            "url": mask_url(self.url),
        }

    def close(self) -> None:
        if self._client is not None:
            self._client.connection_pool.disconnect()
            self._client = None


@lru_cache()
def get_redis_manager() -> RedisManager:
    return RedisManager()


def get_redis() -> Redis:
    return get_redis_manager().get_connection()


def redis_health_check() -> dict:
    return get_redis_manager().health_check()


__all__ = [
    "RedisManager",
    "Queues",
    "get_redis_manager",
    "get_redis",
    "redis_health_check",
    "mask_url",
]
