"""Redis-backed key-value persistence for runtime configuration.

Holds user-edited schemas, the shop directory and the upload history as
JSON documents under a namespace prefix. Reads fall back to the caller's
default when Redis is unreachable; writes propagate failures.
"""

import json
import logging
from typing import Any, Optional

import redis as redis_lib

from yunzhou.core.config import settings

logger = logging.getLogger(__name__)


def create_redis_client() -> redis_lib.Redis:
    """Build a Redis client from settings."""
    client = redis_lib.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        decode_responses=True,
    )
    logger.info(f"Redis client initialized for {settings.redis_host}:{settings.redis_port}")
    return client


class ConfigStore:
    """get/set by string key with a caller-supplied default."""

    def __init__(self, client: redis_lib.Redis, namespace: Optional[str] = None):
        self._client = client
        self._namespace = namespace if namespace is not None else settings.redis_namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}" if self._namespace else key

    def get(self, key: str, default: Any = None) -> Any:
        try:
            raw = self._client.get(self._key(key))
        except redis_lib.RedisError as e:
            logger.warning(f"Config read for '{key}' failed, using default: {e}")
            return default
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Config value for '{key}' is not valid JSON, using default")
            return default

    def set(self, key: str, value: Any) -> None:
        self._client.set(self._key(key), json.dumps(value, ensure_ascii=False, default=str))

    def delete(self, key: str) -> None:
        self._client.delete(self._key(key))

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis_lib.RedisError:
            return False

    def close(self) -> None:
        self._client.close()
        logger.info("Redis client closed")
