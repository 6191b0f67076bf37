"""
Redis caching layer for the Eligibility Service.
"""

from typing import Any, Dict, Iterable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.logging import get_logger
from shared.errors import CacheBackendError
from .backends import CacheBackend


class RedisCache(CacheBackend):
    """Redis-backed cache for evaluation results."""

    supports_tags = True

    def __init__(self, redis_url: str, namespace: str = "eligibility", client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.namespace = namespace
        self.logger = get_logger("eligibility.cache.redis")
        self.redis: Optional[redis.Redis] = client

        # Tag sets live beside the values they index
        self.TAG_PREFIX = f"{namespace}:tag:"
        self.scan_count = 500

    async def start(self):
        """Start the Redis cache."""
        try:
            if self.redis is None:
                self.redis = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True,
                    health_check_interval=30
                )

            # Test connection
            await self.redis.ping()

            self.logger.info("Redis cache started", namespace=self.namespace)

        except RedisError as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            raise CacheBackendError("redis", str(e))

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.close()
            self.logger.info("Redis cache stopped")

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self._client().get(self._key(key))
            if value is not None:
                self.logger.debug("Cache hit", cache_key=key)
            return value
        except RedisError as e:
            raise self._failure("get", e)

    async def put(self, key: str, value: str, ttl: int, tags: Iterable[str] = ()) -> None:
        client = self._client()
        full_key = self._key(key)
        try:
            await client.setex(full_key, ttl, value)
            for tag in tags:
                tag_key = self._tag_key(tag)
                await client.sadd(tag_key, full_key)
                await client.expire(tag_key, ttl)
            self.logger.debug("Cached evaluation", cache_key=key, ttl=ttl)
        except RedisError as e:
            raise self._failure("put", e)

    async def delete(self, key: str) -> bool:
        try:
            return await self._client().delete(self._key(key)) > 0
        except RedisError as e:
            raise self._failure("delete", e)

    async def invalidate_tag(self, tag: str) -> int:
        client = self._client()
        tag_key = self._tag_key(tag)
        try:
            members = await client.smembers(tag_key)
            removed = 0
            if members:
                removed = await client.delete(*members)
            await client.delete(tag_key)
            self.logger.info("Invalidated cached evaluations", tag=tag, count=removed)
            return removed
        except RedisError as e:
            raise self._failure("invalidate_tag", e)

    async def flush_namespace(self) -> int:
        client = self._client()
        removed = 0
        cursor = 0
        try:
            while True:
                cursor, keys = await client.scan(cursor=cursor, match=f"{self.namespace}:*", count=self.scan_count)
                if keys:
                    removed += await client.delete(*keys)
                if not cursor:
                    break
            self.logger.info("Flushed cache namespace", namespace=self.namespace, count=removed)
            return removed
        except RedisError as e:
            raise self._failure("flush_namespace", e)

    async def exists(self, key: str) -> bool:
        try:
            return await self._client().exists(self._key(key)) > 0
        except RedisError as e:
            raise self._failure("exists", e)

    async def stats(self) -> Dict[str, Any]:
        try:
            info = await self._client().info("memory")
            return {
                "backend": "redis",
                "namespace": self.namespace,
                "used_memory": info.get("used_memory_human"),
                "supports_tags": self.supports_tags,
            }
        except RedisError as e:
            raise self._failure("stats", e)

    def _client(self) -> redis.Redis:
        if self.redis is None:
            raise CacheBackendError("redis", "Redis cache not started")
        return self.redis

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self.TAG_PREFIX}{tag}"

    def _failure(self, operation: str, error: Exception) -> CacheBackendError:
        self.logger.error("Redis cache operation failed", operation=operation, error=str(error))
        return CacheBackendError("redis", str(error), {"operation": operation})
