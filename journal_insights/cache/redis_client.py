"""
Key-value storage for short-lived per-user state.

Provides async operations with:
- Automatic JSON serialization/deserialization
- TTL-based expiry
- Graceful degradation on Redis failures
- Connection pooling
"""

import copy
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """JSON values under string keys with optional expiry"""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the decoded value, or None if missing or expired"""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store a value; ttl in seconds (None = no expiration)"""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key, returning True if it existed"""


class RedisCache(KeyValueStore):
    """
    Async Redis client with graceful degradation.

    Read and write failures are logged and reported as a miss / False so a
    Redis outage never fails the caller.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0", enabled: bool = True):
        """
        Args:
            redis_url: Redis connection URL
            enabled: Whether Redis is used at all (allows runtime disable)
        """
        self.redis_url = redis_url
        self.enabled = enabled
        self._client: Optional[redis.Redis] = None
        self._stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "deletes": 0,
            "errors": 0,
        }

    async def connect(self):
        """Establish Redis connection."""
        if not self.enabled:
            return

        try:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=10,
            )
            await self._client.ping()
            logger.info(f"✅ Redis connected: {self.redis_url}")
        except Exception as e:
            logger.error(f"❌ Redis connection failed: {e}")
            logger.warning("Redis disabled - rotation state will not persist")
            self.enabled = False
            self._client = None

    async def close(self):
        """Close Redis connection."""
        if self._client:
            try:
                await self._client.aclose()
                logger.info("Redis connection closed")
            except Exception as e:
                logger.error(f"Error closing Redis connection: {e}")
            self._client = None

    async def get(self, key: str) -> Optional[Any]:
        if not self.enabled or not self._client:
            self._stats["misses"] += 1
            return None

        try:
            value = await self._client.get(key)
            if value is None:
                self._stats["misses"] += 1
                logger.debug(f"Cache MISS: {key}")
                return None

            self._stats["hits"] += 1
            return json.loads(value)
        except json.JSONDecodeError as e:
            logger.error(f"JSON decode error for key '{key}': {e}")
            self._stats["errors"] += 1
            return None
        except Exception as e:
            logger.error(f"Redis GET error for key '{key}': {e}")
            self._stats["errors"] += 1
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.enabled or not self._client:
            return False

        try:
            serialized = json.dumps(value, default=str)

            if ttl:
                await self._client.setex(key, ttl, serialized)
            else:
                await self._client.set(key, serialized)

            self._stats["sets"] += 1
            logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
            return True
        except (TypeError, ValueError) as e:
            logger.error(f"JSON encode error for key '{key}': {e}")
            self._stats["errors"] += 1
            return False
        except Exception as e:
            logger.error(f"Redis SET error for key '{key}': {e}")
            self._stats["errors"] += 1
            return False

    async def delete(self, key: str) -> bool:
        if not self.enabled or not self._client:
            return False

        try:
            result = await self._client.delete(key)
            self._stats["deletes"] += 1
            return result > 0
        except Exception as e:
            logger.error(f"Redis DELETE error for key '{key}': {e}")
            self._stats["errors"] += 1
            return False

    def get_stats(self) -> dict[str, Any]:
        total_reads = self._stats["hits"] + self._stats["misses"]
        hit_rate = (self._stats["hits"] / total_reads * 100) if total_reads > 0 else 0.0

        return {
            "enabled": self.enabled,
            "hit_rate_percent": round(hit_rate, 2),
            "total_reads": total_reads,
            **self._stats,
        }


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local KeyValueStore with TTL, for tests and local development"""

    def __init__(self):
        self._values: Dict[str, Tuple[Any, Optional[float]]] = {}

    async def get(self, key: str) -> Optional[Any]:
        item = self._values.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and time.monotonic() >= expires_at:
            del self._values[key]
            return None
        return copy.deepcopy(value)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        expires_at = time.monotonic() + ttl if ttl else None
        self._values[key] = (json.loads(json.dumps(value, default=str)), expires_at)
        return True

    async def delete(self, key: str) -> bool:
        return self._values.pop(key, None) is not None


async def init_cache(redis_url: str, enabled: bool = True) -> RedisCache:
    """Create and connect a RedisCache"""
    cache = RedisCache(redis_url=redis_url, enabled=enabled)
    await cache.connect()
    return cache
