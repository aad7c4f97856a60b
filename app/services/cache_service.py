"""
Redis cache service with circuit breaker pattern.

Caches part listings and lets the job card service invalidate them after
stock changes:
- Automatic fallback (cache miss) when Redis is unavailable or unconfigured
- Circuit breaker to prevent cascade failures

Usage:
    from app.services.cache_service import get_cache_service, parts_key, PARTS_ALL_KEY, PARTS_VERSION_KEY

    cache = get_cache_service()
    version = await cache.get(PARTS_VERSION_KEY)
    await cache.set(parts_key(PARTS_ALL_KEY, version), parts, ttl=60)
    await cache.incr(PARTS_VERSION_KEY)
"""

import json
import logging
import time
from typing import Any, Optional
from enum import IntEnum

logger = logging.getLogger(__name__)

PARTS_ALL_KEY = "parts:all"
PARTS_LOW_STOCK_KEY = "parts:low_stock"
PARTS_CACHE_KEYS = (PARTS_ALL_KEY, PARTS_LOW_STOCK_KEY)
# Bumped after every stock change; listings are cached per version
PARTS_VERSION_KEY = "parts:version"


def parts_key(key: str, version: Optional[int]) -> str:
    return f"{key}:v{version or 0}"


class CircuitState(IntEnum):
    """Circuit breaker states."""

    CLOSED = 0  # Normal operation
    OPEN = 1  # Failing, reject requests
    HALF_OPEN = 2  # Testing recovery


class CacheService:
    """
    Redis cache service with circuit breaker pattern.

    Every operation degrades to a no-op / miss on error; callers never see
    cache exceptions.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        failure_threshold: int = 5,
        recovery_timeout: int = 30,
    ):
        """
        Initialize cache service.

        Args:
            redis_url: Redis connection URL (e.g., redis://localhost:6379)
            failure_threshold: Number of failures before opening circuit
            recovery_timeout: Seconds to wait before testing recovery
        """
        self._redis_url = redis_url
        self._client = None
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout

        self._circuit_state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0.0

        self._hits = 0
        self._misses = 0

    async def _get_client(self):
        """Get or create Redis client."""
        if not self._redis_url:
            return None

        if self._client is None:
            import redis.asyncio as redis

            try:
                self._client = redis.from_url(
                    self._redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
            except Exception as e:
                logger.warning(f"Failed to create Redis client: {e}")
                return None

        return self._client

    def _check_circuit(self) -> bool:
        """Check if circuit allows requests."""
        if self._circuit_state == CircuitState.CLOSED:
            return True

        if self._circuit_state == CircuitState.OPEN:
            if time.time() - self._last_failure_time >= self._recovery_timeout:
                self._circuit_state = CircuitState.HALF_OPEN
                logger.info("Cache circuit breaker entering half-open state")
                return True
            return False

        # HALF_OPEN - allow single request to test
        return True

    def _record_success(self):
        if self._circuit_state == CircuitState.HALF_OPEN:
            self._circuit_state = CircuitState.CLOSED
            self._failure_count = 0
            logger.info("Cache circuit breaker closed (recovered)")

    def _record_failure(self):
        self._failure_count += 1
        self._last_failure_time = time.time()

        if self._circuit_state == CircuitState.HALF_OPEN:
            self._circuit_state = CircuitState.OPEN
            logger.warning("Cache circuit breaker opened (failed recovery)")
        elif self._failure_count >= self._failure_threshold:
            self._circuit_state = CircuitState.OPEN
            logger.warning(f"Cache circuit breaker opened after {self._failure_count} failures")

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache, or None if not found/error."""
        if not self._check_circuit():
            return None

        client = await self._get_client()
        if not client:
            return None

        try:
            value = await client.get(key)
            self._record_success()
            if value is not None:
                self._hits += 1
                try:
                    return json.loads(value)
                except json.JSONDecodeError:
                    return value
            self._misses += 1
            return None
        except Exception as e:
            logger.debug(f"Cache get error for {key}: {e}")
            self._record_failure()
            return None

    async def set(self, key: str, value: Any, ttl: int = 60) -> bool:
        """Set value in cache (JSON serialized). Returns True on success."""
        if not self._check_circuit():
            return False

        client = await self._get_client()
        if not client:
            return False

        try:
            serialized = json.dumps(value, default=str)
            await client.setex(key, ttl, serialized)
            self._record_success()
            return True
        except Exception as e:
            logger.debug(f"Cache set error for {key}: {e}")
            self._record_failure()
            return False

    async def delete(self, key: str) -> bool:
        """Delete value from cache. Returns True on success."""
        if not self._check_circuit():
            return False

        client = await self._get_client()
        if not client:
            return False

        try:
            await client.delete(key)
            self._record_success()
            return True
        except Exception as e:
            logger.debug(f"Cache delete error for {key}: {e}")
            self._record_failure()
            return False

    async def incr(self, key: str) -> Optional[int]:
        """Atomically increment a counter. Returns the new value, or None on error."""
        if not self._check_circuit():
            return None

        client = await self._get_client()
        if not client:
            return None

        try:
            value = await client.incr(key)
            self._record_success()
            return int(value)
        except Exception as e:
            logger.debug(f"Cache incr error for {key}: {e}")
            self._record_failure()
            return None

    async def invalidate(self, *keys: str) -> int:
        """Drop the given keys. Returns how many deletes succeeded."""
        deleted = 0
        for key in keys:
            if await self.delete(key):
                deleted += 1
        if keys:
            logger.debug(f"Cache invalidated {deleted}/{len(keys)} keys: {', '.join(keys)}")
        return deleted

    def get_stats(self) -> dict:
        """Get cache statistics."""
        total = self._hits + self._misses
        hit_rate = (self._hits / total * 100) if total > 0 else 0.0

        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(hit_rate, 2),
            "circuit_state": self._circuit_state.name,
            "failure_count": self._failure_count,
        }

    @property
    def is_available(self) -> bool:
        """Check if cache is available."""
        return self._redis_url is not None and self._check_circuit()


_cache_service: Optional[CacheService] = None


def get_cache_service() -> CacheService:
    """Get or create the process-wide cache service."""
    global _cache_service
    if _cache_service is None:
        from app.config import settings

        _cache_service = CacheService(redis_url=settings.REDIS_URL)
    return _cache_service
