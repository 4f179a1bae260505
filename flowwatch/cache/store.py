"""
Key-value stores backing the forecast and threshold caches.

Values are JSON-compatible dicts. Both stores degrade gracefully: a read
that fails is a miss and a write that fails is dropped, so a broken cache
never fails a monitoring run.
"""

import json
from typing import Any, Optional, Protocol

import structlog

from flowwatch.config import settings

logger = structlog.get_logger(__name__)


class KeyValueStore(Protocol):
    """Minimal async key-value interface used by the cache providers."""

    async def get(self, key: str) -> Optional[dict]: ...

    async def set(self, key: str, value: dict) -> None: ...


class InMemoryStore:
    """Process-local store. Used in tests and single-process deployments."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> Optional[dict]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: dict) -> None:
        # Serialise so callers can't mutate what is stored
        self._data[key] = json.dumps(value, default=str)

    def __len__(self) -> int:
        return len(self._data)


class RedisStore:
    """
    Redis-backed store (redis.asyncio, JSON values).

    Entries carry their own ``last_updated`` stamp, so no Redis TTL is set
    unless ``expire_seconds`` is given; stale entries must stay readable for
    the threshold fallback.
    """

    def __init__(
        self,
        url: str | None = None,
        client: Any = None,
        expire_seconds: Optional[int] = None,
    ):
        self.url = url or settings.redis_url
        self.expire_seconds = expire_seconds
        self._redis = client

    async def _get_client(self):
        """Lazy-init Redis connection."""
        if self._redis is None:
            try:
                import redis.asyncio as aioredis

                self._redis = aioredis.from_url(
                    self.url,
                    decode_responses=True,
                    socket_connect_timeout=3,
                )
                await self._redis.ping()
                logger.info("redis_connected")
            except Exception as e:
                logger.warning("redis_unavailable", error=str(e))
                self._redis = None
        return self._redis

    async def get(self, key: str) -> Optional[dict]:
        """Get from Redis. Returns None on miss or if Redis is unavailable."""
        try:
            r = await self._get_client()
            if r is None:
                return None
            val = await r.get(key)
            return json.loads(val) if val else None
        except Exception as e:
            logger.warning("cache_read_failed", key=key, error=str(e))
            return None

    async def set(self, key: str, value: dict) -> None:
        try:
            r = await self._get_client()
            if r is None:
                return
            await r.set(
                key,
                json.dumps(value, ensure_ascii=False, default=str),
                ex=self.expire_seconds,
            )
        except Exception as e:
            logger.warning("cache_write_failed", key=key, error=str(e))

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def build_store() -> KeyValueStore:
    """Create the store selected by CACHE_BACKEND."""
    if settings.cache_backend.lower() == "redis":
        return RedisStore()
    return InMemoryStore()


# ── Cache key builders ───────────────────────────────────────────────────


def forecast_key(location_id: str) -> str:
    return f"flowwatch:forecast:{location_id}"


def thresholds_key(location_id: str) -> str:
    return f"flowwatch:thresholds:{location_id}"
