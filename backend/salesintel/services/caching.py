# backend/salesintel/services/caching.py
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

import redis
import redis.asyncio as aioredis

from ..core.config import get_settings
from .orchestration_core import CACHE_TYPE_TTL_HOURS, CacheType

logger = logging.getLogger(__name__)


def ttl_seconds_for(cache_type: Any) -> Optional[int]:
    try:
        ct = CacheType(cache_type)
    except ValueError:
        return None
    return CACHE_TYPE_TTL_HOURS[ct] * 3600


class CacheStore(ABC):
    """
    Key/value contract the orchestrator relies on.

    `get`/`set` go through a small wrapper envelope; the raw JSON variants
    store the payload as-is (used for per-source cache entries).
    """

    @abstractmethod
    async def get(self, key: str) -> Any:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, cache_type: Any = None) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def get_raw_json(self, key: str) -> Any:
        ...

    @abstractmethod
    async def set_raw_json(self, key: str, value: Any, cache_type: Any = None) -> None:
        ...

    @abstractmethod
    async def ping(self) -> bool:
        ...


class RedisCacheStore(CacheStore):
    """
    Redis-backed store. TTLs come from the cache type.

    - Reads return None on a miss or when Redis is unreachable.
    - Writes are best-effort: failures are logged, never raised.
    """

    def __init__(self, url: str | None = None, key_prefix: str = "salesintel:") -> None:
        self.url = url or str(get_settings().REDIS_URL)
        self.key_prefix = key_prefix

    def _client(self) -> aioredis.Redis:
        """
        Fresh client per call so Celery workers (one event loop per task)
        never reuse a connection bound to a closed loop.
        """
        return aioredis.from_url(
            self.url,
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5,
        )

    def _k(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def _read(self, key: str) -> Any:
        client = self._client()
        try:
            val = await client.get(self._k(key))
            if val is None:
                return None
            return json.loads(val)
        except redis.RedisError:
            logger.warning("Redis read failed for %s", key, exc_info=True)
            return None
        except json.JSONDecodeError:
            logger.warning("Corrupt cache entry at %s; ignoring", key)
            return None
        finally:
            await client.aclose()

    async def _write(self, key: str, value: Any, cache_type: Any) -> None:
        client = self._client()
        try:
            serialized = json.dumps(value, default=str)
            ttl = ttl_seconds_for(cache_type) if cache_type is not None else None
            if ttl is not None:
                await client.set(self._k(key), serialized, ex=ttl)
            else:
                await client.set(self._k(key), serialized)
        except (redis.RedisError, TypeError, ValueError):
            logger.warning("Redis write failed for %s", key, exc_info=True)
        finally:
            await client.aclose()

    async def get(self, key: str) -> Any:
        envelope = await self._read(key)
        if not isinstance(envelope, dict) or "value" not in envelope:
            return None
        return envelope["value"]

    async def set(self, key: str, value: Any, cache_type: Any = None) -> None:
        envelope = {
            "value": value,
            "cache_type": getattr(cache_type, "value", cache_type),
            "stored_at": datetime.now(timezone.utc).isoformat(),
        }
        await self._write(key, envelope, cache_type)

    async def delete(self, key: str) -> None:
        client = self._client()
        try:
            await client.delete(self._k(key))
        except redis.RedisError:
            logger.warning("Redis delete failed for %s", key, exc_info=True)
        finally:
            await client.aclose()

    async def get_raw_json(self, key: str) -> Any:
        return await self._read(key)

    async def set_raw_json(self, key: str, value: Any, cache_type: Any = None) -> None:
        await self._write(key, value, cache_type)

    async def ping(self) -> bool:
        client = self._client()
        try:
            return bool(await client.ping())
        except redis.RedisError:
            return False
        finally:
            await client.aclose()
