"""
Result Cache — Redis-backed, optional

Category-prefixed keys with per-category default TTLs:

  emb:        embeddings                  7 days
  query:      query answers               1 hour
  doc:        per-document payloads       1 day
  summary:    document summary            1 day
  entities:   document entities           1 day
  sentiment:  document sentiment          1 day

The cache is an optimisation layer, never a source of truth:
  - No redis_url configured → every get is a miss, every set/delete
    returns False. Nothing raises.
  - Redis errors are logged and treated the same way.
Values are stored as JSON.
"""

from __future__ import annotations

import hashlib
import json
import logging
from enum import Enum
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from docuquery.core.config import settings

logger = logging.getLogger(__name__)


class CacheCategory(str, Enum):
    EMBEDDING = "emb"
    QUERY     = "query"
    DOCUMENT  = "doc"
    SUMMARY   = "summary"
    ENTITIES  = "entities"
    SENTIMENT = "sentiment"


ANALYSIS_CATEGORIES: tuple[CacheCategory, ...] = (
    CacheCategory.SUMMARY,
    CacheCategory.ENTITIES,
    CacheCategory.SENTIMENT,
)


def default_ttls() -> dict[CacheCategory, int]:
    return {
        CacheCategory.EMBEDDING: settings.cache_ttl_embedding,
        CacheCategory.QUERY:     settings.cache_ttl_query,
        CacheCategory.DOCUMENT:  settings.cache_ttl_analysis,
        CacheCategory.SUMMARY:   settings.cache_ttl_analysis,
        CacheCategory.ENTITIES:  settings.cache_ttl_analysis,
        CacheCategory.SENTIMENT: settings.cache_ttl_analysis,
    }


def cache_key(category: CacheCategory, *parts: object) -> str:
    return f"{category.value}:" + ":".join(str(p) for p in parts)


def content_digest(text: str) -> str:
    """Fixed-width digest of the full text (keys never depend on a prefix)."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class ResultCache:
    """
    Thin async wrapper over a Redis client.

    Pass client=None (or build via from_settings() with an empty redis_url)
    for a disabled cache.
    """

    def __init__(
        self,
        client: redis.Redis | None,
        ttls:   dict[CacheCategory, int] | None = None,
    ) -> None:
        self._client = client
        self._ttls   = ttls or default_ttls()

    @classmethod
    def from_settings(cls) -> "ResultCache":
        if not settings.redis_url:
            logger.warning("Redis not configured, result caching disabled")
            return cls(client=None)
        return cls(client=redis.from_url(settings.redis_url, decode_responses=True))

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def ttl_for(self, category: CacheCategory) -> int:
        return self._ttls[category]

    # ------------------------------------------------------------------
    # Raw key operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        if self._client is None:
            return None
        try:
            raw = await self._client.get(key)
        except RedisError as exc:
            logger.error("Cache get failed | key=%s error=%s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Cache value is not JSON, ignoring | key=%s", key)
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        if self._client is None:
            return False
        try:
            payload = json.dumps(value)
            if ttl:
                await self._client.setex(key, ttl, payload)
            else:
                await self._client.set(key, payload)
            return True
        except (RedisError, TypeError, ValueError) as exc:
            logger.error("Cache set failed | key=%s error=%s", key, exc)
            return False

    async def delete(self, key: str) -> bool:
        if self._client is None:
            return False
        try:
            await self._client.delete(key)
            return True
        except RedisError as exc:
            logger.error("Cache delete failed | key=%s error=%s", key, exc)
            return False

    # ------------------------------------------------------------------
    # Category helpers
    # ------------------------------------------------------------------

    async def get_category(self, category: CacheCategory, *parts: object) -> Any | None:
        return await self.get(cache_key(category, *parts))

    async def set_category(
        self,
        category: CacheCategory,
        value:    Any,
        *parts:   object,
        ttl:      int | None = None,
    ) -> bool:
        return await self.set(cache_key(category, *parts), value, ttl or self.ttl_for(category))

    async def invalidate_document(self, document_id: object) -> int:
        """Drop every per-document entry (analyses + doc payload). Returns deletions."""
        deleted = 0
        for category in (*ANALYSIS_CATEGORIES, CacheCategory.DOCUMENT):
            if await self.delete(cache_key(category, document_id)):
                deleted += 1
        return deleted

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
