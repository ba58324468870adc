"""
Unit Tests — ResultCache
════════════════════════
Disabled / healthy / broken Redis. A cache failure must never raise.
"""

from __future__ import annotations

import pytest

from docuquery.cache.redis_cache import CacheCategory, ResultCache, cache_key, content_digest
from tests.fakes import FakeRedis


@pytest.mark.unit
class TestCacheKeys:

    def test_category_prefix(self):
        assert cache_key(CacheCategory.QUERY, "abc") == "query:abc"
        assert cache_key(CacheCategory.EMBEDDING, "model", "digest") == "emb:model:digest"

    def test_digest_is_fixed_width_and_content_sensitive(self):
        a = content_digest("x" * 10_000 + "a")
        b = content_digest("x" * 10_000 + "b")
        assert a != b
        assert len(a) == len(b) == 64


@pytest.mark.unit
class TestResultCache:

    async def test_round_trip_with_category_ttl(self, fake_redis):
        cache = ResultCache(client=fake_redis, ttls={c: 60 for c in CacheCategory})

        assert await cache.set_category(CacheCategory.SUMMARY, {"result": "short"}, "doc-1")
        assert await cache.get_category(CacheCategory.SUMMARY, "doc-1") == {"result": "short"}
        assert fake_redis.ttls["summary:doc-1"] == 60

    async def test_explicit_ttl_wins(self, fake_redis):
        cache = ResultCache(client=fake_redis)
        await cache.set_category(CacheCategory.QUERY, [1, 2], "k", ttl=5)
        assert fake_redis.ttls["query:k"] == 5

    async def test_disabled_cache_is_a_silent_miss(self):
        cache = ResultCache(client=None)

        assert not cache.enabled
        assert await cache.set("k", 1) is False
        assert await cache.get("k") is None
        assert await cache.delete("k") is False

    async def test_broken_redis_is_logged_not_raised(self):
        cache = ResultCache(client=FakeRedis(broken=True))

        assert await cache.get("k") is None
        assert await cache.set("k", {"a": 1}) is False
        assert await cache.delete("k") is False

    async def test_non_json_value_is_ignored(self, fake_redis):
        fake_redis.store["query:bad"] = "{not json"
        assert await ResultCache(client=fake_redis).get("query:bad") is None

    async def test_invalidate_document_drops_analyses_and_text(self, fake_redis, cache):
        for category in (CacheCategory.SUMMARY, CacheCategory.ENTITIES,
                         CacheCategory.SENTIMENT, CacheCategory.DOCUMENT):
            await cache.set_category(category, {"v": 1}, "doc-9")
        await cache.set_category(CacheCategory.SUMMARY, {"v": 2}, "doc-other")

        await cache.invalidate_document("doc-9")

        assert set(fake_redis.store) == {"summary:doc-other"}

    async def test_close_closes_client(self, fake_redis, cache):
        await cache.close()
        assert fake_redis.closed

    def test_from_settings_without_url_is_disabled(self, monkeypatch):
        from docuquery.core.config import settings
        monkeypatch.setattr(settings, "redis_url", "")
        assert not ResultCache.from_settings().enabled
