"""
Unit Tests — EmbeddingClient
════════════════════════════
The OpenAI client is an AsyncMock; the cache is a ResultCache over FakeRedis.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from docuquery.cache.redis_cache import CacheCategory, ResultCache, content_digest
from docuquery.core.exceptions import EmbeddingError
from docuquery.processing.embeddings import EmbeddingClient, estimate_tokens
from tests.fakes import FakeRedis


def _response(vectors, total_tokens=10):
    return SimpleNamespace(
        data=[SimpleNamespace(embedding=v) for v in vectors],
        usage=SimpleNamespace(total_tokens=total_tokens),
    )


def _openai(side_effect=None, vectors_for=None):
    """AsyncOpenAI stand-in; by default returns [len(text), 1.0] per input."""
    client = MagicMock()

    async def _create(model, input):
        return _response([[float(len(t)), 1.0] for t in input])

    client.embeddings.create = AsyncMock(side_effect=side_effect or _create)
    return client


@pytest.fixture
def client_and_cache():
    cache  = ResultCache(client=FakeRedis())
    openai = _openai()
    client = EmbeddingClient(cache=cache, model="text-embedding-3-small", dimensions=2,
                             batch_size=2, timeout=1, client=openai)
    return client, cache, openai


@pytest.mark.unit
class TestEmbeddingCache:

    async def test_second_embed_is_served_from_cache(self, client_and_cache):
        client, cache, openai = client_and_cache

        first  = await client.embed("What was Q3 revenue growth?")
        second = await client.embed("What was Q3 revenue growth?")

        assert first == second
        assert openai.embeddings.create.await_count == 1
        cached = await cache.get_category(
            CacheCategory.EMBEDDING, "text-embedding-3-small", content_digest("What was Q3 revenue growth?"),
        )
        assert cached == first

    async def test_key_uses_full_text_digest(self, client_and_cache):
        client, _, openai = client_and_cache
        prefix = "p" * 5000

        a = await client.embed(prefix + " tail one")
        b = await client.embed(prefix + " tail two!")

        assert a != b
        assert openai.embeddings.create.await_count == 2

    async def test_embed_many_batches_only_misses(self, client_and_cache):
        client, _, openai = client_and_cache
        await client.embed("b")

        vectors = await client.embed_many(["a", "b", "ccc", "dddd", "eeeee"])

        assert vectors == [[1.0, 1.0], [1.0, 1.0], [3.0, 1.0], [4.0, 1.0], [5.0, 1.0]]
        # one call for "b", then 4 misses in batches of 2
        assert openai.embeddings.create.await_count == 3
        batched = [c.kwargs["input"] for c in openai.embeddings.create.await_args_list[1:]]
        assert batched == [["a", "ccc"], ["dddd", "eeeee"]]

    async def test_disabled_cache_always_calls_provider(self):
        openai = _openai()
        client = EmbeddingClient(cache=ResultCache(client=None), client=openai, timeout=1)

        await client.embed("same")
        await client.embed("same")

        assert openai.embeddings.create.await_count == 2


@pytest.mark.unit
class TestEmbeddingFailures:

    async def test_provider_error_is_wrapped(self):
        client = EmbeddingClient(client=_openai(side_effect=RuntimeError("quota exceeded")), timeout=1)
        with pytest.raises(EmbeddingError, match="RuntimeError: quota exceeded"):
            await client.embed("x")

    async def test_timeout_is_wrapped(self):
        async def _slow(model, input):
            await asyncio.sleep(1)

        client = EmbeddingClient(client=_openai(side_effect=_slow), timeout=0.01)
        with pytest.raises(EmbeddingError, match="timed out"):
            await client.embed("x")

    async def test_wrong_vector_count_is_malformed(self):
        async def _short(model, input):
            return _response([[1.0]])

        client = EmbeddingClient(client=_openai(side_effect=_short), timeout=1, batch_size=10)
        with pytest.raises(EmbeddingError, match="expected 2 vectors, got 1"):
            await client.embed_many(["a", "b"])

    async def test_empty_vector_is_malformed(self):
        async def _empty(model, input):
            return _response([[]])

        client = EmbeddingClient(client=_openai(side_effect=_empty), timeout=1)
        with pytest.raises(EmbeddingError, match="empty vector"):
            await client.embed("a")


@pytest.mark.unit
def test_estimate_tokens_never_zero():
    assert estimate_tokens("") == 1
    assert estimate_tokens("x" * 400) == 100
