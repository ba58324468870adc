"""
Embedding Client — OpenAI embeddings behind the result cache
═════════════════════════════════════════════════════════════

  embed(text)        → vector      single text (queries)
  embed_many(texts)  → [vector]    batched (document chunks)

Cache:
  Key  = emb:<model>:<sha256(full text)>   TTL 7 days
  A hit returns exactly the vector a recomputation would return; keying on
  the full-content digest means two chunks sharing a long common prefix
  can never share a vector.

Failure policy:
  Provider errors, timeouts and malformed responses raise EmbeddingError.
  No retry here: the caller decides (the processing coordinator marks the
  document failed; the retry counter lives on the document).
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Protocol, Sequence

from docuquery.cache.redis_cache import CacheCategory, ResultCache, content_digest
from docuquery.core.config import settings
from docuquery.core.exceptions import EmbeddingError

logger = logging.getLogger(__name__)

# GPT tokenizer averages ~4 chars per token for English text
CHARS_PER_TOKEN_EST = 4


def estimate_tokens(text: str) -> int:
    return max(1, len(text) // CHARS_PER_TOKEN_EST)


class Embedder(Protocol):
    """What the orchestrator and coordinator need from an embedding client."""

    dimensions: int

    async def embed(self, text: str) -> list[float]: ...

    async def embed_many(self, texts: Sequence[str]) -> list[list[float]]: ...


class EmbeddingClient:
    """
    Cached OpenAI embedding client.

    Usage:
        client = EmbeddingClient(cache=ResultCache.from_settings())
        vector = await client.embed("What was Q3 revenue growth?")
    """

    def __init__(
        self,
        cache:      ResultCache | None = None,
        model:      str   | None = None,
        dimensions: int   | None = None,
        api_key:    str   | None = None,
        timeout:    float | None = None,
        batch_size: int   | None = None,
        client=None,
    ) -> None:
        self._cache      = cache or ResultCache(client=None)
        self._model      = model or settings.embedding_model
        self.dimensions  = dimensions or settings.embedding_dimensions
        self._timeout    = timeout or settings.embedding_timeout_seconds
        self._batch_size = batch_size or settings.embedding_batch_size
        self._client     = client or self._build_client(api_key or settings.openai_api_key)

    def _build_client(self, api_key: str):
        from openai import AsyncOpenAI
        return AsyncOpenAI(api_key=api_key, timeout=self._timeout)

    def _cache_parts(self, text: str) -> tuple[str, str]:
        return self._model, content_digest(text)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        cached = await self._cache.get_category(CacheCategory.EMBEDDING, *self._cache_parts(text))
        if cached is not None:
            logger.debug("Embedding cache hit | chars=%d", len(text))
            return cached

        [vector] = await self._call_provider([text])
        await self._cache.set_category(CacheCategory.EMBEDDING, vector, *self._cache_parts(text))
        return vector

    async def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed texts in order, serving cache hits and batching the misses."""
        vectors: list[list[float] | None] = [None] * len(texts)
        misses:  list[int] = []

        for i, text in enumerate(texts):
            cached = await self._cache.get_category(CacheCategory.EMBEDDING, *self._cache_parts(text))
            if cached is not None:
                vectors[i] = cached
            else:
                misses.append(i)

        for start in range(0, len(misses), self._batch_size):
            batch_idx = misses[start : start + self._batch_size]
            batch_vecs = await self._call_provider([texts[i] for i in batch_idx])
            for i, vector in zip(batch_idx, batch_vecs):
                vectors[i] = vector
                await self._cache.set_category(
                    CacheCategory.EMBEDDING, vector, *self._cache_parts(texts[i])
                )

        logger.info(
            "Embeddings | texts=%d cache_hits=%d provider_calls=%d model=%s",
            len(texts), len(texts) - len(misses),
            -(-len(misses) // self._batch_size) if misses else 0, self._model,
        )
        return [v for v in vectors if v is not None]

    # ------------------------------------------------------------------
    # Provider call
    # ------------------------------------------------------------------

    async def _call_provider(self, texts: list[str]) -> list[list[float]]:
        t0 = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.embeddings.create(model=self._model, input=texts),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise EmbeddingError(
                f"Embedding request timed out after {self._timeout}s"
            ) from exc
        except Exception as exc:
            raise EmbeddingError(f"Embedding provider error: {type(exc).__name__}: {exc}") from exc

        data = getattr(response, "data", None) or []
        if len(data) != len(texts):
            raise EmbeddingError(
                f"Malformed embedding response: expected {len(texts)} vectors, got {len(data)}"
            )
        vectors = [list(item.embedding) for item in data]
        if any(not v for v in vectors):
            raise EmbeddingError("Malformed embedding response: empty vector")

        usage = getattr(response, "usage", None)
        tokens = getattr(usage, "total_tokens", None) or sum(estimate_tokens(t) for t in texts)

        logger.debug(
            "OpenAI embeddings | size=%d tokens=%d api_ms=%.0f",
            len(texts), tokens, (time.monotonic() - t0) * 1000,
        )
        return vectors
