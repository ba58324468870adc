"""
Query Orchestrator — Retrieval-Augmented Answering
═══════════════════════════════════════════════════

Per-query state machine:

  received
    → cache-check ──hit──────────────────────────────────────→ respond (cached=True)
    → embed-query
    → retrieve-chunks        owner + document filter, top_k, min_score
    → assemble-prompt        ranked prefix within the context budget
    → call-model             FallbackChain (strategy, preferred provider)
    → cache-response         query:<digest>  TTL 1 h
    → persist-turn           user + assistant messages (conversation created
                             first when none was supplied)
    → track-usage            never fails the query
    → respond

Cache key:
  sha256 of (user id, normalized question, SORTED document ids, top_k,
  min_score), so the same document set in any request order hits. A hit
  returns the stored answer, sources and model and does not persist a new
  turn.

No grounding context:
  When no chunk clears min_score the model is still called, with an
  explicit "no grounding context was found" system prompt. The answer has
  zero sources. This is not an error.

Failures:
  EmbeddingError / VectorIndexError   from the retrieval stages
  QueryError                          every LLM provider failed
  ConversationNotFoundError           unknown or foreign conversation id
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Sequence

from docuquery.cache.redis_cache import CacheCategory, ResultCache, content_digest
from docuquery.core.config import settings
from docuquery.core.exceptions import ConversationNotFoundError
from docuquery.db.repositories import ConversationRepository
from docuquery.llm.fallback import FallbackChain, Strategy
from docuquery.processing.embeddings import Embedder, estimate_tokens
from docuquery.rag.prompt import build_system_prompt, select_context
from docuquery.services.usage import UsageTracker
from docuquery.vectorstore.base import QueryFilter, VectorIndexBase

logger = logging.getLogger(__name__)


@dataclass
class QueryResponse:
    answer:          str
    sources:         list[dict] = field(default_factory=list)
    model:           str = ""
    conversation_id: str | None = None
    cached:          bool = False


def normalize_question(question: str) -> str:
    return " ".join(question.split()).lower()


def query_cache_digest(
    user_id:      str,
    question:     str,
    document_ids: Sequence[str],
    top_k:        int,
    min_score:    float,
) -> str:
    payload = json.dumps(
        [str(user_id), normalize_question(question), sorted({str(d) for d in document_ids}), top_k, min_score],
        separators=(",", ":"),
    )
    return content_digest(payload)


class QueryOrchestrator:
    """
    Answers questions over a user's documents.

    All collaborators are injected; see services.factory.build_orchestrator
    for the production wiring.
    """

    def __init__(
        self,
        embedder:      Embedder,
        vector_index:  VectorIndexBase,
        chain:         FallbackChain,
        conversations: ConversationRepository,
        usage:         UsageTracker,
        cache:         ResultCache | None = None,
        context_max_chars: int | None = None,
    ) -> None:
        self._embedder      = embedder
        self._index         = vector_index
        self._chain         = chain
        self._conversations = conversations
        self._usage         = usage
        self._cache         = cache or ResultCache(client=None)
        self._max_chars     = context_max_chars or settings.context_max_chars

    async def query(
        self,
        user_id:            str,
        question:           str,
        document_ids:       Sequence[str] | None = None,
        conversation_id:    str | None = None,
        strategy:           str | Strategy = Strategy.FALLBACK,
        preferred_provider: str | None = None,
        top_k:              int | None = None,
        min_score:          float | None = None,
    ) -> QueryResponse:
        if not question or not question.strip():
            raise ValueError("Question must not be empty")

        started   = time.monotonic()
        doc_ids   = sorted({str(d) for d in document_ids or ()})
        top_k     = settings.retrieval_top_k if top_k is None else top_k
        min_score = settings.retrieval_min_score if min_score is None else min_score
        strategy  = Strategy(strategy)
        # validates preferred_provider before any external call
        self._chain.order(strategy, preferred_provider)

        if conversation_id is not None:
            conversation = await self._conversations.get(conversation_id, user_id=user_id)
            if conversation is None:
                raise ConversationNotFoundError(conversation_id)

        # ── cache-check ──────────────────────────────────────────────────
        digest = query_cache_digest(user_id, question, doc_ids, top_k, min_score)
        cached = await self._cache.get_category(CacheCategory.QUERY, digest)
        if cached is not None:
            logger.info("Query | user=%s cache=hit digest=%s", user_id, digest[:12])
            return QueryResponse(
                answer=cached["answer"],
                sources=cached.get("sources", []),
                model=cached.get("model", ""),
                conversation_id=conversation_id,
                cached=True,
            )

        # ── embed + retrieve ─────────────────────────────────────────────
        vector  = await self._embedder.embed(question)
        results = await self._index.query(
            vector,
            QueryFilter.build(user_id, doc_ids),
            top_k=top_k,
            min_score=min_score,
        )

        # ── assemble prompt + call model ─────────────────────────────────
        context_chunks = select_context(results, self._max_chars)
        if results and not context_chunks:
            logger.warning(
                "Query | user=%s retrieved=%d but none fit context_max_chars=%d",
                user_id, len(results), self._max_chars,
            )
        system_prompt  = build_system_prompt(context_chunks, retrieved=len(results))
        result = await self._chain.complete(
            question,
            system_prompt,
            strategy=strategy,
            preferred=preferred_provider,
        )
        answer  = result.completion.text
        sources = [r.as_source() for r in context_chunks]

        await self._cache.set_category(
            CacheCategory.QUERY,
            {"answer": answer, "sources": sources, "model": result.model},
            digest,
        )

        # ── persist turn ─────────────────────────────────────────────────
        if conversation_id is None:
            conversation = await self._conversations.create(
                user_id,
                document_id=doc_ids[0] if len(doc_ids) == 1 else None,
                title=f"Conversation {date.today().isoformat()}",
            )
            conversation_id = str(conversation.id)
        await self._conversations.add_message(conversation_id, "user", question)
        await self._conversations.add_message(
            conversation_id, "assistant", answer, sources=sources, model=result.model,
        )

        await self._usage.track(
            user_id,
            "query",
            document_id=doc_ids[0] if len(doc_ids) == 1 else None,
            model=result.model,
            input_tokens=result.completion.tokens_in,
            output_tokens=result.completion.tokens_out,
            embedding_tokens=estimate_tokens(question),
            provider=result.provider,
            conversationId=conversation_id,
        )

        logger.info(
            "Query | user=%s docs=%d retrieved=%d context=%d provider=%s elapsed_ms=%.0f",
            user_id, len(doc_ids), len(results), len(context_chunks), result.provider,
            (time.monotonic() - started) * 1000,
        )
        return QueryResponse(
            answer=answer,
            sources=sources,
            model=result.model,
            conversation_id=conversation_id,
            cached=False,
        )
