"""
In-Memory Vector Index

Exact cosine-similarity search over a process-local dict. Used for local
development (VECTOR_STORE_BACKEND=memory) and as the index in tests.
Not shared between processes and not persistent.
"""

from __future__ import annotations

import asyncio
import logging
import math

from docuquery.vectorstore.base import (
    DEFAULT_MIN_SCORE,
    DEFAULT_TOP_K,
    QueryFilter,
    QueryResult,
    VectorIndexBase,
    VectorRecord,
    rank_results,
    validate_record,
)

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"Dimension mismatch: {len(a)} != {len(b)}")
    dot    = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class InMemoryVectorIndex(VectorIndexBase):

    def __init__(self) -> None:
        # insertion-ordered: id → record
        self._records: dict[str, VectorRecord] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def records_for_document(self, document_id: str) -> list[VectorRecord]:
        return [
            r for r in self._records.values()
            if str(r.metadata.get("document_id")) == str(document_id)
        ]

    async def upsert(self, records: list[VectorRecord], batch_size: int = 100) -> int:
        for rec in records:
            validate_record(rec)
        async with self._lock:
            for rec in records:
                self._records[rec.id] = rec
        return len(records)

    async def query(
        self,
        vector:    list[float],
        flt:       QueryFilter,
        top_k:     int = DEFAULT_TOP_K,
        min_score: float = DEFAULT_MIN_SCORE,
    ) -> list[QueryResult]:
        async with self._lock:
            candidates = [r for r in self._records.values() if flt.matches(r.metadata)]
        raw = [
            QueryResult(
                id=r.id,
                score=cosine_similarity(vector, r.vector),
                metadata=dict(r.metadata),
            )
            for r in candidates
        ]
        return rank_results(raw, flt, top_k, min_score)

    async def delete_by_document(self, user_id: str, document_id: str) -> None:
        async with self._lock:
            doomed = [
                rid for rid, r in self._records.items()
                if str(r.metadata.get("document_id")) == str(document_id)
                and str(r.metadata.get("user_id")) == str(user_id)
            ]
            for rid in doomed:
                del self._records[rid]
        logger.debug("InMemory delete_by_document | doc=%s removed=%d", document_id, len(doomed))
