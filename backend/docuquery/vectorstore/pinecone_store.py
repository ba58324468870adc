"""
Pinecone Vector Index — Owner Namespace Isolation

Isolation model:
  One shared Pinecone index, one namespace per owner: "user_<user_id>".
  Every query is additionally filtered server-side on metadata
  (user_id $eq, document_id $in) and re-checked client-side by
  rank_results, so a misconfigured namespace can never leak results.

The Pinecone client is synchronous; calls run in a worker thread with an
explicit timeout so a hung request surfaces as VectorIndexError instead of
blocking the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from docuquery.core.config import settings
from docuquery.core.exceptions import VectorIndexError
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

# Pinecone limit for metadata-filtered queries
_MAX_TOP_K = 100
_DELETE_BATCH = 1000


def _namespace(user_id: str) -> str:
    return f"user_{user_id}"


def _metadata_filter(flt: QueryFilter) -> dict:
    base = {"user_id": {"$eq": flt.user_id}}
    if flt.document_ids:
        return {"$and": [base, {"document_id": {"$in": list(flt.document_ids)}}]}
    return base


class PineconeVectorIndex(VectorIndexBase):
    """
    Pinecone-backed index.

    Construct once per process; the index handle is thread-safe for the
    request patterns used here.
    """

    def __init__(self, index: Any = None, timeout: float | None = None) -> None:
        self._index   = index if index is not None else self._connect()
        self._timeout = timeout or settings.vector_timeout_seconds

    @staticmethod
    def _connect() -> Any:
        from pinecone import Pinecone
        pc = Pinecone(api_key=settings.pinecone_api_key)
        return pc.Index(settings.pinecone_index_name)

    async def _call(self, op: str, fn: Callable[..., Any], **kwargs: Any) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, **kwargs),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise VectorIndexError(f"Pinecone {op} timed out after {self._timeout}s") from exc
        except Exception as exc:
            raise VectorIndexError(f"Pinecone {op} failed: {type(exc).__name__}: {exc}") from exc

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def upsert(self, records: list[VectorRecord], batch_size: int = 100) -> int:
        """
        Upsert records grouped by owner namespace, in batches that stay
        within Pinecone's 2 MB request limit.
        """
        by_owner: dict[str, list[VectorRecord]] = {}
        for rec in records:
            validate_record(rec)
            by_owner.setdefault(str(rec.metadata["user_id"]), []).append(rec)

        total = 0
        for user_id, owned in by_owner.items():
            for i in range(0, len(owned), batch_size):
                batch = owned[i : i + batch_size]
                await self._call(
                    "upsert",
                    self._index.upsert,
                    vectors=[
                        {"id": r.id, "values": r.vector, "metadata": r.metadata}
                        for r in batch
                    ],
                    namespace=_namespace(user_id),
                )
                total += len(batch)
                logger.debug(
                    "Pinecone upsert | user=%s batch=%d total=%d",
                    user_id, len(batch), total,
                )
        return total

    async def query(
        self,
        vector:    list[float],
        flt:       QueryFilter,
        top_k:     int = DEFAULT_TOP_K,
        min_score: float = DEFAULT_MIN_SCORE,
    ) -> list[QueryResult]:
        resp = await self._call(
            "query",
            self._index.query,
            vector=vector,
            top_k=min(top_k, _MAX_TOP_K),
            namespace=_namespace(flt.user_id),
            filter=_metadata_filter(flt),
            include_metadata=True,
            include_values=False,
        )

        matches = resp.get("matches", []) if isinstance(resp, dict) else getattr(resp, "matches", [])
        raw = []
        for match in matches or []:
            get = match.get if isinstance(match, dict) else (lambda k, d=None, m=match: getattr(m, k, d))
            meta = dict(get("metadata") or {})
            raw.append(QueryResult(id=get("id"), score=float(get("score", 0.0)), metadata=meta))

        results = rank_results(raw, flt, top_k, min_score)
        logger.debug(
            "Pinecone query | user=%s docs=%d top_k=%d raw=%d kept=%d",
            flt.user_id, len(flt.document_ids), top_k, len(raw), len(results),
        )
        return results

    async def delete_by_document(self, user_id: str, document_id: str) -> None:
        """
        Remove every chunk of one document.

        Pod indexes accept a metadata-filtered delete. Serverless and starter
        indexes reject it, so on a Pinecone error the ids are listed by their
        "<document_id>#" prefix and deleted explicitly.
        """
        removed = await self._call(
            "delete",
            self._delete_document_sync,
            namespace=_namespace(str(user_id)),
            document_id=str(document_id),
        )
        logger.info(
            "Pinecone delete_by_document | user=%s doc=%s mode=%s",
            user_id, document_id, "filter" if removed is None else f"ids:{removed}",
        )

    def _delete_document_sync(self, namespace: str, document_id: str) -> int | None:
        from pinecone.exceptions import PineconeException

        try:
            self._index.delete(namespace=namespace, filter={"document_id": {"$eq": document_id}})
            return None
        except PineconeException as exc:
            logger.warning("Metadata delete unavailable, using id-prefix fallback: %s", exc)

        ids: list[str] = []
        for id_batch in self._index.list(prefix=f"{document_id}#", namespace=namespace):
            ids.extend(id_batch)
        for i in range(0, len(ids), _DELETE_BATCH):
            self._index.delete(ids=ids[i : i + _DELETE_BATCH], namespace=namespace)
        return len(ids)

    # ------------------------------------------------------------------
    # Class-level: index provisioning (run once at platform setup)
    # ------------------------------------------------------------------

    @classmethod
    def ensure_index(cls) -> None:
        """Create the shared serverless index if it does not exist."""
        from pinecone import Pinecone, ServerlessSpec

        pc = Pinecone(api_key=settings.pinecone_api_key)
        existing = [i.name for i in pc.list_indexes()]
        if settings.pinecone_index_name in existing:
            logger.info("Pinecone index '%s' already exists", settings.pinecone_index_name)
            return

        pc.create_index(
            name=settings.pinecone_index_name,
            dimension=settings.embedding_dimensions,
            metric="cosine",
            spec=ServerlessSpec(cloud="aws", region=settings.aws_region),
        )
        logger.info("Pinecone index '%s' created", settings.pinecone_index_name)
