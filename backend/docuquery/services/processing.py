"""
Document Processing Coordinator
═══════════════════════════════

Drives one uploaded document through the pipeline:

  uploaded → processing → completed | error

  1. Acquire the per-document lock (a concurrent run is skipped, not queued)
  2. status → processing
  3. Download bytes from object storage, extract text + structural metadata
       failure → status error (extractor's message), nothing indexed, stop
  4. status → completed (display-ready), metadata merged,
       indexingStatus = pending
  5. Index: chunk → embed → upsert
       success → indexingStatus completed, chunkCount, indexedAt
       failure → partial vectors deleted, status error,
                 indexingStatus error
  6. Track a "process" usage entry (never fails the run)

Re-runs are idempotent: vector ids are "<document_id>#<hash>" and the
document's previous vectors are removed before the new ones are
upserted, so a shorter re-extraction leaves no stale chunks behind.

Retry policy:
  metadata.retryCount is bounded by settings.processing_max_retries.
  Both retry entry points hold the per-document lock while they check and
  bump the counter, so a retry never resets a document mid-run.
  prepare_retry() raises RetryLimitExceeded once the limit is reached,
  without touching the pipeline; otherwise it bumps the counter, stamps
  lastRetryAt, clears the error and resets the status to uploaded.
  retry_document() does the same reset and then a full run from extraction.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from docuquery.cache.redis_cache import CacheCategory, ResultCache
from docuquery.core.config import settings
from docuquery.core.exceptions import DocumentNotFoundError, RetryLimitExceeded
from docuquery.db.locks import DocumentLock
from docuquery.db.repositories import DocumentRepository
from docuquery.processing.chunking import TextChunker
from docuquery.processing.embeddings import Embedder, estimate_tokens
from docuquery.processing.extractor import extract
from docuquery.services.usage import UsageTracker
from docuquery.storage.s3 import ObjectStorage
from docuquery.vectorstore.base import VectorIndexBase, VectorRecord

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ProcessingOutcome:
    document_id: str
    status:      str                 # completed | error | skipped
    chunk_count: int = 0
    error:       str | None = None
    elapsed_ms:  float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "status":      self.status,
            "chunk_count": self.chunk_count,
            "error":       self.error,
            "elapsed_ms":  round(self.elapsed_ms),
        }


@dataclass
class RetryDecision:
    document_id: str
    status:      str                 # queued | completed | processing
    document:    Any = None


class DocumentProcessingCoordinator:

    def __init__(
        self,
        documents:    DocumentRepository,
        storage:      ObjectStorage,
        embedder:     Embedder,
        vector_index: VectorIndexBase,
        usage:        UsageTracker,
        lock:         DocumentLock,
        cache:        ResultCache | None = None,
        chunker:      TextChunker | None = None,
        max_retries:  int | None = None,
    ) -> None:
        self._documents   = documents
        self._storage     = storage
        self._embedder    = embedder
        self._index       = vector_index
        self._usage       = usage
        self._lock        = lock
        self._cache       = cache or ResultCache(client=None)
        self._chunker     = chunker or TextChunker(settings.chunk_size, settings.chunk_overlap)
        self._max_retries = settings.processing_max_retries if max_retries is None else max_retries

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process_document(self, document_id: str) -> ProcessingOutcome:
        """
        Run the full pipeline for one document.

        Raises:
            DocumentNotFoundError: no such document.
        """
        document_id = str(document_id)
        async with self._lock.try_acquire(document_id) as acquired:
            if not acquired:
                logger.info("Processing | doc=%s skipped (already processing)", document_id)
                return ProcessingOutcome(document_id, "skipped", error="already processing")
            doc = await self._documents.get(document_id)
            if doc is None:
                raise DocumentNotFoundError(document_id)
            return await self._run(doc)

    async def prepare_retry(self, document_id: str) -> RetryDecision:
        """
        Validate and record a retry under the per-document lock, leaving the
        run itself to the caller.

        Returns a RetryDecision whose status is "queued" (counter bumped,
        document reset to uploaded), "completed" (already indexed, nothing to
        do) or "processing" (a run holds the lock; nothing was changed).

        Raises:
            DocumentNotFoundError, RetryLimitExceeded
        """
        document_id = str(document_id)
        async with self._lock.try_acquire(document_id) as acquired:
            if not acquired:
                logger.info("Retry | doc=%s skipped (already processing)", document_id)
                return RetryDecision(document_id, "processing")
            doc = await self._reset_for_retry(document_id)
            if doc is None:
                return RetryDecision(document_id, "completed")
            return RetryDecision(document_id, "queued", doc)

    async def retry_document(self, document_id: str) -> ProcessingOutcome:
        """Bounded retry: counter check and reset, then a full run from extraction."""
        document_id = str(document_id)
        async with self._lock.try_acquire(document_id) as acquired:
            if not acquired:
                return ProcessingOutcome(document_id, "skipped", error="already processing")
            doc = await self._reset_for_retry(document_id)
            if doc is None:
                return ProcessingOutcome(document_id, "skipped", error="already completed")
            return await self._run(doc)

    async def _reset_for_retry(self, document_id: str):
        # Caller holds the document lock.
        doc = await self._documents.get(document_id)
        if doc is None:
            raise DocumentNotFoundError(document_id)

        metadata = doc.doc_metadata or {}
        if doc.status == "completed" and metadata.get("indexingStatus") == "completed":
            logger.info("Retry | doc=%s already completed, nothing to do", document_id)
            return None

        retry_count = int(metadata.get("retryCount", 0) or 0)
        if retry_count >= self._max_retries:
            logger.warning(
                "Retry | doc=%s refused retry_count=%d max=%d",
                document_id, retry_count, self._max_retries,
            )
            raise RetryLimitExceeded(document_id, retry_count, self._max_retries)

        logger.info("Retry | doc=%s attempt=%d/%d", document_id, retry_count + 1, self._max_retries)
        return await self._documents.set_status(
            document_id,
            "uploaded",
            error=None,
            metadata={"retryCount": retry_count + 1, "lastRetryAt": _now_iso()},
        )

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(self, doc) -> ProcessingOutcome:
        document_id = str(doc.id)
        started = time.monotonic()
        logger.info("Processing | doc=%s user=%s type=%s", document_id, doc.user_id, doc.file_type)

        await self._documents.set_status(document_id, "processing", error=None)
        await self._cache.invalidate_document(document_id)

        # --- Phase 1: download + extract ----------------------------------
        try:
            data   = await self._storage.get_bytes(doc.storage_key)
            result = await asyncio.to_thread(extract, data, doc.file_type)
        except Exception as exc:
            logger.error("Extraction failed | doc=%s error=%s", document_id, exc)
            await self._documents.set_status(
                document_id, "error", error=str(exc), metadata={"errorAt": _now_iso()},
            )
            return ProcessingOutcome(
                document_id, "error", error=str(exc),
                elapsed_ms=(time.monotonic() - started) * 1000,
            )

        # --- Phase 2: display-ready ---------------------------------------
        await self._documents.set_status(
            document_id,
            "completed",
            error=None,
            metadata={
                **result.document_metadata(),
                "indexingStatus": "pending",
                "processedAt":    _now_iso(),
            },
        )
        await self._cache.set_category(CacheCategory.DOCUMENT, {"text": result.text}, document_id)

        # --- Phase 3: index -----------------------------------------------
        try:
            chunk_count, embedding_tokens = await self._index_text(doc, result.text)
        except Exception as exc:
            logger.error("Indexing failed | doc=%s error=%s", document_id, exc)
            await self._cleanup_vectors(doc)
            await self._documents.set_status(
                document_id,
                "error",
                error=str(exc),
                metadata={"indexingStatus": "error", "errorAt": _now_iso()},
            )
            return ProcessingOutcome(
                document_id, "error", error=str(exc),
                elapsed_ms=(time.monotonic() - started) * 1000,
            )

        await self._documents.update_metadata(
            document_id,
            {"indexingStatus": "completed", "chunkCount": chunk_count, "indexedAt": _now_iso()},
        )
        await self._usage.track(
            doc.user_id,
            "process",
            document_id=document_id,
            embedding_tokens=embedding_tokens,
            chunkCount=chunk_count,
            fileType=doc.file_type,
        )

        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info(
            "Processing complete | doc=%s chunks=%d elapsed_ms=%.0f",
            document_id, chunk_count, elapsed_ms,
        )
        return ProcessingOutcome(document_id, "completed", chunk_count=chunk_count, elapsed_ms=elapsed_ms)

    async def _index_text(self, doc, text: str) -> tuple[int, int]:
        """Chunk, embed and upsert. Returns (chunk_count, embedding_tokens)."""
        document_id = str(doc.id)
        await self._index.delete_by_document(doc.user_id, document_id)

        chunks = self._chunker.chunk(text, document_id=document_id)
        if not chunks:
            return 0, 0

        vectors = await self._embedder.embed_many([c.text for c in chunks])
        records = [
            VectorRecord(
                id=chunk.chunk_id,
                vector=vector,
                metadata={
                    "user_id":      str(doc.user_id),
                    "document_id":  document_id,
                    "chunk_index":  chunk.chunk_index,
                    "text":         chunk.text,
                    "start_offset": chunk.start_offset,
                    "end_offset":   chunk.end_offset,
                    "file_name":    doc.file_name,
                    "file_type":    doc.file_type,
                },
            )
            for chunk, vector in zip(chunks, vectors)
        ]
        await self._index.upsert(records)
        return len(records), sum(estimate_tokens(c.text) for c in chunks)

    async def _cleanup_vectors(self, doc) -> None:
        try:
            await self._index.delete_by_document(doc.user_id, str(doc.id))
        except Exception as exc:
            logger.error("Vector cleanup failed | doc=%s error=%s", doc.id, exc)
