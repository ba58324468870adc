"""
Celery Tasks — Document Processing

Task: process_document
  Runs DocumentProcessingCoordinator.process_document for one document id.
  The outcome (completed / error / skipped) is returned as the task result;
  the authoritative state is the document row.

Task: enqueue_stale_uploads
  Beat job — re-queues documents stuck in 'uploaded' for longer than
  settings.stale_upload_minutes (the broker may have been unavailable when
  the upload handler enqueued them).

Each task runs on its own event loop, builds its own services and disposes
the DB engine afterwards so no pooled connection outlives its loop.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from docuquery.core.config import settings
from docuquery.core.exceptions import DocumentNotFoundError
from docuquery.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_running():
            import concurrent.futures
            with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
                future = pool.submit(asyncio.run, coro)
                return future.result()
        return loop.run_until_complete(coro)
    except RuntimeError:
        return asyncio.run(coro)


async def _with_services(fn: Callable[[Any], Awaitable[dict[str, Any]]]) -> dict[str, Any]:
    from docuquery.db.session import dispose_engine
    from docuquery.services.factory import build_services

    services = build_services()
    try:
        return await fn(services)
    finally:
        await services.aclose()
        await dispose_engine()


# ---------------------------------------------------------------------------
# Processing tasks
# ---------------------------------------------------------------------------

@celery_app.task(
    name="docuquery.workers.tasks.process_document",
    bind=True,
    acks_late=True,
    reject_on_worker_lost=True,
    soft_time_limit=270,
    time_limit=330,
)
def process_document(self, *, document_id: str) -> dict[str, Any]:
    return run_async(_process_document_async(document_id))


async def _process_document_async(document_id: str) -> dict[str, Any]:
    async def run(services) -> dict[str, Any]:
        try:
            outcome = await services.coordinator().process_document(document_id)
        except DocumentNotFoundError:
            logger.error("Document not found | doc=%s", document_id)
            return {"document_id": document_id, "status": "not_found"}
        return outcome.as_dict()

    return await _with_services(run)


# ---------------------------------------------------------------------------
# Stale-upload scanner: runs every 60 seconds via Celery Beat
# ---------------------------------------------------------------------------

@celery_app.task(
    name="docuquery.workers.tasks.enqueue_stale_uploads",
    bind=False,
    acks_late=True,
    soft_time_limit=55,
    time_limit=60,
)
def enqueue_stale_uploads() -> dict[str, int]:
    return run_async(_enqueue_stale_uploads_async())


async def _enqueue_stale_uploads_async() -> dict[str, int]:
    async def run(services) -> dict[str, Any]:
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=settings.stale_upload_minutes)
        stale = await services.documents.find_stale("uploaded", cutoff, limit=50)
        for doc in stale:
            process_document.apply_async(kwargs={"document_id": str(doc.id)}, countdown=5)
            logger.info("Re-queued stale upload | doc=%s user=%s", doc.id, doc.user_id)
        return {"requeued": len(stale)}

    return await _with_services(run)
