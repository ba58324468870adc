"""
Per-document mutual exclusion for processing runs.

Only one processing run per document may be in flight. A second caller
does not wait: try_acquire() yields False and the caller reports the run
as skipped.

  PgAdvisoryDocumentLock   pg_try_advisory_lock on a dedicated connection,
                           held for the whole run; safe across processes
  LocalDocumentLock        in-process set guarded by an asyncio.Lock;
                           single process only (tests, local dev)
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Protocol

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


class DocumentLock(Protocol):
    def try_acquire(self, document_id: str) -> AsyncContextManager[bool]: ...


def advisory_key(document_id: str) -> int:
    """Stable signed 64-bit key for pg advisory locks."""
    digest = hashlib.sha256(f"document:{document_id}".encode()).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


class PgAdvisoryDocumentLock:

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    @asynccontextmanager
    async def try_acquire(self, document_id: str) -> AsyncIterator[bool]:
        key = advisory_key(str(document_id))
        async with self._engine.connect() as conn:
            acquired = bool(
                (await conn.execute(text("SELECT pg_try_advisory_lock(:k)"), {"k": key})).scalar()
            )
            if not acquired:
                logger.info("Advisory lock busy | doc=%s key=%d", document_id, key)
            try:
                yield acquired
            finally:
                if acquired:
                    await conn.execute(text("SELECT pg_advisory_unlock(:k)"), {"k": key})
                    await conn.commit()


class LocalDocumentLock:

    def __init__(self) -> None:
        self._held: set[str] = set()
        self._guard = asyncio.Lock()

    def is_held(self, document_id: str) -> bool:
        return str(document_id) in self._held

    @asynccontextmanager
    async def try_acquire(self, document_id: str) -> AsyncIterator[bool]:
        document_id = str(document_id)
        async with self._guard:
            acquired = document_id not in self._held
            if acquired:
                self._held.add(document_id)
        try:
            yield acquired
        finally:
            if acquired:
                self._held.discard(document_id)
