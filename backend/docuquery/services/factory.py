"""
Service wiring.

build_services() assembles every collaborator from settings once; the
coordinator, orchestrator and analyzer are then cheap views over the same
container. The API keeps one container per process (its event loop lives
as long as the app). Celery tasks build a fresh container per task because
each task runs its own event loop and pooled connections cannot cross loops.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from docuquery.cache.redis_cache import ResultCache
from docuquery.core.config import settings
from docuquery.db.locks import DocumentLock, LocalDocumentLock, PgAdvisoryDocumentLock
from docuquery.db.repositories import ConversationRepository, DocumentRepository, UsageRepository
from docuquery.db.session import get_engine, get_session_factory
from docuquery.llm.fallback import FallbackChain
from docuquery.llm.providers import build_providers
from docuquery.processing.embeddings import EmbeddingClient, Embedder
from docuquery.rag.orchestrator import QueryOrchestrator
from docuquery.services.analysis import DocumentAnalyzer
from docuquery.services.processing import DocumentProcessingCoordinator
from docuquery.services.usage import UsageTracker
from docuquery.storage.s3 import ObjectStorage
from docuquery.vectorstore.base import VectorIndexBase
from docuquery.vectorstore.factory import get_vector_index

logger = logging.getLogger(__name__)


@dataclass
class Services:
    documents:     DocumentRepository
    conversations: ConversationRepository
    usage:         UsageTracker
    cache:         ResultCache
    storage:       ObjectStorage
    embedder:      Embedder
    vector_index:  VectorIndexBase
    chain:         FallbackChain
    lock:          DocumentLock

    def coordinator(self) -> DocumentProcessingCoordinator:
        return DocumentProcessingCoordinator(
            documents=self.documents,
            storage=self.storage,
            embedder=self.embedder,
            vector_index=self.vector_index,
            usage=self.usage,
            lock=self.lock,
            cache=self.cache,
        )

    def orchestrator(self) -> QueryOrchestrator:
        return QueryOrchestrator(
            embedder=self.embedder,
            vector_index=self.vector_index,
            chain=self.chain,
            conversations=self.conversations,
            usage=self.usage,
            cache=self.cache,
        )

    def analyzer(self) -> DocumentAnalyzer:
        return DocumentAnalyzer(
            chain=self.chain,
            documents=self.documents,
            storage=self.storage,
            usage=self.usage,
            cache=self.cache,
        )

    async def aclose(self) -> None:
        await self.cache.close()


def build_lock() -> DocumentLock:
    backend = settings.document_lock_backend.lower()
    if backend == "postgres":
        return PgAdvisoryDocumentLock(get_engine())
    if backend == "local":
        return LocalDocumentLock()
    raise ValueError(
        f"Unknown document lock backend: '{backend}'. Valid options: 'postgres', 'local'"
    )


def build_services() -> Services:
    session_factory = get_session_factory()
    cache = ResultCache.from_settings()
    services = Services(
        documents=DocumentRepository(session_factory),
        conversations=ConversationRepository(session_factory),
        usage=UsageTracker(UsageRepository(session_factory)),
        cache=cache,
        storage=ObjectStorage(),
        embedder=EmbeddingClient(cache=cache),
        vector_index=get_vector_index(),
        chain=FallbackChain(build_providers()),
        lock=build_lock(),
    )
    logger.info(
        "Services built | vector_store=%s cache=%s lock=%s",
        settings.vector_store_backend, cache.enabled, settings.document_lock_backend,
    )
    return services
