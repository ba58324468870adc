"""
Composed FastAPI Dependencies

Combines caller identity + the service container into single injectable
objects. Route handlers import from here, never from services/factory or
db/session directly.

Identity comes from the X-User-Id header set by the upstream gateway;
authentication itself happens outside this service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from docuquery.rag.orchestrator import QueryOrchestrator
from docuquery.services.analysis import DocumentAnalyzer
from docuquery.services.factory import Services, build_services
from docuquery.services.ingestion import IngestionService, TaskPublisher
from docuquery.services.processing import DocumentProcessingCoordinator


# ---------------------------------------------------------------------------
# 1. Caller identity
# ---------------------------------------------------------------------------

async def get_current_user_id(
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id.strip()


# ---------------------------------------------------------------------------
# 2. Service container: one per process
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services()


def get_task_publisher() -> TaskPublisher:
    return TaskPublisher()


def get_coordinator(services: Annotated[Services, Depends(get_services)]) -> DocumentProcessingCoordinator:
    return services.coordinator()


def get_orchestrator(services: Annotated[Services, Depends(get_services)]) -> QueryOrchestrator:
    return services.orchestrator()


def get_analyzer(services: Annotated[Services, Depends(get_services)]) -> DocumentAnalyzer:
    return services.analyzer()


def get_ingestion_service(
    services:  Annotated[Services, Depends(get_services)],
    publisher: Annotated[TaskPublisher, Depends(get_task_publisher)],
) -> IngestionService:
    return IngestionService(
        documents=services.documents,
        storage=services.storage,
        usage=services.usage,
        task_publisher=publisher,
    )


# ---------------------------------------------------------------------------
# Type aliases for cleaner route signatures
# ---------------------------------------------------------------------------

CurrentUserId = Annotated[str,                           Depends(get_current_user_id)]
AppServices   = Annotated[Services,                      Depends(get_services)]
Publisher     = Annotated[TaskPublisher,                 Depends(get_task_publisher)]
Coordinator   = Annotated[DocumentProcessingCoordinator, Depends(get_coordinator)]
Orchestrator  = Annotated[QueryOrchestrator,             Depends(get_orchestrator)]
Analyzer      = Annotated[DocumentAnalyzer,              Depends(get_analyzer)]
Ingestion     = Annotated[IngestionService,              Depends(get_ingestion_service)]
