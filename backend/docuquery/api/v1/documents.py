"""
Document API Router

POST /api/v1/documents                        upload (202)
GET  /api/v1/documents                        list the caller's documents
GET  /api/v1/documents/{id}                   detail + attributed cost
GET  /api/v1/documents/{id}/view              presigned download URL
POST /api/v1/documents/{id}/process           (re)queue processing
POST /api/v1/documents/{id}/retry             bounded retry of a failed document
GET  /api/v1/documents/{id}/analysis/{kind}   summary | entities | sentiment

Request lifecycle (upload):
  ┌─────────────────────────────────────────────────────────┐
  │ 1. X-User-Id → caller identity                          │
  │ 2. Extension + size + magic-byte validation             │
  │ 3. S3 put under users/<user_id>/documents/<doc_id>/     │
  │ 4. DB insert (status=uploaded)                          │
  │ 5. Celery task published → returns 202                  │
  └─────────────────────────────────────────────────────────┘

Every document lookup is scoped to the caller; another user's document id
answers 404, never 403.
"""

from __future__ import annotations

import logging
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, File, Query, UploadFile, status

from docuquery.api.dependencies import AppServices, Analyzer, Coordinator, CurrentUserId, Ingestion, Publisher
from docuquery.core.config import settings
from docuquery.core.exceptions import DocumentNotFoundError
from docuquery.schemas.documents import (
    AnalysisResponse,
    DocumentDetailResponse,
    DocumentListResponse,
    DocumentResponse,
    DocumentStatus,
    DocumentViewResponse,
    ErrorResponse,
    ProcessAcceptedResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["Documents"],
)

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Document not found for this user"}}


async def _owned_document(services, document_id: UUID, user_id: str):
    doc = await services.documents.get(document_id, user_id=user_id)
    if doc is None:
        raise DocumentNotFoundError(document_id)
    return doc


# ---------------------------------------------------------------------------
# Upload + listing
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=DocumentResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Upload a document for processing",
    description=(
        "Accepts PDF, DOCX or XLSX files up to 50 MB. "
        "Returns 202 immediately; processing is asynchronous. "
        "Poll GET /documents/{id} for pipeline progress."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Unsupported file type or empty file"},
        401: {"model": ErrorResponse, "description": "Missing X-User-Id header"},
        413: {"model": ErrorResponse, "description": "File exceeds 50 MB limit"},
        502: {"model": ErrorResponse, "description": "Object storage unavailable"},
    },
)
async def upload_document(
    user_id:   CurrentUserId,
    ingestion: Ingestion,
    file:      UploadFile = File(..., description="Document file (PDF, DOCX, XLSX — max 50 MB)"),
) -> DocumentResponse:
    doc = await ingestion.ingest(user_id, file)
    return DocumentResponse.model_validate(doc)


@router.get("", response_model=DocumentListResponse, summary="List the caller's documents")
async def list_documents(
    user_id:  CurrentUserId,
    services: AppServices,
    status_:  DocumentStatus | None = Query(None, alias="status"),
) -> DocumentListResponse:
    docs = await services.documents.list_for_owner(user_id, status=status_)
    return DocumentListResponse(
        documents=[DocumentResponse.model_validate(d) for d in docs],
        total=len(docs),
    )


@router.get("/{document_id}", response_model=DocumentDetailResponse, responses=_NOT_FOUND)
async def get_document(
    document_id: UUID,
    user_id:     CurrentUserId,
    services:    AppServices,
) -> DocumentDetailResponse:
    doc = await _owned_document(services, document_id, user_id)
    detail = DocumentDetailResponse.model_validate(doc)
    detail.cost_cents = await services.usage.document_cost(user_id, doc.id)
    return detail


@router.get("/{document_id}/view", response_model=DocumentViewResponse, responses=_NOT_FOUND)
async def view_document(
    document_id: UUID,
    user_id:     CurrentUserId,
    services:    AppServices,
) -> DocumentViewResponse:
    doc = await _owned_document(services, document_id, user_id)
    url = await services.storage.presigned_url(doc.storage_key)
    return DocumentViewResponse(url=url, expires_in=settings.s3_presign_ttl_seconds)


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------

@router.post(
    "/{document_id}/process",
    response_model=ProcessAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses=_NOT_FOUND,
)
async def process_document(
    document_id: UUID,
    user_id:     CurrentUserId,
    services:    AppServices,
    publisher:   Publisher,
) -> ProcessAcceptedResponse:
    doc = await _owned_document(services, document_id, user_id)
    await publisher.publish_processing(doc.id)
    return ProcessAcceptedResponse(document_id=doc.id, status="queued", message="Processing queued")


@router.post(
    "/{document_id}/retry",
    response_model=ProcessAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        **_NOT_FOUND,
        409: {"model": ErrorResponse, "description": "Retry limit exceeded"},
    },
)
async def retry_document(
    document_id: UUID,
    user_id:     CurrentUserId,
    services:    AppServices,
    coordinator: Coordinator,
    publisher:   Publisher,
) -> ProcessAcceptedResponse:
    """
    Checks and bumps the retry counter synchronously so the caller sees a 409
    immediately; the processing run itself is queued. A document that is
    mid-run is left untouched.
    """
    doc = await _owned_document(services, document_id, user_id)
    decision = await coordinator.prepare_retry(doc.id)
    if decision.status == "completed":
        return ProcessAcceptedResponse(document_id=doc.id, status="completed", message="Document is already processed")
    if decision.status == "processing":
        return ProcessAcceptedResponse(document_id=doc.id, status="processing", message="Document is already processing")

    await publisher.publish_processing(doc.id)
    retry_count = (decision.document.doc_metadata or {}).get("retryCount")
    logger.info("Retry queued | doc=%s user=%s retry=%s", doc.id, user_id, retry_count)
    return ProcessAcceptedResponse(
        document_id=doc.id,
        status="queued",
        message=f"Retry {retry_count} of {settings.processing_max_retries} queued",
    )


# ---------------------------------------------------------------------------
# Analyses
# ---------------------------------------------------------------------------

@router.get(
    "/{document_id}/analysis/{kind}",
    response_model=AnalysisResponse,
    responses={
        **_NOT_FOUND,
        409: {"model": ErrorResponse, "description": "Document is not processed yet"},
        502: {"model": ErrorResponse, "description": "Every LLM provider failed"},
    },
)
async def analyze_document(
    document_id: UUID,
    kind:        Literal["summary", "entities", "sentiment"],
    user_id:     CurrentUserId,
    analyzer:    Analyzer,
) -> AnalysisResponse:
    result = await analyzer.analyze(user_id, str(document_id), kind)
    return AnalysisResponse(**result.as_dict())
