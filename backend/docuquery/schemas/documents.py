"""
Document API — Pydantic Request/Response Schemas

Covers:
  - POST /api/v1/documents            upload (202 Accepted)
  - GET  /api/v1/documents[/{id}]     listing and detail
  - GET  /api/v1/documents/{id}/view  presigned download URL
  - POST /api/v1/documents/{id}/process | /retry
  - GET  /api/v1/documents/{id}/analysis/{kind}
  - The structured error body shared by every endpoint

Field names are camelCase on the wire (alias generator) and snake_case in
Python; requests accept either.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from docuquery.core.config import settings

# 50 MB hard ceiling: also enforced by the upload service
MAX_FILE_SIZE_BYTES: int = settings.max_upload_bytes

ALLOWED_EXTENSIONS: frozenset[str] = frozenset({".pdf", ".docx", ".xlsx"})

DocumentStatus = Literal["uploaded", "processing", "completed", "error"]


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

class DocumentResponse(ApiModel):
    id:            UUID
    file_name:     str
    file_type:     str
    file_size:     int
    status:        DocumentStatus
    error_message: str | None = None
    metadata:      dict[str, Any] = Field(
        default_factory=dict,
        validation_alias="doc_metadata",
        description="Extractor metadata plus indexingStatus, chunkCount, retryCount",
    )
    created_at:    datetime
    updated_at:    datetime


class DocumentDetailResponse(DocumentResponse):
    cost_cents: int = Field(0, description="Total recorded cost attributed to this document")


class DocumentListResponse(ApiModel):
    documents: list[DocumentResponse]
    total:     int


class DocumentViewResponse(ApiModel):
    url:        str
    expires_in: int = Field(..., description="Seconds until the presigned URL expires")


class ProcessAcceptedResponse(ApiModel):
    document_id: UUID
    status:      Literal["queued", "completed", "processing"]
    message:     str


class AnalysisResponse(ApiModel):
    document_id: str
    kind:        Literal["summary", "entities", "sentiment"]
    result:      Any
    model:       str = ""
    cached:      bool = False


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ProviderFailureBody(ApiModel):
    provider: str
    reason:   str


class ErrorBody(ApiModel):
    code:     str = Field(..., examples=["DOCUMENT_NOT_FOUND"])
    message:  str
    failures: list[ProviderFailureBody] = Field(default_factory=list)


class ErrorResponse(ApiModel):
    """Every non-2xx response: {"error": {"code", "message", "failures"}}."""
    error: ErrorBody

    @classmethod
    def build(cls, code: str, message: str, failures: list | None = None) -> dict[str, Any]:
        body = cls(error=ErrorBody(
            code=code,
            message=message,
            failures=[ProviderFailureBody(provider=f.provider, reason=f.reason) for f in failures or []],
        ))
        return body.model_dump(by_alias=True)
