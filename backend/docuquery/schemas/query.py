"""Query, conversation and usage schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import Field, field_validator

from docuquery.schemas.documents import ApiModel


class QueryRequest(ApiModel):
    question:           str = Field(..., min_length=1, max_length=4000)
    document_ids:       list[UUID] = Field(default_factory=list, description="Empty = all of the user's documents")
    conversation_id:    UUID | None = None
    strategy:           Literal["fallback", "cost", "performance"] = "fallback"
    preferred_provider: Literal["openai", "anthropic", "gemini"] | None = None
    top_k:              int | None = Field(None, ge=1, le=20)
    min_score:          float | None = Field(None, ge=0.0, le=1.0)

    @field_validator("question")
    @classmethod
    def question_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("question must not be blank")
        return v


class SourceResponse(ApiModel):
    text:     str
    score:    float
    metadata: dict[str, Any]


class QueryAnswerResponse(ApiModel):
    answer:          str
    sources:         list[SourceResponse]
    model:           str
    conversation_id: str | None = None
    cached:          bool = False


class ConversationResponse(ApiModel):
    id:          UUID
    document_id: UUID | None = None
    title:       str | None = None
    created_at:  datetime
    updated_at:  datetime


class ConversationListResponse(ApiModel):
    conversations: list[ConversationResponse]


class MessageResponse(ApiModel):
    id:         UUID
    role:       Literal["user", "assistant"]
    content:    str
    sources:    list[dict[str, Any]] | None = None
    model:      str | None = None
    created_at: datetime


class MessageListResponse(ApiModel):
    conversation_id: UUID
    messages:        list[MessageResponse]


class CostLineResponse(ApiModel):
    key:   str
    cost:  int
    count: int


class UsageResponse(ApiModel):
    total_cost:     int = Field(..., description="Cents")
    total_actions:  int
    cost_by_action: list[CostLineResponse]
    cost_by_model:  list[CostLineResponse]
