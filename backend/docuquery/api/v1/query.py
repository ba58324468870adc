"""
Query API — RAG Q&A Endpoint

POST /api/v1/query → JSON response

  - Retrieval is scoped to the caller (X-User-Id) and, optionally, to a
    set of their documents
  - The answer comes from the LLM fallback chain (fallback | cost |
    performance ordering, optional preferred provider)
  - Every non-cached answer is stored as a user/assistant message pair in a
    conversation; the conversation id is returned for follow-ups
"""

from __future__ import annotations

import logging

from fastapi import APIRouter

from docuquery.api.dependencies import CurrentUserId, Orchestrator
from docuquery.schemas.documents import ErrorResponse
from docuquery.schemas.query import QueryAnswerResponse, QueryRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/query", tags=["Query"])


@router.post(
    "",
    response_model=QueryAnswerResponse,
    summary="Ask a question over your documents",
    responses={
        400: {"model": ErrorResponse, "description": "Blank question or unknown provider"},
        404: {"model": ErrorResponse, "description": "Conversation not found"},
        502: {"model": ErrorResponse, "description": "Every LLM provider failed"},
    },
)
async def query(
    body:         QueryRequest,
    user_id:      CurrentUserId,
    orchestrator: Orchestrator,
) -> QueryAnswerResponse:
    response = await orchestrator.query(
        user_id,
        body.question,
        document_ids=[str(d) for d in body.document_ids],
        conversation_id=str(body.conversation_id) if body.conversation_id else None,
        strategy=body.strategy,
        preferred_provider=body.preferred_provider,
        top_k=body.top_k,
        min_score=body.min_score,
    )
    return QueryAnswerResponse(
        answer=response.answer,
        sources=response.sources,
        model=response.model,
        conversation_id=response.conversation_id,
        cached=response.cached,
    )
