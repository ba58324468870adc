"""
Conversation history.

GET /api/v1/conversations                    newest first, optional ?documentId=
GET /api/v1/conversations/{id}/messages      chronological
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Query

from docuquery.api.dependencies import AppServices, CurrentUserId
from docuquery.core.exceptions import ConversationNotFoundError
from docuquery.schemas.documents import ErrorResponse
from docuquery.schemas.query import (
    ConversationListResponse,
    ConversationResponse,
    MessageListResponse,
    MessageResponse,
)

router = APIRouter(prefix="/conversations", tags=["Conversations"])


@router.get("", response_model=ConversationListResponse)
async def list_conversations(
    user_id:     CurrentUserId,
    services:    AppServices,
    document_id: UUID | None = Query(None, alias="documentId"),
) -> ConversationListResponse:
    conversations = await services.conversations.list_for_user(user_id, document_id=document_id)
    return ConversationListResponse(
        conversations=[ConversationResponse.model_validate(c) for c in conversations],
    )


@router.get(
    "/{conversation_id}/messages",
    response_model=MessageListResponse,
    responses={404: {"model": ErrorResponse, "description": "Conversation not found"}},
)
async def list_messages(
    conversation_id: UUID,
    user_id:         CurrentUserId,
    services:        AppServices,
) -> MessageListResponse:
    conversation = await services.conversations.get(conversation_id, user_id=user_id)
    if conversation is None:
        raise ConversationNotFoundError(conversation_id)
    messages = await services.conversations.history(conversation_id)
    return MessageListResponse(
        conversation_id=conversation_id,
        messages=[MessageResponse.model_validate(m) for m in messages],
    )
