"""
Repositories

Data access for documents, conversations/messages and the usage ledger.

Each repository is constructed with an ``async_sessionmaker`` and opens one
short transaction per call, so the same instances serve request handlers
and Celery tasks alike. Returned ORM objects are detached but fully loaded
(expire_on_commit=False).

JSONB columns are always reassigned (never mutated in place) so SQLAlchemy
sees the change.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docuquery.models.documents import Conversation, Document, Message, UsageRecord

logger = logging.getLogger(__name__)


def as_uuid(value: Any) -> uuid.UUID | None:
    """Coerce to UUID; None for anything that is not a valid UUID."""
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class _Repository:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

class DocumentRepository(_Repository):

    async def create(
        self,
        *,
        user_id:     str,
        file_name:   str,
        file_type:   str,
        file_size:   int,
        storage_key: str,
        document_id: uuid.UUID | None = None,
        metadata:    dict | None = None,
    ) -> Document:
        doc = Document(
            id=document_id or uuid.uuid4(),
            user_id=str(user_id),
            file_name=file_name,
            file_type=file_type,
            file_size=file_size,
            storage_key=storage_key,
            status="uploaded",
            doc_metadata=dict(metadata or {}),
        )
        async with self._session_factory() as session:
            session.add(doc)
            await session.commit()
            await session.refresh(doc)
        logger.info("Document created | id=%s user=%s type=%s", doc.id, doc.user_id, doc.file_type)
        return doc

    async def get(self, document_id: Any, user_id: str | None = None) -> Document | None:
        doc_uuid = as_uuid(document_id)
        if doc_uuid is None:
            return None
        stmt = select(Document).where(Document.id == doc_uuid)
        if user_id is not None:
            stmt = stmt.where(Document.user_id == str(user_id))
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def list_for_owner(self, user_id: str, status: str | None = None) -> Sequence[Document]:
        stmt = select(Document).where(Document.user_id == str(user_id))
        if status is not None:
            stmt = stmt.where(Document.status == status)
        stmt = stmt.order_by(Document.created_at.desc())
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalars().all()

    async def set_status(
        self,
        document_id: Any,
        status:      str,
        error:       str | None = None,
        metadata:    dict | None = None,
    ) -> Document | None:
        """
        Move a document to `status`.

        error_message is set to `error` (cleared when None); `metadata` is
        shallow-merged into the existing metadata.
        """
        async with self._session_factory() as session:
            doc = await session.get(Document, as_uuid(document_id))
            if doc is None:
                return None
            doc.status = status
            doc.error_message = error
            if metadata:
                doc.doc_metadata = {**(doc.doc_metadata or {}), **metadata}
            await session.commit()
            await session.refresh(doc)
        logger.debug("Document status | id=%s status=%s", document_id, status)
        return doc

    async def update_metadata(self, document_id: Any, metadata: dict) -> Document | None:
        async with self._session_factory() as session:
            doc = await session.get(Document, as_uuid(document_id))
            if doc is None:
                return None
            doc.doc_metadata = {**(doc.doc_metadata or {}), **metadata}
            await session.commit()
            await session.refresh(doc)
        return doc

    async def find_stale(self, status: str, older_than: datetime, limit: int = 100) -> Sequence[Document]:
        stmt = (
            select(Document)
            .where(Document.status == status, Document.updated_at < older_than)
            .order_by(Document.updated_at)
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalars().all()


# ---------------------------------------------------------------------------
# Conversations & messages
# ---------------------------------------------------------------------------

class ConversationRepository(_Repository):

    async def create(
        self,
        user_id:     str,
        document_id: Any = None,
        title:       str | None = None,
    ) -> Conversation:
        conv = Conversation(
            id=uuid.uuid4(),
            user_id=str(user_id),
            document_id=as_uuid(document_id),
            title=title,
        )
        async with self._session_factory() as session:
            session.add(conv)
            await session.commit()
            await session.refresh(conv)
        return conv

    async def get(self, conversation_id: Any, user_id: str | None = None) -> Conversation | None:
        conv_uuid = as_uuid(conversation_id)
        if conv_uuid is None:
            return None
        stmt = select(Conversation).where(Conversation.id == conv_uuid)
        if user_id is not None:
            stmt = stmt.where(Conversation.user_id == str(user_id))
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def add_message(
        self,
        conversation_id: Any,
        role:            str,
        content:         str,
        sources:         list[dict] | None = None,
        model:           str | None = None,
    ) -> Message:
        conv_uuid = as_uuid(conversation_id)
        msg = Message(
            id=uuid.uuid4(),
            conversation_id=conv_uuid,
            role=role,
            content=content,
            sources=sources,
            model=model,
        )
        async with self._session_factory() as session:
            session.add(msg)
            await session.execute(
                update(Conversation)
                .where(Conversation.id == conv_uuid)
                .values(updated_at=func.now())
            )
            await session.commit()
            await session.refresh(msg)
        return msg

    async def history(self, conversation_id: Any, limit: int | None = None) -> Sequence[Message]:
        """Messages in chronological order; with `limit`, the most recent ones."""
        conv_uuid = as_uuid(conversation_id)
        if conv_uuid is None:
            return []
        stmt = select(Message).where(Message.conversation_id == conv_uuid)
        async with self._session_factory() as session:
            if limit is None:
                result = await session.execute(stmt.order_by(Message.created_at))
                return result.scalars().all()
            result = await session.execute(stmt.order_by(Message.created_at.desc()).limit(limit))
            return list(reversed(result.scalars().all()))

    async def list_for_user(self, user_id: str, document_id: Any = None) -> Sequence[Conversation]:
        stmt = select(Conversation).where(Conversation.user_id == str(user_id))
        if document_id is not None:
            stmt = stmt.where(Conversation.document_id == as_uuid(document_id))
        stmt = stmt.order_by(Conversation.updated_at.desc())
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalars().all()

    async def update_title(self, conversation_id: Any, title: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Conversation)
                .where(Conversation.id == as_uuid(conversation_id))
                .values(title=title)
            )
            await session.commit()


# ---------------------------------------------------------------------------
# Usage ledger
# ---------------------------------------------------------------------------

class UsageRepository(_Repository):

    async def insert(
        self,
        *,
        user_id:     str,
        action:      str,
        cost_cents:  int,
        document_id: Any = None,
        metadata:    dict | None = None,
    ) -> UsageRecord:
        record = UsageRecord(
            user_id=str(user_id),
            action=action,
            document_id=as_uuid(document_id),
            cost_cents=cost_cents,
            usage_metadata=dict(metadata or {}),
        )
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
        return record

    async def list_for_user(
        self,
        user_id: str,
        start:   datetime | None = None,
        end:     datetime | None = None,
    ) -> Sequence[UsageRecord]:
        stmt = select(UsageRecord).where(UsageRecord.user_id == str(user_id))
        if start is not None:
            stmt = stmt.where(UsageRecord.created_at >= start)
        if end is not None:
            stmt = stmt.where(UsageRecord.created_at <= end)
        stmt = stmt.order_by(UsageRecord.created_at)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalars().all()

    async def document_cost(self, user_id: str, document_id: Any) -> int:
        stmt = select(func.coalesce(func.sum(UsageRecord.cost_cents), 0)).where(
            UsageRecord.user_id == str(user_id),
            UsageRecord.document_id == as_uuid(document_id),
        )
        async with self._session_factory() as session:
            return int((await session.execute(stmt)).scalar() or 0)
