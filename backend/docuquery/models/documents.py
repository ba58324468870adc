"""
SQLAlchemy ORM Models — Documents, Conversations, Usage

Mapped classes (2.x style) for full async support.

Ownership note: every table carries the owning user id. Repositories always
filter on it; there is no cross-user access path.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Declarative base: shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


DOCUMENT_STATUSES = ("uploaded", "processing", "completed", "error")
MESSAGE_ROLES     = ("user", "assistant")
USAGE_ACTIONS     = ("upload", "query", "process", "analysis")


# ---------------------------------------------------------------------------
# Document model: documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    One uploaded file.

    State machine (status column):
        uploaded   — bytes stored, processing not yet started
        processing — a worker holds the document lock and is extracting
        completed  — text extracted, display-ready; search readiness is
                     doc_metadata["indexingStatus"] (pending|completed|error)
        error      — extraction or indexing failed (see error_message)

    doc_metadata also carries retryCount / lastRetryAt for the bounded
    retry policy.
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "status IN ('uploaded', 'processing', 'completed', 'error')",
            name="documents_status_check",
        ),
        CheckConstraint(
            "file_type IN ('pdf', 'docx', 'xlsx')",
            name="documents_file_type_check",
        ),
        Index("idx_documents_user_id", "user_id"),
        Index("idx_documents_status",  "user_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False)

    file_name:   Mapped[str] = mapped_column(Text, nullable=False)
    file_type:   Mapped[str] = mapped_column(Text, nullable=False)
    file_size:   Mapped[int] = mapped_column(BigInteger, nullable=False)
    storage_key: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Object key: users/<user_id>/documents/<doc_id>/<file_name>",
    )

    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="uploaded",
        server_default="uploaded",
    )
    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Populated only when status='error'",
    )

    doc_metadata: Mapped[dict] = mapped_column(
        "metadata",                 # PostgreSQL column name stays 'metadata'
        JSONB,
        nullable=False,
        default=dict,
        server_default="{}",
        comment="Extractor metadata, indexing state and retry counters",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<Document id={self.id} user={self.user_id} "
            f"status={self.status} file={self.file_name!r}>"
        )


# ---------------------------------------------------------------------------
# Conversation / Message: conversations, messages
# ---------------------------------------------------------------------------

class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        Index("idx_conversations_user_updated", "user_id", "updated_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    document_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=True,
    )
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    messages: Mapped[list["Message"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.created_at",
    )


class Message(Base):
    """One turn. Assistant messages carry source citations and the model id."""

    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint("role IN ('user', 'assistant')", name="messages_role_check"),
        Index("idx_messages_conversation", "conversation_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    role:    Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    # [{"text": ..., "score": ..., "metadata": {...}}, ...]
    sources: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)
    model:   Mapped[Optional[str]]  = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    conversation: Mapped[Conversation] = relationship(back_populates="messages")


# ---------------------------------------------------------------------------
# UsageRecord: usage_records (append-only)
# ---------------------------------------------------------------------------

class UsageRecord(Base):
    """
    Append-only ledger entry per billable action.

    Never updated after insert; aggregated by the usage read API.
    """

    __tablename__ = "usage_records"
    __table_args__ = (
        CheckConstraint(
            "action IN ('upload', 'query', 'process', 'analysis')",
            name="usage_records_action_check",
        ),
        Index("idx_usage_user_created", "user_id", "created_at"),
        Index("idx_usage_document",     "document_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)

    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    action:  Mapped[str] = mapped_column(Text, nullable=False)
    document_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="SET NULL"),
        nullable=True,
    )
    cost_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    usage_metadata: Mapped[dict] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        default=dict,
        server_default="{}",
        comment="model, token counts and any action-specific fields",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<UsageRecord id={self.id} user={self.user_id} "
            f"action={self.action!r} cost_cents={self.cost_cents}>"
        )
