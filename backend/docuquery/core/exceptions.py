"""
Error taxonomy for the ingestion and query pipeline.

  DocuQueryError
    ├── ExtractionError            unsupported / corrupt file
    │     └── UnsupportedFileTypeError
    ├── EmbeddingError             embedding provider unreachable or malformed
    ├── VectorIndexError           upsert / query failure
    ├── QueryError                 every LLM provider failed
    ├── RetryLimitExceeded         bounded retry counter exhausted
    ├── DocumentNotFoundError
    ├── ConversationNotFoundError
    ├── DocumentNotReadyError      analysis requested before processing completed
    └── StorageError               object storage failure

Stage-local failures abort the document's processing run; the coordinator
records their message on the document.
"""

from __future__ import annotations

from dataclasses import dataclass


class DocuQueryError(Exception):
    """Base class for all pipeline errors."""


class ExtractionError(DocuQueryError):
    """The file could not be converted to text."""


class UnsupportedFileTypeError(ExtractionError):
    def __init__(self, file_type: str) -> None:
        super().__init__(f"Unsupported file type: {file_type!r}")
        self.file_type = file_type


class EmbeddingError(DocuQueryError):
    """The embedding provider failed or returned a malformed response."""


class VectorIndexError(DocuQueryError):
    """The vector index rejected an upsert, query or delete."""


class StorageError(DocuQueryError):
    """Object storage read/write failed."""


class DocumentNotFoundError(DocuQueryError):
    def __init__(self, document_id: object) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class ConversationNotFoundError(DocuQueryError):
    def __init__(self, conversation_id: object) -> None:
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class RetryLimitExceeded(DocuQueryError):
    def __init__(self, document_id: object, retry_count: int, max_retries: int) -> None:
        super().__init__(
            f"Maximum retry attempts ({max_retries}) exceeded for document {document_id}"
        )
        self.document_id = document_id
        self.retry_count = retry_count
        self.max_retries = max_retries


@dataclass(frozen=True)
class ProviderFailure:
    """Why one LLM provider could not answer."""
    provider: str
    reason:   str

    def __str__(self) -> str:
        return f"{self.provider}: {self.reason}"


class QueryError(DocuQueryError):
    """All LLM providers were exhausted for one query."""

    def __init__(self, failures: list[ProviderFailure]) -> None:
        self.failures = list(failures)
        if self.failures:
            detail = "\n".join(f"  - {f}" for f in self.failures)
            message = f"All LLM providers failed:\n{detail}"
        else:
            message = "No LLM providers are configured"
        super().__init__(message)


class DocumentNotReadyError(DocuQueryError):
    """The document has not been processed yet (or processing failed)."""

    def __init__(self, document_id: object, status: str) -> None:
        super().__init__(f"Document {document_id} is not ready (status={status})")
        self.document_id = document_id
        self.status = status
