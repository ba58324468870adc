"""
Document Ingestion Service

Orchestrates the upload pipeline:
  1. Validate extension (pdf | docx | xlsx) and size (settings.max_upload_bytes)
  2. Check magic bytes agree with the extension
  3. Store bytes under users/<user_id>/documents/<document_id>/<file_name>
  4. Insert the document record (status=uploaded)
  5. Publish the processing task to Celery
  6. Record an "upload" usage entry

A broker failure in step 5 does not fail the upload: the document stays in
'uploaded' and the stale-upload scanner re-queues it.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from fastapi import HTTPException, UploadFile, status

from docuquery.core.config import settings
from docuquery.core.exceptions import UnsupportedFileTypeError
from docuquery.db.repositories import DocumentRepository
from docuquery.models.documents import Document
from docuquery.processing.extractor import is_supported_file_type
from docuquery.services.usage import UsageTracker
from docuquery.storage.s3 import ObjectStorage, build_key, content_type_for, sanitize_file_name

logger = logging.getLogger(__name__)

# Magic byte signatures, checked against the start of the file content.
# DOCX and XLSX are both ZIP containers.
_MAGIC_BYTES: dict[str, bytes] = {
    "pdf":  b"%PDF",
    "docx": b"PK\x03\x04",
    "xlsx": b"PK\x03\x04",
}


def file_type_from_name(file_name: str) -> str:
    """Lowercased extension without the dot ("" when there is none)."""
    parts = file_name.rsplit(".", 1)
    return parts[-1].lower() if len(parts) == 2 else ""


def validate_upload(file_name: str, data: bytes) -> str:
    """
    Return the file type for a valid upload.

    Raises:
        UnsupportedFileTypeError: extension not supported, or content does
            not match it.
        HTTPException: 400 empty file, 413 too large.
    """
    file_type = file_type_from_name(file_name)
    if not is_supported_file_type(file_type):
        raise UnsupportedFileTypeError(file_type or file_name)

    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty")
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds the {settings.max_upload_bytes // (1024 * 1024)} MB limit",
        )

    if not data.startswith(_MAGIC_BYTES[file_type]):
        raise UnsupportedFileTypeError(f"{file_type} (content does not match extension)")
    return file_type


class IngestionService:

    def __init__(
        self,
        documents:      DocumentRepository,
        storage:        ObjectStorage,
        usage:          UsageTracker,
        task_publisher: "TaskPublisher",
    ) -> None:
        self._documents = documents
        self._storage   = storage
        self._usage     = usage
        self._publisher = task_publisher

    async def ingest(self, user_id: str, file: UploadFile) -> Document:
        if file is None or not file.filename:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file provided")

        data = await file.read()
        file_name = sanitize_file_name(file.filename)
        file_type = validate_upload(file_name, data)

        document_id = uuid.uuid4()
        key = build_key(user_id, document_id, file_name)
        await self._storage.put_bytes(key, data, content_type_for(file_name, file_type))

        doc = await self._documents.create(
            user_id=user_id,
            file_name=file_name,
            file_type=file_type,
            file_size=len(data),
            storage_key=key,
            document_id=document_id,
        )

        try:
            await self._publisher.publish_processing(doc.id)
        except Exception as exc:
            logger.error("Task publish failed, left for stale scanner | doc=%s error=%s", doc.id, exc)

        await self._usage.track(user_id, "upload", document_id=doc.id, fileSize=len(data), fileType=file_type)
        logger.info("Upload ok | doc=%s user=%s type=%s size=%d", doc.id, user_id, file_type, len(data))
        return doc


# ---------------------------------------------------------------------------
# Task publisher: thin abstraction over Celery apply_async()
# Injected into the upload and process endpoints so it can be mocked in tests.
# ---------------------------------------------------------------------------

class TaskPublisher:
    """
    Sends processing tasks to the Celery broker.
    Import is deferred so the broker connection is not required at module load time.
    """

    async def publish_processing(self, document_id: object) -> None:
        from docuquery.workers.tasks import process_document

        await asyncio.to_thread(
            process_document.apply_async,
            kwargs={"document_id": str(document_id)},
            countdown=1,
        )
        logger.info("Processing task published | doc=%s", document_id)
