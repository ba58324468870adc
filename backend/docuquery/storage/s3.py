"""
S3 Object Storage — Owner-Prefixed Document Blobs

Key layout:
    s3://<BUCKET>/users/<user_id>/documents/<document_id>/<file_name>

The prefix is always built server-side by build_key(); the file name is
sanitized so a client-supplied name can never escape its document prefix.

Every call is bounded by connect/read timeouts (settings.s3_timeout_seconds)
and every botocore failure surfaces as StorageError.
"""

from __future__ import annotations

import logging
import mimetypes
import re
from typing import Any

import aioboto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from docuquery.core.config import settings
from docuquery.core.exceptions import StorageError

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "pdf":  "application/pdf",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_file_name(file_name: str) -> str:
    """Strip directory components and anything outside [A-Za-z0-9._-]."""
    base = file_name.replace("\\", "/").rsplit("/", 1)[-1]
    safe = _UNSAFE_CHARS.sub("_", base).strip("._")
    safe = safe.replace("..", "_")
    return safe or "file"


def build_key(user_id: object, document_id: object, file_name: str) -> str:
    return f"users/{user_id}/documents/{document_id}/{sanitize_file_name(file_name)}"


def content_type_for(file_name: str, file_type: str | None = None) -> str:
    if file_type and file_type in CONTENT_TYPES:
        return CONTENT_TYPES[file_type]
    return mimetypes.guess_type(file_name)[0] or "application/octet-stream"


class ObjectStorage:
    """
    Async S3 operations over one bucket.

    Safe to share across requests; each call opens its own short-lived
    client from the shared aioboto3 session.
    """

    def __init__(self, bucket: str | None = None, session: Any = None) -> None:
        self._bucket  = bucket or settings.s3_bucket
        self._session = session or aioboto3.Session(
            aws_access_key_id=settings.aws_access_key_id or None,
            aws_secret_access_key=settings.aws_secret_access_key or None,
        )
        self._config = Config(
            connect_timeout=settings.s3_timeout_seconds,
            read_timeout=settings.s3_timeout_seconds,
            retries={"max_attempts": 3, "mode": "standard"},
        )

    def _client(self):
        return self._session.client("s3", region_name=settings.aws_region, config=self._config)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def put_bytes(self, key: str, data: bytes, content_type: str) -> None:
        try:
            async with self._client() as s3:
                await s3.put_object(
                    Bucket=self._bucket,
                    Key=key,
                    Body=data,
                    ContentType=content_type,
                )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Failed to store {key}: {exc}") from exc
        logger.info("S3 upload ok | key=%s size=%d", key, len(data))

    async def get_bytes(self, key: str) -> bytes:
        try:
            async with self._client() as s3:
                resp = await s3.get_object(Bucket=self._bucket, Key=key)
                return await resp["Body"].read()
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                raise StorageError(f"Object not found: {key}") from exc
            raise StorageError(f"Failed to read {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Failed to read {key}: {exc}") from exc

    async def presigned_url(self, key: str, ttl_seconds: int | None = None) -> str:
        """Short-lived GET URL scoped to the exact object key."""
        expires_in = ttl_seconds or settings.s3_presign_ttl_seconds
        try:
            async with self._client() as s3:
                return await s3.generate_presigned_url(
                    "get_object",
                    Params={"Bucket": self._bucket, "Key": key},
                    ExpiresIn=expires_in,
                )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Failed to presign {key}: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            async with self._client() as s3:
                await s3.delete_object(Bucket=self._bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Failed to delete {key}: {exc}") from exc
        logger.warning("S3 delete | key=%s", key)
