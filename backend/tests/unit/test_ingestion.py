"""
Unit Tests — IngestionService / validate_upload
════════════════════════════════════════════════
Coverage targets:
  ✅ valid upload: stored under the owner key, row created, task published, usage tracked
  ✅ unsupported extension / content mismatch → UnsupportedFileTypeError
  ✅ empty file → 400, oversized file → 413
  ✅ broker failure does not fail the upload
  ✅ path components stripped from the file name
"""

from __future__ import annotations

import io

import pytest
from fastapi import HTTPException, UploadFile

from docuquery.core.config import settings
from docuquery.core.exceptions import UnsupportedFileTypeError
from docuquery.services.ingestion import IngestionService, file_type_from_name, validate_upload
from tests.conftest import TEST_USER_ID


def upload(data: bytes, filename: str) -> UploadFile:
    return UploadFile(file=io.BytesIO(data), filename=filename)


@pytest.fixture
def ingestion(documents, storage, usage, mock_publisher):
    return IngestionService(documents, storage, usage, mock_publisher)


@pytest.mark.unit
class TestValidateUpload:

    @pytest.mark.parametrize("name,expected", [
        ("report.PDF", "pdf"),
        ("a.b.docx", "docx"),
        ("noextension", ""),
    ])
    def test_file_type_from_name(self, name, expected):
        assert file_type_from_name(name) == expected

    def test_valid_pdf(self, q3_report_pdf):
        assert validate_upload("report.pdf", q3_report_pdf) == "pdf"

    def test_valid_office_files(self, sample_docx_bytes, sample_xlsx_bytes):
        assert validate_upload("proposal.docx", sample_docx_bytes) == "docx"
        assert validate_upload("sales.xlsx", sample_xlsx_bytes) == "xlsx"

    @pytest.mark.parametrize("name", ["notes.txt", "legacy.doc", "slides.pptx", "README"])
    def test_unsupported_extension(self, name):
        with pytest.raises(UnsupportedFileTypeError):
            validate_upload(name, b"%PDF-1.4 whatever")

    def test_content_must_match_extension(self, q3_report_pdf):
        with pytest.raises(UnsupportedFileTypeError):
            validate_upload("report.docx", q3_report_pdf)

    def test_empty_file(self):
        with pytest.raises(HTTPException) as exc_info:
            validate_upload("report.pdf", b"")
        assert exc_info.value.status_code == 400

    def test_too_large(self, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 16)
        with pytest.raises(HTTPException) as exc_info:
            validate_upload("report.pdf", b"%PDF" + b"0" * 32)
        assert exc_info.value.status_code == 413


@pytest.mark.unit
class TestIngest:

    async def test_successful_upload(self, ingestion, storage, usage_repo, mock_publisher, q3_report_pdf):
        doc = await ingestion.ingest(TEST_USER_ID, upload(q3_report_pdf, "report.pdf"))

        assert doc.status == "uploaded"
        assert doc.file_type == "pdf"
        assert doc.file_size == len(q3_report_pdf)
        assert doc.storage_key == f"users/{TEST_USER_ID}/documents/{doc.id}/report.pdf"
        assert storage.objects[doc.storage_key] == q3_report_pdf
        mock_publisher.publish_processing.assert_awaited_once_with(doc.id)

        [record] = usage_repo.records
        assert record.action == "upload"
        assert record.document_id == doc.id
        assert record.usage_metadata == {"fileSize": len(q3_report_pdf), "fileType": "pdf"}

    async def test_rejected_upload_stores_nothing(self, ingestion, storage, documents, mock_publisher):
        with pytest.raises(UnsupportedFileTypeError):
            await ingestion.ingest(TEST_USER_ID, upload(b"plain text", "notes.txt"))

        assert storage.objects == {}
        assert documents.rows == {}
        mock_publisher.publish_processing.assert_not_awaited()

    async def test_broker_failure_keeps_the_upload(self, ingestion, documents, mock_publisher, q3_report_pdf):
        mock_publisher.publish_processing.side_effect = ConnectionError("broker unreachable")

        doc = await ingestion.ingest(TEST_USER_ID, upload(q3_report_pdf, "report.pdf"))

        assert documents.rows[doc.id].status == "uploaded"

    async def test_path_components_are_stripped(self, ingestion, q3_report_pdf):
        doc = await ingestion.ingest(TEST_USER_ID, upload(q3_report_pdf, "../../etc/Q3 report.pdf"))

        assert doc.file_name == "Q3_report.pdf"
        assert doc.storage_key.endswith(f"/{doc.id}/Q3_report.pdf")
        assert ".." not in doc.storage_key

    async def test_missing_filename(self, ingestion):
        with pytest.raises(HTTPException) as exc_info:
            await ingestion.ingest(TEST_USER_ID, upload(b"%PDF", ""))
        assert exc_info.value.status_code == 400
