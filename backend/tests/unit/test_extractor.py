"""
Unit Tests — Text Extraction
════════════════════════════
Real PDF / DOCX / XLSX bytes built in conftest.py are run through the
dispatcher; corrupt and unsupported inputs must raise typed errors.
"""

from __future__ import annotations

import pytest

from docuquery.core.exceptions import ExtractionError, UnsupportedFileTypeError
from docuquery.processing.extractor import (
    count_paragraphs,
    count_words,
    extract,
    is_supported_file_type,
)
from tests.conftest import make_pdf


@pytest.mark.unit
class TestPdfExtraction:

    def test_page_text_and_count(self, q3_report_pdf):
        result = extract(q3_report_pdf, "pdf")

        assert result.file_type == "pdf"
        assert "Q3 revenue grew 12%" in result.text
        assert result.metadata["pageCount"] == 5
        assert result.metadata["wordCount"] == count_words(result.text)

    def test_document_info_is_mapped(self, q3_report_pdf):
        meta = extract(q3_report_pdf, "pdf").document_metadata()

        assert meta["pdfMetadata"]["title"] == "Annual Report"
        assert meta["pdfMetadata"]["author"] == "Finance Team"
        assert meta["pdfMetadata"]["creationDate"].startswith("2024-03-15T12:00:00")

    def test_pdf_without_info_has_empty_pdf_metadata(self):
        result = extract(make_pdf(["Only page"]), "PDF")
        assert result.metadata["pdfMetadata"] == {}
        assert result.metadata["pageCount"] == 1

    def test_corrupt_pdf_raises_extraction_error(self, corrupt_pdf_bytes):
        with pytest.raises(ExtractionError, match="Failed to process PDF"):
            extract(corrupt_pdf_bytes, "pdf")

    def test_empty_bytes_raise(self):
        with pytest.raises(ExtractionError, match="file is empty"):
            extract(b"", "pdf")


@pytest.mark.unit
class TestDocxExtraction:

    def test_text_counts_and_html(self, sample_docx_bytes):
        result = extract(sample_docx_bytes, "docx")

        assert "Acme Corp will deliver" in result.text
        assert result.metadata["paragraphCount"] == 3      # heading + 2 paragraphs
        assert result.metadata["wordCount"] == count_words(result.text)
        assert result.html.startswith("<h1>Project Proposal</h1>")
        assert "<p>Acme Corp will deliver the first milestone in Berlin.</p>" in result.html

    def test_html_is_persisted_in_document_metadata(self, sample_docx_bytes):
        meta = extract(sample_docx_bytes, "docx").document_metadata()
        assert "html" in meta

    def test_not_a_zip_raises(self):
        with pytest.raises(ExtractionError, match="Failed to process DOCX"):
            extract(b"PK\x03\x04 definitely not a docx", "docx")


@pytest.mark.unit
class TestXlsxExtraction:

    def test_sheet_text_block(self, sample_xlsx_bytes):
        result = extract(sample_xlsx_bytes, "xlsx")

        assert "Sheet: Sales" in result.text
        assert "Headers: Region, Quarter, Revenue" in result.text
        assert "Row 1: EMEA | Q3 | 120" in result.text
        assert "Row 2: APAC | Q3 | 95" in result.text

    def test_metadata_counts_all_sheets_but_tables_skip_empty(self, sample_xlsx_bytes):
        result = extract(sample_xlsx_bytes, "xlsx")

        assert result.metadata == {"sheetCount": 2, "totalRows": 2, "totalColumns": 3}
        assert [t.sheet_name for t in result.tables] == ["Sales"]
        assert result.tables[0].headers == ["Region", "Quarter", "Revenue"]
        assert result.tables[0].row_count == 2

    def test_tables_are_json_serialisable_metadata(self, sample_xlsx_bytes):
        import json

        meta = extract(sample_xlsx_bytes, "xlsx").document_metadata()
        assert json.loads(json.dumps(meta))["tables"][0]["sheet_name"] == "Sales"

    def test_corrupt_xlsx_raises(self):
        with pytest.raises(ExtractionError, match="Failed to process Excel file"):
            extract(b"PK\x03\x04 broken", "xlsx")


@pytest.mark.unit
class TestDispatcher:

    @pytest.mark.parametrize("file_type", ["txt", "doc", "png", ""])
    def test_unsupported_types_raise(self, file_type):
        assert not is_supported_file_type(file_type)
        with pytest.raises(UnsupportedFileTypeError):
            extract(b"anything", file_type)

    def test_unsupported_is_an_extraction_error(self):
        assert issubclass(UnsupportedFileTypeError, ExtractionError)

    def test_paragraph_counting_ignores_blank_runs(self):
        assert count_paragraphs("a\n\n\n\nb\n \nc") == 3
        assert count_paragraphs("   ") == 0
