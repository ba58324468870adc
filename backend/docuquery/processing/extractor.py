"""
Text Extraction
═══════════════

Converts a raw upload into plain text plus structural metadata.

  pdf   → pypdf           page text, page count, document info
  docx  → python-docx     plain text, HTML rendering, word/paragraph counts
  xlsx  → pandas/openpyxl one text block per sheet + structured tables

Every extractor raises ExtractionError (carrying the parser's own message)
on a corrupt or empty buffer. There are no retries at this layer; a failed
extraction is terminal for the current processing run.
"""

from __future__ import annotations

import html
import io
import logging
import re
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from docuquery.core.exceptions import ExtractionError, UnsupportedFileTypeError

logger = logging.getLogger(__name__)

SUPPORTED_FILE_TYPES: frozenset[str] = frozenset({"pdf", "docx", "xlsx"})

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
_PDF_DATE_RE = re.compile(
    r"^D:(\d{4})(\d{2})?(\d{2})?(\d{2})?(\d{2})?(\d{2})?"
)


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ExcelTable:
    """One non-empty worksheet, header row split from data rows."""
    sheet_name:   str
    headers:      list[str]
    rows:         list[list[str | None]]
    row_count:    int
    column_count: int


@dataclass
class ExtractionResult:
    """
    Unified extraction output.

    text      : plain text used for chunking
    file_type : "pdf" | "docx" | "xlsx"
    metadata  : structural metadata persisted on the Document row
    html      : DOCX-only HTML rendering for display
    tables    : XLSX-only structured sheets for tabular rendering
    """
    text:       str
    file_type:  str
    metadata:   dict[str, Any] = field(default_factory=dict)
    html:       str | None = None
    tables:     list[ExcelTable] = field(default_factory=list)
    elapsed_ms: float = 0.0

    def document_metadata(self) -> dict[str, Any]:
        """JSON-serialisable metadata for Document.doc_metadata."""
        meta = dict(self.metadata)
        if self.html is not None:
            meta["html"] = self.html
        if self.tables:
            meta["tables"] = [asdict(t) for t in self.tables]
        return meta


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def count_words(text: str) -> int:
    return len(text.split())


def count_paragraphs(text: str) -> int:
    return sum(1 for p in _PARAGRAPH_SPLIT_RE.split(text) if p.strip())


def _parse_pdf_date(value: Any) -> str | None:
    """Convert a PDF date string (D:YYYYMMDDHHmmSS...) to ISO-8601."""
    if not value:
        return None
    match = _PDF_DATE_RE.match(str(value))
    if not match:
        return None
    parts = [int(p) if p else d for p, d in zip(match.groups(), (0, 1, 1, 0, 0, 0))]
    try:
        return datetime(*parts, tzinfo=timezone.utc).isoformat()
    except ValueError:
        return None


def _require_bytes(data: bytes, label: str) -> None:
    if not data:
        raise ExtractionError(f"Failed to process {label}: file is empty")


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------

def extract_pdf(data: bytes) -> ExtractionResult:
    """Extract page text and document info from PDF bytes using pypdf."""
    from pypdf import PdfReader

    _require_bytes(data, "PDF")
    try:
        reader = PdfReader(io.BytesIO(data))
        pages  = [page.extract_text() or "" for page in reader.pages]
        info   = reader.metadata or {}
    except Exception as exc:
        raise ExtractionError(f"Failed to process PDF: {exc}") from exc

    pdf_info = {
        "title":            info.get("/Title"),
        "author":           info.get("/Author"),
        "subject":          info.get("/Subject"),
        "creator":          info.get("/Creator"),
        "producer":         info.get("/Producer"),
        "creationDate":     _parse_pdf_date(info.get("/CreationDate")),
        "modificationDate": _parse_pdf_date(info.get("/ModDate")),
    }
    text = "\n\n".join(p for p in pages if p.strip())

    return ExtractionResult(
        text=text,
        file_type="pdf",
        metadata={
            "pageCount":   len(pages),
            "wordCount":   count_words(text),
            "pdfMetadata": {k: str(v) for k, v in pdf_info.items() if v is not None},
        },
    )


# ---------------------------------------------------------------------------
# DOCX
# ---------------------------------------------------------------------------

def _paragraph_html(style_name: str, text: str) -> str:
    escaped = html.escape(text)
    if style_name.startswith("Heading"):
        level = style_name.rsplit(" ", 1)[-1]
        if level.isdigit() and 1 <= int(level) <= 6:
            return f"<h{level}>{escaped}</h{level}>"
    if style_name == "Title":
        return f"<h1>{escaped}</h1>"
    return f"<p>{escaped}</p>"


def extract_docx(data: bytes) -> ExtractionResult:
    """
    Extract DOCX text and an HTML rendering using python-docx.

    Paragraphs are separated by a blank line so that paragraph counting
    (split on blank lines) matches the document structure.
    """
    import docx

    _require_bytes(data, "DOCX")
    try:
        document = docx.Document(io.BytesIO(data))
        paragraphs = [
            (para.style.name if para.style is not None else "", para.text)
            for para in document.paragraphs
        ]
    except Exception as exc:
        raise ExtractionError(f"Failed to process DOCX: {exc}") from exc

    text = "\n\n".join(t for _, t in paragraphs if t.strip())
    rendered = "".join(_paragraph_html(style, t) for style, t in paragraphs if t.strip())

    return ExtractionResult(
        text=text,
        file_type="docx",
        html=rendered,
        metadata={
            "wordCount":      count_words(text),
            "paragraphCount": count_paragraphs(text),
        },
    )


# ---------------------------------------------------------------------------
# XLSX
# ---------------------------------------------------------------------------

def _cell(value: Any) -> str | None:
    import pandas as pd

    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    return str(value)


def extract_xlsx(data: bytes) -> ExtractionResult:
    """
    Flatten every non-empty sheet to text and keep the structured table.

    Text block per sheet::

        Sheet: <name>
        Headers: a, b, c
        Row 1: x | y | z
    """
    import pandas as pd

    _require_bytes(data, "Excel file")
    try:
        sheets = pd.read_excel(
            io.BytesIO(data),
            sheet_name=None,
            header=None,
            dtype=object,
            engine="openpyxl",
        )
    except Exception as exc:
        raise ExtractionError(f"Failed to process Excel file: {exc}") from exc

    tables: list[ExcelTable] = []
    total_rows    = 0
    total_columns = 0

    for sheet_name, frame in sheets.items():
        if frame.empty:
            continue
        values  = [[_cell(v) for v in row] for row in frame.itertuples(index=False, name=None)]
        headers = [cell or "" for cell in values[0]]
        rows    = values[1:]

        tables.append(ExcelTable(
            sheet_name=str(sheet_name),
            headers=headers,
            rows=rows,
            row_count=len(rows),
            column_count=len(headers),
        ))
        total_rows   += len(rows)
        total_columns = max(total_columns, len(headers))

    lines: list[str] = []
    for table in tables:
        lines.append(f"Sheet: {table.sheet_name}")
        lines.append(f"Headers: {', '.join(table.headers)}")
        for index, row in enumerate(table.rows, start=1):
            lines.append(f"Row {index}: " + " | ".join(cell or "" for cell in row))
        lines.append("")

    return ExtractionResult(
        text="\n".join(lines),
        file_type="xlsx",
        tables=tables,
        metadata={
            "sheetCount":   len(sheets),
            "totalRows":    total_rows,
            "totalColumns": total_columns,
        },
    )


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

_EXTRACTORS = {
    "pdf":  extract_pdf,
    "docx": extract_docx,
    "xlsx": extract_xlsx,
}


def is_supported_file_type(file_type: str) -> bool:
    return file_type.lower() in SUPPORTED_FILE_TYPES


def extract(data: bytes, file_type: str) -> ExtractionResult:
    """
    Extract text from `data` using the extractor for `file_type`.

    Raises:
        UnsupportedFileTypeError: file_type is not pdf/docx/xlsx.
        ExtractionError:          the parser rejected the bytes.
    """
    extractor = _EXTRACTORS.get(file_type.lower())
    if extractor is None:
        raise UnsupportedFileTypeError(file_type)

    t0 = time.monotonic()
    result = extractor(data)
    result.elapsed_ms = (time.monotonic() - t0) * 1000

    logger.info(
        "Extraction | type=%s chars=%d elapsed_ms=%.0f",
        result.file_type, len(result.text), result.elapsed_ms,
    )
    return result
