"""
Document Processing Package
════════════════════════════

The text-producing half of the ingestion pipeline:

  Text Extraction → Chunking → Embedding

Modules
───────
  extractor.py   PDF / DOCX / XLSX → plain text + document metadata
  chunking.py    Fixed-size overlapping character windows
  embeddings.py  Batched, cached embedding client

Vector upsert and status bookkeeping live in services.processing.
"""

from docuquery.processing.chunking import ChunkResult, TextChunker
from docuquery.processing.embeddings import Embedder, EmbeddingClient
from docuquery.processing.extractor import ExtractionResult, extract

__all__ = [
    "ChunkResult",
    "Embedder",
    "EmbeddingClient",
    "ExtractionResult",
    "TextChunker",
    "extract",
]
