"""
Fixed-Window Chunker
════════════════════

Splits extracted text into overlapping, fixed-size character windows.

  text:    |-------------------------------------------|
  chunk 0: |==========|
  chunk 1:        |==========|            stride = size - overlap
  chunk 2:               |==========|
  chunk 3:                      |=======|  (trailing remainder kept)

Guarantees:
  - Deterministic: identical text + parameters → identical boundaries, so a
    re-index after a retry upserts the same vector ids instead of creating
    near-duplicate fragments.
  - No empty chunks; trailing content shorter than one window is kept.
  - Lossless: chunks[0] + chunk[overlap:] for every later chunk == text.
  - Restartable: iter_chunks(text, start_index=n) resumes at chunk n.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Iterator

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE    = 1000
DEFAULT_CHUNK_OVERLAP = 200


@dataclass(frozen=True)
class ChunkResult:
    """
    One window of document text.

    start_offset / end_offset are character offsets into the source text
    (end exclusive), so text == source[start_offset:end_offset].
    """
    document_id:  str
    chunk_index:  int
    text:         str
    start_offset: int
    end_offset:   int

    @property
    def chunk_id(self) -> str:
        """Deterministic vector id: "<document_id>#<sha256(document_id:chunk_index)[:32]>"."""
        digest = hashlib.sha256(f"{self.document_id}:{self.chunk_index}".encode()).hexdigest()
        return f"{self.document_id}#{digest[:32]}"

    @property
    def char_count(self) -> int:
        return len(self.text)


class TextChunker:
    """
    Stateless fixed-window chunker.

    Usage:
        chunker = TextChunker(chunk_size=1000, chunk_overlap=200)
        chunks  = chunker.chunk(text, document_id=str(doc.id))
    """

    def __init__(
        self,
        chunk_size:    int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError(
                f"chunk_overlap must be in [0, chunk_size), got {chunk_overlap} "
                f"for chunk_size={chunk_size}"
            )
        self.chunk_size    = chunk_size
        self.chunk_overlap = chunk_overlap

    @property
    def stride(self) -> int:
        return self.chunk_size - self.chunk_overlap

    def iter_chunks(
        self,
        text:        str,
        document_id: str = "",
        start_index: int = 0,
    ) -> Iterator[ChunkResult]:
        """Yield chunks lazily, beginning at chunk number `start_index`."""
        length = len(text)
        index  = start_index
        start  = index * self.stride

        while start < length:
            end = min(start + self.chunk_size, length)
            yield ChunkResult(
                document_id=document_id,
                chunk_index=index,
                text=text[start:end],
                start_offset=start,
                end_offset=end,
            )
            if end == length:
                return
            index += 1
            start += self.stride

    def chunk(self, text: str, document_id: str = "") -> list[ChunkResult]:
        """Return every chunk of `text` in order (empty list for empty text)."""
        if not text.strip():
            logger.warning("TextChunker: empty text for doc=%s", document_id or "?")
            return []
        chunks = list(self.iter_chunks(text, document_id=document_id))
        logger.debug(
            "TextChunker | doc=%s chars=%d chunks=%d size=%d overlap=%d",
            document_id or "?", len(text), len(chunks),
            self.chunk_size, self.chunk_overlap,
        )
        return chunks


def reconstruct(chunks: list[ChunkResult], chunk_overlap: int) -> str:
    """Inverse of TextChunker.chunk for a complete, ordered chunk list."""
    if not chunks:
        return ""
    return chunks[0].text + "".join(c.text[chunk_overlap:] for c in chunks[1:])
