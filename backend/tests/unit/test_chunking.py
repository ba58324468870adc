"""
Unit Tests — TextChunker
════════════════════════
Boundary arithmetic, determinism and the lossless reconstruction property.
"""

from __future__ import annotations

import pytest

from docuquery.processing.chunking import ChunkResult, TextChunker, reconstruct


@pytest.mark.unit
class TestChunkBoundaries:

    def test_short_text_is_one_chunk(self):
        chunks = TextChunker(1000, 200).chunk("hello world", document_id="d1")

        assert len(chunks) == 1
        assert chunks[0].text == "hello world"
        assert (chunks[0].start_offset, chunks[0].end_offset) == (0, 11)

    def test_stride_and_overlap(self):
        text = "".join(chr(ord("a") + i % 26) for i in range(2500))
        chunks = TextChunker(1000, 200).chunk(text, document_id="d1")

        assert [c.start_offset for c in chunks] == [0, 800, 1600]
        assert [c.end_offset for c in chunks] == [1000, 1800, 2500]
        assert chunks[1].text[:200] == chunks[0].text[-200:]
        assert [c.chunk_index for c in chunks] == [0, 1, 2]

    def test_offsets_slice_the_source(self):
        text = "The quick brown fox jumps over the lazy dog. " * 40
        for chunk in TextChunker(100, 30).chunk(text):
            assert text[chunk.start_offset:chunk.end_offset] == chunk.text

    def test_no_empty_chunks_when_length_is_exact_multiple(self):
        text = "x" * 1800
        chunks = TextChunker(1000, 200).chunk(text)

        assert len(chunks) == 2
        assert all(c.text for c in chunks)

    @pytest.mark.parametrize("text", ["", "   ", "\n\n\t"])
    def test_blank_text_yields_nothing(self, text):
        assert TextChunker().chunk(text) == []


@pytest.mark.unit
class TestChunkProperties:

    def test_reconstruct_is_lossless(self):
        text = "Lorem ipsum dolor sit amet, consectetur adipiscing elit. " * 77
        chunker = TextChunker(300, 50)
        assert reconstruct(chunker.chunk(text), 50) == text

    def test_deterministic_ids(self):
        text = "abc " * 600
        first  = TextChunker(500, 100).chunk(text, document_id="doc-1")
        second = TextChunker(500, 100).chunk(text, document_id="doc-1")

        assert [c.chunk_id for c in first] == [c.chunk_id for c in second]
        assert len({c.chunk_id for c in first}) == len(first)

    def test_chunk_id_depends_on_document(self):
        a = ChunkResult("doc-a", 0, "t", 0, 1)
        b = ChunkResult("doc-b", 0, "t", 0, 1)
        assert a.chunk_id != b.chunk_id
        assert a.chunk_id.startswith("doc-a#")
        assert len(a.chunk_id) == len("doc-a#") + 32

    def test_iter_chunks_resumes_at_index(self):
        text = "y" * 3000
        chunker = TextChunker(1000, 200)
        full    = chunker.chunk(text)
        resumed = list(chunker.iter_chunks(text, start_index=2))

        assert resumed == full[2:]


@pytest.mark.unit
class TestChunkerValidation:

    @pytest.mark.parametrize("size, overlap", [(0, 0), (-5, 0), (100, 100), (100, 150), (100, -1)])
    def test_invalid_parameters(self, size, overlap):
        with pytest.raises(ValueError):
            TextChunker(size, overlap)
