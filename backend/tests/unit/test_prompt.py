"""Unit Tests — context selection and system prompt assembly."""

from __future__ import annotations

import pytest

from docuquery.rag.prompt import (
    CONTEXT_TOO_LARGE_TEMPLATE,
    NO_CONTEXT_TEMPLATE,
    SEPARATOR,
    build_context,
    build_system_prompt,
    format_chunk,
    select_context,
)
from docuquery.vectorstore.base import QueryResult


def _result(index: int, text: str, score: float = 0.8) -> QueryResult:
    return QueryResult(
        id=f"c{index}",
        score=score,
        metadata={"document_id": "d1", "chunk_index": index, "text": text, "file_name": "report.pdf"},
    )


@pytest.mark.unit
class TestPrompt:

    def test_format_chunk_labels_source(self):
        block = format_chunk(2, _result(7, "Q3 revenue grew 12%", 0.912))
        assert block == "[Source 2] (report.pdf, chunk 7, score 0.91)\nQ3 revenue grew 12%"

    def test_select_context_keeps_ranked_prefix_within_budget(self):
        results = [_result(i, "x" * 100) for i in range(5)]
        one = len(format_chunk(1, results[0]))
        budget = one * 2 + len(SEPARATOR) + 10

        selected = select_context(results, budget)

        assert [r.chunk_index for r in selected] == [0, 1]
        assert len(build_context(selected)) <= budget

    def test_chunk_is_never_truncated(self):
        assert select_context([_result(0, "y" * 500)], 100) == []

    def test_no_context_prompt(self):
        assert build_system_prompt([]) == NO_CONTEXT_TEMPLATE
        assert "No grounding context" in NO_CONTEXT_TEMPLATE

    def test_oversized_chunks_get_their_own_prompt(self):
        results = [_result(0, "y" * 500), _result(1, "z" * 500)]
        selected = select_context(results, 100)

        prompt = build_system_prompt(selected, retrieved=len(results))

        assert prompt == CONTEXT_TOO_LARGE_TEMPLATE
        assert prompt != NO_CONTEXT_TEMPLATE
        assert "could not be included" in prompt

    def test_system_prompt_embeds_context(self):
        prompt = build_system_prompt([_result(0, "alpha"), _result(1, "beta")])
        assert "[Source 1]" in prompt and "[Source 2]" in prompt
        assert prompt.index("alpha") < prompt.index("beta")
