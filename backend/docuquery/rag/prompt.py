"""
Grounded prompt assembly.

Retrieved chunks are concatenated in ranked order into one context block
capped at a character budget (settings.context_max_chars). When the budget
would be exceeded, the lowest-ranked chunks are dropped; a chunk is never
cut mid-text. The chunks that make it into the block are exactly the
sources cited in the answer.

With no chunks at all, the model is still called, but is told explicitly
that no grounding context was found. When chunks were retrieved but even
the top-ranked one is larger than the budget, it is told instead that
matching content exists but could not be included.
"""

from __future__ import annotations

from typing import Final, Sequence

from docuquery.vectorstore.base import QueryResult

SYSTEM_TEMPLATE: Final[str] = """\
You are a document assistant. Answer the user's question using ONLY the
context excerpts below, which come from the user's uploaded documents.
Cite the excerpts you rely on by their [Source N] label.
If the answer is not in the context, say you don't have enough information.
Do not fabricate information.

Context:
{context}
"""

NO_CONTEXT_TEMPLATE: Final[str] = """\
You are a document assistant. No grounding context was found in the user's
documents for this question: none of the stored excerpts were relevant
enough. Tell the user that their documents do not appear to cover the
question, then give a brief best-effort answer from general knowledge,
clearly labelled as such.
"""

CONTEXT_TOO_LARGE_TEMPLATE: Final[str] = """\
You are a document assistant. Relevant excerpts were found in the user's
documents for this question, but none of them fit within the context size
limit, so they could not be included here. Tell the user that matching
content exists but could not be used for this answer, and suggest asking a
narrower question or querying a single document. Do not guess at what the
documents say.
"""

SEPARATOR: Final[str] = "\n\n---\n\n"


def format_chunk(rank: int, result: QueryResult) -> str:
    meta  = result.metadata
    label = meta.get("file_name") or meta.get("document_id", "document")
    return f"[Source {rank}] ({label}, chunk {result.chunk_index}, score {result.score:.2f})\n{result.text}"


def select_context(results: Sequence[QueryResult], max_chars: int) -> list[QueryResult]:
    """Longest ranked prefix of `results` whose formatted block fits `max_chars`."""
    selected: list[QueryResult] = []
    used = 0
    for result in results:
        block = format_chunk(len(selected) + 1, result)
        cost  = len(block) + (len(SEPARATOR) if selected else 0)
        if used + cost > max_chars:
            break
        selected.append(result)
        used += cost
    return selected


def build_context(results: Sequence[QueryResult]) -> str:
    return SEPARATOR.join(format_chunk(i, r) for i, r in enumerate(results, start=1))


def build_system_prompt(results: Sequence[QueryResult], retrieved: int = 0) -> str:
    """
    `results` are the chunks that fit the budget; `retrieved` is how many the
    index returned before the budget was applied.
    """
    if not results:
        return CONTEXT_TOO_LARGE_TEMPLATE if retrieved else NO_CONTEXT_TEMPLATE
    return SYSTEM_TEMPLATE.format(context=build_context(results))
