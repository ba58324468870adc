"""
Document Analyzer — summary, named entities, sentiment.

Each analysis sends the document's text (capped at settings.context_max_chars)
through the same LLM fallback chain used for queries and caches the result
for a day under summary:<doc>, entities:<doc>, sentiment:<doc>. The
coordinator invalidates these entries whenever the document is reprocessed.

Document text comes from the doc:<doc> cache entry written at processing
time; on a miss it is re-extracted from object storage.

Entity and sentiment answers are requested as JSON. A malformed answer
degrades to an empty entity list / "neutral" rather than failing.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from docuquery.cache.redis_cache import CacheCategory, ResultCache
from docuquery.core.config import settings
from docuquery.core.exceptions import DocumentNotFoundError, DocumentNotReadyError
from docuquery.db.repositories import DocumentRepository
from docuquery.llm.fallback import FallbackChain
from docuquery.processing.extractor import extract
from docuquery.services.usage import UsageTracker
from docuquery.storage.s3 import ObjectStorage

logger = logging.getLogger(__name__)


class AnalysisKind(str, Enum):
    SUMMARY   = "summary"
    ENTITIES  = "entities"
    SENTIMENT = "sentiment"


_CATEGORIES = {
    AnalysisKind.SUMMARY:   CacheCategory.SUMMARY,
    AnalysisKind.ENTITIES:  CacheCategory.ENTITIES,
    AnalysisKind.SENTIMENT: CacheCategory.SENTIMENT,
}

SENTIMENT_LABELS = ("positive", "negative", "neutral", "mixed")

_INSTRUCTIONS = {
    AnalysisKind.SUMMARY: (
        "Summarize the document above in 3 to 5 sentences. "
        "Focus on its purpose, key facts and figures."
    ),
    AnalysisKind.ENTITIES: (
        "List the named entities in the document above (people, organizations, "
        "locations, dates, monetary amounts). Respond with ONLY a JSON array of "
        'objects: [{"name": "...", "type": "person|organization|location|date|money|other"}].'
    ),
    AnalysisKind.SENTIMENT: (
        "Classify the overall sentiment of the document above. Respond with ONLY a "
        'JSON object: {"sentiment": "positive|negative|neutral|mixed", '
        '"confidence": <0..1>, "explanation": "..."}.'
    ),
}

_JSON_BLOCK = re.compile(r"(\[.*\]|\{.*\})", re.DOTALL)


@dataclass
class AnalysisResult:
    document_id: str
    kind:        str
    result:      Any
    model:       str = ""
    cached:      bool = False

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _load_json(text: str) -> Any:
    match = _JSON_BLOCK.search(text or "")
    if not match:
        return None
    try:
        return json.loads(match.group(1))
    except ValueError:
        return None


def parse_entities(text: str) -> list[dict]:
    data = _load_json(text)
    if isinstance(data, dict):
        data = data.get("entities")
    if not isinstance(data, list):
        return []
    entities = []
    for item in data:
        if isinstance(item, dict) and item.get("name"):
            entities.append({"name": str(item["name"]), "type": str(item.get("type", "other"))})
    return entities


def parse_sentiment(text: str) -> dict:
    data = _load_json(text)
    label = data.get("sentiment") if isinstance(data, dict) else None
    if not isinstance(label, str) or label.lower() not in SENTIMENT_LABELS:
        return {"sentiment": "neutral"}
    parsed: dict[str, Any] = {"sentiment": label.lower()}
    if isinstance(data.get("confidence"), (int, float)):
        parsed["confidence"] = float(data["confidence"])
    if isinstance(data.get("explanation"), str):
        parsed["explanation"] = data["explanation"]
    return parsed


class DocumentAnalyzer:

    def __init__(
        self,
        chain:     FallbackChain,
        documents: DocumentRepository,
        storage:   ObjectStorage,
        usage:     UsageTracker,
        cache:     ResultCache | None = None,
        max_chars: int | None = None,
    ) -> None:
        self._chain     = chain
        self._documents = documents
        self._storage   = storage
        self._usage     = usage
        self._cache     = cache or ResultCache(client=None)
        self._max_chars = max_chars or settings.context_max_chars

    async def analyze(self, user_id: str, document_id: str, kind: str | AnalysisKind) -> AnalysisResult:
        """
        Raises:
            DocumentNotFoundError, DocumentNotReadyError, QueryError
            ValueError: unknown analysis kind
        """
        kind = AnalysisKind(kind)
        document_id = str(document_id)
        category = _CATEGORIES[kind]

        doc = await self._documents.get(document_id, user_id=user_id)
        if doc is None:
            raise DocumentNotFoundError(document_id)
        if doc.status != "completed":
            raise DocumentNotReadyError(document_id, doc.status)

        cached = await self._cache.get_category(category, document_id)
        if cached is not None:
            return AnalysisResult(document_id, kind.value, cached["result"], cached.get("model", ""), cached=True)

        text = (await self._document_text(doc))[: self._max_chars]
        outcome = await self._chain.complete(_INSTRUCTIONS[kind], f"Document:\n{text}")
        raw = outcome.completion.text

        if kind == AnalysisKind.SUMMARY:
            result: Any = raw.strip()
        elif kind == AnalysisKind.ENTITIES:
            result = parse_entities(raw)
        else:
            result = parse_sentiment(raw)

        await self._cache.set_category(category, {"result": result, "model": outcome.model}, document_id)
        await self._usage.track(
            user_id,
            "analysis",
            document_id=document_id,
            model=outcome.model,
            input_tokens=outcome.completion.tokens_in,
            output_tokens=outcome.completion.tokens_out,
            analysis=kind.value,
        )
        logger.info("Analysis | doc=%s kind=%s provider=%s", document_id, kind.value, outcome.provider)
        return AnalysisResult(document_id, kind.value, result, outcome.model)

    async def _document_text(self, doc) -> str:
        document_id = str(doc.id)
        cached = await self._cache.get_category(CacheCategory.DOCUMENT, document_id)
        if cached is not None:
            return cached.get("text", "")
        data   = await self._storage.get_bytes(doc.storage_key)
        result = await asyncio.to_thread(extract, data, doc.file_type)
        await self._cache.set_category(CacheCategory.DOCUMENT, {"text": result.text}, document_id)
        return result.text

    async def invalidate_document(self, document_id: str) -> int:
        return await self._cache.invalidate_document(document_id)
