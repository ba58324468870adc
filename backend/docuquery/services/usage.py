"""
Usage Tracker — Per-User Cost Ledger

Every billable action (upload, query, process, analysis) appends one
UsageRecord carrying an integer-cents cost and the raw usage numbers.

Pricing (USD per 1 000 tokens) comes from PROVIDER_SPECS; the model
identifier is mapped to its provider (gpt-* → openai, anthropic.* →
anthropic, gemini-* → gemini). Unknown models cost nothing for the LLM
component.

    llm_cents       = round((in/1000 · price_in + out/1000 · price_out) · 100)
    embedding_cents = round(embedding_tokens/1000 · 0.0001 · 100)
    cost_cents      = llm_cents + embedding_cents

Failure policy:
  track() never raises. A ledger write failure is logged and swallowed so
  it can never abort the operation it is attached to. Read helpers log and
  return zero / empty values on failure.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from docuquery.db.repositories import UsageRepository
from docuquery.llm.providers import PROVIDER_SPECS, provider_for_model

logger = logging.getLogger(__name__)

EMBEDDING_COST_PER_1K = 0.0001


def llm_cost_cents(model: str | None, input_tokens: int, output_tokens: int) -> int:
    provider = provider_for_model(model)
    spec = PROVIDER_SPECS.get(provider) if provider else None
    if spec is None or not (input_tokens or output_tokens):
        return 0
    usd = (input_tokens / 1000) * spec.cost_input_per_1k + (output_tokens / 1000) * spec.cost_output_per_1k
    return round(usd * 100)


def embedding_cost_cents(embedding_tokens: int) -> int:
    if not embedding_tokens:
        return 0
    return round((embedding_tokens / 1000) * EMBEDDING_COST_PER_1K * 100)


@dataclass
class CostLine:
    key:   str
    cost:  int = 0
    count: int = 0


@dataclass
class UsageStats:
    total_cost:     int = 0
    total_actions:  int = 0
    cost_by_action: list[CostLine] = field(default_factory=list)
    cost_by_model:  list[CostLine] = field(default_factory=list)


def _group(records, key_fn) -> list[CostLine]:
    lines: dict[str, CostLine] = defaultdict(lambda: CostLine(key=""))
    for rec in records:
        key = key_fn(rec)
        if key is None:
            continue
        line = lines[key]
        line.key    = key
        line.cost  += rec.cost_cents
        line.count += 1
    return sorted(lines.values(), key=lambda line: line.key)


class UsageTracker:

    def __init__(self, repository: UsageRepository) -> None:
        self._repo = repository

    async def track(
        self,
        user_id:          str,
        action:           str,
        document_id:      Any = None,
        model:            str | None = None,
        input_tokens:     int = 0,
        output_tokens:    int = 0,
        embedding_tokens: int = 0,
        **extra:          Any,
    ) -> int | None:
        """Append a ledger entry. Returns its cost in cents, or None if the write failed."""
        try:
            cost = llm_cost_cents(model, input_tokens, output_tokens) + embedding_cost_cents(embedding_tokens)
            metadata: dict[str, Any] = {**extra}
            if model:
                metadata["model"] = model
            if input_tokens or output_tokens:
                metadata["inputTokens"]  = input_tokens
                metadata["outputTokens"] = output_tokens
            if embedding_tokens:
                metadata["embeddingTokens"] = embedding_tokens

            await self._repo.insert(
                user_id=user_id,
                action=action,
                cost_cents=cost,
                document_id=document_id,
                metadata=metadata,
            )
            logger.debug("Usage | user=%s action=%s cost_cents=%d", user_id, action, cost)
            return cost
        except Exception as exc:
            logger.error("Usage tracking failed | user=%s action=%s error=%s", user_id, action, exc)
            return None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def _records(self, user_id: str, start: datetime | None, end: datetime | None):
        return await self._repo.list_for_user(user_id, start, end)

    async def total_cost(self, user_id: str, start: datetime | None = None, end: datetime | None = None) -> int:
        try:
            return sum(r.cost_cents for r in await self._records(user_id, start, end))
        except Exception as exc:
            logger.error("Usage total_cost failed | user=%s error=%s", user_id, exc)
            return 0

    async def cost_breakdown(
        self,
        user_id: str,
        start:   datetime | None = None,
        end:     datetime | None = None,
    ) -> list[CostLine]:
        try:
            return _group(await self._records(user_id, start, end), lambda r: r.action)
        except Exception as exc:
            logger.error("Usage cost_breakdown failed | user=%s error=%s", user_id, exc)
            return []

    async def usage_stats(
        self,
        user_id: str,
        start:   datetime | None = None,
        end:     datetime | None = None,
    ) -> UsageStats:
        try:
            records = await self._records(user_id, start, end)
        except Exception as exc:
            logger.error("Usage stats failed | user=%s error=%s", user_id, exc)
            return UsageStats()
        return UsageStats(
            total_cost=sum(r.cost_cents for r in records),
            total_actions=len(records),
            cost_by_action=_group(records, lambda r: r.action),
            cost_by_model=_group(records, lambda r: (r.usage_metadata or {}).get("model")),
        )

    async def document_cost(self, user_id: str, document_id: Any) -> int:
        try:
            return await self._repo.document_cost(user_id, document_id)
        except Exception as exc:
            logger.error("Usage document_cost failed | doc=%s error=%s", document_id, exc)
            return 0
