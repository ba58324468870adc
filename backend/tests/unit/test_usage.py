"""
Unit Tests — UsageTracker
══════════════════════════
Coverage targets:
  ✅ cost formula: LLM pricing per provider + embedding pricing, integer cents
  ✅ unknown model → no LLM cost
  ✅ track() never raises when the ledger is down
  ✅ usage_stats grouping by action and by model
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from docuquery.services.usage import UsageTracker, embedding_cost_cents, llm_cost_cents
from tests.conftest import OTHER_USER_ID, TEST_USER_ID
from tests.fakes import FakeUsageRepository


@pytest.mark.unit
class TestCostFormula:

    @pytest.mark.parametrize("model,tokens_in,tokens_out,expected", [
        ("gpt-4o-mini",                 1000, 1000, 4),     # 0.01 + 0.03 USD
        ("anthropic.claude-3-5-sonnet", 10_000, 2000, 6),   # 0.03 + 0.03 USD
        ("gemini-1.5-flash",            10_000, 10_000, 2), # 0.005 + 0.015 USD
        ("gpt-4o-mini",                 0, 0, 0),
    ])
    def test_llm_cost(self, model, tokens_in, tokens_out, expected):
        assert llm_cost_cents(model, tokens_in, tokens_out) == expected

    def test_unknown_model_costs_nothing(self):
        assert llm_cost_cents("mistral-large", 1000, 1000) == 0
        assert llm_cost_cents(None, 1000, 1000) == 0

    def test_embedding_cost(self):
        assert embedding_cost_cents(0) == 0
        assert embedding_cost_cents(1000) == 0
        assert embedding_cost_cents(100_000) == 1


@pytest.mark.unit
class TestTrack:

    async def test_records_cost_and_metadata(self, usage, usage_repo):
        cost = await usage.track(
            TEST_USER_ID, "query",
            document_id="7d0a4c8e-3b1f-4c55-9d7e-2f0e6b1a9c33",
            model="gpt-4o-mini", input_tokens=1000, output_tokens=1000,
            embedding_tokens=100_000, provider="openai",
        )

        assert cost == 5
        [record] = usage_repo.records
        assert record.action == "query"
        assert record.cost_cents == 5
        assert record.usage_metadata == {
            "provider":        "openai",
            "model":           "gpt-4o-mini",
            "inputTokens":     1000,
            "outputTokens":    1000,
            "embeddingTokens": 100_000,
        }

    async def test_upload_has_zero_cost(self, usage, usage_repo):
        assert await usage.track(TEST_USER_ID, "upload", fileSize=1024, fileType="pdf") == 0
        assert usage_repo.records[0].usage_metadata == {"fileSize": 1024, "fileType": "pdf"}

    async def test_ledger_failure_is_swallowed(self):
        tracker = UsageTracker(FakeUsageRepository(fail=True))

        assert await tracker.track(TEST_USER_ID, "query", model="gpt-4o-mini", input_tokens=10) is None
        assert await tracker.total_cost(TEST_USER_ID) == 0
        assert await tracker.cost_breakdown(TEST_USER_ID) == []
        assert (await tracker.usage_stats(TEST_USER_ID)).total_actions == 0
        assert await tracker.document_cost(TEST_USER_ID, "doc") == 0


@pytest.mark.unit
class TestStats:

    async def test_grouping_by_action_and_model(self, usage):
        await usage.track(TEST_USER_ID, "upload")
        await usage.track(TEST_USER_ID, "query", model="gpt-4o-mini", input_tokens=1000, output_tokens=1000)
        await usage.track(TEST_USER_ID, "query", model="gemini-1.5-flash", input_tokens=10_000, output_tokens=10_000)
        await usage.track(TEST_USER_ID, "analysis", model="gpt-4o-mini", input_tokens=1000, output_tokens=1000)
        await usage.track(OTHER_USER_ID, "query", model="gpt-4o-mini", input_tokens=1000, output_tokens=1000)

        stats = await usage.usage_stats(TEST_USER_ID)

        assert stats.total_cost == 10
        assert stats.total_actions == 4
        by_action = {line.key: (line.cost, line.count) for line in stats.cost_by_action}
        assert by_action == {"analysis": (4, 1), "query": (6, 2), "upload": (0, 1)}
        by_model = {line.key: (line.cost, line.count) for line in stats.cost_by_model}
        assert by_model == {"gemini-1.5-flash": (2, 1), "gpt-4o-mini": (8, 2)}

    async def test_date_range(self, usage, usage_repo):
        await usage.track(TEST_USER_ID, "query", model="gpt-4o-mini", input_tokens=1000, output_tokens=1000)
        usage_repo.records[0].created_at -= timedelta(days=10)
        await usage.track(TEST_USER_ID, "upload")

        start = datetime.now(timezone.utc) - timedelta(days=1)
        stats = await usage.usage_stats(TEST_USER_ID, start=start)

        assert stats.total_actions == 1
        assert stats.total_cost == 0

    async def test_document_cost(self, usage):
        doc_id = "7d0a4c8e-3b1f-4c55-9d7e-2f0e6b1a9c33"
        await usage.track(TEST_USER_ID, "analysis", document_id=doc_id, model="gpt-4o-mini",
                          input_tokens=1000, output_tokens=1000)
        await usage.track(TEST_USER_ID, "query", model="gpt-4o-mini", input_tokens=1000, output_tokens=1000)

        assert await usage.document_cost(TEST_USER_ID, doc_id) == 4
