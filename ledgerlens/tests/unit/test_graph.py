from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from ledgerlens.agent.graph import NO_RESULT_MESSAGE, run_graph
from ledgerlens.domain.state import AgentState, ExecutionOutcome, Intent, TenantContext
from ledgerlens.providers.llm.fake import FakeLLMProvider
from ledgerlens.services.metrics_cache import MetricsSummary
from ledgerlens.services.query_engine import NO_RESULT

MEMBER = TenantContext(tenant_id="t-1", allowed_tenant_ids=("t-1",))
ADMIN = TenantContext(tenant_id=None, is_cross_tenant_admin=True)


class _StubMetrics:
    def __init__(self) -> None:
        self.requested: list[tuple[str, int, int]] = []

    def today(self) -> date:
        return date(2026, 3, 15)

    async def get_monthly_summary(self, tenant_id: str, year: int, month: int) -> MetricsSummary:
        self.requested.append((tenant_id, year, month))
        return MetricsSummary(
            tenant_id=tenant_id,
            year=year,
            month=month,
            values={"monthly_pace": 25000.0},
            computed_at=datetime(2026, 3, 15, tzinfo=timezone.utc),
            cached=True,
        )


class _StubQueryEngine:
    def __init__(self, outcome: ExecutionOutcome) -> None:
        self._outcome = outcome
        self.questions: list[str] = []

    async def resolve(self, question, tenant, recent_turns):
        self.questions.append(question)
        return self._outcome


def _state(message: str, tenant: TenantContext = MEMBER) -> AgentState:
    return {
        "request_id": "req-1",
        "session_id": "s-1",
        "caller_id": "u-1",
        "tenant": tenant,
        "user_message": message,
        "history": [],
        "intent": None,
        "context": None,
        "answer": None,
    }


async def _run(llm, message, *, tenant=MEMBER, outcome=None, metrics=None):
    tokens: list[str] = []
    stages: list[str] = []
    query_engine = _StubQueryEngine(outcome or ExecutionOutcome(rows=[{"n": 1}], total_rows=1))
    metrics = metrics or _StubMetrics()
    final = await run_graph(
        llm=llm,
        query_engine=query_engine,
        metrics=metrics,
        state=_state(message, tenant),
        token_callback=tokens.append,
        status_callback=stages.append,
    )
    return final, tokens, stages, query_engine, metrics


@pytest.mark.asyncio
async def test_cached_summary_uses_metrics_for_requested_period() -> None:
    llm = FakeLLMProvider(scripted={"classify": ["CACHED_SUMMARY"], "answer": ["Pace is good"]})

    final, tokens, stages, _engine, metrics = await _run(llm, "how did last month go?")

    assert final["intent"] is Intent.CACHED_SUMMARY
    assert metrics.requested == [("t-1", 2026, 2)]
    assert "".join(tokens) == "Pace is good"
    assert stages == ["classifying", "loading_summary", "answering"]


@pytest.mark.asyncio
async def test_cached_summary_without_tenant_becomes_query() -> None:
    llm = FakeLLMProvider(scripted={"classify": ["CACHED_SUMMARY"]})

    final, _tokens, _stages, engine, metrics = await _run(llm, "monthly summary", tenant=ADMIN)

    assert final["intent"] is Intent.QUERY
    assert engine.questions == ["monthly summary"]
    assert metrics.requested == []


@pytest.mark.asyncio
async def test_failed_summary_shaped_query_falls_back_to_cache() -> None:
    llm = FakeLLMProvider(scripted={"classify": ["QUERY"]})

    final, _tokens, _stages, _engine, metrics = await _run(
        llm, "how is the month going?", outcome=ExecutionOutcome(error_kind=NO_RESULT)
    )

    assert metrics.requested == [("t-1", 2026, 3)]
    assert final["context"]["monthly_summary"]["monthly_pace"] == 25000.0
    assert final["answer"] == "This is a fake response."


@pytest.mark.asyncio
async def test_failed_query_answers_with_canned_reply() -> None:
    llm = FakeLLMProvider(scripted={"classify": ["QUERY"]})

    final, tokens, _stages, _engine, _metrics = await _run(
        llm, "list invoices from Acme", outcome=ExecutionOutcome(error_kind=NO_RESULT)
    )

    assert final["answer"] == NO_RESULT_MESSAGE
    assert tokens == [NO_RESULT_MESSAGE]
    assert [task for task, _messages in llm.calls] == ["classify"]


@pytest.mark.asyncio
async def test_rejected_arithmetic_falls_back_to_conversation() -> None:
    llm = FakeLLMProvider(scripted={"classify": ["ARITHMETIC"], "conversation": ["Cannot divide by zero"]})

    final, tokens, _stages, _engine, _metrics = await _run(llm, "what is 1/0")

    assert final["intent"] is Intent.CONVERSATION
    assert final["context"] is None
    assert "".join(tokens) == "Cannot divide by zero"
    assert [task for task, _messages in llm.calls] == ["classify", "conversation"]
