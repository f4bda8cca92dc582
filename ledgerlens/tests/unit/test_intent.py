from __future__ import annotations

from datetime import date

import pytest

from ledgerlens.core.errors import ClassificationAmbiguous
from ledgerlens.domain.state import ConversationTurn, Intent
from ledgerlens.providers.llm.fake import FakeLLMProvider
from ledgerlens.services.intent import classify, extract_period, looks_like_monthly_summary, parse_intent


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("QUERY", Intent.QUERY),
        ("  arithmetic\n", Intent.ARITHMETIC),
        ("Cached_Summary.", Intent.CACHED_SUMMARY),
        ("**CONVERSATION** because the user says hi", Intent.CONVERSATION),
    ],
)
def test_parse_intent_uses_first_token(raw: str, expected: Intent) -> None:
    assert parse_intent(raw) is expected


def test_parse_intent_rejects_unknown_labels() -> None:
    with pytest.raises(ClassificationAmbiguous):
        parse_intent("SQL please")
    with pytest.raises(ClassificationAmbiguous):
        parse_intent("   ")


@pytest.mark.asyncio
async def test_classify_defaults_to_conversation_when_ambiguous() -> None:
    llm = FakeLLMProvider(scripted={"classify": ["I think this is a query"]})
    intent = await classify("hi", [], llm)
    assert intent is Intent.CONVERSATION


@pytest.mark.asyncio
async def test_classify_sends_trailing_window_truncated() -> None:
    llm = FakeLLMProvider(scripted={"classify": ["QUERY"]})
    turns = [ConversationTurn(role="user" if i % 2 == 0 else "assistant", text=f"turn-{i} " + "x" * 500) for i in range(6)]

    intent = await classify("total invoices last week?", turns, llm)

    assert intent is Intent.QUERY
    task, messages = llm.calls[0]
    assert task == "classify"
    history = messages[1:-1]
    assert [message["content"][:6] for message in history] == ["turn-3", "turn-4", "turn-5"]
    assert all(len(message["content"]) <= 200 for message in history)
    assert messages[-1]["content"] == "total invoices last week?"


def test_looks_like_monthly_summary() -> None:
    assert looks_like_monthly_summary("How is the month going?")
    assert looks_like_monthly_summary("monthly summary please")
    assert not looks_like_monthly_summary("list invoices from supplier Acme")


@pytest.mark.parametrize(
    ("question", "expected"),
    [
        ("how is this month?", (2026, 3)),
        ("what about last month", (2026, 2)),
        ("numbers for 2025-11", (2025, 11)),
        ("how did january go", (2026, 1)),
        ("how did december go", (2025, 12)),
        ("summary for june 2024", (2024, 6)),
        ("may I see the summary", (2026, 3)),
        ("may 2025 summary", (2025, 5)),
    ],
)
def test_extract_period(question: str, expected: tuple[int, int]) -> None:
    assert extract_period(question, date(2026, 3, 15)) == expected


def test_extract_period_wraps_year_for_previous_month() -> None:
    assert extract_period("previous month", date(2026, 1, 4)) == (2025, 12)
