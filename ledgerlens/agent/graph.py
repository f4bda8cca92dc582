from __future__ import annotations

import asyncio
import logging
from typing import Callable

from langgraph.graph import END, StateGraph

from ledgerlens.agent.prompts import build_answer_messages, build_conversation_messages
from ledgerlens.core.errors import EvaluatorRejected
from ledgerlens.domain.state import AgentState, Intent
from ledgerlens.services.calculator import evaluate, extract_expression
from ledgerlens.services.intent import classify, extract_period, looks_like_monthly_summary
from ledgerlens.services.metrics_cache import MetricsCacheManager
from ledgerlens.services.query_engine import QueryEngine

logger = logging.getLogger(__name__)

NO_RESULT_MESSAGE = "I couldn't retrieve that, try rephrasing."


def build_graph(
    *,
    llm,
    query_engine: QueryEngine,
    metrics: MetricsCacheManager,
    token_callback: Callable[[str], None],
    status_callback: Callable[[str], None] | None = None,
):
    graph = StateGraph(AgentState)

    def status(stage: str) -> None:
        if status_callback is not None:
            status_callback(stage)

    async def _summary_context(state: AgentState) -> dict | None:
        tenant_id = state["tenant"].tenant_id
        if not tenant_id:
            return None
        year, month = extract_period(state["user_message"], metrics.today())
        summary = await metrics.get_monthly_summary(tenant_id, year, month)
        return {"monthly_summary": summary.as_context(), "cached": summary.cached}

    async def route_intent(state: AgentState) -> dict:
        status("classifying")
        intent = await classify(state["user_message"], state["history"], llm)
        # Cross-tenant callers have no single tenant to summarise.
        if intent is Intent.CACHED_SUMMARY and not state["tenant"].tenant_id:
            intent = Intent.QUERY
        return {"intent": intent}

    async def cached_summary(state: AgentState) -> dict:
        status("loading_summary")
        return {"context": await _summary_context(state)}

    async def query(state: AgentState) -> dict:
        status("querying")
        outcome = await query_engine.resolve(state["user_message"], state["tenant"], state["history"])
        if outcome.ok:
            return {"context": {"rows": outcome.rows, "total_rows": outcome.total_rows}}
        if looks_like_monthly_summary(state["user_message"]):
            context = await _summary_context(state)
            if context is not None:
                logger.info("query_fallback_to_summary request_id=%s", state["request_id"])
                return {"context": context}
        return {"answer": NO_RESULT_MESSAGE}

    async def arithmetic(state: AgentState) -> dict:
        status("calculating")
        expression = extract_expression(state["user_message"])
        if expression is None:
            logger.info("arithmetic_fallback reason=no_expression")
            return {"intent": Intent.CONVERSATION}
        try:
            value = await asyncio.to_thread(evaluate, expression)
        except EvaluatorRejected as exc:
            logger.info("arithmetic_fallback reason=%s", exc)
            return {"intent": Intent.CONVERSATION}
        return {"context": {"expression": expression, "result": value}}

    async def compose(state: AgentState) -> dict:
        canned = state.get("answer")
        if canned:
            token_callback(canned)
            return {"answer": canned}
        status("answering")
        context = state.get("context")
        if context is not None:
            messages = build_answer_messages(state["user_message"], state["history"], context)
        else:
            messages = build_conversation_messages(state["user_message"], state["history"])
        answer_parts: list[str] = []

        def run_stream() -> None:
            for delta in llm.stream(messages):
                token_callback(delta)
                answer_parts.append(delta)

        await asyncio.to_thread(run_stream)
        return {"answer": "".join(answer_parts)}

    def pick_branch(state: AgentState) -> str:
        return (state.get("intent") or Intent.CONVERSATION).value

    graph.add_node("route_intent", route_intent)
    graph.add_node("cached_summary", cached_summary)
    graph.add_node("query", query)
    graph.add_node("arithmetic", arithmetic)
    graph.add_node("compose", compose)

    graph.set_entry_point("route_intent")
    graph.add_conditional_edges(
        "route_intent",
        pick_branch,
        {
            Intent.CACHED_SUMMARY.value: "cached_summary",
            Intent.QUERY.value: "query",
            Intent.ARITHMETIC.value: "arithmetic",
            Intent.CONVERSATION.value: "compose",
        },
    )
    graph.add_edge("cached_summary", "compose")
    graph.add_edge("query", "compose")
    graph.add_edge("arithmetic", "compose")
    graph.add_edge("compose", END)

    return graph.compile()


async def run_graph(
    *,
    llm,
    query_engine: QueryEngine,
    metrics: MetricsCacheManager,
    state: AgentState,
    token_callback: Callable[[str], None],
    status_callback: Callable[[str], None] | None = None,
) -> AgentState:
    graph = build_graph(
        llm=llm,
        query_engine=query_engine,
        metrics=metrics,
        token_callback=token_callback,
        status_callback=status_callback,
    )
    return await graph.ainvoke(state)
