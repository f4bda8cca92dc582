from __future__ import annotations

import json
from typing import Any

from ledgerlens.domain.state import ConversationTurn, Intent, TenantContext

SCHEMA_DESCRIPTION = """\
{schema}.daily_entries(tenant_id text, entry_date date, total_register float, labor_cost float,
    labor_hours float, discounts float, day_factor float)
{schema}.suppliers(id text, tenant_id text, name text, expense_type text  -- goods_purchases | current_expenses)
{schema}.invoices(id uuid, tenant_id text, supplier_id text, invoice_date date, subtotal float,
    vat_amount float, total_amount float)
{schema}.goals(tenant_id text, year int, month int, revenue_target float, labor_cost_target_pct float,
    food_cost_target_pct float, operating_cost_target_pct float, vat_percentage float, markup_percentage float)
{schema}.weekly_schedules(tenant_id text, day_of_week int  -- 0 = Sunday, day_factor float)
{schema}.monthly_metrics(tenant_id text, year int, month int, total_income float, income_before_vat float,
    monthly_pace float, daily_avg float, labor_cost_pct float, food_cost_pct float, operating_cost_pct float,
    target_diff_pct float, computed_at timestamptz)"""

CHART_INSTRUCTIONS = (
    "When a chart helps, append exactly one fenced block tagged chart-json containing "
    '{"type": "bar" | "area" | "line" | "pie", "title": str, "data": [...], '
    '"dataKeys": [{"key": str, "label": str, "color": str}], "xAxisKey": str}.'
)


def _turn_lines(turns: list[ConversationTurn], max_chars: int | None = None) -> list[dict[str, str]]:
    messages = []
    for turn in turns:
        text = turn.text if max_chars is None else turn.text[:max_chars]
        messages.append({"role": turn.role, "content": text})
    return messages


def build_classify_messages(
    question: str, recent_turns: list[ConversationTurn], max_chars: int
) -> list[dict[str, str]]:
    labels = ", ".join(intent.value for intent in Intent)
    system_prompt = (
        "Classify the user's latest message for a business analytics assistant. "
        f"Reply with exactly one label from: {labels}.\n"
        "CACHED_SUMMARY: how the month is going, monthly summary, pace versus goals.\n"
        "QUERY: needs specific rows or totals from the business data.\n"
        "ARITHMETIC: a self-contained calculation.\n"
        "CONVERSATION: anything else."
    )
    messages = [{"role": "system", "content": system_prompt, "task": "classify"}]
    messages.extend(_turn_lines(recent_turns, max_chars))
    messages.append({"role": "user", "content": question[:max_chars]})
    return messages


def build_sql_messages(
    question: str,
    history: list[ConversationTurn],
    tenant: TenantContext,
    *,
    schema: str,
    max_rows: int,
) -> list[dict[str, str]]:
    if tenant.is_cross_tenant_admin:
        scope = "The caller is an administrator and may query across tenants."
    else:
        scope = f"Every table reference MUST be filtered with tenant_id = '{tenant.tenant_id}'."
    system_prompt = (
        "Write one read-only PostgreSQL SELECT statement (a WITH prefix is allowed) answering the question.\n"
        f"{scope}\n"
        f"Always add LIMIT {max_rows}. No comments, no semicolons, no data modification.\n"
        "Return raw SQL text only.\n\n"
        "Schema:\n" + SCHEMA_DESCRIPTION.format(schema=schema)
    )
    messages = [{"role": "system", "content": system_prompt, "task": "generate_sql"}]
    messages.extend(_turn_lines(history))
    messages.append({"role": "user", "content": question})
    return messages


def build_regenerate_messages(
    base: list[dict[str, str]], failing_sql: str, error_text: str
) -> list[dict[str, str]]:
    messages = [dict(msg) for msg in base]
    messages.append({"role": "assistant", "content": failing_sql})
    messages.append(
        {
            "role": "user",
            "content": (
                f"That statement failed: {error_text}\n"
                "Return a corrected statement following the same rules."
            ),
        }
    )
    return messages


def build_answer_messages(
    question: str, history: list[ConversationTurn], context: dict[str, Any] | None
) -> list[dict[str, str]]:
    system_prompt = (
        "You are LedgerLens, an analytics assistant for small businesses. "
        "Answer concisely using only the data provided. "
        "If the data is empty, say so plainly. " + CHART_INSTRUCTIONS
    )
    if context:
        system_prompt += "\n\nData:\n" + json.dumps(context, ensure_ascii=False, default=str)
    messages = [{"role": "system", "content": system_prompt, "task": "answer"}]
    messages.extend(_turn_lines(history))
    messages.append({"role": "user", "content": question})
    return messages


def build_conversation_messages(question: str, history: list[ConversationTurn]) -> list[dict[str, str]]:
    system_prompt = (
        "You are LedgerLens, an analytics assistant for small businesses. "
        "Reply helpfully; do not invent figures about the business."
    )
    messages = [{"role": "system", "content": system_prompt, "task": "conversation"}]
    messages.extend(_turn_lines(history))
    messages.append({"role": "user", "content": question})
    return messages
