from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerlens.agent.prompts import build_regenerate_messages, build_sql_messages
from ledgerlens.core.config import get_settings
from ledgerlens.core.errors import QueryExecutionFailed, QueryRejectedByPolicy
from ledgerlens.domain.state import ConversationTurn, ExecutionOutcome, QueryCandidate, TenantContext
from ledgerlens.services import sql_guard

logger = logging.getLogger(__name__)

NO_RESULT = "no_result"


@dataclass
class CallBudget:
    # Per request: generate plus one regeneration, and two executions shared by
    # the schema-repair retry and the regenerated candidate.
    max_generations: int = 2
    max_executions: int = 2
    generations: int = 0
    executions: int = 0

    def can_generate(self) -> bool:
        return self.generations < self.max_generations

    def can_execute(self) -> bool:
        return self.executions < self.max_executions


@dataclass(frozen=True)
class _Failure:
    sql: str
    error_text: str


class ReadOnlyExecutor:
    def __init__(
        self,
        session: AsyncSession,
        *,
        max_rows: int,
        preview_rows: int,
        statement_timeout_ms: int,
    ) -> None:
        self._session = session
        self._max_rows = max_rows
        self._preview_rows = preview_rows
        self._statement_timeout_ms = statement_timeout_ms

    async def execute(self, sql: str) -> ExecutionOutcome:
        session = self._session
        try:
            if session.get_bind().dialect.name == "postgresql":
                # Must be the first statement of the transaction.
                await session.execute(text("SET TRANSACTION READ ONLY"))
                if self._statement_timeout_ms > 0:
                    await session.execute(
                        text(f"SET LOCAL statement_timeout = {int(self._statement_timeout_ms)}")
                    )
            result = await session.execute(text(sql))
            rows = [dict(row) for row in result.mappings().fetchmany(self._max_rows)]
        except SQLAlchemyError as exc:
            message = str(getattr(exc, "orig", None) or exc)
            raise QueryExecutionFailed(message, schema_error=sql_guard.is_schema_error(message)) from exc
        finally:
            # Nothing generated is ever committed.
            await session.rollback()
        return ExecutionOutcome(rows=rows[: self._preview_rows], total_rows=len(rows), sql=sql)


class QueryEngine:
    def __init__(self, llm, executor: ReadOnlyExecutor) -> None:
        self._llm = llm
        self._executor = executor
        self._settings = get_settings()

    async def _generate(self, messages: list[dict[str, Any]], budget: CallBudget) -> QueryCandidate:
        budget.generations += 1
        raw = await asyncio.to_thread(self._llm.complete, messages)
        return QueryCandidate(text=raw or "", declared_purpose=messages[-1]["content"][:200])

    async def _execute(self, sql: str, budget: CallBudget) -> ExecutionOutcome:
        budget.executions += 1
        return await self._executor.execute(sql)

    async def _attempt(
        self, candidate: QueryCandidate, tenant: TenantContext, budget: CallBudget
    ) -> ExecutionOutcome | _Failure:
        try:
            sql = sql_guard.prepare(candidate.text, tenant, self._settings.sql_max_rows)
        except QueryRejectedByPolicy as exc:
            return _Failure(sql=sql_guard.strip_sql_fences(candidate.text), error_text=exc.reason)
        if not budget.can_execute():
            return _Failure(sql=sql, error_text="execution budget exhausted")
        try:
            return await self._execute(sql, budget)
        except QueryExecutionFailed as exc:
            logger.info("query_execution_failed schema_error=%s", exc.schema_error)
            if not exc.schema_error or not budget.can_execute():
                return _Failure(sql=sql, error_text=str(exc))
            first_error = exc

        repaired = sql_guard.qualify_tables(sql, self._settings.sql_schema)
        if repaired == sql:
            return _Failure(sql=sql, error_text=str(first_error))
        # The repaired statement is validated again like any other candidate.
        verdict = sql_guard.validate(repaired, tenant)
        if not verdict.accepted:
            return _Failure(sql=repaired, error_text=verdict.reason or "rejected")
        logger.info("query_schema_repair_retry")
        try:
            return await self._execute(repaired, budget)
        except QueryExecutionFailed as exc:
            return _Failure(sql=repaired, error_text=str(exc))

    async def resolve(
        self,
        question: str,
        tenant: TenantContext,
        recent_turns: list[ConversationTurn],
        budget: CallBudget | None = None,
    ) -> ExecutionOutcome:
        budget = budget or CallBudget()
        messages = build_sql_messages(
            question,
            recent_turns,
            tenant,
            schema=self._settings.sql_schema,
            max_rows=self._settings.sql_max_rows,
        )
        candidate = await self._generate(messages, budget)
        result = await self._attempt(candidate, tenant, budget)
        if isinstance(result, ExecutionOutcome):
            return result

        if not budget.can_generate() or not budget.can_execute():
            logger.info("query_no_result generations=%s executions=%s", budget.generations, budget.executions)
            return ExecutionOutcome(error_kind=NO_RESULT)
        logger.info("query_regenerate reason=%s", result.error_text[:200])
        retry_messages = build_regenerate_messages(messages, result.sql, result.error_text)
        candidate = await self._generate(retry_messages, budget)
        result = await self._attempt(candidate, tenant, budget)
        if isinstance(result, ExecutionOutcome):
            return result
        logger.warning("query_no_result generations=%s executions=%s", budget.generations, budget.executions)
        return ExecutionOutcome(error_kind=NO_RESULT)
