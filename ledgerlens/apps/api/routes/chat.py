from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, AsyncGenerator, Literal
from uuid import uuid4

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerlens.agent.graph import run_graph
from ledgerlens.apps.api.deps import Principal, get_db, require_rate_limited_principal
from ledgerlens.apps.api.errors import map_domain_error
from ledgerlens.apps.api.response import get_request_id
from ledgerlens.core import background
from ledgerlens.core.config import get_settings
from ledgerlens.core.errors import LedgerLensError
from ledgerlens.domain.state import AgentState, ConversationTurn, TenantContext
from ledgerlens.persistence.db import SessionLocal, get_readonly_session, get_session
from ledgerlens.persistence.repos import messages as messages_repo
from ledgerlens.persistence.repos import sessions as sessions_repo
from ledgerlens.providers.llm.factory import get_llm_provider
from ledgerlens.services.metrics_cache import MetricsCacheManager
from ledgerlens.services.query_engine import QueryEngine, ReadOnlyExecutor
from ledgerlens.services.streaming import (
    ChartFenceSplitter,
    Frame,
    FrameEncoder,
    done_frame,
    error_frame,
    sse_heartbeat,
    status_frame,
)
from ledgerlens.services.tenancy import resolve_tenant

logger = logging.getLogger(__name__)
router = APIRouter(tags=["chat"])

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Content-Type": "text/event-stream",
    "Connection": "keep-alive",
}


class HistoryTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    tenant_id: str | None = None
    session_id: str | None = None
    message: str = Field(min_length=1)
    history: list[HistoryTurn] = Field(default_factory=list)

    @field_validator("message")
    @classmethod
    def _bounded_message(cls, value: str) -> str:
        limit = get_settings().chat_max_message_chars
        if len(value) > limit:
            raise ValueError(f"message exceeds {limit} characters")
        return value


def _map_error(exc: Exception) -> tuple[str, str]:
    # Map internal exceptions to stable client-facing codes without leaking stack traces.
    if isinstance(exc, LedgerLensError):
        _status, code, message = map_domain_error(exc)
        return code, message
    if isinstance(exc, SQLAlchemyError):
        return "DB_ERROR", "Database error during chat. Check server logs."
    return "UNKNOWN_ERROR", "Internal error during generation."


async def _persist_exchange(
    *,
    session_id: str,
    caller_id: str,
    tenant_id: str | None,
    question: str,
    answer: str | None,
    chart: dict[str, Any] | None,
) -> None:
    # Runs after the stream ends on its own session; failures are logged only.
    try:
        async with get_session() as session:
            await sessions_repo.ensure_chat_session(
                session, session_id, caller_id, tenant_id, title=question[:80]
            )
            await messages_repo.add_message(session, session_id, "user", question)
            if answer:
                await messages_repo.add_message(session, session_id, "assistant", answer, chart=chart)
            await session.commit()
    except Exception:
        logger.exception("chat_persist_failed session_id=%s", session_id)


@router.post("/chat")
async def chat(
    payload: ChatRequest,
    http_request: Request,
    principal: Principal = Depends(require_rate_limited_principal),
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    settings = get_settings()
    request_id = get_request_id(http_request)
    # Tenant errors surface as HTTP errors before any stream starts.
    tenant: TenantContext = await resolve_tenant(db, principal.caller_id, payload.tenant_id)
    session_id = payload.session_id or str(uuid4())
    history = [
        ConversationTurn(role=turn.role, text=turn.content)
        for turn in payload.history[-settings.chat_history_turns:]
    ] if settings.chat_history_turns > 0 else []

    # Use a shared queue for token and status events to preserve stream order.
    queue: asyncio.Queue[dict] = asyncio.Queue()
    done = asyncio.Event()
    final_state: AgentState | None = None
    error: Exception | None = None
    disconnect_event = asyncio.Event()
    # Thread-safe cancel signal so the blocking provider stream can exit promptly.
    cancel_event = threading.Event()
    llm = get_llm_provider(request_id=request_id, cancel_event=cancel_event)
    loop = asyncio.get_running_loop()

    def token_callback(delta: str) -> None:
        # Drop tokens once the client disconnects to avoid buffering unused output.
        if disconnect_event.is_set():
            return
        loop.call_soon_threadsafe(queue.put_nowait, {"kind": "token", "delta": delta})

    def status_callback(stage: str) -> None:
        queue.put_nowait({"kind": "status", "stage": stage})

    async def run_agent() -> None:
        nonlocal final_state, error
        try:
            async with get_session() as session, get_readonly_session() as readonly_session:
                executor = ReadOnlyExecutor(
                    readonly_session,
                    max_rows=settings.sql_max_rows,
                    preview_rows=settings.sql_result_preview_rows,
                    statement_timeout_ms=settings.sql_statement_timeout_ms,
                )
                state: AgentState = {
                    "request_id": request_id,
                    "session_id": session_id,
                    "caller_id": principal.caller_id,
                    "tenant": tenant,
                    "user_message": payload.message,
                    "history": history,
                    "intent": None,
                    "context": None,
                    "answer": None,
                }
                final_state = await run_graph(
                    llm=llm,
                    query_engine=QueryEngine(llm, executor),
                    metrics=MetricsCacheManager(session, session_factory=SessionLocal),
                    state=state,
                    token_callback=token_callback,
                    status_callback=status_callback,
                )
        except asyncio.CancelledError:
            # Allow cancellation to propagate so disconnects stop streaming quickly.
            raise
        except Exception as exc:
            error = exc
            logger.exception("chat_pipeline_failed request_id=%s", request_id)
        finally:
            done.set()

    async def event_stream() -> AsyncGenerator[str, None]:
        encoder = FrameEncoder(request_id, session_id)
        splitter = ChartFenceSplitter()
        heartbeat_s = max(1, int(settings.run_sse_heartbeat_s))
        last_sent = loop.time()
        task = asyncio.create_task(run_agent())
        completed = False

        def emit(frames: list[Frame]) -> list[str]:
            return [encoder.encode(frame) for frame in frames]

        try:
            while not done.is_set() or not queue.empty():
                if await http_request.is_disconnected():
                    # Stop streaming immediately when the client disconnects.
                    disconnect_event.set()
                    cancel_event.set()
                    break
                try:
                    item = await asyncio.wait_for(queue.get(), timeout=0.1)
                except asyncio.TimeoutError:
                    if loop.time() - last_sent >= heartbeat_s:
                        last_sent = loop.time()
                        yield sse_heartbeat()
                    continue
                if item.get("kind") == "status":
                    chunks = emit([status_frame(item["stage"])])
                else:
                    delta = item.get("delta")
                    if not isinstance(delta, str):
                        continue
                    chunks = emit(splitter.feed(delta))
                for chunk in chunks:
                    last_sent = loop.time()
                    yield chunk

            if disconnect_event.is_set():
                # Do not emit final/error events after a client disconnects.
                return

            await task

            if error is not None:
                code, message = _map_error(error)
                yield encoder.encode(error_frame(code, message))
                return

            for chunk in emit(splitter.finish()):
                yield chunk
            frame = done_frame(splitter.text)
            if settings.debug_events and final_state is not None and final_state.get("intent"):
                frame.data["intent"] = final_state["intent"].value
            completed = True
            yield encoder.encode(frame)
        finally:
            if not task.done():
                task.cancel()
            if not completed:
                # Closed early (client gone or send failed): stop the provider thread too.
                disconnect_event.set()
                cancel_event.set()
            answer = splitter.text if completed else None
            background.spawn(
                _persist_exchange(
                    session_id=session_id,
                    caller_id=principal.caller_id,
                    tenant_id=tenant.tenant_id,
                    question=payload.message,
                    answer=answer,
                    chart=splitter.chart,
                ),
                name="chat_persist",
            )

    return StreamingResponse(event_stream(), headers=_SSE_HEADERS, media_type="text/event-stream")
