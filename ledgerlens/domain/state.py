from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Optional, TypedDict


class Intent(str, Enum):
    CACHED_SUMMARY = "CACHED_SUMMARY"
    QUERY = "QUERY"
    ARITHMETIC = "ARITHMETIC"
    CONVERSATION = "CONVERSATION"


@dataclass(frozen=True)
class TenantContext:
    tenant_id: str | None
    is_cross_tenant_admin: bool = False
    allowed_tenant_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConversationTurn:
    role: Literal["user", "assistant"]
    text: str
    timestamp_hint: str | None = None


@dataclass(frozen=True)
class QueryCandidate:
    text: str
    declared_purpose: str = ""


@dataclass(frozen=True)
class ValidationVerdict:
    accepted: bool
    reason: str | None = None


@dataclass(frozen=True)
class ExecutionOutcome:
    # Exactly one of rows / error_kind is meaningful.
    rows: list[dict[str, Any]] = field(default_factory=list)
    total_rows: int = 0
    sql: str | None = None
    error_kind: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None


class AgentState(TypedDict):
    request_id: str
    session_id: str
    caller_id: str
    tenant: TenantContext
    user_message: str
    history: list[ConversationTurn]
    intent: Optional[Intent]
    # Material handed to the answer composer (rows, summary or computed value).
    context: Optional[dict[str, Any]]
    # Fixed text that bypasses composition (e.g. canned no-result reply).
    answer: Optional[str]
