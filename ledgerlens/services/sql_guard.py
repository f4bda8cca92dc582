from __future__ import annotations

import logging
import re
from typing import Callable

import sqlparse

from ledgerlens.core.errors import QueryRejectedByPolicy
from ledgerlens.domain.state import TenantContext, ValidationVerdict

logger = logging.getLogger(__name__)

FORBIDDEN_KEYWORDS = (
    "insert", "update", "delete", "drop", "alter", "create", "truncate",
    "grant", "revoke", "copy", "union", "execute", "call", "prepare",
    "do", "load", "import", "merge",
)
_FORBIDDEN = re.compile(r"\b(" + "|".join(FORBIDDEN_KEYWORDS) + r")\b", re.IGNORECASE)
_READ_ONLY_PREFIX = re.compile(r"^\s*(select|with)\b", re.IGNORECASE)
_LIMIT = re.compile(r"\blimit\s+\d+\b", re.IGNORECASE)
_LEADING_FENCE = re.compile(r"^\s*```[a-zA-Z]*[ \t]*\n?")
_TRAILING_FENCE = re.compile(r"\n?[ \t]*```\s*$")
_SCHEMA_ERROR_MARKERS = ("does not exist", "no such table")

# Each predicate returns a rejection reason, or None when the statement passes.
Predicate = Callable[[str, TenantContext], "str | None"]


def strip_sql_fences(text: str) -> str:
    # Models often wrap SQL in markdown fences and end it with a semicolon.
    sql = _LEADING_FENCE.sub("", text or "", count=1)
    sql = _TRAILING_FENCE.sub("", sql, count=1).strip()
    if sql.endswith(";"):
        sql = sql[:-1].rstrip()
    return sql


def check_read_only_prefix(sql: str, tenant: TenantContext) -> str | None:
    if not _READ_ONLY_PREFIX.match(sql):
        return "statement must start with SELECT or WITH"
    return None


def check_denylist(sql: str, tenant: TenantContext) -> str | None:
    match = _FORBIDDEN.search(sql)
    if match:
        return f"forbidden keyword: {match.group(1).lower()}"
    return None


def check_no_comments(sql: str, tenant: TenantContext) -> str | None:
    if "--" in sql or "/*" in sql:
        return "comments are not allowed"
    return None


def check_single_statement(sql: str, tenant: TenantContext) -> str | None:
    if ";" in sql:
        return "multiple statements are not allowed"
    return None


def check_statement_type(sql: str, tenant: TenantContext) -> str | None:
    parsed = sqlparse.parse(sql)
    if not parsed or parsed[0].get_type().upper() != "SELECT":
        return "only SELECT statements are allowed"
    return None


def check_tenant_literal(sql: str, tenant: TenantContext) -> str | None:
    if tenant.is_cross_tenant_admin:
        return None
    if not tenant.tenant_id or tenant.tenant_id not in sql:
        return "statement is not scoped to the caller's tenant"
    return None


PREDICATES: tuple[Predicate, ...] = (
    check_read_only_prefix,
    check_denylist,
    check_no_comments,
    check_single_statement,
    check_statement_type,
    check_tenant_literal,
)


def validate(sql: str, tenant: TenantContext) -> ValidationVerdict:
    for predicate in PREDICATES:
        reason = predicate(sql, tenant)
        if reason is not None:
            logger.info("sql_guard_rejected reason=%s", reason)
            return ValidationVerdict(accepted=False, reason=reason)
    return ValidationVerdict(accepted=True)


def ensure_row_cap(sql: str, max_rows: int) -> str:
    if _LIMIT.search(sql):
        return sql
    return f"{sql.rstrip()} LIMIT {int(max_rows)}"


def prepare(text: str, tenant: TenantContext, max_rows: int) -> str:
    # Strip, validate and cap in one step; rejection is a hard stop before execution.
    sql = strip_sql_fences(text)
    verdict = validate(sql, tenant)
    if not verdict.accepted:
        raise QueryRejectedByPolicy(verdict.reason or "rejected")
    return ensure_row_cap(sql, max_rows)


def is_schema_error(message: str) -> bool:
    lowered = (message or "").lower()
    return any(marker in lowered for marker in _SCHEMA_ERROR_MARKERS)


def _cte_names(sql: str) -> set[str]:
    names = re.findall(r"(?:\bwith\s+(?:recursive\s+)?|,\s*)([A-Za-z_]\w*)\s+as\s*\(", sql, re.IGNORECASE)
    return {name.lower() for name in names}


def qualify_tables(sql: str, schema: str) -> str:
    # Prefix bare FROM/JOIN table names with the schema; CTE names and EXTRACT(... FROM col) stay as they are.
    ctes = _cte_names(sql)
    pattern = re.compile(r"\b(FROM|JOIN)(\s+)([A-Za-z_]\w*)\b(?!\s*\.)", re.IGNORECASE)

    def _replace(match: re.Match[str]) -> str:
        keyword, space, name = match.group(1), match.group(2), match.group(3)
        if name.lower() in ctes or name.lower() == schema.lower():
            return match.group(0)
        preceding = sql[: match.start()]
        if re.search(r"\b(extract|substring|trim|overlay)\s*\([^()]*$", preceding, re.IGNORECASE):
            return match.group(0)
        return f"{keyword}{space}{schema}.{name}"

    return pattern.sub(_replace, sql)
