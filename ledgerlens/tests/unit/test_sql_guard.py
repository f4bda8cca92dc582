from __future__ import annotations

import pytest

from ledgerlens.core.errors import QueryRejectedByPolicy
from ledgerlens.domain.state import TenantContext
from ledgerlens.services.sql_guard import (
    ensure_row_cap,
    is_schema_error,
    prepare,
    qualify_tables,
    strip_sql_fences,
    validate,
)

TENANT = TenantContext(tenant_id="t-42", allowed_tenant_ids=("t-42",))
ADMIN = TenantContext(tenant_id=None, is_cross_tenant_admin=True)


def test_stacked_statements_are_rejected() -> None:
    verdict = validate(
        strip_sql_fences("SELECT * FROM invoices WHERE tenant_id = 't-42'; DROP TABLE invoices;"),
        TENANT,
    )
    assert not verdict.accepted
    assert "drop" in verdict.reason


def test_keywords_inside_identifiers_pass() -> None:
    sql = "SELECT selection, updated_at, created_at FROM daily_entries WHERE tenant_id = 't-42'"
    assert validate(sql, TENANT).accepted


@pytest.mark.parametrize(
    ("sql", "reason_part"),
    [
        ("DELETE FROM invoices WHERE tenant_id = 't-42'", "SELECT or WITH"),
        ("SELECT 1 FROM invoices WHERE tenant_id = 't-42' UNION SELECT 2", "union"),
        ("SELECT * FROM invoices WHERE tenant_id = 't-42' -- sneaky", "comments"),
        ("SELECT * FROM invoices /* x */ WHERE tenant_id = 't-42'", "comments"),
        ("SELECT * FROM invoices WHERE tenant_id = 't-42'; SELECT 1", "multiple"),
        ("SELECT * FROM invoices", "tenant"),
        ("SELECT * FROM invoices WHERE tenant_id = 't-43'", "tenant"),
    ],
)
def test_policy_rejections(sql: str, reason_part: str) -> None:
    verdict = validate(sql, TENANT)
    assert not verdict.accepted
    assert reason_part in verdict.reason


def test_admin_skips_tenant_literal() -> None:
    assert validate("SELECT tenant_id, count(*) FROM invoices GROUP BY tenant_id", ADMIN).accepted


def test_with_prefix_is_accepted() -> None:
    sql = (
        "WITH totals AS (SELECT entry_date, total_register FROM daily_entries WHERE tenant_id = 't-42') "
        "SELECT * FROM totals"
    )
    assert validate(sql, TENANT).accepted


def test_strip_sql_fences() -> None:
    assert strip_sql_fences("```sql\nSELECT 1;\n```") == "SELECT 1"
    assert strip_sql_fences("```\nSELECT 2\n```") == "SELECT 2"
    assert strip_sql_fences("  SELECT 3  ") == "SELECT 3"


def test_row_cap_appended_only_when_missing() -> None:
    assert ensure_row_cap("SELECT * FROM invoices", 500) == "SELECT * FROM invoices LIMIT 500"
    assert ensure_row_cap("SELECT * FROM invoices LIMIT 10", 500) == "SELECT * FROM invoices LIMIT 10"


def test_prepare_raises_on_rejection() -> None:
    with pytest.raises(QueryRejectedByPolicy) as excinfo:
        prepare("UPDATE invoices SET subtotal = 0", TENANT, 500)
    assert excinfo.value.reason


def test_prepare_returns_capped_sql() -> None:
    sql = prepare("```sql\nSELECT * FROM invoices WHERE tenant_id = 't-42';\n```", TENANT, 50)
    assert sql == "SELECT * FROM invoices WHERE tenant_id = 't-42' LIMIT 50"


def test_is_schema_error() -> None:
    assert is_schema_error('relation "invoices" does not exist')
    assert is_schema_error("no such table: invoices")
    assert not is_schema_error("division by zero")


def test_qualify_tables_prefixes_bare_names() -> None:
    sql = "SELECT * FROM invoices i JOIN suppliers s ON s.id = i.supplier_id WHERE i.tenant_id = 't-42'"
    assert qualify_tables(sql, "public") == (
        "SELECT * FROM public.invoices i JOIN public.suppliers s ON s.id = i.supplier_id "
        "WHERE i.tenant_id = 't-42'"
    )


def test_qualify_tables_skips_ctes_qualified_names_and_extract() -> None:
    sql = (
        "WITH totals AS (SELECT EXTRACT(MONTH FROM entry_date) AS m FROM daily_entries) "
        "SELECT * FROM totals JOIN public.goals g ON true"
    )
    assert qualify_tables(sql, "public") == (
        "WITH totals AS (SELECT EXTRACT(MONTH FROM entry_date) AS m FROM public.daily_entries) "
        "SELECT * FROM totals JOIN public.goals g ON true"
    )
