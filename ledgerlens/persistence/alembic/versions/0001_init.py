"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-09-02 09:30:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _float(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.Float(), nullable=True)
    return sa.Column(name, sa.Float(), nullable=False, server_default="0")


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("vat_rate", sa.Float(), nullable=True),
        sa.Column("markup_pct", sa.Float(), nullable=True),
        sa.Column("manager_monthly_salary", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "tenant_members",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "user_id", name="uq_tenant_members_tenant_user"),
    )
    op.create_index("ix_tenant_members_tenant_id", "tenant_members", ["tenant_id"])
    op.create_index("ix_tenant_members_user_id", "tenant_members", ["user_id"])

    op.create_table(
        "chat_sessions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=True),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_chat_sessions_user_id", "chat_sessions", ["user_id"])
    op.create_index("ix_chat_sessions_tenant_id", "chat_sessions", ["tenant_id"])

    op.create_table(
        "chat_messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("session_id", sa.String(), sa.ForeignKey("chat_sessions.id"), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("chart", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_chat_messages_session_id", "chat_messages", ["session_id"])

    op.create_table(
        "daily_entries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("entry_date", sa.Date(), nullable=False),
        _float("total_register"),
        _float("labor_cost"),
        _float("labor_hours"),
        _float("discounts"),
        sa.Column("day_factor", sa.Float(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "entry_date", name="uq_daily_entries_tenant_date"),
    )
    op.create_index("ix_daily_entries_tenant_id", "daily_entries", ["tenant_id"])

    op.create_table(
        "suppliers",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("expense_type", sa.String(), nullable=False, server_default="current_expenses"),
    )
    op.create_index("ix_suppliers_tenant_id", "suppliers", ["tenant_id"])

    op.create_table(
        "invoices",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("supplier_id", sa.String(), sa.ForeignKey("suppliers.id"), nullable=False),
        sa.Column("invoice_date", sa.Date(), nullable=False),
        _float("subtotal"),
        _float("vat_amount"),
        _float("total_amount"),
    )
    op.create_index("ix_invoices_tenant_id", "invoices", ["tenant_id"])
    op.create_index("ix_invoices_supplier_id", "invoices", ["supplier_id"])
    op.create_index("ix_invoices_tenant_date", "invoices", ["tenant_id", "invoice_date"])

    op.create_table(
        "goals",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        _float("revenue_target", nullable=True),
        _float("labor_cost_target_pct", nullable=True),
        _float("food_cost_target_pct", nullable=True),
        _float("operating_cost_target_pct", nullable=True),
        _float("vat_percentage", nullable=True),
        _float("markup_percentage", nullable=True),
        sa.UniqueConstraint("tenant_id", "year", "month", name="uq_goals_tenant_period"),
    )
    op.create_index("ix_goals_tenant_id", "goals", ["tenant_id"])

    op.create_table(
        "weekly_schedules",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("day_factor", sa.Float(), nullable=False, server_default="1"),
        sa.UniqueConstraint("tenant_id", "day_of_week", name="uq_weekly_schedules_tenant_day"),
    )
    op.create_index("ix_weekly_schedules_tenant_id", "weekly_schedules", ["tenant_id"])

    op.create_table(
        "monthly_metrics",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("actual_work_days", sa.Integer(), nullable=False, server_default="0"),
        _float("actual_day_factors"),
        _float("expected_work_days"),
        _float("total_income"),
        _float("income_before_vat"),
        _float("monthly_pace"),
        _float("daily_avg"),
        _float("revenue_target", nullable=True),
        _float("target_diff_pct", nullable=True),
        _float("target_diff_amount", nullable=True),
        _float("labor_cost_amount"),
        _float("labor_cost_pct"),
        _float("labor_target_pct", nullable=True),
        _float("labor_diff_pct", nullable=True),
        _float("labor_diff_amount", nullable=True),
        _float("food_cost_amount"),
        _float("food_cost_pct"),
        _float("food_target_pct", nullable=True),
        _float("food_diff_pct", nullable=True),
        _float("food_diff_amount", nullable=True),
        _float("operating_cost_amount"),
        _float("operating_cost_pct"),
        _float("operating_target_pct", nullable=True),
        _float("operating_diff_pct", nullable=True),
        _float("operating_diff_amount", nullable=True),
        _float("total_labor_hours"),
        _float("total_discounts"),
        _float("manager_daily_cost"),
        _float("vat_pct"),
        sa.Column("markup_pct", sa.Float(), nullable=False, server_default="1"),
        _float("prev_month_income", nullable=True),
        _float("prev_month_change_pct", nullable=True),
        _float("prev_year_income", nullable=True),
        _float("prev_year_change_pct", nullable=True),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("tenant_id", "year", "month", name="uq_monthly_metrics_tenant_period"),
    )
    op.create_index("ix_monthly_metrics_tenant_id", "monthly_metrics", ["tenant_id"])


def downgrade() -> None:
    op.drop_index("ix_monthly_metrics_tenant_id", table_name="monthly_metrics")
    op.drop_table("monthly_metrics")
    op.drop_index("ix_weekly_schedules_tenant_id", table_name="weekly_schedules")
    op.drop_table("weekly_schedules")
    op.drop_index("ix_goals_tenant_id", table_name="goals")
    op.drop_table("goals")
    op.drop_index("ix_invoices_tenant_date", table_name="invoices")
    op.drop_index("ix_invoices_supplier_id", table_name="invoices")
    op.drop_index("ix_invoices_tenant_id", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("ix_suppliers_tenant_id", table_name="suppliers")
    op.drop_table("suppliers")
    op.drop_index("ix_daily_entries_tenant_id", table_name="daily_entries")
    op.drop_table("daily_entries")
    op.drop_index("ix_chat_messages_session_id", table_name="chat_messages")
    op.drop_table("chat_messages")
    op.drop_index("ix_chat_sessions_tenant_id", table_name="chat_sessions")
    op.drop_index("ix_chat_sessions_user_id", table_name="chat_sessions")
    op.drop_table("chat_sessions")
    op.drop_index("ix_tenant_members_user_id", table_name="tenant_members")
    op.drop_index("ix_tenant_members_tenant_id", table_name="tenant_members")
    op.drop_table("tenant_members")
    op.drop_table("users")
    op.drop_table("tenants")
