from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String)
    # Fallbacks used when a month has no goal row.
    vat_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    markup_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    manager_monthly_salary: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    # Cross-tenant capability; everyone else is bound to memberships.
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class TenantMember(Base):
    __tablename__ = "tenant_members"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_tenant_members_tenant_user"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[str] = mapped_column(String, ForeignKey("tenants.id"), index=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ChatSession(Base):
    __tablename__ = "chat_sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    # Null for cross-tenant admin sessions.
    tenant_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    session_id: Mapped[str] = mapped_column(String, ForeignKey("chat_sessions.id"), index=True)
    role: Mapped[str] = mapped_column(String)
    content: Mapped[str] = mapped_column(Text)
    chart: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class DailyEntry(Base):
    __tablename__ = "daily_entries"
    __table_args__ = (
        UniqueConstraint("tenant_id", "entry_date", name="uq_daily_entries_tenant_date"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[str] = mapped_column(String, ForeignKey("tenants.id"), index=True)
    entry_date: Mapped[date] = mapped_column(Date)
    total_register: Mapped[float] = mapped_column(Float, default=0.0)
    labor_cost: Mapped[float] = mapped_column(Float, default=0.0)
    labor_hours: Mapped[float] = mapped_column(Float, default=0.0)
    discounts: Mapped[float] = mapped_column(Float, default=0.0)
    # Weight of the day relative to a full trading day (half days, holidays).
    day_factor: Mapped[float] = mapped_column(Float, default=1.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Supplier(Base):
    __tablename__ = "suppliers"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, ForeignKey("tenants.id"), index=True)
    name: Mapped[str] = mapped_column(String)
    # goods_purchases feeds cost of goods, current_expenses feeds operating cost.
    expense_type: Mapped[str] = mapped_column(String, default="current_expenses")


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (Index("ix_invoices_tenant_date", "tenant_id", "invoice_date"),)

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[str] = mapped_column(String, ForeignKey("tenants.id"), index=True)
    supplier_id: Mapped[str] = mapped_column(String, ForeignKey("suppliers.id"), index=True)
    invoice_date: Mapped[date] = mapped_column(Date)
    subtotal: Mapped[float] = mapped_column(Float, default=0.0)
    vat_amount: Mapped[float] = mapped_column(Float, default=0.0)
    total_amount: Mapped[float] = mapped_column(Float, default=0.0)


class Goal(Base):
    __tablename__ = "goals"
    __table_args__ = (
        UniqueConstraint("tenant_id", "year", "month", name="uq_goals_tenant_period"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[str] = mapped_column(String, ForeignKey("tenants.id"), index=True)
    year: Mapped[int] = mapped_column(Integer)
    month: Mapped[int] = mapped_column(Integer)
    revenue_target: Mapped[float | None] = mapped_column(Float, nullable=True)
    labor_cost_target_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    food_cost_target_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    operating_cost_target_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    vat_percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    markup_percentage: Mapped[float | None] = mapped_column(Float, nullable=True)


class WeeklySchedule(Base):
    __tablename__ = "weekly_schedules"
    __table_args__ = (
        UniqueConstraint("tenant_id", "day_of_week", name="uq_weekly_schedules_tenant_day"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[str] = mapped_column(String, ForeignKey("tenants.id"), index=True)
    # 0 = Sunday .. 6 = Saturday, matching the register export convention.
    day_of_week: Mapped[int] = mapped_column(Integer)
    day_factor: Mapped[float] = mapped_column(Float, default=1.0)


class MonthlyMetrics(Base):
    __tablename__ = "monthly_metrics"
    __table_args__ = (
        UniqueConstraint("tenant_id", "year", "month", name="uq_monthly_metrics_tenant_period"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[str] = mapped_column(String, ForeignKey("tenants.id"), index=True)
    year: Mapped[int] = mapped_column(Integer)
    month: Mapped[int] = mapped_column(Integer)
    actual_work_days: Mapped[int] = mapped_column(Integer, default=0)
    actual_day_factors: Mapped[float] = mapped_column(Float, default=0.0)
    expected_work_days: Mapped[float] = mapped_column(Float, default=0.0)
    total_income: Mapped[float] = mapped_column(Float, default=0.0)
    income_before_vat: Mapped[float] = mapped_column(Float, default=0.0)
    monthly_pace: Mapped[float] = mapped_column(Float, default=0.0)
    daily_avg: Mapped[float] = mapped_column(Float, default=0.0)
    revenue_target: Mapped[float | None] = mapped_column(Float, nullable=True)
    target_diff_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    target_diff_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    labor_cost_amount: Mapped[float] = mapped_column(Float, default=0.0)
    labor_cost_pct: Mapped[float] = mapped_column(Float, default=0.0)
    labor_target_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    labor_diff_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    labor_diff_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    food_cost_amount: Mapped[float] = mapped_column(Float, default=0.0)
    food_cost_pct: Mapped[float] = mapped_column(Float, default=0.0)
    food_target_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    food_diff_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    food_diff_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    operating_cost_amount: Mapped[float] = mapped_column(Float, default=0.0)
    operating_cost_pct: Mapped[float] = mapped_column(Float, default=0.0)
    operating_target_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    operating_diff_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    operating_diff_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_labor_hours: Mapped[float] = mapped_column(Float, default=0.0)
    total_discounts: Mapped[float] = mapped_column(Float, default=0.0)
    manager_daily_cost: Mapped[float] = mapped_column(Float, default=0.0)
    vat_pct: Mapped[float] = mapped_column(Float, default=0.0)
    markup_pct: Mapped[float] = mapped_column(Float, default=1.0)
    prev_month_income: Mapped[float | None] = mapped_column(Float, nullable=True)
    prev_month_change_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    prev_year_income: Mapped[float | None] = mapped_column(Float, nullable=True)
    prev_year_change_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
