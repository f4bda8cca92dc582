from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerlens.domain.models import (
    DailyEntry,
    Goal,
    Invoice,
    MonthlyMetrics,
    Supplier,
    Tenant,
    WeeklySchedule,
)
from ledgerlens.persistence.guards import tenant_predicate


@dataclass(frozen=True)
class DailyTotals:
    income: float
    labor_cost: float
    labor_hours: float
    discounts: float
    day_factor_sum: float
    day_count: int


async def get_tenant(session: AsyncSession, tenant_id: str) -> Tenant | None:
    result = await session.execute(select(Tenant).where(Tenant.id == tenant_id))
    return result.scalar_one_or_none()


async def get_monthly_metrics(
    session: AsyncSession, tenant_id: str, year: int, month: int
) -> MonthlyMetrics | None:
    result = await session.execute(
        select(MonthlyMetrics).where(
            tenant_predicate(MonthlyMetrics, tenant_id),
            MonthlyMetrics.year == year,
            MonthlyMetrics.month == month,
        )
    )
    return result.scalar_one_or_none()


async def daily_totals(session: AsyncSession, tenant_id: str, start: date, end: date) -> DailyTotals:
    # Half-open range [start, end) keeps month boundaries exact.
    result = await session.execute(
        select(
            func.coalesce(func.sum(DailyEntry.total_register), 0.0),
            func.coalesce(func.sum(DailyEntry.labor_cost), 0.0),
            func.coalesce(func.sum(DailyEntry.labor_hours), 0.0),
            func.coalesce(func.sum(DailyEntry.discounts), 0.0),
            func.coalesce(func.sum(DailyEntry.day_factor), 0.0),
            func.count(DailyEntry.id),
        ).where(
            tenant_predicate(DailyEntry, tenant_id),
            DailyEntry.entry_date >= start,
            DailyEntry.entry_date < end,
        )
    )
    income, labor, hours, discounts, factors, count = result.one()
    return DailyTotals(
        income=float(income),
        labor_cost=float(labor),
        labor_hours=float(hours),
        discounts=float(discounts),
        day_factor_sum=float(factors),
        day_count=int(count),
    )


async def period_income(session: AsyncSession, tenant_id: str, start: date, end: date) -> float:
    result = await session.execute(
        select(func.coalesce(func.sum(DailyEntry.total_register), 0.0)).where(
            tenant_predicate(DailyEntry, tenant_id),
            DailyEntry.entry_date >= start,
            DailyEntry.entry_date < end,
        )
    )
    return float(result.scalar_one())


async def invoice_subtotals_by_type(
    session: AsyncSession, tenant_id: str, start: date, end: date
) -> dict[str, float]:
    result = await session.execute(
        select(Supplier.expense_type, func.coalesce(func.sum(Invoice.subtotal), 0.0))
        .join(Supplier, Supplier.id == Invoice.supplier_id)
        .where(
            tenant_predicate(Invoice, tenant_id),
            Invoice.invoice_date >= start,
            Invoice.invoice_date < end,
        )
        .group_by(Supplier.expense_type)
    )
    return {str(kind): float(total) for kind, total in result.all()}


async def get_goal(session: AsyncSession, tenant_id: str, year: int, month: int) -> Goal | None:
    result = await session.execute(
        select(Goal).where(tenant_predicate(Goal, tenant_id), Goal.year == year, Goal.month == month)
    )
    return result.scalar_one_or_none()


async def weekday_factors(session: AsyncSession, tenant_id: str) -> dict[int, float]:
    result = await session.execute(
        select(WeeklySchedule.day_of_week, WeeklySchedule.day_factor).where(
            tenant_predicate(WeeklySchedule, tenant_id)
        )
    )
    return {int(day): float(factor) for day, factor in result.all()}


async def upsert_monthly_metrics(session: AsyncSession, values: dict[str, Any]) -> None:
    # Conflict target mirrors uq_monthly_metrics_tenant_period.
    dialect = session.get_bind().dialect.name
    insert = pg_insert if dialect == "postgresql" else sqlite_insert
    stmt = insert(MonthlyMetrics).values(**values)
    update_cols = {
        key: getattr(stmt.excluded, key)
        for key in values
        if key not in {"id", "tenant_id", "year", "month"}
    }
    stmt = stmt.on_conflict_do_update(
        index_elements=[MonthlyMetrics.tenant_id, MonthlyMetrics.year, MonthlyMetrics.month],
        set_=update_cols,
    )
    await session.execute(stmt)
