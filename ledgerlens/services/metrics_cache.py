from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable
from uuid import uuid4
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledgerlens.core import background
from ledgerlens.core.config import get_settings
from ledgerlens.core.errors import PersistenceFailed
from ledgerlens.domain.models import MonthlyMetrics
from ledgerlens.persistence.repos import metrics as metrics_repo
from ledgerlens.persistence.repos.metrics import DailyTotals

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeriodInputs:
    year: int
    month: int
    totals: DailyTotals
    goods_cost: float
    operating_cost: float
    vat_rate: float
    markup: float
    manager_salary: float
    expected_work_days: float
    revenue_target: float | None = None
    labor_target_pct: float | None = None
    food_target_pct: float | None = None
    operating_target_pct: float | None = None
    prev_month_income: float = 0.0
    prev_year_income: float = 0.0


@dataclass(frozen=True)
class MetricsSummary:
    tenant_id: str
    year: int
    month: int
    values: dict[str, Any]
    computed_at: datetime
    # Hit/miss marker only; two reads of the same cached period compare equal.
    cached: bool = field(default=False, compare=False)

    @classmethod
    def from_row(cls, row: MonthlyMetrics) -> "MetricsSummary":
        values = {
            column.name: getattr(row, column.name)
            for column in MonthlyMetrics.__table__.columns
            if column.name not in {"id", "tenant_id", "year", "month", "computed_at"}
        }
        return cls(row.tenant_id, row.year, row.month, values, _as_utc(row.computed_at), cached=True)

    def as_context(self) -> dict[str, Any]:
        return {"year": self.year, "month": self.month, **self.values}


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo; stored values are always UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _r2(value: float | None) -> float | None:
    return None if value is None else round(float(value), 2)


def _positive(value: float | None) -> float | None:
    return float(value) if value is not None and float(value) > 0 else None


def month_bounds(year: int, month: int) -> tuple[date, date]:
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, end


def previous_month(year: int, month: int) -> tuple[int, int]:
    return (year - 1, 12) if month == 1 else (year, month - 1)


def expected_work_days(year: int, month: int, factors: dict[int, float], default: float = 1.0) -> float:
    # Schedule rows use 0 = Sunday; Python's weekday() uses 0 = Monday.
    total = 0.0
    for day in range(1, calendar.monthrange(year, month)[1] + 1):
        dow = (date(year, month, day).weekday() + 1) % 7
        total += factors.get(dow, default)
    return total


def _cost_variance(pct: float, target: float | None, income_before_vat: float) -> tuple[float | None, float | None]:
    if target is None:
        return None, None
    diff_pct = pct - target
    diff_amount = diff_pct * income_before_vat / 100 if income_before_vat > 0 else None
    return diff_pct, diff_amount


def derive_summary(inputs: PeriodInputs) -> dict[str, Any]:
    totals = inputs.totals
    income_before_vat = totals.income / (1 + inputs.vat_rate)
    factor_sum = totals.day_factor_sum
    expected = inputs.expected_work_days

    daily_avg = income_before_vat / factor_sum if factor_sum > 0 else 0.0
    pace = daily_avg * expected
    manager_daily = inputs.manager_salary / expected if expected > 0 else 0.0
    labor = (totals.labor_cost + manager_daily * totals.day_count) * inputs.markup

    def pct_of_income(amount: float) -> float:
        return amount / income_before_vat * 100 if income_before_vat > 0 else 0.0

    labor_pct = pct_of_income(labor)
    food_pct = pct_of_income(inputs.goods_cost)
    operating_pct = pct_of_income(inputs.operating_cost)

    target = _positive(inputs.revenue_target)
    if target is None:
        target_diff_pct = None
        target_diff_amount = None
    else:
        target_diff_pct = (pace / target - 1) * 100
        target_diff_amount = (pace - target) / expected * factor_sum if expected > 0 else 0.0

    labor_target = _positive(inputs.labor_target_pct)
    food_target = _positive(inputs.food_target_pct)
    operating_target = _positive(inputs.operating_target_pct)
    labor_diff_pct, labor_diff_amount = _cost_variance(labor_pct, labor_target, income_before_vat)
    food_diff_pct, food_diff_amount = _cost_variance(food_pct, food_target, income_before_vat)
    operating_diff_pct, operating_diff_amount = _cost_variance(
        operating_pct, operating_target, income_before_vat
    )

    prev_month_change = (pace / inputs.prev_month_income - 1) * 100 if inputs.prev_month_income > 0 else None
    prev_year_change = (pace / inputs.prev_year_income - 1) * 100 if inputs.prev_year_income > 0 else None

    return {
        "actual_work_days": totals.day_count,
        "actual_day_factors": _r2(factor_sum),
        "expected_work_days": _r2(expected),
        "total_income": _r2(totals.income),
        "income_before_vat": _r2(income_before_vat),
        "monthly_pace": _r2(pace),
        "daily_avg": _r2(daily_avg),
        "revenue_target": _r2(target),
        "target_diff_pct": _r2(target_diff_pct),
        "target_diff_amount": _r2(target_diff_amount),
        "labor_cost_amount": _r2(labor),
        "labor_cost_pct": _r2(labor_pct),
        "labor_target_pct": _r2(labor_target),
        "labor_diff_pct": _r2(labor_diff_pct),
        "labor_diff_amount": _r2(labor_diff_amount),
        "food_cost_amount": _r2(inputs.goods_cost),
        "food_cost_pct": _r2(food_pct),
        "food_target_pct": _r2(food_target),
        "food_diff_pct": _r2(food_diff_pct),
        "food_diff_amount": _r2(food_diff_amount),
        "operating_cost_amount": _r2(inputs.operating_cost),
        "operating_cost_pct": _r2(operating_pct),
        "operating_target_pct": _r2(operating_target),
        "operating_diff_pct": _r2(operating_diff_pct),
        "operating_diff_amount": _r2(operating_diff_amount),
        "total_labor_hours": _r2(totals.labor_hours),
        "total_discounts": _r2(totals.discounts),
        "manager_daily_cost": _r2(manager_daily),
        "vat_pct": inputs.vat_rate,
        "markup_pct": inputs.markup,
        "prev_month_income": _r2(inputs.prev_month_income),
        "prev_month_change_pct": _r2(prev_month_change),
        "prev_year_income": _r2(inputs.prev_year_income),
        "prev_year_change_pct": _r2(prev_year_change),
    }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _first_set(*values: float | None, default: float) -> float:
    for value in values:
        if value is not None:
            return float(value)
    return default


class MetricsCacheManager:
    def __init__(
        self,
        session: AsyncSession,
        *,
        session_factory: async_sessionmaker | None = None,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._session = session
        self._session_factory = session_factory
        self._now = now
        self._settings = get_settings()

    def today(self) -> date:
        return self._now().astimezone(ZoneInfo(self._settings.timezone)).date()

    def _is_fresh(self, row: MonthlyMetrics, year: int, month: int) -> bool:
        today = self.today()
        if (year, month) != (today.year, today.month):
            # Closed periods are served from the cache as-is.
            return True
        age = self._now() - _as_utc(row.computed_at)
        return age < timedelta(seconds=self._settings.metrics_stale_window_s)

    async def get_monthly_summary(self, tenant_id: str, year: int, month: int) -> MetricsSummary:
        row = await metrics_repo.get_monthly_metrics(self._session, tenant_id, year, month)
        if row is not None and self._is_fresh(row, year, month):
            logger.info("metrics_cache_hit tenant_id=%s period=%04d-%02d", tenant_id, year, month)
            return MetricsSummary.from_row(row)
        logger.info(
            "metrics_cache_recompute tenant_id=%s period=%04d-%02d reason=%s",
            tenant_id,
            year,
            month,
            "missing" if row is None else "stale",
        )
        summary = await self.compute(tenant_id, year, month)
        self._schedule_upsert(summary)
        return summary

    async def force_refresh(self, tenant_id: str, year: int, month: int) -> MetricsSummary:
        summary = await self.compute(tenant_id, year, month)
        try:
            await metrics_repo.upsert_monthly_metrics(self._session, self._row_values(summary))
            await self._session.commit()
        except Exception as exc:
            await self._session.rollback()
            logger.exception("metrics_refresh_failed tenant_id=%s period=%04d-%02d", tenant_id, year, month)
            raise PersistenceFailed("monthly metrics upsert failed") from exc
        return summary

    async def compute(self, tenant_id: str, year: int, month: int) -> MetricsSummary:
        session = self._session
        start, end = month_bounds(year, month)
        totals = await metrics_repo.daily_totals(session, tenant_id, start, end)
        invoices = await metrics_repo.invoice_subtotals_by_type(session, tenant_id, start, end)
        goal = await metrics_repo.get_goal(session, tenant_id, year, month)
        tenant = await metrics_repo.get_tenant(session, tenant_id)
        factors = await metrics_repo.weekday_factors(session, tenant_id)

        prev_start, prev_end = month_bounds(*previous_month(year, month))
        prev_month_income = await metrics_repo.period_income(session, tenant_id, prev_start, prev_end)
        last_year_start, last_year_end = month_bounds(year - 1, month)
        prev_year_income = await metrics_repo.period_income(session, tenant_id, last_year_start, last_year_end)

        inputs = PeriodInputs(
            year=year,
            month=month,
            totals=totals,
            goods_cost=invoices.get("goods_purchases", 0.0),
            operating_cost=invoices.get("current_expenses", 0.0),
            vat_rate=_first_set(
                goal.vat_percentage if goal else None,
                tenant.vat_rate if tenant else None,
                default=self._settings.default_tax_rate,
            ),
            markup=_first_set(
                goal.markup_percentage if goal else None,
                tenant.markup_pct if tenant else None,
                default=self._settings.default_markup,
            ),
            manager_salary=float(tenant.manager_monthly_salary or 0.0) if tenant else 0.0,
            expected_work_days=expected_work_days(year, month, factors),
            revenue_target=goal.revenue_target if goal else None,
            labor_target_pct=goal.labor_cost_target_pct if goal else None,
            food_target_pct=goal.food_cost_target_pct if goal else None,
            operating_target_pct=goal.operating_cost_target_pct if goal else None,
            prev_month_income=prev_month_income,
            prev_year_income=prev_year_income,
        )
        return MetricsSummary(
            tenant_id=tenant_id,
            year=year,
            month=month,
            values=derive_summary(inputs),
            computed_at=_as_utc(self._now()),
            cached=False,
        )

    def _row_values(self, summary: MetricsSummary) -> dict[str, Any]:
        return {
            "id": uuid4(),
            "tenant_id": summary.tenant_id,
            "year": summary.year,
            "month": summary.month,
            "computed_at": summary.computed_at,
            **summary.values,
        }

    def _schedule_upsert(self, summary: MetricsSummary) -> None:
        if self._session_factory is None:
            return
        background.spawn(self._persist(self._row_values(summary)), name="metrics_upsert")

    async def _persist(self, values: dict[str, Any]) -> None:
        # Runs on its own session; the request session may already be closed.
        try:
            async with self._session_factory() as session:
                await metrics_repo.upsert_monthly_metrics(session, values)
                await session.commit()
        except Exception:
            logger.exception(
                "metrics_upsert_failed tenant_id=%s period=%04d-%02d",
                values["tenant_id"],
                values["year"],
                values["month"],
            )

