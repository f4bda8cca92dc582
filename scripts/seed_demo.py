from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy import select

from ledgerlens.domain.models import (
    DailyEntry,
    Goal,
    Invoice,
    Supplier,
    Tenant,
    TenantMember,
    User,
    WeeklySchedule,
)
from ledgerlens.persistence.db import SessionLocal


DEMO_TENANT_ID = "t-demo"
DEMO_USER_ID = "u-demo"
DEMO_ADMIN_ID = "u-admin"
DEMO_DAYS = 60
# Sunday-first factors: Friday is a half day, Saturday is closed.
DEMO_WEEK = (1.0, 1.0, 1.0, 1.0, 1.0, 0.5, 0.0)


@dataclass(frozen=True)
class DemoSupplier:
    id: str
    name: str
    expense_type: str
    weekly_subtotal: float


def build_demo_suppliers() -> tuple[DemoSupplier, ...]:
    return (
        DemoSupplier("sup-demo-produce", "Green Valley Produce", "goods_purchases", 2400.0),
        DemoSupplier("sup-demo-meat", "Hill Butchers", "goods_purchases", 3100.0),
        DemoSupplier("sup-demo-utilities", "City Utilities", "current_expenses", 900.0),
    )


def build_demo_entries(today: date) -> list[DailyEntry]:
    # Deterministic register totals so repeated seeds produce the same figures.
    entries: list[DailyEntry] = []
    for offset in range(DEMO_DAYS, 0, -1):
        day = today - timedelta(days=offset)
        factor = DEMO_WEEK[(day.weekday() + 1) % 7]
        if factor == 0:
            continue
        base = 9000.0 + (day.day % 7) * 350.0
        entries.append(
            DailyEntry(
                tenant_id=DEMO_TENANT_ID,
                entry_date=day,
                total_register=round(base * factor, 2),
                labor_cost=round(2100.0 * factor, 2),
                labor_hours=round(42.0 * factor, 1),
                discounts=round(base * factor * 0.02, 2),
                day_factor=factor,
            )
        )
    return entries


def build_demo_invoices(today: date) -> list[Invoice]:
    invoices: list[Invoice] = []
    for supplier in build_demo_suppliers():
        for week in range(DEMO_DAYS // 7):
            subtotal = supplier.weekly_subtotal
            invoices.append(
                Invoice(
                    tenant_id=DEMO_TENANT_ID,
                    supplier_id=supplier.id,
                    invoice_date=today - timedelta(days=7 * week + 1),
                    subtotal=subtotal,
                    vat_amount=round(subtotal * 0.18, 2),
                    total_amount=round(subtotal * 1.18, 2),
                )
            )
    return invoices


async def seed_demo() -> int:
    today = date.today()
    async with SessionLocal() as session:
        if await session.get(Tenant, DEMO_TENANT_ID) is not None:
            print("Demo tenant already seeded; skipping.")
            return 0

        session.add(
            Tenant(
                id=DEMO_TENANT_ID,
                name="Demo Bistro",
                vat_rate=0.18,
                markup_pct=1.0,
                manager_monthly_salary=15000.0,
            )
        )
        for user_id, is_admin in ((DEMO_USER_ID, False), (DEMO_ADMIN_ID, True)):
            existing = await session.execute(select(User.id).where(User.id == user_id))
            if existing.scalar_one_or_none() is None:
                session.add(User(id=user_id, email=f"{user_id}@example.com", is_admin=is_admin))
        await session.flush()
        session.add(TenantMember(tenant_id=DEMO_TENANT_ID, user_id=DEMO_USER_ID))
        for day_of_week, factor in enumerate(DEMO_WEEK):
            session.add(WeeklySchedule(tenant_id=DEMO_TENANT_ID, day_of_week=day_of_week, day_factor=factor))
        session.add(
            Goal(
                tenant_id=DEMO_TENANT_ID,
                year=today.year,
                month=today.month,
                revenue_target=240000.0,
                labor_cost_target_pct=28.0,
                food_cost_target_pct=30.0,
                operating_cost_target_pct=12.0,
            )
        )
        for supplier in build_demo_suppliers():
            session.add(
                Supplier(
                    id=supplier.id,
                    tenant_id=DEMO_TENANT_ID,
                    name=supplier.name,
                    expense_type=supplier.expense_type,
                )
            )
        await session.flush()
        entries = build_demo_entries(today)
        invoices = build_demo_invoices(today)
        session.add_all(entries)
        session.add_all(invoices)
        await session.commit()
        print(f"Seeded demo tenant with {len(entries)} daily entries and {len(invoices)} invoices.")
        return 0


def main() -> int:
    # Surface clear failures and exit non-zero so CI/dev scripts can detect issues.
    try:
        return asyncio.run(seed_demo())
    except Exception as exc:  # noqa: BLE001 - surface any setup or DB errors
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
