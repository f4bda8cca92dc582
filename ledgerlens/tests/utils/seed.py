from __future__ import annotations

from datetime import date
from uuid import uuid4

from sqlalchemy import delete, select

from ledgerlens.domain.models import (
    ChatMessage,
    ChatSession,
    DailyEntry,
    Goal,
    Invoice,
    MonthlyMetrics,
    Supplier,
    Tenant,
    TenantMember,
    User,
    WeeklySchedule,
)
from ledgerlens.persistence.db import SessionLocal


def unique_id(prefix: str) -> str:
    # Unique ids keep tests isolated on the shared SQLite file.
    return f"{prefix}-{uuid4().hex}"


async def create_user(*, is_admin: bool = False, tenant_ids: tuple[str, ...] = ()) -> str:
    user_id = unique_id("u")
    async with SessionLocal() as session:
        session.add(User(id=user_id, email=None, is_admin=is_admin))
        for tenant_id in tenant_ids:
            session.add(TenantMember(tenant_id=tenant_id, user_id=user_id))
        await session.commit()
    return user_id


async def create_tenant(
    *,
    vat_rate: float | None = None,
    markup_pct: float | None = None,
    manager_monthly_salary: float | None = None,
) -> str:
    tenant_id = unique_id("t")
    async with SessionLocal() as session:
        session.add(
            Tenant(
                id=tenant_id,
                name="Test Bistro",
                vat_rate=vat_rate,
                markup_pct=markup_pct,
                manager_monthly_salary=manager_monthly_salary,
            )
        )
        await session.commit()
    return tenant_id


async def add_daily_entries(tenant_id: str, entries: list[tuple[date, float]], **fields: float) -> None:
    # Each entry is (day, register total); other columns share the given values.
    async with SessionLocal() as session:
        for entry_date, total in entries:
            session.add(DailyEntry(tenant_id=tenant_id, entry_date=entry_date, total_register=total, **fields))
        await session.commit()


async def add_invoice(tenant_id: str, *, expense_type: str, invoice_date: date, subtotal: float) -> None:
    supplier_id = unique_id("s")
    async with SessionLocal() as session:
        session.add(Supplier(id=supplier_id, tenant_id=tenant_id, name="Supplier", expense_type=expense_type))
        await session.flush()
        session.add(
            Invoice(
                tenant_id=tenant_id,
                supplier_id=supplier_id,
                invoice_date=invoice_date,
                subtotal=subtotal,
                vat_amount=0.0,
                total_amount=subtotal,
            )
        )
        await session.commit()


async def cleanup_tenant(tenant_id: str) -> None:
    async with SessionLocal() as session:
        for model in (MonthlyMetrics, Invoice, Supplier, DailyEntry, Goal, WeeklySchedule, TenantMember):
            await session.execute(delete(model).where(model.tenant_id == tenant_id))
        await session.execute(delete(Tenant).where(Tenant.id == tenant_id))
        await session.commit()


async def cleanup_user(user_id: str) -> None:
    async with SessionLocal() as session:
        result = await session.execute(select(ChatSession.id).where(ChatSession.user_id == user_id))
        session_ids = list(result.scalars().all())
        if session_ids:
            await session.execute(delete(ChatMessage).where(ChatMessage.session_id.in_(session_ids)))
            await session.execute(delete(ChatSession).where(ChatSession.id.in_(session_ids)))
        await session.execute(delete(TenantMember).where(TenantMember.user_id == user_id))
        await session.execute(delete(User).where(User.id == user_id))
        await session.commit()
