from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerlens.domain.models import TenantMember, User


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def list_tenant_ids(session: AsyncSession, user_id: str) -> list[str]:
    # Oldest membership first so auto-selection is stable.
    result = await session.execute(
        select(TenantMember.tenant_id)
        .where(TenantMember.user_id == user_id)
        .order_by(TenantMember.created_at.asc(), TenantMember.tenant_id.asc())
    )
    return [row[0] for row in result.all()]
