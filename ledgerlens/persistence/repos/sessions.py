from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerlens.core.errors import DatabaseError
from ledgerlens.domain.models import ChatSession


async def get_chat_session(session: AsyncSession, session_id: str) -> ChatSession | None:
    result = await session.execute(select(ChatSession).where(ChatSession.id == session_id))
    return result.scalar_one_or_none()


async def ensure_chat_session(
    session: AsyncSession,
    session_id: str,
    user_id: str,
    tenant_id: str | None,
    title: str | None = None,
) -> ChatSession:
    existing = await get_chat_session(session, session_id)
    if existing:
        # Sessions never move between owners or tenants once created.
        if existing.user_id != user_id or existing.tenant_id != tenant_id:
            raise DatabaseError("chat session owner does not match")
        return existing
    created = ChatSession(id=session_id, user_id=user_id, tenant_id=tenant_id, title=title)
    session.add(created)
    await session.flush()
    return created
