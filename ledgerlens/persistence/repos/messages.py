from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerlens.domain.models import ChatMessage


async def add_message(
    session: AsyncSession,
    session_id: str,
    role: str,
    content: str,
    chart: dict[str, Any] | None = None,
) -> ChatMessage:
    message = ChatMessage(session_id=session_id, role=role, content=content, chart=chart)
    session.add(message)
    return message


async def list_messages(session: AsyncSession, session_id: str) -> list[ChatMessage]:
    result = await session.execute(
        select(ChatMessage)
        .where(ChatMessage.session_id == session_id)
        .order_by(ChatMessage.created_at.asc())
    )
    return list(result.scalars().all())
