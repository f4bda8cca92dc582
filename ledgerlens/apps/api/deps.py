from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, Response, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerlens.apps.api.rate_limit import enforce_rate_limit
from ledgerlens.core.config import get_settings
from ledgerlens.persistence.db import get_session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


class Principal(BaseModel):
    # Authenticated caller; tenant binding is resolved per request from memberships.
    caller_id: str


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
    )


async def get_current_principal(request: Request) -> Principal:
    settings = get_settings()
    caller_id = (request.headers.get(settings.auth_user_header) or "").strip()
    if not caller_id:
        raise _auth_error(f"{settings.auth_user_header} header is required")
    return Principal(caller_id=caller_id)


async def require_rate_limited_principal(
    request: Request,
    response: Response,
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    # Rate limiting runs before any tenant lookup or model call.
    await enforce_rate_limit(request=request, response=response, caller_id=principal.caller_id)
    return principal
