from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ledgerlens.core.config import get_settings


def _engine_kwargs(url: str) -> dict[str, Any]:
    settings = get_settings()
    kwargs: dict[str, Any] = {"pool_pre_ping": True}
    # SQLite (tests) rejects pool sizing arguments.
    if not url.startswith("sqlite"):
        kwargs["pool_size"] = max(1, int(settings.api_db_pool_size))
        kwargs["max_overflow"] = max(0, int(settings.api_db_max_overflow))
        kwargs["pool_timeout"] = 30
        kwargs["pool_recycle"] = 1800
    return kwargs


settings = get_settings()
engine = create_async_engine(settings.database_url, **_engine_kwargs(settings.database_url))
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

# Generated SQL runs on its own pool so a SELECT-only role can be plugged in.
if settings.readonly_database_url:
    readonly_engine = create_async_engine(
        settings.readonly_database_url, **_engine_kwargs(settings.readonly_database_url)
    )
else:
    readonly_engine = engine
ReadOnlySessionLocal = async_sessionmaker(readonly_engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncSession:
    async with SessionLocal() as session:
        yield session


@asynccontextmanager
async def get_readonly_session() -> AsyncSession:
    async with ReadOnlySessionLocal() as session:
        yield session
