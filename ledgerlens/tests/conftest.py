from __future__ import annotations

import os
import tempfile

# Point the engine at a throwaway SQLite file before any ledgerlens module builds it.
_DB_PATH = os.path.join(tempfile.mkdtemp(prefix="ledgerlens-tests-"), "ledgerlens.db")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_PATH}")
os.environ.setdefault("LLM_PROVIDER", "fake")
os.environ.setdefault("SQL_SCHEMA", "main")

import pytest
from sqlalchemy import create_engine

from ledgerlens.apps.api import rate_limit
from ledgerlens.core import background
from ledgerlens.core.config import get_settings
from ledgerlens.domain.models import Base
from ledgerlens.persistence.db import engine


@pytest.fixture(scope="session", autouse=True)
def create_schema() -> None:
    # Build tables once with a sync driver so no event loop is needed at session scope.
    url = os.environ["DATABASE_URL"]
    if url.startswith("sqlite+aiosqlite"):
        sync_engine = create_engine(url.replace("sqlite+aiosqlite", "sqlite", 1))
        Base.metadata.create_all(sync_engine)
        sync_engine.dispose()
    yield


@pytest.fixture(autouse=True)
async def dispose_engine_between_tests() -> None:
    # Finish fire-and-forget writes, then drop pooled connections bound to this test's loop.
    yield
    await background.drain()
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_cached_state() -> None:
    # Clear settings cache and limiter buckets so env overrides never leak across tests.
    get_settings.cache_clear()
    rate_limit.reset_rate_limiter_state()
    yield
    get_settings.cache_clear()
    rate_limit.reset_rate_limiter_state()
