from __future__ import annotations

import pytest

from ledgerlens.core.errors import NoTenantResolved, TenantAccessDenied
from ledgerlens.domain.models import DailyEntry
from ledgerlens.persistence.db import SessionLocal
from ledgerlens.persistence.guards import TenantPredicateError, tenant_predicate
from ledgerlens.services import sql_guard
from ledgerlens.services.tenancy import resolve_tenant
from ledgerlens.tests.utils.seed import cleanup_tenant, cleanup_user, create_tenant, create_user


@pytest.mark.asyncio
async def test_member_gets_scoped_context() -> None:
    tenant_id = await create_tenant()
    user_id = await create_user(tenant_ids=(tenant_id,))
    try:
        async with SessionLocal() as session:
            context = await resolve_tenant(session, user_id, tenant_id)
        assert context.tenant_id == tenant_id
        assert not context.is_cross_tenant_admin
        assert context.allowed_tenant_ids == (tenant_id,)
    finally:
        await cleanup_user(user_id)
        await cleanup_tenant(tenant_id)


@pytest.mark.asyncio
async def test_non_member_is_denied() -> None:
    tenant_id = await create_tenant()
    other_tenant = await create_tenant()
    user_id = await create_user(tenant_ids=(other_tenant,))
    try:
        async with SessionLocal() as session:
            with pytest.raises(TenantAccessDenied):
                await resolve_tenant(session, user_id, tenant_id)
    finally:
        await cleanup_user(user_id)
        await cleanup_tenant(tenant_id)
        await cleanup_tenant(other_tenant)


@pytest.mark.asyncio
async def test_missing_tenant_for_non_admin_is_rejected() -> None:
    tenant_id = await create_tenant()
    user_id = await create_user(tenant_ids=(tenant_id,))
    try:
        async with SessionLocal() as session:
            with pytest.raises(NoTenantResolved):
                await resolve_tenant(session, user_id, None)
    finally:
        await cleanup_user(user_id)
        await cleanup_tenant(tenant_id)


@pytest.mark.asyncio
async def test_unknown_caller_without_tenant_is_rejected() -> None:
    async with SessionLocal() as session:
        with pytest.raises(NoTenantResolved):
            await resolve_tenant(session, "u-unknown", None)


@pytest.mark.asyncio
async def test_admin_is_cross_tenant_only_without_tenant() -> None:
    user_id = await create_user(is_admin=True)
    try:
        async with SessionLocal() as session:
            unscoped = await resolve_tenant(session, user_id, None)
            scoped = await resolve_tenant(session, user_id, "t-any")
        assert unscoped.is_cross_tenant_admin
        assert unscoped.tenant_id is None
        assert not scoped.is_cross_tenant_admin
        assert scoped.tenant_id == "t-any"
        assert scoped.allowed_tenant_ids == ("t-any",)
        assert not sql_guard.validate("SELECT * FROM daily_entries", scoped).accepted
        assert sql_guard.validate("SELECT * FROM daily_entries WHERE tenant_id = 't-any'", scoped).accepted
        assert sql_guard.validate("SELECT * FROM daily_entries", unscoped).accepted
    finally:
        await cleanup_user(user_id)


def test_tenant_predicate_requires_tenant() -> None:
    with pytest.raises(TenantPredicateError):
        tenant_predicate(DailyEntry, "")
    predicate = tenant_predicate(DailyEntry, "t-1")
    assert "tenant_id" in str(predicate)
