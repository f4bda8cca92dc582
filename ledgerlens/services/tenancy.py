from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ledgerlens.core.errors import NoTenantResolved, TenantAccessDenied
from ledgerlens.domain.state import TenantContext
from ledgerlens.persistence.repos import memberships as memberships_repo

logger = logging.getLogger(__name__)


async def resolve_tenant(
    session: AsyncSession, caller_id: str, requested_tenant_id: str | None
) -> TenantContext:
    # Built once per request from the membership lookup; never persisted.
    user = await memberships_repo.get_user(session, caller_id)
    if user is not None and user.is_admin:
        if not requested_tenant_id:
            return TenantContext(tenant_id=None, is_cross_tenant_admin=True)
        # An admin naming a tenant is scoped to it like any member.
        return TenantContext(
            tenant_id=requested_tenant_id,
            is_cross_tenant_admin=False,
            allowed_tenant_ids=(requested_tenant_id,),
        )

    if not requested_tenant_id:
        raise NoTenantResolved("tenant_id is required for non-admin callers")
    memberships = await memberships_repo.list_tenant_ids(session, caller_id)
    if requested_tenant_id not in memberships:
        logger.warning("tenant_access_denied caller_id=%s tenant_id=%s", caller_id, requested_tenant_id)
        raise TenantAccessDenied("caller is not a member of the requested tenant")
    return TenantContext(
        tenant_id=requested_tenant_id,
        is_cross_tenant_admin=False,
        allowed_tenant_ids=tuple(memberships),
    )
