from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerlens.apps.api.deps import Principal, get_db, require_rate_limited_principal
from ledgerlens.apps.api.response import SuccessEnvelope, success_response
from ledgerlens.core.errors import NoTenantResolved
from ledgerlens.services.metrics_cache import MetricsCacheManager, previous_month
from ledgerlens.services.tenancy import resolve_tenant

logger = logging.getLogger(__name__)
router = APIRouter(tags=["metrics"])


class RefreshRequest(BaseModel):
    tenant_id: str | None = None
    include_previous: bool = False


class RefreshedPeriod(BaseModel):
    year: int
    month: int
    computed_at: str
    values: dict[str, Any]


class RefreshResponse(BaseModel):
    tenant_id: str
    periods: list[RefreshedPeriod]


@router.post("/metrics/refresh", response_model=SuccessEnvelope[RefreshResponse])
async def refresh_metrics(
    payload: RefreshRequest,
    request: Request,
    principal: Principal = Depends(require_rate_limited_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenant = await resolve_tenant(db, principal.caller_id, payload.tenant_id)
    if not tenant.tenant_id:
        # Refresh always targets a single tenant, admins included.
        raise NoTenantResolved("tenant_id is required to refresh metrics")

    manager = MetricsCacheManager(db)
    today = manager.today()
    targets = [(today.year, today.month)]
    if payload.include_previous:
        targets.append(previous_month(today.year, today.month))

    periods: list[RefreshedPeriod] = []
    for year, month in targets:
        summary = await manager.force_refresh(tenant.tenant_id, year, month)
        periods.append(
            RefreshedPeriod(
                year=summary.year,
                month=summary.month,
                computed_at=summary.computed_at.isoformat(),
                values=summary.values,
            )
        )
    logger.info(
        "metrics_refreshed tenant_id=%s periods=%s caller_id=%s",
        tenant.tenant_id,
        len(periods),
        principal.caller_id,
    )
    return success_response(
        request=request,
        data=RefreshResponse(tenant_id=tenant.tenant_id, periods=periods),
    )
