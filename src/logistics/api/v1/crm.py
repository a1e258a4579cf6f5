"""CRM administration endpoints: HubSpot property schema cache."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from src.logistics.api.deps import get_sync_orchestrator, require_roles
from src.logistics.core.security import Principal, Role
from src.logistics.crm.schemas import ObjectKind, SchemaCacheStatus

router = APIRouter(prefix="/crm", tags=["crm"])


@router.get("/schema-cache", response_model=list[SchemaCacheStatus])
async def schema_cache_status(
    request: Request,
    principal: Principal = Depends(require_roles(Role.admin)),
) -> list[SchemaCacheStatus]:
    orchestrator = get_sync_orchestrator(request)
    return orchestrator.schema_cache.status()


@router.delete("/schema-cache", response_model=list[SchemaCacheStatus])
async def invalidate_schema_cache(
    request: Request,
    object_kind: ObjectKind | None = Query(default=None),
    principal: Principal = Depends(require_roles(Role.admin)),
) -> list[SchemaCacheStatus]:
    """Drop cached schemas (one kind, or all) so the next sync refetches."""
    orchestrator = get_sync_orchestrator(request)
    orchestrator.schema_cache.invalidate(object_kind)
    return orchestrator.schema_cache.status()
