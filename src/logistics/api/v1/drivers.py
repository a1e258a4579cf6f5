"""Driver endpoints: roster with query-time availability."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from src.logistics.api.deps import get_driver_repository, require_roles
from src.logistics.core.security import Principal, Role
from src.logistics.orders.schemas import DriverAvailability

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.get("", response_model=list[DriverAvailability])
async def list_drivers(
    request: Request,
    include_inactive: bool = Query(default=False),
    available_only: bool = Query(default=False),
    principal: Principal = Depends(require_roles(Role.admin, Role.dispatcher)),
) -> list[DriverAvailability]:
    """Drivers with their count of active (non-terminal) orders."""
    repo = get_driver_repository(request)
    drivers = await repo.list_with_availability(include_inactive=include_inactive)
    if available_only:
        drivers = [d for d in drivers if d.is_available]
    return drivers
