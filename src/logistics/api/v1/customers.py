"""Customer endpoints: upsert by normalized email."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status

from src.logistics.api.deps import get_customer_repository, require_roles
from src.logistics.core.security import Principal, Role
from src.logistics.orders.schemas import CustomerRead, CustomerUpsert

router = APIRouter(prefix="/customers", tags=["customers"])


@router.post("", response_model=CustomerRead, status_code=status.HTTP_200_OK)
async def upsert_customer(
    body: CustomerUpsert,
    request: Request,
    principal: Principal = Depends(require_roles(Role.admin, Role.dispatcher)),
) -> CustomerRead:
    """Create the customer, or update name/phone of the one with this email."""
    repo = get_customer_repository(request)
    return await repo.upsert_by_email(body)
