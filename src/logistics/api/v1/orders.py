"""REST API endpoints for orders: role-filtered reads and dispatch actions.

Reads go through the role projection; drivers only see orders assigned to
them and recipients only their own. Mutations delegate to OrderService and
translate its typed errors (404 not found, 409 invalid or concurrent
transition). Admins can also pull an order's live HubSpot deal and contact.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from src.logistics.api.deps import (
    get_customer_repository,
    get_event_ledger,
    get_hubspot_client,
    get_order_repository,
    get_order_service,
    get_sync_orchestrator,
    require_roles,
)
from src.logistics.core.security import Principal, Role
from src.logistics.crm.client import HubSpotAPIError
from src.logistics.crm.schemas import SyncResult
from src.logistics.ledger.schemas import DispatchEventRecord, EventSource
from src.logistics.orders.projection import OrderView, project_order, project_orders
from src.logistics.orders.schemas import OrderFilter, OrderRead, TransitionResult
from src.logistics.orders.service import DriverNotFoundError, OrderNotFoundError
from src.logistics.orders.state_machine import (
    ConcurrentTransitionError,
    InvalidTransitionError,
    OrderStatus,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

_ANY_ROLE = require_roles(Role.admin, Role.dispatcher, Role.driver, Role.recipient)
_DISPATCH = require_roles(Role.admin, Role.dispatcher)
_ADMIN = require_roles(Role.admin)


# ── Request / Response Schemas ───────────────────────────────────────────────


class AssignDriverRequest(BaseModel):
    driver_id: str = Field(..., min_length=1)


class StatusUpdateRequest(BaseModel):
    status: OrderStatus
    notes: str | None = Field(default=None, max_length=2000)


class CancelOrderRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class TransitionResponse(BaseModel):
    """Result of an order action, projected for the caller's role."""

    order: OrderView
    previous_status: OrderStatus
    changed: bool
    event_id: str | None = None


class HubSpotRecord(BaseModel):
    id: str
    properties: dict[str, Any] = Field(default_factory=dict)
    associations: dict[str, Any] | None = None


class HubSpotSnapshot(BaseModel):
    deal: HubSpotRecord
    contact: HubSpotRecord | None = None


class HubSpotOrderView(BaseModel):
    """Live HubSpot records for an order, next to what is cached locally."""

    order_id: str
    hubspot_deal_id: str | None = None
    message: str | None = None
    fetched_at: datetime | None = None
    cached_metadata: dict[str, Any] = Field(default_factory=dict)
    hubspot_data: HubSpotSnapshot | None = None


# ── Helpers ──────────────────────────────────────────────────────────────────


def _can_see(order: OrderRead, principal: Principal) -> bool:
    if principal.role == Role.driver:
        return principal.driver_id is not None and order.driver_id == principal.driver_id
    if principal.role == Role.recipient:
        return principal.customer_id is not None and order.customer_id == principal.customer_id
    return True


async def _get_visible_order(request: Request, order_id: str, principal: Principal) -> OrderRead:
    repo = get_order_repository(request)
    order = await repo.get(order_id)
    if order is None or not _can_see(order, principal):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Order {order_id} not found",
        )
    return order


def _to_response(result: TransitionResult, role: Role) -> TransitionResponse:
    return TransitionResponse(
        order=project_order(result.order, role),
        previous_status=result.previous_status,
        changed=result.changed,
        event_id=result.event.event_id if result.event else None,
    )


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, (OrderNotFoundError, DriverNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.reason)
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


_TRANSLATED = (
    OrderNotFoundError,
    DriverNotFoundError,
    InvalidTransitionError,
    ConcurrentTransitionError,
)


# ── Reads ────────────────────────────────────────────────────────────────────


@router.get("", response_model=list[OrderView])
async def list_orders(
    request: Request,
    status_filter: OrderStatus | None = Query(default=None, alias="status"),
    active_only: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=500),
    principal: Principal = Depends(_ANY_ROLE),
) -> list[OrderView]:
    """List orders visible to the caller, newest first."""
    repo = get_order_repository(request)
    filters = OrderFilter(status=status_filter, active_only=active_only, limit=limit)

    if principal.role == Role.driver:
        if not principal.driver_id:
            return []
        filters.driver_id = principal.driver_id
    elif principal.role == Role.recipient:
        if not principal.customer_id:
            return []
        filters.customer_id = principal.customer_id

    orders = await repo.list_orders(filters)
    return project_orders(orders, principal.role)


@router.get("/{order_id}", response_model=OrderView)
async def get_order(
    order_id: str,
    request: Request,
    principal: Principal = Depends(_ANY_ROLE),
) -> OrderView:
    order = await _get_visible_order(request, order_id, principal)
    return project_order(order, principal.role)


@router.get("/{order_id}/events", response_model=list[DispatchEventRecord])
async def get_order_events(
    order_id: str,
    request: Request,
    principal: Principal = Depends(_DISPATCH),
) -> list[DispatchEventRecord]:
    """Ledger timeline for an order, oldest first."""
    await _get_visible_order(request, order_id, principal)
    ledger = get_event_ledger(request)
    return await ledger.list_for_order(order_id)


# ── Actions ──────────────────────────────────────────────────────────────────


@router.post("/{order_id}/assign", response_model=TransitionResponse)
async def assign_driver(
    order_id: str,
    body: AssignDriverRequest,
    request: Request,
    principal: Principal = Depends(_DISPATCH),
) -> TransitionResponse:
    """Assign a driver to a ReadyForDispatch order."""
    service = get_order_service(request)
    try:
        result = await service.assign_driver(
            order_id, body.driver_id, actor=principal.subject
        )
    except _TRANSLATED as exc:
        raise _http_error(exc)
    return _to_response(result, principal.role)


@router.patch("/{order_id}/status", response_model=TransitionResponse)
async def update_order_status(
    order_id: str,
    body: StatusUpdateRequest,
    request: Request,
    principal: Principal = Depends(require_roles(Role.admin, Role.dispatcher, Role.driver)),
) -> TransitionResponse:
    """Advance an order one step (drivers only on their own orders)."""
    if principal.role == Role.driver:
        await _get_visible_order(request, order_id, principal)
        source = EventSource.DRIVER
    else:
        source = EventSource.DISPATCHER

    service = get_order_service(request)
    try:
        result = await service.update_status(
            order_id,
            body.status,
            actor=principal.subject,
            source=source,
            notes=body.notes,
        )
    except _TRANSLATED as exc:
        raise _http_error(exc)
    return _to_response(result, principal.role)


@router.post("/{order_id}/cancel", response_model=TransitionResponse)
async def cancel_order(
    order_id: str,
    body: CancelOrderRequest,
    request: Request,
    principal: Principal = Depends(_DISPATCH),
) -> TransitionResponse:
    service = get_order_service(request)
    try:
        result = await service.cancel(order_id, actor=principal.subject, reason=body.reason)
    except _TRANSLATED as exc:
        raise _http_error(exc)
    return _to_response(result, principal.role)


@router.post("/{order_id}/sync-hubspot", response_model=SyncResult)
async def sync_order_to_hubspot(
    order_id: str,
    request: Request,
    principal: Principal = Depends(_DISPATCH),
) -> Any:
    """Push an order to HubSpot now and return the sync report."""
    await _get_visible_order(request, order_id, principal)
    orchestrator = get_sync_orchestrator(request)
    return await orchestrator.sync_order_by_id(order_id)


@router.get("/{order_id}/hubspot", response_model=HubSpotOrderView)
async def get_order_hubspot_record(
    order_id: str,
    request: Request,
    principal: Principal = Depends(_ADMIN),
) -> HubSpotOrderView:
    """Fetch the order's deal (and its contact) live from HubSpot.

    Bypasses the cached hubspot_metadata. Orders never synced return
    hubspot_data=None; a HubSpot failure on the deal is a 502, on the
    contact only a missing contact.
    """
    order = await _get_visible_order(request, order_id, principal)
    if order.hubspot_deal_id is None:
        return HubSpotOrderView(
            order_id=order.id,
            message="Order not synced to HubSpot",
            cached_metadata=order.hubspot_metadata,
        )

    client = get_hubspot_client(request)
    try:
        deal = await client.get_deal(order.hubspot_deal_id)
    except HubSpotAPIError as exc:
        logger.error(
            "crm.fetch_deal_failed",
            order_id=order.id,
            deal_id=order.hubspot_deal_id,
            status_code=exc.status_code,
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"HubSpot deal fetch failed: {exc.message}",
        )

    contact = None
    customer = await get_customer_repository(request).get(order.customer_id)
    if customer is not None and customer.hubspot_contact_id:
        try:
            contact = await client.get_contact(customer.hubspot_contact_id)
        except HubSpotAPIError as exc:
            logger.warning(
                "crm.fetch_contact_failed",
                order_id=order.id,
                contact_id=customer.hubspot_contact_id,
                status_code=exc.status_code,
            )

    return HubSpotOrderView(
        order_id=order.id,
        hubspot_deal_id=order.hubspot_deal_id,
        fetched_at=datetime.now(timezone.utc),
        cached_metadata=order.hubspot_metadata,
        hubspot_data=HubSpotSnapshot(
            deal=HubSpotRecord(
                id=str(deal.get("id", order.hubspot_deal_id)),
                properties=deal.get("properties") or {},
                associations=deal.get("associations"),
            ),
            contact=(
                HubSpotRecord(id=str(contact["id"]), properties=contact.get("properties") or {})
                if contact
                else None
            ),
        ),
    )
