"""Role-filtered read projection of orders.

Every role sees the same operational core (id, status, timestamps,
addresses). The cached HubSpot metadata is narrowed per role.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from src.logistics.core.security import Role
from src.logistics.crm.field_mapping import (
    RECURRING_FREQUENCY,
    RUSH_REQUESTED,
    SPECIAL_DELIVERY_INSTRUCTIONS,
)
from src.logistics.orders.schemas import OrderRead
from src.logistics.orders.state_machine import OrderStatus

# None means unrestricted
METADATA_VISIBILITY: dict[Role, frozenset[str] | None] = {
    Role.driver: frozenset({SPECIAL_DELIVERY_INSTRUCTIONS}),
    Role.recipient: frozenset({SPECIAL_DELIVERY_INSTRUCTIONS}),
    Role.dispatcher: frozenset(
        {SPECIAL_DELIVERY_INSTRUCTIONS, RECURRING_FREQUENCY, RUSH_REQUESTED}
    ),
    Role.admin: None,
}


class OrderView(BaseModel):
    """Order as returned to a caller of a given role."""

    id: str
    status: OrderStatus
    created_at: datetime
    updated_at: datetime
    pickup_address: str | None = None
    dropoff_address: str | None = None
    hubspot_metadata: dict[str, Any] = Field(default_factory=dict)
    # Commercial fields, hidden from drivers
    price_total: Decimal | None = None
    currency: str | None = None
    customer_id: str | None = None
    driver_id: str | None = None
    hubspot_deal_id: str | None = None


def redact_metadata(metadata: dict[str, Any], role: Role) -> dict[str, Any]:
    """Keep only the metadata keys the role may see."""
    allowed = METADATA_VISIBILITY.get(role, frozenset())
    if allowed is None:
        return dict(metadata)
    return {k: v for k, v in metadata.items() if k in allowed}


def project_order(order: OrderRead, role: Role) -> OrderView:
    view = OrderView(
        id=order.id,
        status=order.status,
        created_at=order.created_at,
        updated_at=order.updated_at,
        pickup_address=order.pickup_address,
        dropoff_address=order.dropoff_address,
        hubspot_metadata=redact_metadata(order.hubspot_metadata, role),
        driver_id=order.driver_id,
    )
    if role in (Role.admin, Role.dispatcher, Role.recipient):
        view.price_total = order.price_total
        view.currency = order.currency
        view.customer_id = order.customer_id
    if role == Role.admin:
        view.hubspot_deal_id = order.hubspot_deal_id
    return view


def project_orders(orders: list[OrderRead], role: Role) -> list[OrderView]:
    return [project_order(o, role) for o in orders]
