"""Pydantic schemas for HubSpot sync -- property definitions, payloads, results.

Defines:
- ObjectKind: HubSpot object types we sync (contacts, deals)
- PropertyDefinition / PropertyOption: live property schema entries
- PropertyValidationResult: filtered property bag plus errors/warnings
- OrderSyncData: internal view of an order assembled for forward sync
- SyncResult: structured outcome of syncing one order
- SchemaCacheStatus: per-kind cache introspection
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from src.logistics.orders.state_machine import OrderStatus


class ObjectKind(str, Enum):
    """HubSpot CRM object types (as used in /crm/v3 paths)."""

    CONTACTS = "contacts"
    DEALS = "deals"


# ── Property Schema ─────────────────────────────────────────────────────────


class PropertyOption(BaseModel):
    label: str = ""
    value: str


class PropertyDefinition(BaseModel):
    """One entry of GET /crm/v3/properties/{objectType}."""

    name: str
    label: str = ""
    type: str = "string"
    field_type: str = "text"
    options: list[PropertyOption] = Field(default_factory=list)
    read_only: bool = False
    calculated: bool = False

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> PropertyDefinition:
        """Build from HubSpot's camelCase property JSON."""
        modification = raw.get("modificationMetadata") or {}
        return cls(
            name=raw["name"],
            label=raw.get("label", ""),
            type=raw.get("type", "string"),
            field_type=raw.get("fieldType", "text"),
            options=[
                PropertyOption(label=o.get("label", ""), value=str(o.get("value", "")))
                for o in raw.get("options") or []
            ],
            read_only=bool(modification.get("readOnlyValue", False)),
            calculated=bool(raw.get("calculated", False)),
        )


class PropertyValidationResult(BaseModel):
    """Property bag that is safe to send, plus what was dropped and why."""

    properties: dict[str, Any] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# ── Sync Payloads ───────────────────────────────────────────────────────────


class OrderSyncData(BaseModel):
    """Known internal fields of an order, joined with customer/quote/driver.

    extra_properties is the open extension map: internal keys (or raw HubSpot
    property names) that are passed through the forward mapping untouched and
    still validated against the live schema.
    """

    order_id: str
    customer_id: str
    customer_email: str
    customer_name: str | None = None
    customer_phone: str | None = None
    hubspot_contact_id: str | None = None
    hubspot_deal_id: str | None = None
    status: OrderStatus
    price_total: Decimal
    currency: str = "usd"
    pickup_address: str | None = None
    dropoff_address: str | None = None
    distance_mi: float | None = None
    driver_id: str | None = None
    driver_name: str | None = None
    driver_phone: str | None = None
    vehicle_type: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    extra_properties: dict[str, Any] = Field(default_factory=dict)


class SyncResult(BaseModel):
    """Outcome of syncing an order to HubSpot. Never raised, always returned."""

    success: bool = False
    contact_id: str | None = None
    deal_id: str | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class SchemaCacheStatus(BaseModel):
    """Introspection of one object kind's cached schema."""

    object_kind: ObjectKind
    cached: bool
    property_count: int = 0
    fetched_at: datetime | None = None
    age_seconds: float | None = None
    expired: bool = True
    last_error: str | None = None


class FieldOwnershipConfig(BaseModel):
    """Which side is authoritative for each field during sync.

    crm_owned_fields are sales-entered in HubSpot: never pushed outbound,
    cached into order metadata on reverse sync. Every other field is
    written by this system and always overwrites HubSpot.
    """

    crm_owned_fields: list[str] = Field(default_factory=list)
