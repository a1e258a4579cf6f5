"""Field ownership, HubSpot property names, and forward (internal -> HubSpot) mapping.

Defines:
- DEFAULT_FIELD_OWNERSHIP: the CRM-owned fields that are never pushed outbound
- DEFAULT_PROPERTY_NAMES: Internal key -> HubSpot property name fallbacks; any
  entry can be overridden per portal via Settings.HUBSPOT_PROPERTY_OVERRIDES
- Transformers: format_currency, format_date, format_phone, round_number
- Status tables: deal stage, deal pipeline label, delivery status
- order_to_contact_properties() / order_to_deal_properties(): pure mappers
- filter_outbound_properties(): Drop CRM-owned properties from an outbound bag
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from src.logistics.config import Settings
from src.logistics.crm.schemas import FieldOwnershipConfig, OrderSyncData
from src.logistics.orders.state_machine import OrderStatus


# ── Field Ownership Configuration ──────────────────────────────────────────

SPECIAL_DELIVERY_INSTRUCTIONS = "special_delivery_instructions"
RECURRING_FREQUENCY = "recurring_frequency"
RUSH_REQUESTED = "rush_requested"
# Written into order metadata by reverse sync; never a HubSpot property
LAST_SYNCED_AT = "last_synced_at"

CRM_OWNED_FIELDS: frozenset[str] = frozenset(
    {SPECIAL_DELIVERY_INSTRUCTIONS, RECURRING_FREQUENCY, RUSH_REQUESTED}
)

DEFAULT_FIELD_OWNERSHIP = FieldOwnershipConfig(crm_owned_fields=sorted(CRM_OWNED_FIELDS))


# ── Property Names ─────────────────────────────────────────────────────────
# Custom deal property keys are portal-specific; these are the fallbacks.

DEFAULT_PROPERTY_NAMES: dict[str, str] = {
    # Contact (standard HubSpot properties)
    "email": "email",
    "firstname": "firstname",
    "lastname": "lastname",
    "phone": "phone",
    # Deal (standard HubSpot properties)
    "dealname": "dealname",
    "amount": "amount",
    "pipeline": "pipeline",
    "dealstage": "dealstage",
    "closedate": "closedate",
    # Deal (custom properties)
    "order_id": "order_id",
    "pickup_address": "pickup_address",
    "dropoff_address": "dropoff_address",
    "distance_miles": "distance_miles",
    "deal_pipeline": "deal_pipeline",
    "delivery_status": "delivery_status",
    "assigned_driver": "assigned_driver",
    "driver_name": "driver_name",
    "driver_phone": "driver_phone",
    "vehicle_type": "vehicle_type",
    SPECIAL_DELIVERY_INSTRUCTIONS: SPECIAL_DELIVERY_INSTRUCTIONS,
    RECURRING_FREQUENCY: RECURRING_FREQUENCY,
    RUSH_REQUESTED: RUSH_REQUESTED,
}

DEAL_NAME_PREFIX = "Delivery Order"


def property_name(key: str, settings: Settings) -> str:
    """Resolve an internal key to this deployment's HubSpot property name."""
    override = settings.HUBSPOT_PROPERTY_OVERRIDES.get(key)
    if override:
        return override
    return DEFAULT_PROPERTY_NAMES.get(key, key)


# ── Transformers ───────────────────────────────────────────────────────────

_PHONE_STRIP = re.compile(r"[^\d]")


def format_currency(value: Decimal | float | int | str) -> str:
    """Fixed two-decimal string, e.g. Decimal("125") -> "125.00"."""
    amount = Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"{amount:.2f}"


def format_date(value: datetime | date | str) -> str:
    """ISO-8601. Naive datetimes are taken as UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    return value.isoformat()


def format_phone(value: str) -> str:
    """Digits only, keeping a leading '+' if the number had one."""
    stripped = value.strip()
    digits = _PHONE_STRIP.sub("", stripped)
    return f"+{digits}" if stripped.startswith("+") else digits


def round_number(value: float | Decimal) -> float:
    return round(float(value), 2)


# ── Status Tables ──────────────────────────────────────────────────────────


def deal_stage_table(settings: Settings) -> dict[OrderStatus, str]:
    """Order status -> HubSpot pipeline stage.

    Accepted and InTransit have no stage of their own; they stay on the stage
    of the preceding step so that a deal never moves backwards.
    """
    return {
        OrderStatus.READY_FOR_DISPATCH: settings.HUBSPOT_STAGE_READY_FOR_DISPATCH,
        OrderStatus.ASSIGNED: settings.HUBSPOT_STAGE_ASSIGNED,
        OrderStatus.ACCEPTED: settings.HUBSPOT_STAGE_ASSIGNED,
        OrderStatus.PICKED_UP: settings.HUBSPOT_STAGE_PICKED_UP,
        OrderStatus.IN_TRANSIT: settings.HUBSPOT_STAGE_PICKED_UP,
        OrderStatus.DELIVERED: settings.HUBSPOT_STAGE_DELIVERED,
        OrderStatus.CANCELED: settings.HUBSPOT_STAGE_CANCELED,
    }


def map_status_to_stage(status: OrderStatus, settings: Settings) -> str:
    return deal_stage_table(settings).get(status, settings.HUBSPOT_STAGE_READY_FOR_DISPATCH)


DEAL_PIPELINE_LABELS: dict[OrderStatus, str] = {
    OrderStatus.READY_FOR_DISPATCH: "Paid",
    OrderStatus.ASSIGNED: "Assigned",
    OrderStatus.ACCEPTED: "Assigned",
    OrderStatus.PICKED_UP: "Assigned",
    OrderStatus.IN_TRANSIT: "Assigned",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELED: "Paid",
}

DELIVERY_STATUS_VALUES: dict[OrderStatus, str] = {
    OrderStatus.READY_FOR_DISPATCH: "pending",
    OrderStatus.ASSIGNED: "assigned",
    OrderStatus.ACCEPTED: "assigned",
    OrderStatus.PICKED_UP: "in_transit",
    OrderStatus.IN_TRANSIT: "in_transit",
    OrderStatus.DELIVERED: "delivered",
    OrderStatus.CANCELED: "exception",
}


def format_deal_name(order_id: str) -> str:
    return f"{DEAL_NAME_PREFIX} - {order_id[:8]}"


def default_close_date(settings: Settings, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return format_date(now + timedelta(days=settings.HUBSPOT_CLOSE_DATE_OFFSET_DAYS))


def split_name(name: str | None) -> tuple[str | None, str | None]:
    """'Ada Lovelace King' -> ('Ada', 'Lovelace King')."""
    if not name or not name.strip():
        return None, None
    parts = name.strip().split(maxsplit=1)
    return parts[0], (parts[1] if len(parts) > 1 else None)


# ── Forward Mapping ────────────────────────────────────────────────────────


def _put(properties: dict[str, Any], key: str, value: Any, settings: Settings) -> None:
    if value is None:
        return
    properties[property_name(key, settings)] = value


def order_to_contact_properties(data: OrderSyncData, settings: Settings) -> dict[str, Any]:
    """Contact property bag for the order's customer."""
    properties: dict[str, Any] = {}
    firstname, lastname = split_name(data.customer_name)
    _put(properties, "email", data.customer_email.strip().lower(), settings)
    _put(properties, "firstname", firstname, settings)
    _put(properties, "lastname", lastname, settings)
    if data.customer_phone:
        _put(properties, "phone", format_phone(data.customer_phone), settings)
    return properties


def order_to_deal_properties(
    data: OrderSyncData,
    settings: Settings,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Deal property bag for the order.

    CRM-owned fields are never emitted. extra_properties entries are resolved
    through the same property-name indirection and passed through as-is.
    """
    properties: dict[str, Any] = {}
    _put(properties, "dealname", format_deal_name(data.order_id), settings)
    _put(properties, "amount", format_currency(data.price_total), settings)
    _put(properties, "pipeline", settings.HUBSPOT_PIPELINE_ID, settings)
    _put(properties, "dealstage", map_status_to_stage(data.status, settings), settings)
    _put(properties, "closedate", default_close_date(settings, now), settings)
    _put(properties, "order_id", data.order_id, settings)
    _put(properties, "pickup_address", data.pickup_address, settings)
    _put(properties, "dropoff_address", data.dropoff_address, settings)
    if data.distance_mi is not None:
        _put(properties, "distance_miles", round_number(data.distance_mi), settings)
    _put(properties, "deal_pipeline", DEAL_PIPELINE_LABELS.get(data.status), settings)
    _put(properties, "delivery_status", DELIVERY_STATUS_VALUES.get(data.status), settings)
    _put(properties, "assigned_driver", data.driver_name, settings)
    _put(properties, "driver_name", data.driver_name, settings)
    if data.driver_phone:
        _put(properties, "driver_phone", format_phone(data.driver_phone), settings)
    _put(properties, "vehicle_type", data.vehicle_type, settings)

    for key, value in data.extra_properties.items():
        if key in CRM_OWNED_FIELDS:
            continue
        _put(properties, key, value, settings)

    return filter_outbound_properties(properties, settings)


def filter_outbound_properties(
    properties: dict[str, Any],
    settings: Settings,
    ownership: FieldOwnershipConfig = DEFAULT_FIELD_OWNERSHIP,
) -> dict[str, Any]:
    """Drop CRM-owned properties; HubSpot is the source of truth for those."""
    crm_owned = {property_name(f, settings) for f in ownership.crm_owned_fields}
    return {k: v for k, v in properties.items() if k not in crm_owned}
