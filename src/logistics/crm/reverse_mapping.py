"""Reverse (HubSpot -> internal) property mapping for CRM webhook updates.

A static table maps each HubSpot property to an internal table/column and an
optional value transformer. Internally owned operational properties such as
dealstage, pipeline and amount deliberately have no entry: HubSpot must never
drive order status, and an order's price is immutable once paid.

Contact first/last names are recombined into the single customers.name
column; the unchanged half comes from the currently stored name.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from src.logistics.config import Settings
from src.logistics.crm.field_mapping import (
    RECURRING_FREQUENCY,
    RUSH_REQUESTED,
    SPECIAL_DELIVERY_INSTRUCTIONS,
    format_phone,
    property_name,
    split_name,
)

ORDERS = "orders"
QUOTES = "quotes"
CUSTOMERS = "customers"
METADATA_COLUMN = "hubspot_metadata"


@dataclass(frozen=True)
class ReverseMapping:
    """Target of one HubSpot property.

    When column is hubspot_metadata, metadata_key names the key inside it.
    """

    table: str
    column: str
    transform: Callable[[Any], Any] | None = None
    metadata_key: str | None = None


# ── Value Transformers ─────────────────────────────────────────────────────

_TRUE_VALUES = {"true", "yes", "1", "on", "y"}
_FALSE_VALUES = {"false", "no", "0", "off", "n", ""}


def parse_bool(value: Any) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"Not a boolean: {value!r}")


def parse_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def clean_email(value: Any) -> str | None:
    text = clean_text(value)
    return text.lower() if text else None


def clean_phone(value: Any) -> str | None:
    text = clean_text(value)
    return format_phone(text) if text else None


# ── Reverse Tables ─────────────────────────────────────────────────────────


def build_deal_reverse_map(settings: Settings) -> dict[str, ReverseMapping]:
    """HubSpot deal property name -> internal target."""
    return {
        property_name(SPECIAL_DELIVERY_INSTRUCTIONS, settings): ReverseMapping(
            ORDERS, METADATA_COLUMN, clean_text, SPECIAL_DELIVERY_INSTRUCTIONS
        ),
        property_name(RECURRING_FREQUENCY, settings): ReverseMapping(
            ORDERS, METADATA_COLUMN, clean_text, RECURRING_FREQUENCY
        ),
        property_name(RUSH_REQUESTED, settings): ReverseMapping(
            ORDERS, METADATA_COLUMN, parse_bool, RUSH_REQUESTED
        ),
        property_name("pickup_address", settings): ReverseMapping(
            QUOTES, "pickup_address", clean_text
        ),
        property_name("dropoff_address", settings): ReverseMapping(
            QUOTES, "dropoff_address", clean_text
        ),
        property_name("distance_miles", settings): ReverseMapping(
            QUOTES, "distance_mi", parse_float
        ),
    }


def build_contact_reverse_map(settings: Settings) -> dict[str, ReverseMapping]:
    """HubSpot contact property name -> internal target (names handled separately)."""
    return {
        property_name("email", settings): ReverseMapping(CUSTOMERS, "email", clean_email),
        property_name("phone", settings): ReverseMapping(CUSTOMERS, "phone", clean_phone),
    }


# ── Mapping Functions ──────────────────────────────────────────────────────


def map_deal_changes(
    changes: dict[str, Any], settings: Settings
) -> tuple[dict[str, dict[str, Any]], list[str]]:
    """Translate deal property changes into per-table updates.

    Returns:
        (updates, ignored) where updates looks like
        {"orders": {"hubspot_metadata": {...}}, "quotes": {"pickup_address": ...}}
        and ignored lists properties without a reverse mapping.
    """
    reverse_map = build_deal_reverse_map(settings)
    updates: dict[str, dict[str, Any]] = {}
    ignored: list[str] = []

    for prop, raw_value in changes.items():
        mapping = reverse_map.get(prop)
        if mapping is None:
            ignored.append(prop)
            continue
        value = mapping.transform(raw_value) if mapping.transform else raw_value
        table_updates = updates.setdefault(mapping.table, {})
        if mapping.column == METADATA_COLUMN:
            table_updates.setdefault(METADATA_COLUMN, {})[mapping.metadata_key] = value
        else:
            table_updates[mapping.column] = value

    return updates, ignored


def combine_name(
    changes: dict[str, Any],
    current_first: str | None,
    current_last: str | None,
    first_property: str = "firstname",
    last_property: str = "lastname",
) -> str | None:
    """Full name from changed halves, falling back to the stored halves."""
    first = changes[first_property] if first_property in changes else current_first
    last = changes[last_property] if last_property in changes else current_last
    combined = f"{(first or '').strip()} {(last or '').strip()}".strip()
    return combined or None


def map_contact_changes(
    changes: dict[str, Any], current_name: str | None, settings: Settings
) -> tuple[dict[str, Any], list[str]]:
    """Translate contact property changes into customers column updates.

    current_name must be read under the same lock as the write that applies
    the result, or a concurrent edit of the other name half can be lost.
    """
    reverse_map = build_contact_reverse_map(settings)
    first_property = property_name("firstname", settings)
    last_property = property_name("lastname", settings)

    updates: dict[str, Any] = {}
    ignored: list[str] = []

    for prop, raw_value in changes.items():
        if prop in (first_property, last_property):
            continue
        mapping = reverse_map.get(prop)
        if mapping is None:
            ignored.append(prop)
            continue
        value = mapping.transform(raw_value) if mapping.transform else raw_value
        if value is None and mapping.column == "email":
            continue
        updates[mapping.column] = value

    if first_property in changes or last_property in changes:
        current_first, current_last = split_name(current_name)
        name = combine_name(changes, current_first, current_last, first_property, last_property)
        if name != current_name:
            updates["name"] = name

    return updates, ignored
