"""Property validation against HubSpot's live property schema.

Rules, applied per outgoing property:
- None values are dropped silently (the API rejects nulls)
- unknown property names are dropped with a warning
- read-only and calculated properties are dropped with a warning
- type mismatches are dropped and reported as errors

Nothing here raises: a partial bag is always returned with its errors and
warnings so the caller can still send what is valid.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from src.logistics.crm.schemas import PropertyDefinition, PropertyValidationResult

_BOOL_STRINGS = {"true", "false"}


def _check_number(value: Any) -> str | None:
    if isinstance(value, bool):
        return "expected a number, got a boolean"
    if isinstance(value, (int, float, Decimal)):
        return None
    try:
        Decimal(str(value).strip())
    except InvalidOperation:
        return f"expected a number, got {value!r}"
    return None


def _check_bool(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if str(value).strip().lower() in _BOOL_STRINGS:
        return None
    return f"expected a boolean, got {value!r}"


def _check_date(value: Any) -> str | None:
    if isinstance(value, (datetime, date)):
        return None
    text = str(value).strip()
    if text.isdigit():
        # Epoch milliseconds are accepted for date/datetime properties
        return None
    try:
        datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return f"expected an ISO-8601 date, got {value!r}"
    return None


def _check_enumeration(value: Any, definition: PropertyDefinition) -> str | None:
    allowed = {o.value for o in definition.options}
    if not allowed:
        return None
    # Multi-select checkboxes send semicolon-separated values
    if definition.field_type == "checkbox":
        chosen = [v for v in str(value).split(";") if v]
    else:
        chosen = [str(value)]
    invalid = [v for v in chosen if v not in allowed]
    if invalid:
        return f"value {', '.join(invalid)!s} not in allowed options {sorted(allowed)}"
    return None


def check_value(value: Any, definition: PropertyDefinition) -> str | None:
    """Return a type-mismatch message, or None if the value fits the definition."""
    if definition.type == "number":
        return _check_number(value)
    if definition.type == "bool":
        return _check_bool(value)
    if definition.type in ("date", "datetime"):
        return _check_date(value)
    if definition.type == "enumeration":
        if definition.field_type == "booleancheckbox":
            return _check_bool(value)
        return _check_enumeration(value, definition)
    return None


def validate_properties(
    properties: dict[str, Any],
    definitions: list[PropertyDefinition],
    object_label: str = "object",
) -> PropertyValidationResult:
    """Filter a property bag down to what HubSpot will accept.

    Args:
        properties: Outgoing property name -> value.
        definitions: Live schema for the target object kind.
        object_label: Used in messages ("contact", "deal").
    """
    schema = {d.name: d for d in definitions}
    result = PropertyValidationResult()

    for name, value in properties.items():
        if value is None:
            continue

        definition = schema.get(name)
        if definition is None:
            result.warnings.append(
                f"Property '{name}' does not exist on HubSpot {object_label}; skipped"
            )
            continue

        if definition.read_only or definition.calculated or definition.field_type == "calculation_equation":
            result.warnings.append(
                f"Property '{name}' is read-only on HubSpot {object_label}; skipped"
            )
            continue

        problem = check_value(value, definition)
        if problem is not None:
            result.errors.append(f"Invalid value for {object_label} property '{name}': {problem}")
            continue

        result.properties[name] = value

    return result
