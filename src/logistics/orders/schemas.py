"""Pydantic schemas for orders, customers, quotes and drivers."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator

from src.logistics.ledger.schemas import DispatchEventRecord
from src.logistics.orders.state_machine import OrderStatus


def normalize_email(email: str) -> str:
    """Customers are unique on the trimmed, lower-cased email."""
    return email.strip().lower()


# ── Customers ───────────────────────────────────────────────────────────────


class CustomerUpsert(BaseModel):
    """Customer details keyed by email."""

    email: str = Field(..., min_length=3, max_length=320)
    name: str | None = None
    phone: str | None = None

    @field_validator("email")
    @classmethod
    def _normalize(cls, value: str) -> str:
        normalized = normalize_email(value)
        if "@" not in normalized:
            raise ValueError("email must contain '@'")
        return normalized


class CustomerRead(BaseModel):
    id: str
    email: str
    name: str | None = None
    phone: str | None = None
    hubspot_contact_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ── Quotes ──────────────────────────────────────────────────────────────────


class QuoteRead(BaseModel):
    id: str
    customer_id: str | None = None
    pickup_address: str | None = None
    dropoff_address: str | None = None
    distance_mi: float | None = None
    price_total: Decimal | None = None
    currency: str = "usd"
    status: str


# ── Drivers ─────────────────────────────────────────────────────────────────


class DriverRead(BaseModel):
    id: str
    name: str
    phone: str | None = None
    vehicle_type: str | None = None
    is_active: bool = True


class DriverAvailability(DriverRead):
    """Driver plus query-time availability (no non-terminal orders assigned)."""

    active_order_count: int = 0
    is_available: bool = True


# ── Orders ──────────────────────────────────────────────────────────────────


class CheckoutOrderCreate(BaseModel):
    """Everything needed to materialize an order from a completed checkout."""

    quote_id: str
    customer_id: str
    checkout_session_id: str
    payment_intent_id: str | None = None
    price_total: Decimal
    currency: str = "usd"


class OrderRead(BaseModel):
    """Full order row with quote addresses joined in."""

    id: str
    status: OrderStatus
    price_total: Decimal
    currency: str
    customer_id: str
    quote_id: str
    driver_id: str | None = None
    hubspot_deal_id: str | None = None
    hubspot_metadata: dict[str, Any] = Field(default_factory=dict)
    stripe_checkout_session_id: str
    pickup_address: str | None = None
    dropoff_address: str | None = None
    created_at: datetime
    updated_at: datetime


class OrderFilter(BaseModel):
    """Filter parameters for listing orders."""

    status: OrderStatus | None = None
    driver_id: str | None = None
    customer_id: str | None = None
    active_only: bool = False
    limit: int = Field(default=100, ge=1, le=500)


class TransitionResult(BaseModel):
    """Outcome of a committed (or no-op) status change."""

    order: OrderRead
    previous_status: OrderStatus
    changed: bool
    event: DispatchEventRecord | None = None
