"""Pydantic schemas for the event ledger."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventSource(str, Enum):
    """Subsystem that produced a ledger entry."""

    STRIPE = "stripe"
    HUBSPOT = "hubspot"
    DISPATCHER = "dispatcher"
    DRIVER = "driver"
    API = "api"


class EventType:
    """Well-known event type tags. The column is free-form; these are the ones we write."""

    PAYMENT_COMPLETED = "payment_completed"
    STATUS_CHANGED = "status_changed"
    DRIVER_ASSIGNED = "driver_assigned"
    SYNC_FROM_HUBSPOT = "sync_from_hubspot"
    SYNC_TO_HUBSPOT = "sync_to_hubspot"


class DispatchEventRecord(BaseModel):
    """A committed ledger entry."""

    id: int
    order_id: str | None = None
    actor: str
    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    source: str
    event_id: str
    created_at: datetime


class DuplicateEvent(BaseModel):
    """Returned instead of a record when (source, event_id) was already recorded.

    Callers treat this as "already handled": acknowledge and stop.
    """

    source: str
    event_id: str


class LedgerEntry(BaseModel):
    """An event to append in the same transaction as a domain write."""

    source: EventSource | str
    event_id: str
    actor: str
    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
