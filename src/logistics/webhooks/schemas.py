"""Normalized webhook event and outcome models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class WebhookEvent(BaseModel):
    """One provider event, normalized across Stripe and HubSpot.

    object_type is the handler routing key together with event_type
    ("checkout.session" / "checkout.session.completed",
    "deal" / "deal.propertyChange").
    """

    event_id: str
    event_type: str
    object_type: str
    object_id: str | None = None
    occurred_at: datetime | None = None
    property_changes: dict[str, Any] = Field(default_factory=dict)
    raw_payload: dict[str, Any] = Field(default_factory=dict)


class WebhookOutcome(BaseModel):
    """What the pipeline did with one event."""

    event_id: str
    event_type: str
    duplicate: bool = False
    handled: bool = False
    detail: str | None = None
