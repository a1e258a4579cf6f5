"""Order domain persistence models.

Four SQLAlchemy models on the shared Base:
- CustomerModel: Upserted by normalized email, carries the HubSpot contact id
- QuoteModel: Pre-payment estimate the checkout session refers to
- DriverModel: Fleet driver; availability is computed, never stored
- OrderModel: Central aggregate created by the payment webhook

Identifiers are opaque strings (UUID4 by default) so that ids minted by
other systems can be stored unchanged.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.logistics.core.database import Base
from src.logistics.orders.state_machine import OrderStatus


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CustomerModel(Base):
    """Customer (HubSpot contact). Email is stored trimmed and lower-cased."""

    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    hubspot_contact_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
    )


class QuoteModel(Base):
    """Price estimate for a delivery; the checkout session references it."""

    __tablename__ = "quotes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    customer_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("customers.id"), nullable=True
    )
    pickup_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    dropoff_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    distance_mi: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_total: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=OrderStatus.DRAFT.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
    )


class DriverModel(Base):
    """Fleet driver."""

    __tablename__ = "drivers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    vehicle_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
    )


class OrderModel(Base):
    """Billable, trackable delivery created after a successful checkout.

    price_total is written once at creation. driver_id is only non-null once
    the order has reached ASSIGNED.
    """

    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_driver_status", "driver_id", "status"),
        Index("ix_orders_customer", "customer_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=OrderStatus.READY_FOR_DISPATCH.value
    )
    price_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    customer_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("customers.id"), nullable=False
    )
    quote_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("quotes.id"), nullable=False
    )
    driver_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("drivers.id"), nullable=True
    )
    hubspot_deal_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True
    )
    hubspot_metadata: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict
    )
    stripe_checkout_session_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True
    )
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
    )
