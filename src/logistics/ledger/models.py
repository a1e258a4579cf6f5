"""Dispatch event persistence model.

The (source, event_id) unique constraint is what makes webhook redelivery and
concurrent duplicate delivery safe: exactly one insert wins.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.logistics.core.database import Base


class DispatchEventModel(Base):
    """Immutable audit record of a single order-related occurrence."""

    __tablename__ = "dispatch_events"
    __table_args__ = (
        UniqueConstraint("source", "event_id", name="uq_dispatch_event_source_event_id"),
        Index("ix_dispatch_events_order_created", "order_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    actor: Mapped[str] = mapped_column(String(200), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict
    )
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
