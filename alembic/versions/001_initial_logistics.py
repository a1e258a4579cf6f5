"""Initial logistics schema: customers, quotes, drivers, orders, dispatch_events.

Revision ID: 001_initial_logistics
Revises:
Create Date: 2026-10-17

dispatch_events carries the (source, event_id) unique constraint that makes
webhook and internal event recording idempotent. orders carries a unique
stripe_checkout_session_id so checkout order creation is find-or-create.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_logistics"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps(updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]
    if updated:
        columns.append(
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                server_default=sa.func.now(),
                nullable=False,
            )
        )
    return columns


def upgrade() -> None:
    # ── customers ───────────────────────────────────────────────────────

    op.create_table(
        "customers",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(300), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("hubspot_contact_id", sa.String(64), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("email", name="uq_customers_email"),
    )
    op.create_index("ix_customers_hubspot_contact_id", "customers", ["hubspot_contact_id"])

    # ── quotes ──────────────────────────────────────────────────────────

    op.create_table(
        "quotes",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("customer_id", sa.String(64), sa.ForeignKey("customers.id"), nullable=True),
        sa.Column("pickup_address", sa.Text(), nullable=True),
        sa.Column("dropoff_address", sa.Text(), nullable=True),
        sa.Column("distance_mi", sa.Float(), nullable=True),
        sa.Column("price_total", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="usd"),
        sa.Column("status", sa.String(30), nullable=False, server_default="Draft"),
        *_timestamps(),
    )

    # ── drivers ─────────────────────────────────────────────────────────

    op.create_table(
        "drivers",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("vehicle_type", sa.String(50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
    )

    # ── orders ──────────────────────────────────────────────────────────

    op.create_table(
        "orders",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="ReadyForDispatch"),
        sa.Column("price_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="usd"),
        sa.Column("customer_id", sa.String(64), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("quote_id", sa.String(64), sa.ForeignKey("quotes.id"), nullable=False),
        sa.Column("driver_id", sa.String(64), sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column("hubspot_deal_id", sa.String(64), nullable=True),
        sa.Column("hubspot_metadata", _JSON, nullable=False, server_default=sa.text("'{}'")),
        sa.Column("stripe_checkout_session_id", sa.String(255), nullable=False),
        sa.Column("stripe_payment_intent_id", sa.String(255), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "stripe_checkout_session_id", name="uq_orders_stripe_checkout_session_id"
        ),
    )
    op.create_index("ix_orders_driver_status", "orders", ["driver_id", "status"])
    op.create_index("ix_orders_customer", "orders", ["customer_id"])
    op.create_index("ix_orders_hubspot_deal_id", "orders", ["hubspot_deal_id"])

    # ── dispatch_events ─────────────────────────────────────────────────

    op.create_table(
        "dispatch_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.String(64), nullable=True),
        sa.Column("actor", sa.String(200), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("payload", _JSON, nullable=False, server_default=sa.text("'{}'")),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("source", "event_id", name="uq_dispatch_event_source_event_id"),
    )
    op.create_index(
        "ix_dispatch_events_order_created", "dispatch_events", ["order_id", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_dispatch_events_order_created", table_name="dispatch_events")
    op.drop_table("dispatch_events")
    op.drop_index("ix_orders_hubspot_deal_id", table_name="orders")
    op.drop_index("ix_orders_customer", table_name="orders")
    op.drop_index("ix_orders_driver_status", table_name="orders")
    op.drop_table("orders")
    op.drop_table("drivers")
    op.drop_table("quotes")
    op.drop_index("ix_customers_hubspot_contact_id", table_name="customers")
    op.drop_table("customers")
