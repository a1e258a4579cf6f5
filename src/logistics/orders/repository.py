"""Order domain repositories -- async persistence for orders, customers, quotes, drivers.

Uses the session_factory callable pattern. Writes that must agree with the
event ledger (checkout order creation, status transitions, CRM reverse sync)
insert their ledger row in the same transaction via insert_event, so either
both the row change and its audit entry commit or neither does.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.logistics.crm.field_mapping import LAST_SYNCED_AT
from src.logistics.crm.schemas import OrderSyncData
from src.logistics.ledger.repository import insert_event
from src.logistics.ledger.schemas import DispatchEventRecord, LedgerEntry
from src.logistics.orders.models import CustomerModel, DriverModel, OrderModel, QuoteModel
from src.logistics.orders.schemas import (
    CheckoutOrderCreate,
    CustomerRead,
    CustomerUpsert,
    DriverAvailability,
    DriverRead,
    OrderFilter,
    OrderRead,
    QuoteRead,
    normalize_email,
)
from src.logistics.orders.state_machine import (
    TERMINAL_STATUSES,
    ConcurrentTransitionError,
    OrderStatus,
)

logger = structlog.get_logger(__name__)

SessionFactory = Callable[..., AsyncGenerator[AsyncSession, None]]

_TERMINAL_VALUES = [s.value for s in TERMINAL_STATUSES]


# ── Serialization Helpers ───────────────────────────────────────────────────


def _row_to_order(
    model: OrderModel, pickup_address: str | None, dropoff_address: str | None
) -> OrderRead:
    """Convert an OrderModel plus joined quote addresses to OrderRead."""
    return OrderRead(
        id=model.id,
        status=OrderStatus(model.status),
        price_total=model.price_total,
        currency=model.currency,
        customer_id=model.customer_id,
        quote_id=model.quote_id,
        driver_id=model.driver_id,
        hubspot_deal_id=model.hubspot_deal_id,
        hubspot_metadata=dict(model.hubspot_metadata or {}),
        stripe_checkout_session_id=model.stripe_checkout_session_id,
        pickup_address=pickup_address,
        dropoff_address=dropoff_address,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_customer(model: CustomerModel) -> CustomerRead:
    return CustomerRead(
        id=model.id,
        email=model.email,
        name=model.name,
        phone=model.phone,
        hubspot_contact_id=model.hubspot_contact_id,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_quote(model: QuoteModel) -> QuoteRead:
    return QuoteRead(
        id=model.id,
        customer_id=model.customer_id,
        pickup_address=model.pickup_address,
        dropoff_address=model.dropoff_address,
        distance_mi=model.distance_mi,
        price_total=model.price_total,
        currency=model.currency,
        status=model.status,
    )


def _model_to_driver(model: DriverModel) -> DriverRead:
    return DriverRead(
        id=model.id,
        name=model.name,
        phone=model.phone,
        vehicle_type=model.vehicle_type,
        is_active=model.is_active,
    )


def _order_select():
    return select(
        OrderModel, QuoteModel.pickup_address, QuoteModel.dropoff_address
    ).outerjoin(QuoteModel, QuoteModel.id == OrderModel.quote_id)


async def _fetch_order(session: AsyncSession, stmt: Any) -> OrderRead | None:
    row = (await session.execute(stmt)).first()
    if row is None:
        return None
    return _row_to_order(*row)


def _effective_order_updates(
    updates: dict[str, dict[str, Any]],
    metadata: dict[str, Any],
    quote: QuoteModel | None,
) -> dict[str, dict[str, Any]]:
    """Drop reverse-sync values that already match what is stored."""
    effective: dict[str, dict[str, Any]] = {}
    metadata_changes = {
        key: value
        for key, value in (updates.get("orders", {}).get("hubspot_metadata") or {}).items()
        if key not in metadata or metadata[key] != value
    }
    if metadata_changes:
        effective["orders"] = {"hubspot_metadata": metadata_changes}
    if quote is not None:
        quote_changes = {
            column: value
            for column, value in (updates.get("quotes") or {}).items()
            if getattr(quote, column) != value
        }
        if quote_changes:
            effective["quotes"] = quote_changes
    return effective


# ── Orders ──────────────────────────────────────────────────────────────────


class OrderRepository:
    """Async persistence for the Order aggregate.

    There is deliberately no method that changes price_total or deletes a row.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get(self, order_id: str) -> OrderRead | None:
        """Get an order by ID, None if not found."""
        async for session in self._session_factory():
            return await _fetch_order(session, _order_select().where(OrderModel.id == order_id))

    async def get_by_deal_id(self, deal_id: str) -> OrderRead | None:
        """Get the order linked to a HubSpot deal."""
        async for session in self._session_factory():
            return await _fetch_order(
                session, _order_select().where(OrderModel.hubspot_deal_id == deal_id)
            )

    async def get_by_checkout_session(self, checkout_session_id: str) -> OrderRead | None:
        async for session in self._session_factory():
            return await _fetch_order(
                session,
                _order_select().where(
                    OrderModel.stripe_checkout_session_id == checkout_session_id
                ),
            )

    async def list_orders(self, filters: OrderFilter | None = None) -> list[OrderRead]:
        """List orders newest first, optionally filtered."""
        filters = filters or OrderFilter()
        async for session in self._session_factory():
            stmt = _order_select()
            if filters.status is not None:
                stmt = stmt.where(OrderModel.status == filters.status.value)
            if filters.driver_id is not None:
                stmt = stmt.where(OrderModel.driver_id == filters.driver_id)
            if filters.customer_id is not None:
                stmt = stmt.where(OrderModel.customer_id == filters.customer_id)
            if filters.active_only:
                stmt = stmt.where(OrderModel.status.not_in(_TERMINAL_VALUES))
            stmt = stmt.order_by(OrderModel.created_at.desc()).limit(filters.limit)
            result = await session.execute(stmt)
            return [_row_to_order(*row) for row in result.all()]

    async def create_from_checkout(
        self, data: CheckoutOrderCreate, entry: LedgerEntry
    ) -> tuple[OrderRead, bool]:
        """Find-or-create the order for a checkout session.

        The new order and its payment ledger entry commit together. A
        concurrent creator for the same session loses on the unique
        constraint and returns the winner's row.

        Returns:
            (order, created) where created is False if it already existed.
        """
        by_session = _order_select().where(
            OrderModel.stripe_checkout_session_id == data.checkout_session_id
        )
        async for session in self._session_factory():
            existing = await _fetch_order(session, by_session)
            if existing is not None:
                return existing, False

            model = OrderModel(
                status=OrderStatus.READY_FOR_DISPATCH.value,
                price_total=data.price_total,
                currency=data.currency.lower(),
                customer_id=data.customer_id,
                quote_id=data.quote_id,
                hubspot_metadata={},
                stripe_checkout_session_id=data.checkout_session_id,
                stripe_payment_intent_id=data.payment_intent_id,
            )
            session.add(model)
            try:
                await session.flush()
            except IntegrityError:
                await session.rollback()
                existing = await _fetch_order(session, by_session)
                if existing is None:
                    raise
                logger.info(
                    "orders.checkout_order_exists",
                    checkout_session_id=data.checkout_session_id,
                    order_id=existing.id,
                )
                return existing, False

            await insert_event(
                session,
                source=entry.source,
                event_id=entry.event_id,
                actor=entry.actor,
                event_type=entry.event_type,
                order_id=model.id,
                payload=entry.payload,
            )
            await session.commit()

            order = await _fetch_order(session, _order_select().where(OrderModel.id == model.id))
            logger.info(
                "orders.created_from_checkout",
                order_id=model.id,
                checkout_session_id=data.checkout_session_id,
            )
            return order, True

    async def transition(
        self,
        order_id: str,
        *,
        expected: OrderStatus,
        target: OrderStatus,
        entry: LedgerEntry,
        driver_id: str | None = None,
    ) -> tuple[OrderRead, DispatchEventRecord | None]:
        """Move an order from expected to target and append its ledger event.

        The update is conditional on the row still being in `expected`
        (compare-and-set). If another writer moved it first, nothing is
        written and ConcurrentTransitionError is raised.
        """
        values: dict[str, Any] = {
            "status": target.value,
            "updated_at": datetime.now(timezone.utc),
        }
        if driver_id is not None:
            values["driver_id"] = driver_id

        async for session in self._session_factory():
            result = await session.execute(
                update(OrderModel)
                .where(OrderModel.id == order_id, OrderModel.status == expected.value)
                .values(**values)
            )
            if result.rowcount == 0:
                await session.rollback()
                raise ConcurrentTransitionError(order_id, expected)

            event = await insert_event(
                session,
                source=entry.source,
                event_id=entry.event_id,
                actor=entry.actor,
                event_type=entry.event_type,
                order_id=order_id,
                payload=entry.payload,
            )
            if event is None:
                logger.warning(
                    "orders.transition_event_duplicate",
                    order_id=order_id,
                    event_id=entry.event_id,
                )
            await session.commit()

            order = await _fetch_order(session, _order_select().where(OrderModel.id == order_id))
            return order, event

    async def set_hubspot_deal_id(self, order_id: str, deal_id: str) -> None:
        """Store the HubSpot deal id returned by a forward sync."""
        async for session in self._session_factory():
            await session.execute(
                update(OrderModel)
                .where(OrderModel.id == order_id)
                .values(hubspot_deal_id=deal_id, updated_at=datetime.now(timezone.utc))
            )
            await session.commit()

    async def apply_crm_updates(
        self,
        order_id: str,
        build_updates: Callable[[OrderRead], dict[str, dict[str, Any]]],
        entry: LedgerEntry,
    ) -> tuple[OrderRead, dict[str, dict[str, Any]]] | None:
        """Apply a reverse-sync update under a row lock.

        build_updates receives the locked current order and returns
        {"orders": {"hubspot_metadata": {...}}, "quotes": {column: value}}.
        Metadata is merged key by key; quote columns are overwritten. The
        ledger entry gets the applied updates added to its payload.

        Returns:
            (order, updates), or None if the order does not exist. updates is
            empty when nothing needed to change (no ledger entry is written).
        """
        async for session in self._session_factory():
            stmt = (
                _order_select()
                .where(OrderModel.id == order_id)
                .with_for_update(of=OrderModel)
            )
            row = (await session.execute(stmt)).first()
            if row is None:
                return None
            model = row[0]
            current = _row_to_order(*row)

            updates = _effective_order_updates(
                build_updates(current),
                model.hubspot_metadata or {},
                await session.get(QuoteModel, model.quote_id) if model.quote_id else None,
            )
            if not updates:
                await session.rollback()
                return current, {}

            now = datetime.now(timezone.utc)
            metadata_changes = updates.get("orders", {}).get("hubspot_metadata") or {}
            model.hubspot_metadata = {
                **(model.hubspot_metadata or {}),
                **metadata_changes,
                LAST_SYNCED_AT: now.isoformat(),
            }
            model.updated_at = now

            quote_changes = updates.get("quotes")
            if quote_changes:
                await session.execute(
                    update(QuoteModel)
                    .where(QuoteModel.id == model.quote_id)
                    .values(**quote_changes, updated_at=now)
                )

            await insert_event(
                session,
                source=entry.source,
                event_id=entry.event_id,
                actor=entry.actor,
                event_type=entry.event_type,
                order_id=order_id,
                payload={**entry.payload, "updates": updates},
            )
            await session.commit()

            order = await _fetch_order(session, _order_select().where(OrderModel.id == order_id))
            return order, updates

    async def load_sync_data(self, order_id: str) -> OrderSyncData | None:
        """Assemble the forward-sync view of an order (customer, quote, driver joined)."""
        async for session in self._session_factory():
            stmt = (
                select(OrderModel, CustomerModel, QuoteModel, DriverModel)
                .join(CustomerModel, CustomerModel.id == OrderModel.customer_id)
                .outerjoin(QuoteModel, QuoteModel.id == OrderModel.quote_id)
                .outerjoin(DriverModel, DriverModel.id == OrderModel.driver_id)
                .where(OrderModel.id == order_id)
            )
            row = (await session.execute(stmt)).first()
            if row is None:
                return None
            order, customer, quote, driver = row
            return OrderSyncData(
                order_id=order.id,
                customer_id=customer.id,
                customer_email=customer.email,
                customer_name=customer.name,
                customer_phone=customer.phone,
                hubspot_contact_id=customer.hubspot_contact_id,
                hubspot_deal_id=order.hubspot_deal_id,
                status=OrderStatus(order.status),
                price_total=order.price_total,
                currency=order.currency,
                pickup_address=quote.pickup_address if quote else None,
                dropoff_address=quote.dropoff_address if quote else None,
                distance_mi=quote.distance_mi if quote else None,
                driver_id=driver.id if driver else None,
                driver_name=driver.name if driver else None,
                driver_phone=driver.phone if driver else None,
                vehicle_type=driver.vehicle_type if driver else None,
                created_at=order.created_at,
                updated_at=order.updated_at,
            )


# ── Customers ───────────────────────────────────────────────────────────────


class CustomerRepository:
    """Async persistence for customers, keyed by normalized email.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get(self, customer_id: str) -> CustomerRead | None:
        async for session in self._session_factory():
            model = await session.get(CustomerModel, customer_id)
            return _model_to_customer(model) if model else None

    async def get_by_contact_id(self, contact_id: str) -> CustomerRead | None:
        async for session in self._session_factory():
            result = await session.execute(
                select(CustomerModel).where(CustomerModel.hubspot_contact_id == contact_id)
            )
            model = result.scalars().first()
            return _model_to_customer(model) if model else None

    async def upsert_by_email(self, data: CustomerUpsert) -> CustomerRead:
        """Insert or update the customer with this (normalized) email.

        Only non-null name/phone values overwrite stored ones.
        """
        email = normalize_email(data.email)
        async for session in self._session_factory():
            for attempt in range(2):
                result = await session.execute(
                    select(CustomerModel).where(CustomerModel.email == email)
                )
                model = result.scalar_one_or_none()
                if model is None:
                    model = CustomerModel(email=email, name=data.name, phone=data.phone)
                    session.add(model)
                else:
                    if data.name is not None:
                        model.name = data.name
                    if data.phone is not None:
                        model.phone = data.phone
                try:
                    await session.commit()
                except IntegrityError:
                    # Lost an insert race on the email constraint; update the winner
                    await session.rollback()
                    if attempt:
                        raise
                    continue
                return _model_to_customer(model)

        raise RuntimeError("session_factory yielded no session")

    async def set_hubspot_contact_id(self, customer_id: str, contact_id: str) -> None:
        """Store the HubSpot contact id returned by a forward sync."""
        async for session in self._session_factory():
            await session.execute(
                update(CustomerModel)
                .where(CustomerModel.id == customer_id)
                .values(hubspot_contact_id=contact_id, updated_at=datetime.now(timezone.utc))
            )
            await session.commit()

    async def apply_crm_updates(
        self,
        customer_id: str,
        build_updates: Callable[[CustomerRead], dict[str, Any]],
        entry: LedgerEntry,
    ) -> tuple[CustomerRead, dict[str, Any]] | None:
        """Apply a reverse-sync update as an atomic read-modify-write.

        The row is locked before build_updates sees it, so recombining a
        name from one changed half and the stored other half cannot lose a
        concurrent edit. Values equal to the stored ones are dropped. An
        email already held by another customer is skipped (recorded under
        "ignored" in the ledger payload) and the remaining changes apply.
        """
        async for session in self._session_factory():
            result = await session.execute(
                select(CustomerModel)
                .where(CustomerModel.id == customer_id)
                .with_for_update()
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None

            updates = {
                column: value
                for column, value in build_updates(_model_to_customer(model)).items()
                if getattr(model, column) != value
            }
            ignored: list[str] = []
            if "email" in updates:
                owner = await session.scalar(
                    select(CustomerModel.id).where(
                        CustomerModel.email == updates["email"],
                        CustomerModel.id != customer_id,
                    )
                )
                if owner is not None:
                    logger.warning(
                        "crm_reverse_sync.email_conflict",
                        customer_id=customer_id,
                        owner_id=owner,
                    )
                    del updates["email"]
                    ignored.append("email")
            if not updates:
                await session.rollback()
                return _model_to_customer(model), {}

            for column, value in updates.items():
                setattr(model, column, value)

            payload = {**entry.payload, "updates": updates}
            if ignored:
                payload["ignored"] = ignored
            await insert_event(
                session,
                source=entry.source,
                event_id=entry.event_id,
                actor=entry.actor,
                event_type=entry.event_type,
                payload=payload,
            )
            await session.commit()
            return _model_to_customer(model), updates


# ── Quotes ──────────────────────────────────────────────────────────────────


class QuoteRepository:
    """Read access to quotes (their lifecycle is owned by the quoting flow)."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get(self, quote_id: str) -> QuoteRead | None:
        async for session in self._session_factory():
            model = await session.get(QuoteModel, quote_id)
            return _model_to_quote(model) if model else None


# ── Drivers ─────────────────────────────────────────────────────────────────


class DriverRepository:
    """Driver lookups with query-time availability."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get(self, driver_id: str) -> DriverRead | None:
        async for session in self._session_factory():
            model = await session.get(DriverModel, driver_id)
            return _model_to_driver(model) if model else None

    async def list_with_availability(self, include_inactive: bool = False) -> list[DriverAvailability]:
        """All drivers with their count of non-terminal assigned orders.

        A driver is available iff that count is zero.
        """
        async for session in self._session_factory():
            active_counts = (
                select(
                    OrderModel.driver_id.label("driver_id"),
                    func.count(OrderModel.id).label("active_count"),
                )
                .where(
                    OrderModel.driver_id.is_not(None),
                    OrderModel.status.not_in(_TERMINAL_VALUES),
                )
                .group_by(OrderModel.driver_id)
                .subquery()
            )
            stmt = (
                select(DriverModel, func.coalesce(active_counts.c.active_count, 0))
                .outerjoin(active_counts, active_counts.c.driver_id == DriverModel.id)
                .order_by(DriverModel.name)
            )
            if not include_inactive:
                stmt = stmt.where(DriverModel.is_active.is_(True))

            result = await session.execute(stmt)
            drivers: list[DriverAvailability] = []
            for model, count in result.all():
                drivers.append(
                    DriverAvailability(
                        **_model_to_driver(model).model_dump(),
                        active_order_count=int(count),
                        is_available=int(count) == 0,
                    )
                )
            return drivers
