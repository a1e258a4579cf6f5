"""Webhook event handlers.

CheckoutCompletedHandler turns a paid Stripe checkout session into an order.
CrmPropertyChangeHandler applies HubSpot deal/contact edits through the
reverse property mapping. Both are safe to re-run for the same event.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import structlog

from src.logistics.config import Settings
from src.logistics.crm.reverse_mapping import map_contact_changes, map_deal_changes
from src.logistics.ledger.schemas import EventSource, EventType, LedgerEntry
from src.logistics.orders.repository import (
    CustomerRepository,
    OrderRepository,
    QuoteRepository,
)
from src.logistics.orders.schemas import CheckoutOrderCreate, CustomerRead, OrderRead
from src.logistics.orders.service import OrderService
from src.logistics.webhooks.pipeline import WebhookPayloadError
from src.logistics.webhooks.schemas import WebhookEvent

logger = structlog.get_logger(__name__)

CHECKOUT_SESSION = "checkout.session"
CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
DEAL_PROPERTY_CHANGE = "deal.propertyChange"
CONTACT_PROPERTY_CHANGE = "contact.propertyChange"


class CheckoutCompletedHandler:
    """checkout.session.completed -> ReadyForDispatch order.

    Args:
        quotes: Quote lookups (the session must reference a real quote).
        customers: Customer lookups (likewise for the customer).
        service: Order service; creates the order and runs post-commit tasks.
    """

    def __init__(
        self,
        quotes: QuoteRepository,
        customers: CustomerRepository,
        service: OrderService,
    ) -> None:
        self._quotes = quotes
        self._customers = customers
        self._service = service

    async def handle(self, event: WebhookEvent) -> str | None:
        session: dict[str, Any] = event.raw_payload["data"]["object"]
        metadata = session.get("metadata") or {}
        quote_id = metadata.get("quote_id")
        customer_id = metadata.get("customer_id")
        if not quote_id or not customer_id:
            logger.error(
                "webhook.checkout_missing_metadata",
                checkout_session_id=session.get("id"),
            )
            raise WebhookPayloadError("Missing required metadata: quote_id and customer_id")

        quote = await self._quotes.get(quote_id)
        if quote is None:
            logger.warning(
                "webhook.checkout_quote_not_found",
                quote_id=quote_id,
                checkout_session_id=session.get("id"),
            )
            return f"Quote {quote_id} not found"

        if await self._customers.get(customer_id) is None:
            logger.warning(
                "webhook.checkout_customer_not_found",
                customer_id=customer_id,
                checkout_session_id=session.get("id"),
            )
            return f"Customer {customer_id} not found"

        amount_total = session.get("amount_total")
        if amount_total is not None:
            price_total = Decimal(amount_total) / 100
        elif quote.price_total is not None:
            price_total = quote.price_total
        else:
            raise WebhookPayloadError("Checkout session has no amount_total")

        data = CheckoutOrderCreate(
            quote_id=quote_id,
            customer_id=customer_id,
            checkout_session_id=session["id"],
            payment_intent_id=session.get("payment_intent"),
            price_total=price_total,
            currency=session.get("currency") or quote.currency,
        )
        order, created = await self._service.create_from_checkout(
            data, event_id=event.event_id
        )
        if not created:
            return f"Order {order.id} already exists"
        return f"Order {order.id} created"


class CrmPropertyChangeHandler:
    """deal.propertyChange / contact.propertyChange -> local partial update.

    Args:
        orders: Order repository (deal lookups and locked updates).
        customers: Customer repository (contact lookups and locked updates).
        settings: Property name overrides for the reverse tables.
    """

    def __init__(
        self,
        orders: OrderRepository,
        customers: CustomerRepository,
        settings: Settings,
    ) -> None:
        self._orders = orders
        self._customers = customers
        self._settings = settings

    async def handle(self, event: WebhookEvent) -> str | None:
        if not event.property_changes:
            logger.info("crm_reverse_sync.no_changes", event_id=event.event_id)
            return "No property changes"
        if event.object_type == "deal":
            return await self._handle_deal(event)
        if event.object_type == "contact":
            return await self._handle_contact(event)
        return None

    def _entry(self, event: WebhookEvent, id_key: str) -> LedgerEntry:
        return LedgerEntry(
            source=EventSource.HUBSPOT,
            event_id=f"{event.event_id}:sync",
            actor="system",
            event_type=EventType.SYNC_FROM_HUBSPOT,
            payload={id_key: event.object_id, "propertyChanges": event.property_changes},
        )

    async def _handle_deal(self, event: WebhookEvent) -> str | None:
        deal_id = event.object_id or ""
        order = await self._orders.get_by_deal_id(deal_id)
        if order is None:
            logger.warning("crm_reverse_sync.order_not_found", deal_id=deal_id)
            return f"No order for deal {deal_id}"

        try:
            updates, ignored = map_deal_changes(event.property_changes, self._settings)
        except ValueError as exc:
            raise WebhookPayloadError(f"Invalid property value: {exc}") from exc
        if ignored:
            logger.info(
                "crm_reverse_sync.properties_ignored",
                deal_id=deal_id,
                properties=ignored,
            )

        def build_updates(current: OrderRead) -> dict[str, dict[str, Any]]:
            return updates

        applied = await self._orders.apply_crm_updates(
            order.id, build_updates, self._entry(event, "dealId")
        )
        if applied is None:
            return f"No order for deal {deal_id}"
        _, changed = applied
        logger.info(
            "crm_reverse_sync.deal_applied",
            order_id=order.id,
            deal_id=deal_id,
            updated=sorted(changed),
        )
        return f"Order {order.id} updated" if changed else "No mapped changes"

    async def _handle_contact(self, event: WebhookEvent) -> str | None:
        contact_id = event.object_id or ""
        customer = await self._customers.get_by_contact_id(contact_id)
        if customer is None:
            logger.warning("crm_reverse_sync.customer_not_found", contact_id=contact_id)
            return f"No customer for contact {contact_id}"

        ignored: list[str] = []

        # Runs under the row lock so the stored name is current
        def build_updates(current: CustomerRead) -> dict[str, Any]:
            updates, skipped = map_contact_changes(
                event.property_changes, current.name, self._settings
            )
            ignored[:] = skipped
            return updates

        applied = await self._customers.apply_crm_updates(
            customer.id, build_updates, self._entry(event, "contactId")
        )
        if ignored:
            logger.info(
                "crm_reverse_sync.properties_ignored",
                contact_id=contact_id,
                properties=ignored,
            )
        if applied is None:
            return f"No customer for contact {contact_id}"
        _, changed = applied
        logger.info(
            "crm_reverse_sync.contact_applied",
            customer_id=customer.id,
            contact_id=contact_id,
            updated=sorted(changed),
        )
        return f"Customer {customer.id} updated" if changed else "No mapped changes"
