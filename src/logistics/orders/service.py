"""Order lifecycle operations -- checkout creation, assignment, status updates.

Each operation validates against the state machine, commits the row change
and its ledger entry together, then runs post-commit tasks (HubSpot sync,
notification dispatch). Post-commit failures are logged and never undo the
commit or reach the caller.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.logistics.core.monitoring import order_transitions_total
from src.logistics.crm.sync import HubSpotSyncOrchestrator
from src.logistics.ledger.schemas import EventSource, EventType, LedgerEntry
from src.logistics.orders.post_commit import PostCommitTask, TaskOutcome, run_post_commit_tasks
from src.logistics.orders.repository import (
    CustomerRepository,
    DriverRepository,
    OrderRepository,
)
from src.logistics.orders.schemas import CheckoutOrderCreate, OrderRead, TransitionResult
from src.logistics.orders.state_machine import (
    InvalidTransitionError,
    OrderStatus,
    validate_status_update,
)
from src.logistics.services.notifications import Notifier

logger = structlog.get_logger(__name__)


class OrderNotFoundError(LookupError):
    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class DriverNotFoundError(LookupError):
    def __init__(self, driver_id: str) -> None:
        self.driver_id = driver_id
        super().__init__(f"Driver {driver_id} not found")


class OrderService:
    """Authoritative order mutations plus their best-effort side effects.

    Args:
        orders: Order repository.
        drivers: Driver repository (assignment lookups).
        customers: Customer repository (notification recipient lookup).
        sync_orchestrator: HubSpot sync; None disables CRM post-commit tasks.
        notifier: Notification dispatcher; None disables notifications.
    """

    def __init__(
        self,
        orders: OrderRepository,
        drivers: DriverRepository,
        customers: CustomerRepository | None = None,
        sync_orchestrator: HubSpotSyncOrchestrator | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._orders = orders
        self._drivers = drivers
        self._customers = customers
        self._sync = sync_orchestrator
        self._notifier = notifier

    # ── Creation ────────────────────────────────────────────────────────────

    async def create_from_checkout(
        self, data: CheckoutOrderCreate, *, event_id: str, actor: str = "system"
    ) -> tuple[OrderRead, bool]:
        """Find-or-create the order for a paid checkout session.

        Side effects (HubSpot sync, confirmation) run only when the order was
        created by this call.
        """
        entry = LedgerEntry(
            source=EventSource.STRIPE,
            event_id=f"{event_id}:{EventType.PAYMENT_COMPLETED}",
            actor=actor,
            event_type=EventType.PAYMENT_COMPLETED,
            payload={
                "checkout_session_id": data.checkout_session_id,
                "payment_intent_id": data.payment_intent_id,
                "amount": str(data.price_total),
                "currency": data.currency,
                "quote_id": data.quote_id,
            },
        )
        order, created = await self._orders.create_from_checkout(data, entry)
        if created:
            order_transitions_total.labels(to_status=order.status.value).inc()
            await self.after_commit(
                order,
                "order_confirmation",
                {"price_total": str(order.price_total), "currency": order.currency},
            )
        return order, created

    # ── Transitions ─────────────────────────────────────────────────────────

    async def _get_order(self, order_id: str) -> OrderRead:
        order = await self._orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def assign_driver(
        self,
        order_id: str,
        driver_id: str,
        *,
        actor: str,
        source: EventSource = EventSource.DISPATCHER,
    ) -> TransitionResult:
        """Set the driver and move ReadyForDispatch -> Assigned.

        Raises:
            OrderNotFoundError / DriverNotFoundError: Unknown ids.
            InvalidTransitionError: Order is not ReadyForDispatch.
            ConcurrentTransitionError: Order changed while assigning.
        """
        order = await self._get_order(order_id)
        driver = await self._drivers.get(driver_id)
        if driver is None:
            raise DriverNotFoundError(driver_id)

        current = order.status
        if current != OrderStatus.READY_FOR_DISPATCH:
            raise InvalidTransitionError(
                current,
                OrderStatus.ASSIGNED,
                reason=(
                    f"Order must be ReadyForDispatch to assign a driver "
                    f"(current status: {current.value})"
                ),
            )

        entry = LedgerEntry(
            source=source,
            event_id=f"{order_id}:{EventType.DRIVER_ASSIGNED}:{driver_id}",
            actor=actor,
            event_type=EventType.DRIVER_ASSIGNED,
            payload={
                "driver_id": driver.id,
                "driver_name": driver.name,
                "old_status": current.value,
                "new_status": OrderStatus.ASSIGNED.value,
            },
        )
        updated, event = await self._orders.transition(
            order_id,
            expected=current,
            target=OrderStatus.ASSIGNED,
            entry=entry,
            driver_id=driver.id,
        )
        order_transitions_total.labels(to_status=OrderStatus.ASSIGNED.value).inc()
        logger.info(
            "orders.driver_assigned",
            order_id=order_id,
            driver_id=driver.id,
            actor=actor,
        )

        await self.after_commit(
            updated,
            EventType.DRIVER_ASSIGNED,
            {"driver_id": driver.id, "driver_name": driver.name, "driver_phone": driver.phone},
        )
        return TransitionResult(order=updated, previous_status=current, changed=True, event=event)

    async def update_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        *,
        actor: str,
        source: EventSource = EventSource.DRIVER,
        notes: str | None = None,
    ) -> TransitionResult:
        """Advance (or cancel) an order one step.

        Requesting the current status is a no-op returning changed=False.

        Raises:
            OrderNotFoundError: Unknown order.
            InvalidTransitionError: Skip, backward move, or Assigned requested.
            ConcurrentTransitionError: Another update won the race.
        """
        order = await self._get_order(order_id)
        current = order.status

        if new_status == current:
            return TransitionResult(order=order, previous_status=current, changed=False)

        validate_status_update(current, new_status)

        payload: dict[str, Any] = {
            "old_status": current.value,
            "new_status": new_status.value,
        }
        if notes:
            payload["notes"] = notes

        entry = LedgerEntry(
            source=source,
            event_id=f"{order_id}:{EventType.STATUS_CHANGED}:{new_status.value}",
            actor=actor,
            event_type=EventType.STATUS_CHANGED,
            payload=payload,
        )
        updated, event = await self._orders.transition(
            order_id, expected=current, target=new_status, entry=entry
        )
        order_transitions_total.labels(to_status=new_status.value).inc()
        logger.info(
            "orders.status_changed",
            order_id=order_id,
            old_status=current.value,
            new_status=new_status.value,
            actor=actor,
        )

        await self.after_commit(updated, "order_status_changed", dict(payload))
        return TransitionResult(order=updated, previous_status=current, changed=True, event=event)

    async def cancel(
        self,
        order_id: str,
        *,
        actor: str,
        reason: str | None = None,
        source: EventSource = EventSource.DISPATCHER,
    ) -> TransitionResult:
        return await self.update_status(
            order_id, OrderStatus.CANCELED, actor=actor, source=source, notes=reason
        )

    # ── Post-commit ─────────────────────────────────────────────────────────

    def post_commit_tasks(
        self, order: OrderRead, notification_type: str, data: dict[str, Any]
    ) -> list[PostCommitTask]:
        """Side effects for a committed change, in execution order."""
        tasks: list[PostCommitTask] = []

        if self._sync is not None:
            sync = self._sync

            async def _sync_to_hubspot() -> None:
                await sync.sync_order_by_id(order.id)

            tasks.append(PostCommitTask("hubspot_sync", _sync_to_hubspot))

        if self._notifier is not None:
            notifier = self._notifier
            customers = self._customers

            async def _notify() -> None:
                body: dict[str, Any] = {
                    "order_id": order.id,
                    "status": order.status.value,
                    "customer_id": order.customer_id,
                    **data,
                }
                if customers is not None:
                    customer = await customers.get(order.customer_id)
                    if customer is not None:
                        body["customer_email"] = customer.email
                        body["customer_name"] = customer.name
                await notifier.notify(notification_type, body)

            tasks.append(PostCommitTask(f"notify:{notification_type}", _notify))

        return tasks

    async def after_commit(
        self, order: OrderRead, notification_type: str, data: dict[str, Any]
    ) -> list[TaskOutcome]:
        return await run_post_commit_tasks(
            self.post_commit_tasks(order, notification_type, data),
            order_id=order.id,
        )
