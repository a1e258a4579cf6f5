"""Order status state machine.

Orders are materialized in READY_FOR_DISPATCH once payment succeeds; DRAFT and
AWAITING_PAYMENT exist for quote-stage records only. From there the order
advances one step at a time. CANCELED is reachable from any non-terminal state.

Exports:
    OrderStatus: Canonical status enum
    VALID_TRANSITIONS: Legal target set per status
    InvalidTransitionError: Raised for illegal moves
    validate_transition: Check a move, raising InvalidTransitionError
    is_active: status not in {DELIVERED, CANCELED}
"""

from __future__ import annotations

from enum import Enum


class OrderStatus(str, Enum):
    """Order lifecycle statuses, in forward order."""

    DRAFT = "Draft"
    AWAITING_PAYMENT = "AwaitingPayment"
    READY_FOR_DISPATCH = "ReadyForDispatch"
    ASSIGNED = "Assigned"
    ACCEPTED = "Accepted"
    PICKED_UP = "PickedUp"
    IN_TRANSIT = "InTransit"
    DELIVERED = "Delivered"
    CANCELED = "Canceled"


STATUS_SEQUENCE: list[OrderStatus] = [
    OrderStatus.DRAFT,
    OrderStatus.AWAITING_PAYMENT,
    OrderStatus.READY_FOR_DISPATCH,
    OrderStatus.ASSIGNED,
    OrderStatus.ACCEPTED,
    OrderStatus.PICKED_UP,
    OrderStatus.IN_TRANSIT,
    OrderStatus.DELIVERED,
]

TERMINAL_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.DELIVERED, OrderStatus.CANCELED}
)

VALID_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.DRAFT: {OrderStatus.AWAITING_PAYMENT, OrderStatus.CANCELED},
    OrderStatus.AWAITING_PAYMENT: {OrderStatus.READY_FOR_DISPATCH, OrderStatus.CANCELED},
    OrderStatus.READY_FOR_DISPATCH: {OrderStatus.ASSIGNED, OrderStatus.CANCELED},
    OrderStatus.ASSIGNED: {OrderStatus.ACCEPTED, OrderStatus.CANCELED},
    OrderStatus.ACCEPTED: {OrderStatus.PICKED_UP, OrderStatus.CANCELED},
    OrderStatus.PICKED_UP: {OrderStatus.IN_TRANSIT, OrderStatus.CANCELED},
    OrderStatus.IN_TRANSIT: {OrderStatus.DELIVERED, OrderStatus.CANCELED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELED: set(),
}

class InvalidTransitionError(ValueError):
    """Raised when an order status move is not permitted."""

    def __init__(self, current: OrderStatus, target: OrderStatus, reason: str | None = None) -> None:
        self.current = current
        self.target = target
        self.reason = reason or (
            f"Invalid status transition: {current.value} -> {target.value}. "
            f"Allowed: {sorted(s.value for s in VALID_TRANSITIONS.get(current, set()))}"
        )
        super().__init__(self.reason)


class ConcurrentTransitionError(RuntimeError):
    """Raised when the order changed status between read and conditional write."""

    def __init__(self, order_id: str, expected: OrderStatus) -> None:
        self.order_id = order_id
        self.expected = expected
        super().__init__(
            f"Order {order_id} is no longer in status {expected.value}; reload and retry"
        )


def status_rank(status: OrderStatus) -> int:
    """Position in the forward sequence. CANCELED ranks after every other status."""
    if status == OrderStatus.CANCELED:
        return len(STATUS_SEQUENCE)
    return STATUS_SEQUENCE.index(status)


def is_active(status: OrderStatus | str) -> bool:
    """True while the order still occupies its driver."""
    return OrderStatus(status) not in TERMINAL_STATUSES


def validate_transition(current: OrderStatus, target: OrderStatus) -> None:
    """Raise InvalidTransitionError unless current -> target is a legal move."""
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(current, target)


def validate_status_update(current: OrderStatus, target: OrderStatus) -> None:
    """Validate a driver/dispatcher status update (everything except assignment)."""
    if target == OrderStatus.ASSIGNED:
        raise InvalidTransitionError(
            current,
            target,
            reason="Assigned can only be set by dispatcher assignment",
        )
    validate_transition(current, target)
