"""Tests for the order status state machine."""

from __future__ import annotations

import pytest

from src.logistics.orders.state_machine import (
    STATUS_SEQUENCE,
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    InvalidTransitionError,
    OrderStatus,
    is_active,
    status_rank,
    validate_status_update,
    validate_transition,
)

S = OrderStatus


class TestValidateTransition:
    @pytest.mark.parametrize(
        "current,target",
        list(zip(STATUS_SEQUENCE, STATUS_SEQUENCE[1:])),
    )
    def test_single_forward_steps_are_allowed(self, current, target):
        validate_transition(current, target)

    @pytest.mark.parametrize(
        "current",
        [s for s in OrderStatus if s not in TERMINAL_STATUSES],
    )
    def test_cancel_allowed_from_every_non_terminal_status(self, current):
        validate_transition(current, S.CANCELED)

    def test_skipping_a_step_is_rejected(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(S.READY_FOR_DISPATCH, S.DELIVERED)
        assert exc_info.value.current == S.READY_FOR_DISPATCH
        assert exc_info.value.target == S.DELIVERED

    def test_backward_move_is_rejected(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(S.PICKED_UP, S.ACCEPTED)

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_statuses_have_no_exits(self, terminal):
        assert not VALID_TRANSITIONS.get(terminal)
        for target in OrderStatus:
            if target == terminal:
                continue
            with pytest.raises(InvalidTransitionError):
                validate_transition(terminal, target)

    def test_every_allowed_move_is_forward(self):
        for current, targets in VALID_TRANSITIONS.items():
            for target in targets:
                assert status_rank(target) > status_rank(current)


class TestValidateStatusUpdate:
    def test_assigned_requires_dispatcher_assignment(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_status_update(S.READY_FOR_DISPATCH, S.ASSIGNED)
        assert "dispatcher assignment" in exc_info.value.reason

    def test_driver_progression_is_allowed(self):
        validate_status_update(S.ASSIGNED, S.ACCEPTED)
        validate_status_update(S.IN_TRANSIT, S.DELIVERED)


class TestHelpers:
    def test_status_values_match_wire_names(self):
        assert S.READY_FOR_DISPATCH.value == "ReadyForDispatch"
        assert S.IN_TRANSIT.value == "InTransit"

    def test_is_active(self):
        assert is_active(S.ASSIGNED)
        assert is_active("InTransit")
        assert not is_active(S.DELIVERED)
        assert not is_active(S.CANCELED)

    def test_canceled_ranks_last(self):
        assert status_rank(S.CANCELED) > status_rank(S.DELIVERED)
