# tests/test_order_state_machine.py
import pytest

from bakery.core.errors import InvalidTransitionError
from bakery.models.order import Order, OrderStatus
from bakery.services.order_state_machine import (
    ORDER_TRANSITIONS,
    can_transition,
    is_terminal,
    transition_order,
    validate_transition,
)


def test_every_status_has_rules():
    assert set(ORDER_TRANSITIONS) == {s.value for s in OrderStatus}


def test_happy_path_is_allowed():
    path = ["DRAFT", "PRICED", "RESERVED", "CONFIRMED", "FULFILLED"]
    for current, following in zip(path, path[1:]):
        assert can_transition(current, following)


def test_cancel_only_from_reserving_statuses():
    assert can_transition("RESERVED", "CANCELLED")
    assert can_transition("CONFIRMED", "CANCELLED")
    assert not can_transition("PRICED", "CANCELLED")
    assert not can_transition("FULFILLED", "CANCELLED")


def test_terminal_statuses():
    assert is_terminal("FULFILLED")
    assert is_terminal("CANCELLED")
    assert not is_terminal("RESERVED")

    with pytest.raises(InvalidTransitionError) as error:
        validate_transition("CANCELLED", "CONFIRMED")
    assert "terminal" in error.value.message


def test_skipping_a_step_is_rejected():
    with pytest.raises(InvalidTransitionError) as error:
        validate_transition("RESERVED", "FULFILLED")
    assert error.value.details == {"current_status": "RESERVED", "requested_status": "FULFILLED"}


def test_transition_records_history_and_audit_fields():
    order = Order(status="RESERVED", payment_status="PENDING", status_history=[])

    history = transition_order(order, "CANCELLED", changed_by="customer-1", notes="Too late")

    assert order.status == "CANCELLED"
    assert order.cancellation_reason == "Too late"
    assert order.cancelled_at is not None
    assert order.payment_status == "CANCELLED"
    assert order.reservation_expires_at is None
    assert history.from_status == "RESERVED"
    assert history.to_status == "CANCELLED"
    assert order.status_history == [history]


def test_failed_transition_leaves_order_untouched():
    order = Order(status="FULFILLED", payment_status="PAID", status_history=[])
    with pytest.raises(InvalidTransitionError):
        transition_order(order, "CANCELLED")
    assert order.status == "FULFILLED"
    assert order.status_history == []
