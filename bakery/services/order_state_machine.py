"""
Order State Machine

Single source of truth for order status transitions.

    DRAFT -> PRICED -> RESERVED -> CONFIRMED -> FULFILLED
                          |            |
                          +------------+--> CANCELLED

DRAFT and PRICED are in-memory stages of a checkout request and are
never written to the database.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from bakery.core.errors import InvalidTransitionError
from bakery.models.order import Order, OrderStatus, OrderStatusHistory, PaymentStatus


# =============================================================================
# TRANSITION RULES
# =============================================================================

ORDER_TRANSITIONS: Dict[str, List[str]] = {
    OrderStatus.DRAFT.value: [OrderStatus.PRICED.value],
    OrderStatus.PRICED.value: [OrderStatus.RESERVED.value],
    OrderStatus.RESERVED.value: [
        OrderStatus.CONFIRMED.value,   # Payment received or pay-on-delivery
        OrderStatus.CANCELLED.value,   # Cancelled or reservation expired
    ],
    OrderStatus.CONFIRMED.value: [
        OrderStatus.FULFILLED.value,
        OrderStatus.CANCELLED.value,
    ],
    OrderStatus.FULFILLED.value: [],  # Terminal
    OrderStatus.CANCELLED.value: [],  # Terminal
}

# Statuses that hold a stock reservation
RESERVING_STATUSES = (OrderStatus.RESERVED.value, OrderStatus.CONFIRMED.value)


def can_transition(current_status: str, new_status: str) -> bool:
    return new_status in ORDER_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    return ORDER_TRANSITIONS.get(current_status, [])


def is_terminal(status: str) -> bool:
    return not ORDER_TRANSITIONS.get(status)


def validate_transition(current_status: str, new_status: str) -> None:
    """Raise InvalidTransitionError unless current -> new is allowed."""
    if can_transition(current_status, new_status):
        return

    allowed = get_allowed_transitions(current_status)
    if not allowed:
        raise InvalidTransitionError(
            f"Order in '{current_status}' status cannot be changed. This is a terminal state.",
            details={"current_status": current_status, "requested_status": new_status},
        )
    raise InvalidTransitionError(
        f"Cannot change order from '{current_status}' to '{new_status}'. "
        f"Allowed transitions: {', '.join(allowed)}",
        details={"current_status": current_status, "requested_status": new_status},
    )


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def transition_order(
    order: Order,
    new_status: str,
    changed_by: Optional[str] = None,
    notes: Optional[str] = None,
) -> OrderStatusHistory:
    """
    Move an order to ``new_status``, set the matching audit fields and
    append a history row. The caller owns the transaction.
    """
    current_status = order.status
    validate_transition(current_status, new_status)

    order.status = new_status
    now = datetime.now(timezone.utc)

    if new_status == OrderStatus.CONFIRMED.value:
        order.confirmed_at = now
        order.reservation_expires_at = None
    elif new_status == OrderStatus.FULFILLED.value:
        order.fulfilled_at = now
    elif new_status == OrderStatus.CANCELLED.value:
        order.cancelled_at = now
        order.cancellation_reason = notes
        order.reservation_expires_at = None
        if order.payment_status == PaymentStatus.PENDING.value:
            order.payment_status = PaymentStatus.CANCELLED.value

    history = OrderStatusHistory(
        order_id=order.id,
        from_status=current_status,
        to_status=new_status,
        notes=notes,
        changed_by=changed_by,
    )
    order.status_history.append(history)
    return history
