"""
Order status transitions

scheduled → in_progress → completed
    │            │            │
    ├→ no_show   └→ cancelled ←┘
    │     └→ scheduled (reschedule)
    └→ cancelled

cancelled is terminal. A completed order may still be cancelled (refund path).
"""

import logging

from ...errors import InvalidTransition
from ...models import Order, OrderStatus, PaymentStatus

logger = logging.getLogger(__name__)

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.SCHEDULED: frozenset(
        {OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED, OrderStatus.NO_SHOW}
    ),
    OrderStatus.IN_PROGRESS: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset({OrderStatus.CANCELLED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.NO_SHOW: frozenset({OrderStatus.SCHEDULED}),
}


def _check_graph() -> None:
    missing = set(OrderStatus) - set(TRANSITIONS)
    if missing:
        raise RuntimeError(f"Order statuses without transition rules: {sorted(s.value for s in missing)}")


_check_graph()


def allowed(current: OrderStatus | str) -> frozenset[OrderStatus]:
    """Statuses reachable in one step from ``current``"""
    return TRANSITIONS[OrderStatus(current)]


def can_transition(current: OrderStatus | str, new: OrderStatus | str) -> bool:
    try:
        return OrderStatus(new) in allowed(current)
    except ValueError:
        return False


def update_status(order: Order, new_status: OrderStatus | str) -> Order:
    """
    Move an order to a new status, applying the billing side effects.

    Completing an order whose payment is still pending flags it ready to bill.
    Cancelling always marks the payment refunded.

    Raises:
        InvalidTransition: if the move is not in TRANSITIONS. The order is left untouched.
    """
    current = order.status
    if not can_transition(current, new_status):
        raise InvalidTransition(current, getattr(new_status, "value", new_status))

    target = OrderStatus(new_status)
    order.status = target.value

    if target is OrderStatus.COMPLETED and order.payment_status == PaymentStatus.PENDING.value:
        order.ready_to_bill = True
    elif target is OrderStatus.CANCELLED:
        order.payment_status = PaymentStatus.REFUNDED.value

    logger.debug(f"Order {order.order_number}: {current} → {target.value}")
    return order
