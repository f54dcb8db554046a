"""Order status transitions, payment and feedback as pure functions over Order."""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from .domain import Order, OrderStatus, PaymentMethod
from .errors import ValidationError


class InvalidTransition(ValidationError):
    def __init__(self, current: OrderStatus, target: OrderStatus) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot move order from {current.value} to {target.value}.")


TRANSITIONS: dict[OrderStatus, OrderStatus] = {
    OrderStatus.PENDING: OrderStatus.PROCESSING,
    OrderStatus.PROCESSING: OrderStatus.READY,
    OrderStatus.READY: OrderStatus.COMPLETED,
}

TRANSITION_LABELS: dict[OrderStatus, str] = {
    OrderStatus.PROCESSING: "start washing",
    OrderStatus.READY: "finish washing",
    OrderStatus.COMPLETED: "picked up",
}

# No operation produces CANCELLED; it stays in the enum for rows written elsewhere.
UNREACHABLE_STATUSES = frozenset({OrderStatus.CANCELLED})

STATUS_STEP = {
    OrderStatus.PENDING: 1,
    OrderStatus.PROCESSING: 2,
    OrderStatus.READY: 3,
    OrderStatus.COMPLETED: 4,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def next_statuses(status: OrderStatus) -> frozenset[OrderStatus]:
    nxt = TRANSITIONS.get(status)
    return frozenset({nxt}) if nxt else frozenset()


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in next_statuses(current)


def advance(
    order: Order,
    target: OrderStatus,
    *,
    completed_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    if not can_transition(order.status, target):
        raise InvalidTransition(order.status, target)

    changes: dict = {"status": target, "updated_at": now or _now()}
    if target == OrderStatus.READY:
        staff = (completed_by or "").strip()
        if not staff:
            raise ValidationError("Staff name is required to mark an order ready.")
        changes["completed_by"] = staff
    return replace(order, **changes)


def confirm_payment(order: Order, method: PaymentMethod | str, now: Optional[datetime] = None) -> Order:
    try:
        pm = PaymentMethod(method)
    except ValueError as e:
        raise ValidationError(f"Unknown payment method: {method}") from e
    return replace(order, is_paid=True, payment_method=pm, updated_at=now or _now())


def attach_feedback(order: Order, rating: int, review: Optional[str], now: Optional[datetime] = None) -> Order:
    if order.status != OrderStatus.COMPLETED:
        raise ValidationError("Feedback can only be given for completed orders.")
    if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be a whole number from 1 to 5.")
    text = (review or "").strip() or None
    return replace(order, rating=rating, review=text, updated_at=now or _now())
