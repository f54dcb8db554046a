"""Optimistic local order state with an explicit reconcile policy.

Operators see a change as soon as they make it. The durable write runs
afterwards, and each order on the board records whether its last write
committed, is still pending, or failed. What happens on failure is chosen
by ReconcilePolicy.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from .domain import Order

logger = logging.getLogger(__name__)


class WriteState(str, Enum):
    COMMITTED = "COMMITTED"
    PENDING = "PENDING"
    FAILED = "FAILED"


class ReconcilePolicy(str, Enum):
    SURFACE = "surface"
    RETRY = "retry"
    REVERT = "revert"


@dataclass(frozen=True)
class WriteOutcome:
    order_id: str
    state: WriteState
    order: Optional[Order]
    error: Optional[Exception] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.state == WriteState.COMMITTED


class OrderBoard:
    def __init__(
        self,
        orders: Iterable[Order] = (),
        *,
        policy: ReconcilePolicy = ReconcilePolicy.SURFACE,
        max_retries: int = 2,
    ) -> None:
        self.policy = ReconcilePolicy(policy)
        self.max_retries = max(0, int(max_retries))
        self._orders: dict[str, Order] = {}
        self._states: dict[str, WriteState] = {}
        self._errors: dict[str, Exception] = {}
        self.replace_all(orders)

    @property
    def orders(self) -> list[Order]:
        return sorted(self._orders.values(), key=lambda o: o.created_at, reverse=True)

    def get(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    def state_of(self, order_id: str) -> Optional[WriteState]:
        return self._states.get(order_id)

    def error_of(self, order_id: str) -> Optional[Exception]:
        return self._errors.get(order_id)

    def failed(self) -> list[Order]:
        return [o for o in self.orders if self._states.get(o.id) == WriteState.FAILED]

    def replace_all(self, orders: Iterable[Order]) -> None:
        self._orders = {o.id: o for o in orders}
        self._states = {oid: WriteState.COMMITTED for oid in self._orders}
        self._errors = {}

    def put(self, order: Order) -> None:
        self._orders[order.id] = order
        self._states[order.id] = WriteState.COMMITTED
        self._errors.pop(order.id, None)

    def apply(
        self,
        order_id: str,
        change: Callable[[Order], Order],
        write: Callable[[Order], None],
    ) -> WriteOutcome:
        """Apply ``change`` locally, then persist the result with ``write``.

        ``change`` errors (validation) propagate before anything is touched.
        ``write`` errors are handled according to the board's policy.
        """
        previous = self._orders.get(order_id)
        if previous is None:
            raise KeyError(order_id)

        updated = change(previous)
        self._orders[order_id] = updated
        self._states[order_id] = WriteState.PENDING
        self._errors.pop(order_id, None)

        attempts = 1 + (self.max_retries if self.policy == ReconcilePolicy.RETRY else 0)
        error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                write(updated)
            except Exception as e:
                error = e
                logger.warning(
                    "Durable write for order %s failed (attempt %s/%s): %s", order_id, attempt, attempts, e
                )
                continue
            self._states[order_id] = WriteState.COMMITTED
            return WriteOutcome(order_id=order_id, state=WriteState.COMMITTED, order=updated, attempts=attempt)

        if self.policy == ReconcilePolicy.REVERT:
            logger.error("Reverting order %s to its last committed state", order_id)
            self._orders[order_id] = previous
        self._states[order_id] = WriteState.FAILED
        self._errors[order_id] = error
        return WriteOutcome(
            order_id=order_id,
            state=WriteState.FAILED,
            order=self._orders[order_id],
            error=error,
            attempts=attempts,
        )

    def remove(
        self,
        order_id: str,
        delete: Callable[[str], None],
        refetch: Callable[[], Iterable[Order]],
    ) -> WriteOutcome:
        """Drop the order locally, then delete it; on failure reload the board.

        If the reload fails as well, the dropped order goes back on the board
        marked FAILED.
        """
        if order_id not in self._orders:
            raise KeyError(order_id)

        previous = self._orders.pop(order_id)
        self._states.pop(order_id, None)
        try:
            delete(order_id)
        except Exception as e:
            logger.error("Deleting order %s failed, reloading orders: %s", order_id, e)
            try:
                self.replace_all(refetch())
            except Exception as reload_error:
                logger.error("Reloading orders failed, keeping order %s: %s", order_id, reload_error)
                self._orders[order_id] = previous
            if order_id in self._orders:
                self._states[order_id] = WriteState.FAILED
                self._errors[order_id] = e
            return WriteOutcome(order_id=order_id, state=WriteState.FAILED, order=self.get(order_id), error=e)
        return WriteOutcome(order_id=order_id, state=WriteState.COMMITTED, order=None)
