"""Operator-facing order actions over an optimistic OrderBoard."""
from __future__ import annotations

import logging
from typing import Callable, Optional

from ..auth import AuthSession, require_owner
from ..config import BusinessConfig
from ..db import Db
from ..domain import Order, OrderStatus, PaymentMethod
from ..errors import NotFound
from ..lifecycle import advance, confirm_payment
from ..messaging import (
    Notifier,
    OutboundMessage,
    dispatch,
    printed_receipt,
    ready_message,
    receipt_message,
)
from ..repositories.customer_repo import CustomerRepository
from ..repositories.location_repo import LocationRepository
from ..sync import OrderBoard, WriteOutcome
from .order_service import OrderService

logger = logging.getLogger(__name__)


class OrderWorkflow:
    def __init__(
        self,
        *,
        db: Db,
        orders: OrderService,
        customer_repo: CustomerRepository,
        location_repo: LocationRepository,
        notifier: Notifier,
        business: BusinessConfig,
        board: OrderBoard | None = None,
    ) -> None:
        self.db = db
        self.orders = orders
        self.customer_repo = customer_repo
        self.location_repo = location_repo
        self.notifier = notifier
        self.business = business
        self.board = board or OrderBoard()
        self._filters: dict = {}

    def refresh(self, *, limit: int | None = None, start=None, end=None) -> list[Order]:
        self._filters = {"limit": limit, "start": start, "end": end}
        self.board.replace_all(self._fetch())
        return self.board.orders

    def _fetch(self) -> list[Order]:
        with self.db.session() as conn:
            return self.orders.list_orders(conn, **self._filters)

    def _writer(self, persist: Callable) -> Callable[[Order], None]:
        def write(order: Order) -> None:
            with self.db.transaction() as conn:
                persist(conn, order)

        return write

    def place_order(self, **kwargs) -> Order:
        """Create the order (see OrderService.create_order) and show it on the board."""
        kwargs.setdefault("exponent", self.business.currency_exponent)
        with self.db.transaction() as conn:
            order = self.orders.create_order(conn, **kwargs)
        self.board.put(order)
        return order

    def start_washing(self, order_id: str) -> WriteOutcome:
        return self.board.apply(
            order_id,
            lambda o: advance(o, OrderStatus.PROCESSING),
            self._writer(self.orders.write_status),
        )

    def finish_washing(self, order_id: str, completed_by: str, notify: bool = True) -> WriteOutcome:
        outcome = self.board.apply(
            order_id,
            lambda o: advance(o, OrderStatus.READY, completed_by=completed_by),
            self._writer(self.orders.write_status),
        )
        # only a reverted write takes READY off the board
        if notify and outcome.order is not None and outcome.order.status == OrderStatus.READY:
            self._notify_ready(outcome.order)
        return outcome

    def mark_picked_up(self, order_id: str) -> WriteOutcome:
        return self.board.apply(
            order_id,
            lambda o: advance(o, OrderStatus.COMPLETED),
            self._writer(self.orders.write_status),
        )

    def confirm_payment(self, order_id: str, method: PaymentMethod | str) -> WriteOutcome:
        return self.board.apply(
            order_id,
            lambda o: confirm_payment(o, method),
            self._writer(self.orders.write_payment),
        )

    def delete_order(self, session: Optional[AuthSession], order_id: str) -> WriteOutcome:
        require_owner(session)

        def delete(oid: str) -> None:
            with self.db.transaction() as conn:
                self.orders.delete_order(conn, session=session, order_id=oid)

        return self.board.remove(order_id, delete, self._fetch)

    def _notify_ready(self, order: Order) -> bool:
        with self.db.session() as conn:
            customer = self.customer_repo.get(conn, order.customer_id)
            location = self.location_repo.get(conn, order.location_id)
        if customer is None:
            logger.warning("Order %s is ready but customer %s is gone, no message sent", order.id, order.customer_id)
            return False
        laundry_name = location.name if location else "Laundry"
        msg = ready_message(order, customer, laundry_name, self.business.country_code)
        return dispatch(self.notifier, msg)

    def receipt(self, order_id: str) -> OutboundMessage:
        with self.db.session() as conn:
            order = self.orders.get_order(conn, order_id)
            customer = self.customer_repo.get(conn, order.customer_id)
            location = self.location_repo.get(conn, order.location_id)
            catalog = self.orders.service_repo.catalog(conn)
        if customer is None:
            raise NotFound(f"Customer not found: {order.customer_id}")
        return receipt_message(
            order,
            customer,
            location,
            catalog,
            tracking_url=self.business.tracking_base_url,
            shop_name=self.business.shop_name,
            default_hours=self.business.default_duration_hours,
            country_code=self.business.country_code,
        )

    def printed_receipt(self, order_id: str) -> str:
        with self.db.session() as conn:
            order = self.orders.get_order(conn, order_id)
            location = self.location_repo.get(conn, order.location_id)
            catalog = self.orders.service_repo.catalog(conn)
        return printed_receipt(order, location, catalog, self.business.shop_name)
