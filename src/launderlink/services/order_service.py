from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal
from typing import Optional

from psycopg import Connection

from ..auth import AuthSession, require_owner
from ..domain import Order, OrderItem, OrderStatus, PaymentMethod
from ..errors import NotFound, ValidationError
from ..lifecycle import advance, attach_feedback
from ..lifecycle import confirm_payment as mark_paid
from ..pricing import (
    Cart,
    VoucherError,
    VoucherFailure,
    apply_discount,
    final_total,
    normalize_code,
    validate_voucher,
)
from ..repositories.customer_repo import CustomerRepository
from ..repositories.discount_repo import DiscountRepository
from ..repositories.order_item_repo import OrderItemRepository
from ..repositories.order_repo import OrderRepository
from ..repositories.service_repo import ServiceRepository

logger = logging.getLogger(__name__)


class OrderService:
    def __init__(
        self,
        *,
        customer_repo: CustomerRepository,
        service_repo: ServiceRepository,
        discount_repo: DiscountRepository,
        order_repo: OrderRepository,
        order_item_repo: OrderItemRepository,
    ) -> None:
        self.customer_repo = customer_repo
        self.service_repo = service_repo
        self.discount_repo = discount_repo
        self.order_repo = order_repo
        self.order_item_repo = order_item_repo

    def create_order(
        self,
        conn: Connection,
        *,
        cart: Cart,
        customer_id: str,
        location_id: str,
        received_by: str | None,
        perfume: str = "Standard",
        is_paid: bool = False,
        payment_method: PaymentMethod | str | None = None,
        voucher_code: str | None = None,
        exponent: int = 0,
    ) -> Order:
        """Price the cart from the current catalog and persist order, items and voucher use.

        Run inside Db.transaction(): a voucher that cannot be redeemed raises
        VoucherError after the insert, which rolls the whole order back.
        """
        if cart.is_empty():
            raise ValidationError("Cart is empty.")
        if not location_id:
            raise ValidationError("Location is required.")

        customer = self.customer_repo.get(conn, customer_id)
        if customer is None:
            raise NotFound(f"Customer not found: {customer_id}")

        method: Optional[PaymentMethod] = None
        if is_paid:
            try:
                method = PaymentMethod(payment_method)
            except ValueError as e:
                raise ValidationError(f"Unknown payment method: {payment_method}") from e

        catalog = self.service_repo.catalog(conn)
        items = []
        for line in cart.lines:
            svc = catalog.get(line.service_id)
            if svc is None:
                raise ValidationError(f"Unknown service: {line.service_id}")
            items.append(
                OrderItem(service_id=svc.id, service_name=svc.name, price=svc.price, quantity=line.quantity)
            )
        subtotal = sum((i.line_total for i in items), Decimal("0"))

        code = normalize_code(voucher_code) if voucher_code else (cart.applied.code if cart.applied else None)
        discount_amount = Decimal("0")
        if code:
            found = self.discount_repo.get_by_code(conn, code)
            discount = validate_voucher(code, [found] if found else [])
            discount_amount = apply_discount(subtotal, discount, exponent)
            code = discount.code

        order_id = self.order_repo.create(
            conn,
            customer_id=customer.id,
            customer_name=customer.name,
            location_id=location_id,
            total_amount=final_total(subtotal, discount_amount),
            is_paid=is_paid,
            payment_method=method.value if method else None,
            discount_code=code,
            discount_amount=discount_amount,
            perfume=(perfume or "").strip() or "Standard",
            received_by=(received_by or "").strip() or None,
        )
        self.order_item_repo.add_items(conn, order_id=order_id, items=items)

        if code and not self.discount_repo.redeem(conn, code):
            logger.warning("Voucher %s was used up while order %s was being placed", code, order_id)
            raise VoucherError(VoucherFailure.QUOTA_EXCEEDED, code)

        logger.info("Created order %s for customer %s (voucher=%s)", order_id, customer.id, code)
        return self.get_order(conn, order_id)

    def get_order(self, conn: Connection, order_id: str) -> Order:
        order = self.order_repo.get(conn, order_id)
        if order is None:
            raise NotFound(f"Order not found: {order_id}")
        items = self.order_item_repo.list_for_order(conn, order_id)
        return replace(order, items=tuple(items))

    def list_orders(
        self,
        conn: Connection,
        *,
        limit: int | None = None,
        start=None,
        end=None,
        is_paid: bool | None = None,
    ) -> list[Order]:
        headers = self.order_repo.list(conn, limit=limit, start=start, end=end, is_paid=is_paid)
        items = self.order_item_repo.list_for_orders(conn, [o.id for o in headers])
        return [replace(o, items=tuple(items.get(o.id, ()))) for o in headers]

    def unpaid_count(self, conn: Connection) -> int:
        return self.order_repo.count_unpaid(conn)

    def orders_by_discount_code(self, conn: Connection, code: str) -> list[Order]:
        return self.order_repo.list_by_discount_code(conn, normalize_code(code))

    # Durable writes for an order that was already changed in memory.

    def write_status(self, conn: Connection, order: Order) -> None:
        ok = self.order_repo.update_status(
            conn,
            order_id=order.id,
            status=order.status.value,
            completed_by=order.completed_by if order.status == OrderStatus.READY else None,
        )
        if not ok:
            raise NotFound(f"Order not found: {order.id}")

    def write_payment(self, conn: Connection, order: Order) -> None:
        ok = self.order_repo.confirm_payment(
            conn, order_id=order.id, payment_method=order.payment_method.value
        )
        if not ok:
            raise NotFound(f"Order not found: {order.id}")

    # Read-change-write in one call, for surfaces without a local board.

    def update_status(
        self,
        conn: Connection,
        *,
        order_id: str,
        target: OrderStatus | str,
        completed_by: str | None = None,
    ) -> Order:
        try:
            status = OrderStatus(target)
        except ValueError as e:
            raise ValidationError(f"Unknown status: {target}") from e
        order = advance(self.get_order(conn, order_id), status, completed_by=completed_by)
        self.write_status(conn, order)
        return order

    def confirm_payment(self, conn: Connection, *, order_id: str, method: PaymentMethod | str) -> Order:
        order = mark_paid(self.get_order(conn, order_id), method)
        self.write_payment(conn, order)
        return order

    def submit_feedback(self, conn: Connection, *, order_id: str, rating: int, review: str | None) -> Order:
        order = attach_feedback(self.get_order(conn, order_id), rating, review)
        if not self.order_repo.set_feedback(conn, order_id=order_id, rating=order.rating, review=order.review):
            raise NotFound(f"Order not found: {order_id}")
        return order

    def delete_order(self, conn: Connection, *, session: AuthSession | None, order_id: str) -> None:
        require_owner(session)
        self.order_item_repo.delete_for_order(conn, order_id)
        if not self.order_repo.delete(conn, order_id):
            raise NotFound(f"Order not found: {order_id}")
        logger.info("Order %s deleted by %s", order_id, session.email)
