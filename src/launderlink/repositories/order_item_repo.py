from __future__ import annotations

from collections import defaultdict
from typing import Iterable

from psycopg import Connection

from ..db import rows_as_dicts
from ..domain import OrderItem


class OrderItemRepository:
    def add_items(self, conn: Connection, *, order_id: str, items: Iterable[OrderItem]) -> None:
        for item in items:
            conn.execute(
                """
                INSERT INTO order_items(order_id, service_id, service_name, price, quantity)
                VALUES (%s, %s, %s, %s, %s);
                """,
                (order_id, item.service_id, item.service_name, item.price, item.quantity),
            )

    def list_for_order(self, conn: Connection, order_id: str) -> list[OrderItem]:
        cur = conn.execute(
            """
            SELECT service_id, service_name, price, quantity
            FROM order_items
            WHERE order_id = %s
            ORDER BY id;
            """,
            (order_id,),
        )
        return [OrderItem.from_row(r) for r in rows_as_dicts(cur)]

    def list_for_orders(self, conn: Connection, order_ids: list[str]) -> dict[str, list[OrderItem]]:
        if not order_ids:
            return {}
        cur = conn.execute(
            """
            SELECT order_id, service_id, service_name, price, quantity
            FROM order_items
            WHERE order_id = ANY(%s::uuid[])
            ORDER BY id;
            """,
            (order_ids,),
        )
        out: dict[str, list[OrderItem]] = defaultdict(list)
        for r in rows_as_dicts(cur):
            out[str(r["order_id"])].append(OrderItem.from_row(r))
        return dict(out)

    def delete_for_order(self, conn: Connection, order_id: str) -> None:
        conn.execute("DELETE FROM order_items WHERE order_id = %s;", (order_id,))
