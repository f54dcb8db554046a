from __future__ import annotations

from decimal import Decimal

from psycopg import Connection

from ..db import date_bounds, row_as_dict, rows_as_dicts
from ..domain import Order

_COLUMNS = """
    id, customer_id, customer_name, location_id, total_amount, status,
    is_paid, payment_method, discount_code, discount_amount, perfume,
    received_by, completed_by, rating, review, created_at, updated_at
"""


class OrderRepository:
    """Order headers. Line items live in OrderItemRepository; rows come back with no items."""

    def create(
        self,
        conn: Connection,
        *,
        customer_id: str,
        customer_name: str,
        location_id: str,
        total_amount: Decimal,
        is_paid: bool,
        payment_method: str | None,
        discount_code: str | None,
        discount_amount: Decimal,
        perfume: str,
        received_by: str | None,
    ) -> str:
        cur = conn.execute(
            """
            INSERT INTO orders(
                customer_id, customer_name, location_id, total_amount, status,
                is_paid, payment_method, discount_code, discount_amount,
                perfume, received_by
            )
            VALUES (%s, %s, %s, %s, 'PENDING', %s, %s, %s, %s, %s, %s)
            RETURNING id;
            """,
            (
                customer_id,
                customer_name,
                location_id,
                total_amount,
                is_paid,
                payment_method,
                discount_code,
                discount_amount,
                perfume,
                received_by,
            ),
        )
        return str(cur.fetchone()[0])

    def get(self, conn: Connection, order_id: str) -> Order | None:
        cur = conn.execute(f"SELECT {_COLUMNS} FROM orders WHERE id = %s;", (order_id,))
        row = row_as_dict(cur)
        return Order.from_row(row) if row else None

    def list(
        self,
        conn: Connection,
        *,
        limit: int | None = None,
        start=None,
        end=None,
        is_paid: bool | None = None,
    ) -> list[Order]:
        lo, hi = date_bounds(start, end)
        where = []
        params: list = []
        if lo is not None:
            where.append("created_at >= %s")
            params.append(lo)
        if hi is not None:
            where.append("created_at < %s")
            params.append(hi)
        if is_paid is not None:
            where.append("is_paid = %s")
            params.append(is_paid)

        sql = f"SELECT {_COLUMNS} FROM orders"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY created_at DESC"
        if limit is not None:
            sql += " LIMIT %s"
            params.append(limit)

        cur = conn.execute(sql + ";", params)
        return [Order.from_row(r) for r in rows_as_dicts(cur)]

    def list_by_discount_code(self, conn: Connection, code: str) -> list[Order]:
        cur = conn.execute(
            f"""
            SELECT {_COLUMNS}
            FROM orders
            WHERE discount_code = %s
            ORDER BY created_at DESC;
            """,
            (code.strip().upper(),),
        )
        return [Order.from_row(r) for r in rows_as_dicts(cur)]

    def count_unpaid(self, conn: Connection) -> int:
        cur = conn.execute("SELECT count(*) FROM orders WHERE NOT is_paid;")
        return int(cur.fetchone()[0])

    def update_status(
        self, conn: Connection, *, order_id: str, status: str, completed_by: str | None
    ) -> bool:
        cur = conn.execute(
            """
            UPDATE orders
            SET status = %s,
                completed_by = COALESCE(%s, completed_by),
                updated_at = now()
            WHERE id = %s;
            """,
            (status, completed_by, order_id),
        )
        return cur.rowcount == 1

    def confirm_payment(self, conn: Connection, *, order_id: str, payment_method: str) -> bool:
        cur = conn.execute(
            """
            UPDATE orders
            SET is_paid = true, payment_method = %s, updated_at = now()
            WHERE id = %s;
            """,
            (payment_method, order_id),
        )
        return cur.rowcount == 1

    def set_feedback(self, conn: Connection, *, order_id: str, rating: int, review: str | None) -> bool:
        cur = conn.execute(
            """
            UPDATE orders
            SET rating = %s, review = %s, updated_at = now()
            WHERE id = %s AND status = 'COMPLETED';
            """,
            (rating, review, order_id),
        )
        return cur.rowcount == 1

    def delete(self, conn: Connection, order_id: str) -> bool:
        cur = conn.execute("DELETE FROM orders WHERE id = %s;", (order_id,))
        return cur.rowcount == 1
