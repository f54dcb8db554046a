from __future__ import annotations

from decimal import Decimal

from psycopg import Connection

from ..db import row_as_dict, rows_as_dicts
from ..domain import Discount

_COLUMNS = "id, code, type, value, quota, used_count, is_active"


class DiscountRepository:
    def create(
        self,
        conn: Connection,
        *,
        code: str,
        type: str,
        value: Decimal,
        quota: int,
        is_active: bool,
    ) -> str:
        cur = conn.execute(
            """
            INSERT INTO discounts(code, type, value, quota, used_count, is_active)
            VALUES (%s, %s, %s, %s, 0, %s)
            RETURNING id;
            """,
            (code, type, value, quota, is_active),
        )
        return str(cur.fetchone()[0])

    def update(
        self,
        conn: Connection,
        *,
        discount_id: str,
        code: str,
        type: str,
        value: Decimal,
        quota: int,
        is_active: bool,
    ) -> None:
        conn.execute(
            """
            UPDATE discounts
            SET code = %s, type = %s, value = %s, quota = %s, is_active = %s
            WHERE id = %s;
            """,
            (code, type, value, quota, is_active, discount_id),
        )

    def delete(self, conn: Connection, discount_id: str) -> None:
        conn.execute("DELETE FROM discounts WHERE id = %s;", (discount_id,))

    def get_by_code(self, conn: Connection, code: str) -> Discount | None:
        cur = conn.execute(
            f"SELECT {_COLUMNS} FROM discounts WHERE code = %s;",
            (code.strip().upper(),),
        )
        row = row_as_dict(cur)
        return Discount.from_row(row) if row else None

    def list(self, conn: Connection) -> list[Discount]:
        cur = conn.execute(f"SELECT {_COLUMNS} FROM discounts ORDER BY created_at DESC;")
        return [Discount.from_row(r) for r in rows_as_dicts(cur)]

    def redeem(self, conn: Connection, code: str) -> bool:
        """Count one use of ``code`` unless it is inactive or out of quota.

        The check and the increment are one statement, so two concurrent
        orders cannot both take the last unit.
        """
        cur = conn.execute(
            """
            UPDATE discounts
            SET used_count = used_count + 1
            WHERE code = %s
              AND is_active
              AND (quota = 0 OR used_count < quota);
            """,
            (code.strip().upper(),),
        )
        return cur.rowcount == 1
