from __future__ import annotations

from decimal import Decimal

from psycopg import Connection

from ..db import date_bounds, rows_as_dicts
from ..domain import Expense

_COLUMNS = "id, description, amount, category, date, recorded_by, location_id"


class ExpenseRepository:
    def create(
        self,
        conn: Connection,
        *,
        description: str,
        amount: Decimal,
        category: str,
        date,
        recorded_by: str | None,
        location_id: str,
    ) -> str:
        cur = conn.execute(
            """
            INSERT INTO expenses(description, amount, category, date, recorded_by, location_id)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING id;
            """,
            (description, amount, category, date, recorded_by, location_id),
        )
        return str(cur.fetchone()[0])

    def list(self, conn: Connection, *, start=None, end=None) -> list[Expense]:
        lo, hi = date_bounds(start, end)
        cur = conn.execute(
            f"""
            SELECT {_COLUMNS}
            FROM expenses
            WHERE (%s::timestamptz IS NULL OR date >= %s)
              AND (%s::timestamptz IS NULL OR date < %s)
            ORDER BY date DESC;
            """,
            (lo, lo, hi, hi),
        )
        return [Expense.from_row(r) for r in rows_as_dicts(cur)]

    def delete(self, conn: Connection, expense_id: str) -> bool:
        cur = conn.execute("DELETE FROM expenses WHERE id = %s;", (expense_id,))
        return cur.rowcount == 1
