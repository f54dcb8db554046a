from __future__ import annotations

from psycopg import Connection

from ..db import row_as_dict, rows_as_dicts
from ..domain import Customer

_COLUMNS = "id, name, phone, email, address, notes"


class CustomerRepository:
    def create(
        self,
        conn: Connection,
        *,
        name: str,
        phone: str,
        email: str | None,
        address: str | None,
        notes: str | None,
    ) -> Customer:
        cur = conn.execute(
            f"""
            INSERT INTO customers(name, phone, email, address, notes)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {_COLUMNS};
            """,
            (name, phone, email, address, notes),
        )
        return Customer.from_row(row_as_dict(cur))

    def update(
        self,
        conn: Connection,
        *,
        customer_id: str,
        name: str,
        phone: str,
        email: str | None,
        address: str | None,
        notes: str | None,
    ) -> Customer | None:
        cur = conn.execute(
            f"""
            UPDATE customers
            SET name = %s, phone = %s, email = %s, address = %s, notes = %s
            WHERE id = %s
            RETURNING {_COLUMNS};
            """,
            (name, phone, email, address, notes, customer_id),
        )
        row = row_as_dict(cur)
        return Customer.from_row(row) if row else None

    def get(self, conn: Connection, customer_id: str) -> Customer | None:
        cur = conn.execute(f"SELECT {_COLUMNS} FROM customers WHERE id = %s;", (customer_id,))
        row = row_as_dict(cur)
        return Customer.from_row(row) if row else None

    def list(self, conn: Connection, limit: int = 500, offset: int = 0) -> list[Customer]:
        cur = conn.execute(
            f"""
            SELECT {_COLUMNS}
            FROM customers
            ORDER BY created_at DESC, id
            LIMIT %s OFFSET %s;
            """,
            (limit, offset),
        )
        return [Customer.from_row(r) for r in rows_as_dicts(cur)]

    def list_by_ids(self, conn: Connection, customer_ids: list[str]) -> list[Customer]:
        if not customer_ids:
            return []
        cur = conn.execute(
            f"SELECT {_COLUMNS} FROM customers WHERE id = ANY(%s::uuid[]) ORDER BY name;",
            (list(customer_ids),),
        )
        return [Customer.from_row(r) for r in rows_as_dicts(cur)]

    def search(self, conn: Connection, term: str, limit: int = 50) -> list[Customer]:
        pattern = f"%{term}%"
        cur = conn.execute(
            f"""
            SELECT {_COLUMNS}
            FROM customers
            WHERE name ILIKE %s OR phone ILIKE %s
            ORDER BY name
            LIMIT %s;
            """,
            (pattern, pattern, limit),
        )
        return [Customer.from_row(r) for r in rows_as_dicts(cur)]
