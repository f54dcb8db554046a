from __future__ import annotations

from decimal import Decimal

from psycopg import Connection

from ..db import row_as_dict, rows_as_dicts
from ..domain import Service


class ServiceRepository:
    def create(
        self,
        conn: Connection,
        *,
        name: str,
        price: Decimal,
        unit: str,
        description: str,
        duration_hours: int,
    ) -> str:
        cur = conn.execute(
            """
            INSERT INTO services(name, price, unit, description, duration_hours)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING id;
            """,
            (name, price, unit, description, duration_hours),
        )
        return str(cur.fetchone()[0])

    def update(
        self,
        conn: Connection,
        *,
        service_id: str,
        name: str,
        price: Decimal,
        unit: str,
        description: str,
        duration_hours: int,
    ) -> None:
        conn.execute(
            """
            UPDATE services
            SET name = %s, price = %s, unit = %s, description = %s, duration_hours = %s
            WHERE id = %s;
            """,
            (name, price, unit, description, duration_hours, service_id),
        )

    def delete(self, conn: Connection, service_id: str) -> None:
        conn.execute("DELETE FROM services WHERE id = %s;", (service_id,))

    def get(self, conn: Connection, service_id: str) -> Service | None:
        cur = conn.execute(
            """
            SELECT id, name, price, unit, description, duration_hours
            FROM services WHERE id = %s;
            """,
            (service_id,),
        )
        row = row_as_dict(cur)
        return Service.from_row(row) if row else None

    def list(self, conn: Connection) -> list[Service]:
        cur = conn.execute(
            """
            SELECT id, name, price, unit, description, duration_hours
            FROM services
            ORDER BY name;
            """
        )
        return [Service.from_row(r) for r in rows_as_dicts(cur)]

    def catalog(self, conn: Connection) -> dict[str, Service]:
        return {s.id: s for s in self.list(conn)}
