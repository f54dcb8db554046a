from __future__ import annotations

from psycopg import Connection

from ..db import row_as_dict, rows_as_dicts
from ..domain import Location


class LocationRepository:
    def create(self, conn: Connection, *, name: str, address: str, phone: str) -> str:
        cur = conn.execute(
            """
            INSERT INTO locations(name, address, phone)
            VALUES (%s, %s, %s)
            RETURNING id;
            """,
            (name, address, phone),
        )
        return str(cur.fetchone()[0])

    def update(self, conn: Connection, *, location_id: str, name: str, address: str, phone: str) -> None:
        conn.execute(
            "UPDATE locations SET name = %s, address = %s, phone = %s WHERE id = %s;",
            (name, address, phone, location_id),
        )

    def delete(self, conn: Connection, location_id: str) -> None:
        conn.execute("DELETE FROM locations WHERE id = %s;", (location_id,))

    def get(self, conn: Connection, location_id: str) -> Location | None:
        cur = conn.execute(
            "SELECT id, name, address, phone FROM locations WHERE id = %s;",
            (location_id,),
        )
        row = row_as_dict(cur)
        return Location.from_row(row) if row else None

    def list(self, conn: Connection) -> list[Location]:
        cur = conn.execute("SELECT id, name, address, phone FROM locations ORDER BY name;")
        return [Location.from_row(r) for r in rows_as_dicts(cur)]
