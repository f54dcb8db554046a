from __future__ import annotations

from psycopg import Connection

from ..db import row_as_dict, rows_as_dicts
from ..domain import Profile

_COLUMNS = "id, name, email, role, location_id, is_approved"


class ProfileRepository:
    def get_by_auth_id(self, conn: Connection, auth_id: str) -> Profile | None:
        # older rows only carry the auth id as their primary key
        cur = conn.execute(
            f"SELECT {_COLUMNS} FROM profiles WHERE auth_id = %s OR id = %s LIMIT 1;",
            (auth_id, auth_id),
        )
        row = row_as_dict(cur)
        return Profile.from_row(row) if row else None

    def get(self, conn: Connection, profile_id: str) -> Profile | None:
        cur = conn.execute(f"SELECT {_COLUMNS} FROM profiles WHERE id = %s;", (profile_id,))
        row = row_as_dict(cur)
        return Profile.from_row(row) if row else None

    def list_staff(self, conn: Connection) -> list[Profile]:
        cur = conn.execute(
            f"""
            SELECT {_COLUMNS}
            FROM profiles
            WHERE role = 'STAFF'
            ORDER BY is_approved, name;
            """
        )
        return [Profile.from_row(r) for r in rows_as_dicts(cur)]

    def approve(self, conn: Connection, profile_id: str) -> None:
        conn.execute("UPDATE profiles SET is_approved = true WHERE id = %s;", (profile_id,))

    def set_location(self, conn: Connection, *, profile_id: str, location_id: str | None) -> None:
        conn.execute("UPDATE profiles SET location_id = %s WHERE id = %s;", (location_id, profile_id))

    def delete(self, conn: Connection, profile_id: str) -> None:
        conn.execute("DELETE FROM profiles WHERE id = %s;", (profile_id,))
