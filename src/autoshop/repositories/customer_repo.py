from __future__ import annotations

from psycopg import Connection


class CustomerRepository:
    def get(self, conn: Connection, customer_id: int) -> dict | None:
        cur = conn.execute(
            """
            SELECT id, full_name, email, phone, is_active, created_at
            FROM customer WHERE id = %s;
            """,
            (customer_id,),
        )
        row = cur.fetchone()
        if not row:
            return None
        cols = [d.name for d in cur.description]
        return dict(zip(cols, row))

    def list(self, conn: Connection, limit: int = 50) -> list[dict]:
        cur = conn.execute(
            """
            SELECT id, full_name, email, phone, is_active, created_at
            FROM customer
            ORDER BY id DESC
            LIMIT %s;
            """,
            (limit,),
        )
        cols = [d.name for d in cur.description]
        return [dict(zip(cols, row)) for row in cur.fetchall()]
