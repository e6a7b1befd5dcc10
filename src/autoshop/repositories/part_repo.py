from __future__ import annotations

from psycopg import Connection


class PartRepository:
    def get_by_sku(self, conn: Connection, sku: str) -> dict | None:
        cur = conn.execute(
            """
            SELECT id, sku, name, unit_price, stock_qty, is_active, created_at
            FROM part WHERE sku = %s;
            """,
            (sku,),
        )
        row = cur.fetchone()
        if not row:
            return None
        cols = [d.name for d in cur.description]
        return dict(zip(cols, row))

    def list(self, conn: Connection, limit: int = 50) -> list[dict]:
        cur = conn.execute(
            """
            SELECT id, sku, name, unit_price, stock_qty, is_active, created_at
            FROM part
            WHERE is_active
            ORDER BY name
            LIMIT %s;
            """,
            (limit,),
        )
        cols = [d.name for d in cur.description]
        return [dict(zip(cols, row)) for row in cur.fetchall()]
