from __future__ import annotations

from psycopg import Connection


class VehicleRepository:
    def get(self, conn: Connection, vehicle_id: int) -> dict | None:
        cur = conn.execute(
            """
            SELECT id, customer_id, make, model, year, vin, license_plate, mileage
            FROM vehicle WHERE id = %s;
            """,
            (vehicle_id,),
        )
        row = cur.fetchone()
        if not row:
            return None
        cols = [d.name for d in cur.description]
        return dict(zip(cols, row))

    def list_for_customer(self, conn: Connection, customer_id: int) -> list[dict]:
        cur = conn.execute(
            """
            SELECT id, customer_id, make, model, year, vin, license_plate, mileage
            FROM vehicle
            WHERE customer_id = %s
            ORDER BY id;
            """,
            (customer_id,),
        )
        cols = [d.name for d in cur.description]
        return [dict(zip(cols, row)) for row in cur.fetchall()]
