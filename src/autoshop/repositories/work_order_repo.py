from __future__ import annotations

from dataclasses import replace

from psycopg import Connection
from psycopg.types.json import Jsonb

from ..domain import WorkOrder
from ..serialization import service_from_dict, status_note_from_dict, to_primitive, vehicle_from_dict

_COLUMNS = """
    id, work_order_number, customer_id, appointment_id, vehicle, services, technician_id, status,
    priority, progress, payment_terms_days, estimated_start_date, estimated_completion_at, history,
    notes, created_at, completed_at
"""


def _to_work_order(row: dict) -> WorkOrder:
    return WorkOrder(
        id=row["id"],
        work_order_number=row["work_order_number"],
        customer_id=row["customer_id"],
        appointment_id=row["appointment_id"],
        vehicle=vehicle_from_dict(row["vehicle"]),
        services=tuple(service_from_dict(s) for s in row["services"]),
        technician_id=row["technician_id"],
        status=row["status"],
        priority=row["priority"],
        progress=row["progress"],
        payment_terms_days=row["payment_terms_days"],
        estimated_start_date=row["estimated_start_date"],
        estimated_completion_at=row["estimated_completion_at"],
        history=tuple(status_note_from_dict(h) for h in row["history"] or ()),
        notes=row["notes"],
        created_at=row["created_at"],
        completed_at=row["completed_at"],
    )


class WorkOrderRepository:
    def create(self, conn: Connection, order: WorkOrder) -> WorkOrder:
        cur = conn.execute(
            """
            INSERT INTO work_order(
              customer_id, appointment_id, vehicle, services, technician_id, status, priority,
              progress, payment_terms_days, estimated_start_date, estimated_completion_at, history,
              notes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id, work_order_number;
            """,
            (
                order.customer_id,
                order.appointment_id,
                Jsonb(to_primitive(order.vehicle)),
                Jsonb(to_primitive(order.services)),
                order.technician_id,
                order.status,
                order.priority,
                order.progress,
                order.payment_terms_days,
                order.estimated_start_date,
                order.estimated_completion_at,
                Jsonb(to_primitive(order.history)),
                order.notes,
                order.created_at,
            ),
        )
        order_id, number = cur.fetchone()
        return replace(order, id=int(order_id), work_order_number=number)

    def update(self, conn: Connection, order: WorkOrder) -> None:
        conn.execute(
            """
            UPDATE work_order SET
              services = %s, technician_id = %s, status = %s, priority = %s, progress = %s,
              payment_terms_days = %s, history = %s, notes = %s, completed_at = %s
            WHERE id = %s;
            """,
            (
                Jsonb(to_primitive(order.services)),
                order.technician_id,
                order.status,
                order.priority,
                order.progress,
                order.payment_terms_days,
                Jsonb(to_primitive(order.history)),
                order.notes,
                order.completed_at,
                order.id,
            ),
        )

    def get(self, conn: Connection, order_id: int, *, for_update: bool = False) -> WorkOrder | None:
        sql = f"SELECT {_COLUMNS} FROM work_order WHERE id = %s"
        if for_update:
            sql += " FOR UPDATE"
        cur = conn.execute(sql + ";", (order_id,))
        row = cur.fetchone()
        if not row:
            return None
        cols = [d.name for d in cur.description]
        return _to_work_order(dict(zip(cols, row)))

    def list_by_status(self, conn: Connection, status: str, limit: int = 50) -> list[WorkOrder]:
        cur = conn.execute(
            f"""
            SELECT {_COLUMNS} FROM work_order
            WHERE status = %s
            ORDER BY id DESC
            LIMIT %s;
            """,
            (status, limit),
        )
        cols = [d.name for d in cur.description]
        return [_to_work_order(dict(zip(cols, row))) for row in cur.fetchall()]
