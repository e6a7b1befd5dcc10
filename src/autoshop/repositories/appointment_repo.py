from __future__ import annotations

from datetime import date

from psycopg import Connection, errors
from psycopg.types.json import Jsonb

from ..domain import Appointment
from ..serialization import cost_from_dict, required_part_from_dict, to_primitive

_COLUMNS = """
    id, customer_id, vehicle_id, assigned_resource_id, technician_id, scheduled_date, scheduled_time,
    estimated_duration_minutes, status, service_type, service_description, priority, parts_required,
    estimated_cost, actual_cost, actual_duration_minutes, notes, approved_by, approved_at
"""


class SlotTakenError(Exception):
    """The storage layer refused an overlapping booking."""


def _to_appointment(row: dict) -> Appointment:
    return Appointment(
        id=row["id"],
        customer_id=row["customer_id"],
        vehicle_id=row["vehicle_id"],
        assigned_resource_id=row["assigned_resource_id"],
        technician_id=row["technician_id"],
        scheduled_date=row["scheduled_date"],
        scheduled_time=row["scheduled_time"],
        estimated_duration_minutes=row["estimated_duration_minutes"],
        status=row["status"],
        service_type=row["service_type"],
        service_description=row["service_description"],
        priority=row["priority"],
        parts_required=tuple(required_part_from_dict(p) for p in row["parts_required"] or ()),
        estimated_cost=cost_from_dict(row["estimated_cost"]),
        actual_cost=cost_from_dict(row["actual_cost"]),
        actual_duration_minutes=row["actual_duration_minutes"],
        notes=row["notes"],
        approved_by=row["approved_by"],
        approved_at=row["approved_at"],
    )


class AppointmentRepository:
    def create(self, conn: Connection, appt: Appointment) -> int:
        try:
            with conn.transaction():
                cur = conn.execute(
                    """
                    INSERT INTO appointment(
                      customer_id, vehicle_id, assigned_resource_id, technician_id, scheduled_date,
                      scheduled_time, estimated_duration_minutes, status, service_type,
                      service_description, priority, parts_required, estimated_cost, actual_cost, notes)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING id;
                    """,
                    (
                        appt.customer_id,
                        appt.vehicle_id,
                        appt.assigned_resource_id,
                        appt.technician_id,
                        appt.scheduled_date,
                        appt.scheduled_time,
                        appt.estimated_duration_minutes,
                        appt.status,
                        appt.service_type,
                        appt.service_description,
                        appt.priority,
                        Jsonb(to_primitive(appt.parts_required)),
                        Jsonb(to_primitive(appt.estimated_cost)),
                        Jsonb(to_primitive(appt.actual_cost)),
                        appt.notes,
                    ),
                )
                return int(cur.fetchone()[0])
        except errors.ExclusionViolation as e:
            raise SlotTakenError(str(e)) from e

    def update(self, conn: Connection, appt: Appointment) -> None:
        try:
            with conn.transaction():
                conn.execute(
                    """
                    UPDATE appointment SET
                      technician_id = %s, scheduled_date = %s, scheduled_time = %s,
                      estimated_duration_minutes = %s, status = %s, service_description = %s,
                      priority = %s, parts_required = %s, estimated_cost = %s, actual_cost = %s,
                      actual_duration_minutes = %s, notes = %s, approved_by = %s, approved_at = %s
                    WHERE id = %s;
                    """,
                    (
                        appt.technician_id,
                        appt.scheduled_date,
                        appt.scheduled_time,
                        appt.estimated_duration_minutes,
                        appt.status,
                        appt.service_description,
                        appt.priority,
                        Jsonb(to_primitive(appt.parts_required)),
                        Jsonb(to_primitive(appt.estimated_cost)),
                        Jsonb(to_primitive(appt.actual_cost)),
                        appt.actual_duration_minutes,
                        appt.notes,
                        appt.approved_by,
                        appt.approved_at,
                        appt.id,
                    ),
                )
        except errors.ExclusionViolation as e:
            raise SlotTakenError(str(e)) from e

    def get(self, conn: Connection, appointment_id: int, *, for_update: bool = False) -> Appointment | None:
        sql = f"SELECT {_COLUMNS} FROM appointment WHERE id = %s"
        if for_update:
            sql += " FOR UPDATE"
        cur = conn.execute(sql + ";", (appointment_id,))
        row = cur.fetchone()
        if not row:
            return None
        cols = [d.name for d in cur.description]
        return _to_appointment(dict(zip(cols, row)))

    def list_for_resource_day(self, conn: Connection, resource_id: int, day: date) -> list[Appointment]:
        cur = conn.execute(
            f"""
            SELECT {_COLUMNS} FROM appointment
            WHERE assigned_resource_id = %s AND scheduled_date = %s
            ORDER BY scheduled_time;
            """,
            (resource_id, day),
        )
        cols = [d.name for d in cur.description]
        return [_to_appointment(dict(zip(cols, row))) for row in cur.fetchall()]

    def list_for_day(self, conn: Connection, day: date, limit: int = 200) -> list[Appointment]:
        cur = conn.execute(
            f"""
            SELECT {_COLUMNS} FROM appointment
            WHERE scheduled_date = %s
            ORDER BY assigned_resource_id, scheduled_time
            LIMIT %s;
            """,
            (day, limit),
        )
        cols = [d.name for d in cur.description]
        return [_to_appointment(dict(zip(cols, row))) for row in cur.fetchall()]
