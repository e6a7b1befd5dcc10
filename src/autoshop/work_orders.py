from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from .costing import seal_service
from .domain import (
    PRIORITIES,
    WORK_ORDER_STATUSES,
    Appointment,
    ServiceLine,
    StatusNote,
    VehicleSnapshot,
    WorkOrder,
    WorkOrderPart,
)
from .errors import IllegalTransitionError, ValidationError
from .money import to_decimal
from .scheduling import confirm_approved

WORK_ORDER_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"in_progress", "cancelled"}),
    "in_progress": frozenset({"waiting_parts", "completed", "cancelled"}),
    "waiting_parts": frozenset({"in_progress", "cancelled"}),
    "completed": frozenset({"invoiced", "cancelled"}),
    "cancelled": frozenset(),
    "invoiced": frozenset(),
}
TERMINAL_STATUSES = frozenset({"cancelled", "invoiced"})
EDITABLE_STATUSES = frozenset({"pending", "in_progress", "waiting_parts"})


def can_transition(current: str, new_status: str) -> bool:
    return new_status in WORK_ORDER_TRANSITIONS.get(current, frozenset())


def ensure_mutable(order: WorkOrder) -> None:
    if order.status in TERMINAL_STATUSES:
        raise IllegalTransitionError("WorkOrder", order.status, order.status, "work order is closed")


def build_work_order(
    *,
    customer_id: int,
    vehicle: VehicleSnapshot,
    services: Sequence[ServiceLine],
    technician_id: Optional[int] = None,
    priority: str = "medium",
    appointment_id: Optional[int] = None,
    payment_terms_days: Optional[int] = None,
    notes: Optional[str] = None,
    now: datetime,
    by: Optional[int] = None,
) -> WorkOrder:
    if not services:
        raise ValidationError("A work order needs at least one service.")
    if priority not in PRIORITIES:
        raise ValidationError(f"Unknown priority: {priority!r}")
    if payment_terms_days is not None and payment_terms_days < 0:
        raise ValidationError("Payment terms cannot be negative.")
    sealed = tuple(seal_service(s) for s in services)
    return WorkOrder(
        id=None,
        customer_id=customer_id,
        vehicle=vehicle,
        services=sealed,
        technician_id=technician_id,
        status="pending",
        priority=priority,
        appointment_id=appointment_id,
        payment_terms_days=payment_terms_days,
        history=(StatusNote(at=now, from_status=None, to_status="pending", note=notes, by=by),),
        notes=notes,
        created_at=now,
    )


def labor_hours_for(duration_minutes: int) -> Decimal:
    return Decimal(math.ceil(duration_minutes / 60))


def create_from_appointment(
    appointment: Appointment,
    approver_id: int,
    *,
    vehicle: VehicleSnapshot,
    labor_rate: Decimal,
    now: datetime,
) -> tuple[WorkOrder, Appointment]:
    """Turn an approved appointment into a pending work order.

    Returns the new order together with the appointment moved to
    ``confirmed``. Both are new values; on any error neither exists.
    """
    confirmed = confirm_approved(appointment, approver_id, now)

    service = ServiceLine(
        description=appointment.service_description.strip() or "Service from appointment",
        labor_hours=labor_hours_for(appointment.estimated_duration_minutes),
        labor_rate=to_decimal(labor_rate, "labor_rate"),
        parts=tuple(
            WorkOrderPart(
                name=p.name,
                quantity=p.quantity,
                unit_price=to_decimal(p.unit_cost, "unit_cost"),
                part_number=p.part_number,
            )
            for p in appointment.parts_required
        ),
        total_cost=appointment.estimated_cost.total,
        service_ref=appointment.service_type,
    )
    note = f"Created from appointment {appointment.id}."
    if appointment.notes:
        note = f"{note} {appointment.notes}"

    order = build_work_order(
        customer_id=appointment.customer_id,
        vehicle=vehicle,
        services=[service],
        technician_id=appointment.technician_id or appointment.assigned_resource_id,
        priority=appointment.priority,
        appointment_id=appointment.id,
        notes=note,
        now=now,
        by=approver_id,
    )
    start = datetime.combine(appointment.scheduled_date, appointment.scheduled_time)
    order = replace(
        order,
        estimated_start_date=appointment.scheduled_date,
        estimated_completion_at=start + timedelta(minutes=appointment.estimated_duration_minutes),
    )
    return order, confirmed


def update_status(
    order: WorkOrder,
    new_status: str,
    notes: Optional[str] = None,
    *,
    now: datetime,
    by: Optional[int] = None,
) -> WorkOrder:
    if new_status not in WORK_ORDER_STATUSES:
        raise ValidationError(f"Unknown work order status: {new_status!r}")
    if not can_transition(order.status, new_status):
        raise IllegalTransitionError("WorkOrder", order.status, new_status)

    changes: dict = {
        "status": new_status,
        "history": order.history
        + (StatusNote(at=now, from_status=order.status, to_status=new_status, note=notes, by=by),),
    }
    if new_status == "completed":
        changes["completed_at"] = now
        changes["progress"] = 100
    return replace(order, **changes)


def update_progress(
    order: WorkOrder,
    progress: int,
    notes: Optional[str] = None,
    *,
    now: datetime,
    by: Optional[int] = None,
) -> WorkOrder:
    if isinstance(progress, bool) or not isinstance(progress, int) or not 0 <= progress <= 100:
        raise ValidationError("Progress must be a whole number between 0 and 100.")
    if order.status != "in_progress":
        raise IllegalTransitionError(
            "WorkOrder", order.status, order.status, "progress can only be reported while in progress"
        )
    if progress == 100:
        return update_status(order, "completed", notes or "Progress reached 100%", now=now, by=by)
    return replace(order, progress=progress)


def replace_services(order: WorkOrder, services: Sequence[ServiceLine]) -> WorkOrder:
    if order.status not in EDITABLE_STATUSES:
        raise IllegalTransitionError(
            "WorkOrder", order.status, order.status, "services can no longer be edited"
        )
    if not services:
        raise ValidationError("A work order needs at least one service.")
    return replace(order, services=tuple(seal_service(s) for s in services))
