from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime
from typing import Callable, Optional, Sequence

from psycopg import Connection

from .. import events as ev
from ..config import BusinessConfig
from ..domain import ACTIVE_APPOINTMENT_STATUSES, Appointment, RequiredPart, VehicleSnapshot, WorkOrder
from ..errors import ConflictError, NotFoundError, ValidationError
from ..events import EventDispatcher
from ..repositories.appointment_repo import AppointmentRepository, SlotTakenError
from ..repositories.customer_repo import CustomerRepository
from ..repositories.vehicle_repo import VehicleRepository
from ..repositories.work_order_repo import WorkOrderRepository
from ..scheduling import (
    change_status,
    ensure_no_conflicts,
    find_conflicts,
    parse_time,
    record_actual_cost,
    requires_approval,
    validate_appointment,
    with_parts,
)
from ..serialization import vehicle_from_dict
from ..work_orders import create_from_appointment

log = logging.getLogger(__name__)


class AppointmentService:
    def __init__(
        self,
        *,
        appointment_repo: AppointmentRepository,
        customer_repo: CustomerRepository,
        vehicle_repo: VehicleRepository,
        work_order_repo: WorkOrderRepository,
        business: BusinessConfig,
        events: EventDispatcher,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.appointment_repo = appointment_repo
        self.customer_repo = customer_repo
        self.vehicle_repo = vehicle_repo
        self.work_order_repo = work_order_repo
        self.business = business
        self.events = events
        self.clock = clock

    def get(self, conn: Connection, appointment_id: int, *, for_update: bool = False) -> Appointment:
        appt = self.appointment_repo.get(conn, appointment_id, for_update=for_update)
        if appt is None:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        return appt

    def check_conflicts(self, conn: Connection, candidate: Appointment) -> list[Appointment]:
        validate_appointment(candidate)
        existing = self.appointment_repo.list_for_resource_day(
            conn, candidate.assigned_resource_id, candidate.scheduled_date
        )
        return find_conflicts(candidate, existing)

    def _ensure_free(self, conn: Connection, appt: Appointment) -> None:
        if appt.status not in ACTIVE_APPOINTMENT_STATUSES:
            return
        existing = self.appointment_repo.list_for_resource_day(conn, appt.assigned_resource_id, appt.scheduled_date)
        ensure_no_conflicts(appt, existing)

    def _slot_taken(self, conn: Connection, appt: Appointment, err: SlotTakenError) -> ConflictError:
        # lost a race with a concurrent booking; report whoever holds the slot now
        log.warning("storage rejected overlapping booking for resource %s: %s", appt.assigned_resource_id, err)
        existing = self.appointment_repo.list_for_resource_day(conn, appt.assigned_resource_id, appt.scheduled_date)
        return ConflictError(
            f"Resource {appt.assigned_resource_id} was booked concurrently for this time window",
            find_conflicts(appt, existing),
        )

    def book(self, conn: Connection, appt: Appointment) -> Appointment:
        validate_appointment(appt)
        if self.customer_repo.get(conn, appt.customer_id) is None:
            raise NotFoundError(f"Customer {appt.customer_id} not found")
        if appt.vehicle_id is not None:
            vehicle = self.vehicle_repo.get(conn, appt.vehicle_id)
            if vehicle is None or vehicle["customer_id"] != appt.customer_id:
                raise NotFoundError(f"Vehicle {appt.vehicle_id} not found for customer {appt.customer_id}")

        appt = with_parts(appt, appt.parts_required, self.business.default_labor_rate)
        if appt.status == "scheduled" and requires_approval(appt, self.business.approval_threshold):
            log.info(
                "appointment estimate %s exceeds approval threshold %s; holding for approval",
                appt.estimated_cost.total,
                self.business.approval_threshold,
            )
            appt = replace(appt, status="pending_approval")

        self._ensure_free(conn, appt)
        try:
            appointment_id = self.appointment_repo.create(conn, appt)
        except SlotTakenError as e:
            raise self._slot_taken(conn, appt, e) from e

        saved = replace(appt, id=appointment_id)
        log.info(
            "booked appointment %s for resource %s on %s %s",
            appointment_id,
            saved.assigned_resource_id,
            saved.scheduled_date,
            saved.scheduled_time.strftime("%H:%M"),
        )
        self.events.emit(ev.APPOINTMENT_BOOKED, {"appointment_id": appointment_id, "status": saved.status})
        return saved

    def reschedule(
        self,
        conn: Connection,
        appointment_id: int,
        *,
        scheduled_date: date,
        scheduled_time: str,
        estimated_duration_minutes: Optional[int] = None,
    ) -> Appointment:
        current = self.get(conn, appointment_id, for_update=True)
        if current.status not in ACTIVE_APPOINTMENT_STATUSES | {"pending_approval"}:
            raise ValidationError(f"Appointment {appointment_id} is {current.status} and cannot be rescheduled.")
        moved = replace(
            current,
            scheduled_date=scheduled_date,
            scheduled_time=parse_time(scheduled_time),
            estimated_duration_minutes=(
                current.estimated_duration_minutes if estimated_duration_minutes is None else estimated_duration_minutes
            ),
        )
        validate_appointment(moved)
        moved = with_parts(moved, moved.parts_required, self.business.default_labor_rate)
        self._ensure_free(conn, moved)
        try:
            self.appointment_repo.update(conn, moved)
        except SlotTakenError as e:
            raise self._slot_taken(conn, moved, e) from e
        return moved

    def set_parts(self, conn: Connection, appointment_id: int, parts: Sequence[RequiredPart]) -> Appointment:
        current = self.get(conn, appointment_id, for_update=True)
        updated = with_parts(current, parts, self.business.default_labor_rate)
        self.appointment_repo.update(conn, updated)
        return updated

    def change_status(
        self,
        conn: Connection,
        appointment_id: int,
        new_status: str,
        *,
        actual_duration_minutes: Optional[int] = None,
    ) -> Appointment:
        current = self.get(conn, appointment_id, for_update=True)
        updated = change_status(current, new_status)
        if updated.status == "completed" and actual_duration_minutes is not None:
            updated = record_actual_cost(updated, actual_duration_minutes, self.business.default_labor_rate)
        try:
            self.appointment_repo.update(conn, updated)
        except SlotTakenError as e:
            raise self._slot_taken(conn, updated, e) from e
        log.info("appointment %s: %s -> %s", appointment_id, current.status, updated.status)
        return updated

    def _vehicle_snapshot(self, conn: Connection, appt: Appointment) -> VehicleSnapshot:
        if appt.vehicle_id is None:
            return VehicleSnapshot()
        record = self.vehicle_repo.get(conn, appt.vehicle_id)
        if record is None:
            raise NotFoundError(f"Vehicle {appt.vehicle_id} not found")
        return vehicle_from_dict(record)

    def approve(self, conn: Connection, appointment_id: int, approver_id: int) -> tuple[WorkOrder, Appointment]:
        """Approve a gated appointment and open its work order.

        Everything is computed before the first write, and both writes share
        the caller's transaction, so a failure leaves neither record changed.
        """
        appt = self.get(conn, appointment_id, for_update=True)
        order, confirmed = create_from_appointment(
            appt,
            approver_id,
            vehicle=self._vehicle_snapshot(conn, appt),
            labor_rate=self.business.default_labor_rate,
            now=self.clock(),
        )
        self._ensure_free(conn, confirmed)

        saved = self.work_order_repo.create(conn, order)
        try:
            self.appointment_repo.update(conn, confirmed)
        except SlotTakenError as e:
            raise self._slot_taken(conn, confirmed, e) from e

        log.info("work order %s created from appointment %s", saved.work_order_number, appointment_id)
        self.events.emit(ev.APPOINTMENT_CONFIRMED, {"appointment_id": appointment_id, "approved_by": approver_id})
        self.events.emit(
            ev.WORK_ORDER_CREATED,
            {"work_order_id": saved.id, "work_order_number": saved.work_order_number, "appointment_id": appointment_id},
        )
        return saved, confirmed
