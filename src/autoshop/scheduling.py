from __future__ import annotations

import re
from dataclasses import replace
from datetime import datetime, time
from decimal import Decimal
from typing import Iterable, Sequence

from .domain import (
    ACTIVE_APPOINTMENT_STATUSES,
    APPOINTMENT_STATUSES,
    PRIORITIES,
    Appointment,
    CostSummary,
    RequiredPart,
)
from .errors import ConflictError, IllegalTransitionError, ValidationError
from .money import line_total, money_sum, round2, to_decimal

MIN_DURATION_MINUTES = 15
MINUTES_PER_DAY = 24 * 60

_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")

# older records spell these with a hyphen
_LEGACY_STATUS = {"in-progress": "in_progress", "no-show": "no_show", "pending-approval": "pending_approval"}

APPOINTMENT_TRANSITIONS: dict[str, frozenset[str]] = {
    # pending_approval only reaches confirmed through confirm_approved
    "pending_approval": frozenset({"cancelled"}),
    "scheduled": frozenset({"confirmed", "in_progress", "cancelled", "no_show"}),
    "confirmed": frozenset({"in_progress", "cancelled", "no_show"}),
    "in_progress": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
    "no_show": frozenset(),
}


def parse_time(value: str | time) -> time:
    if isinstance(value, time):
        if value.second or value.microsecond:
            raise ValidationError("Scheduled time must have minute resolution.")
        return value
    m = _TIME_RE.match(str(value).strip())
    if not m:
        raise ValidationError(f"Please enter a valid time in HH:MM format, got {value!r}.")
    return time(int(m.group(1)), int(m.group(2)))


def normalize_status(value: str) -> str:
    status = _LEGACY_STATUS.get(value.strip(), value.strip())
    if status not in APPOINTMENT_STATUSES:
        raise ValidationError(f"Unknown appointment status: {value!r}")
    return status


def minutes_since_midnight(t: time) -> int:
    return t.hour * 60 + t.minute


def time_window(appointment: Appointment) -> tuple[int, int]:
    start = minutes_since_midnight(appointment.scheduled_time)
    return start, start + appointment.estimated_duration_minutes


def intervals_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    # half-open: [a_start, a_end) and [b_start, b_end)
    return a_start < b_end and b_start < a_end


def validate_required_part(part: RequiredPart) -> None:
    if not part.name or not part.name.strip():
        raise ValidationError("Part name cannot be empty.")
    if isinstance(part.quantity, bool) or not isinstance(part.quantity, int) or part.quantity < 1:
        raise ValidationError("Part quantity must be at least 1.")
    if to_decimal(part.unit_cost, "unit_cost") < 0:
        raise ValidationError("Part cost cannot be negative.")


def validate_appointment(appointment: Appointment) -> None:
    if appointment.status not in APPOINTMENT_STATUSES:
        raise ValidationError(f"Unknown appointment status: {appointment.status!r}")
    if appointment.priority not in PRIORITIES:
        raise ValidationError(f"Unknown priority: {appointment.priority!r}")
    duration = appointment.estimated_duration_minutes
    if isinstance(duration, bool) or not isinstance(duration, int):
        raise ValidationError("Estimated duration must be a whole number of minutes.")
    if duration < MIN_DURATION_MINUTES:
        raise ValidationError(f"Minimum duration is {MIN_DURATION_MINUTES} minutes.")
    parse_time(appointment.scheduled_time)
    _, end = time_window(appointment)
    if end > MINUTES_PER_DAY:
        raise ValidationError("Appointment cannot run past midnight; split it across days.")
    for p in appointment.parts_required:
        validate_required_part(p)


def find_conflicts(candidate: Appointment, existing: Iterable[Appointment]) -> list[Appointment]:
    c_start, c_end = time_window(candidate)
    conflicts: list[Appointment] = []
    for other in existing:
        if candidate.id is not None and other.id == candidate.id:
            continue
        if other.assigned_resource_id != candidate.assigned_resource_id:
            continue
        if other.scheduled_date != candidate.scheduled_date:
            continue
        if other.status not in ACTIVE_APPOINTMENT_STATUSES:
            continue
        o_start, o_end = time_window(other)
        if intervals_overlap(c_start, c_end, o_start, o_end) or intervals_overlap(o_start, o_end, c_start, c_end):
            conflicts.append(other)
    return conflicts


def ensure_no_conflicts(candidate: Appointment, existing: Iterable[Appointment]) -> None:
    conflicts = find_conflicts(candidate, existing)
    if conflicts:
        raise ConflictError(
            f"Resource {candidate.assigned_resource_id} is already booked on "
            f"{candidate.scheduled_date.isoformat()} around {candidate.scheduled_time:%H:%M}",
            conflicts,
        )


def estimate_cost(parts: Sequence[RequiredPart], duration_minutes: int, labor_rate: Decimal) -> CostSummary:
    parts_cost = money_sum(line_total(p.quantity, p.unit_cost) for p in parts)
    labor = round2(Decimal(duration_minutes) / Decimal(60) * to_decimal(labor_rate, "labor_rate"))
    return CostSummary(parts=parts_cost, labor=labor, total=parts_cost + labor)


def with_parts(appointment: Appointment, parts: Sequence[RequiredPart], labor_rate: Decimal) -> Appointment:
    for p in parts:
        validate_required_part(p)
    return replace(
        appointment,
        parts_required=tuple(parts),
        estimated_cost=estimate_cost(parts, appointment.estimated_duration_minutes, labor_rate),
    )


def record_actual_cost(appointment: Appointment, actual_duration_minutes: int, labor_rate: Decimal) -> Appointment:
    if actual_duration_minutes < 0:
        raise ValidationError("Duration cannot be negative.")
    return replace(
        appointment,
        actual_duration_minutes=actual_duration_minutes,
        actual_cost=estimate_cost(appointment.parts_required, actual_duration_minutes, labor_rate),
    )


def requires_approval(appointment: Appointment, threshold: Decimal) -> bool:
    return appointment.estimated_cost.total > to_decimal(threshold, "threshold")


def change_status(appointment: Appointment, new_status: str) -> Appointment:
    target = normalize_status(new_status)
    allowed = APPOINTMENT_TRANSITIONS.get(appointment.status, frozenset())
    if target not in allowed:
        raise IllegalTransitionError("Appointment", appointment.status, target)
    return replace(appointment, status=target)


def confirm_approved(appointment: Appointment, approver_id: int, now: datetime) -> Appointment:
    if appointment.status != "pending_approval":
        raise IllegalTransitionError(
            "Appointment", appointment.status, "confirmed", "appointment is not pending approval"
        )
    return replace(appointment, status="confirmed", approved_by=approver_id, approved_at=now)
