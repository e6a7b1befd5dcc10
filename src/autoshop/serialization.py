from __future__ import annotations

import dataclasses
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Optional

from .domain import (
    Appointment,
    CostSummary,
    InvoiceItem,
    Payment,
    RequiredPart,
    ServiceLine,
    StatusNote,
    VehicleSnapshot,
    WorkOrderPart,
)
from .errors import ValidationError
from .money import ZERO, to_decimal, to_int
from .scheduling import normalize_status, parse_time


def to_primitive(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_primitive(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, time):
        return value.strftime("%H:%M")
    if isinstance(value, (list, tuple)):
        return [to_primitive(v) for v in value]
    if isinstance(value, dict):
        return {k: to_primitive(v) for k, v in value.items()}
    return value


def _req(data: dict, key: str) -> Any:
    try:
        return data[key]
    except KeyError:
        raise ValidationError(f"Missing required field: {key}") from None


def _opt_int(value: Any, field: str) -> Optional[int]:
    if value is None or value == "":
        return None
    return to_int(value, field)


def _date(value: Any, field: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD), got {value!r}.") from None


def _datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def vehicle_from_dict(data: Optional[dict]) -> VehicleSnapshot:
    data = data or {}
    return VehicleSnapshot(
        make=data.get("make") or "Unknown",
        model=data.get("model") or "Unknown",
        year=_opt_int(data.get("year"), "year"),
        vin=data.get("vin") or None,
        license_plate=data.get("license_plate") or None,
        mileage=to_int(data.get("mileage") or 0, "mileage"),
    )


def required_part_from_dict(data: dict) -> RequiredPart:
    return RequiredPart(
        name=str(_req(data, "name")),
        quantity=to_int(_req(data, "quantity"), "quantity"),
        unit_cost=to_decimal(data.get("unit_cost", ZERO), "unit_cost"),
        part_number=data.get("part_number") or None,
        in_stock=bool(data.get("in_stock", False)),
    )


def work_order_part_from_dict(data: dict) -> WorkOrderPart:
    return WorkOrderPart(
        name=str(_req(data, "name")),
        quantity=to_int(_req(data, "quantity"), "quantity"),
        unit_price=to_decimal(_req(data, "unit_price"), "unit_price"),
        part_number=data.get("part_number") or None,
    )


def service_from_dict(data: dict) -> ServiceLine:
    total = data.get("total_cost")
    return ServiceLine(
        description=str(_req(data, "description")),
        labor_hours=to_decimal(data.get("labor_hours", ZERO), "labor_hours"),
        labor_rate=to_decimal(data.get("labor_rate", ZERO), "labor_rate"),
        parts=tuple(work_order_part_from_dict(p) for p in data.get("parts") or ()),
        total_cost=None if total is None else to_decimal(total, "total_cost"),
        service_ref=data.get("service_ref"),
    )


def status_note_from_dict(data: dict) -> StatusNote:
    return StatusNote(
        at=_datetime(data["at"]),
        from_status=data.get("from_status"),
        to_status=data["to_status"],
        note=data.get("note"),
        by=data.get("by"),
    )


def item_from_dict(data: dict) -> InvoiceItem:
    return InvoiceItem(
        type=str(_req(data, "type")),  # type: ignore[arg-type]
        name=str(_req(data, "name")),
        quantity=to_decimal(_req(data, "quantity"), "quantity"),
        unit_price=to_decimal(_req(data, "unit_price"), "unit_price"),
        total_price=to_decimal(data.get("total_price", ZERO), "total_price"),
        description=data.get("description"),
        part_number=data.get("part_number"),
        reference=data.get("reference"),
    )


def payment_from_dict(data: dict) -> Payment:
    return Payment(
        amount=to_decimal(data["amount"]),
        received_at=_datetime(data["received_at"]),
        method=data.get("method"),
        reference=data.get("reference"),
        notes=data.get("notes"),
    )


def cost_from_dict(data: Optional[dict]) -> CostSummary:
    data = data or {}
    return CostSummary(
        parts=to_decimal(data.get("parts", ZERO), "parts"),
        labor=to_decimal(data.get("labor", ZERO), "labor"),
        total=to_decimal(data.get("total", ZERO), "total"),
    )


def appointment_from_payload(data: dict, *, appointment_id: Optional[int] = None) -> Appointment:
    return Appointment(
        id=appointment_id,
        customer_id=to_int(_req(data, "customer_id"), "customer_id"),
        vehicle_id=_opt_int(data.get("vehicle_id"), "vehicle_id"),
        assigned_resource_id=to_int(_req(data, "assigned_resource_id"), "assigned_resource_id"),
        technician_id=_opt_int(data.get("technician_id"), "technician_id"),
        scheduled_date=_date(_req(data, "scheduled_date"), "scheduled_date"),
        scheduled_time=parse_time(_req(data, "scheduled_time")),
        estimated_duration_minutes=to_int(_req(data, "estimated_duration_minutes"), "estimated_duration_minutes"),
        status=normalize_status(data.get("status", "scheduled")),  # type: ignore[arg-type]
        service_type=str(data.get("service_type", "other")),
        service_description=str(data.get("service_description", "")),
        priority=data.get("priority", "medium"),
        parts_required=tuple(required_part_from_dict(p) for p in data.get("parts_required") or ()),
        notes=data.get("notes"),
    )
