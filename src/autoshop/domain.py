from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Literal, Optional

from .money import ZERO, line_total

AppointmentStatus = Literal[
    "pending_approval", "scheduled", "confirmed", "in_progress", "completed", "cancelled", "no_show"
]
WorkOrderStatus = Literal["pending", "in_progress", "waiting_parts", "completed", "cancelled", "invoiced"]
InvoiceStatus = Literal["draft", "sent", "paid", "overdue", "cancelled", "refunded"]
ItemType = Literal["service", "part", "labor", "overhead", "other"]
DiscountType = Literal["percentage", "fixed", "none"]
Priority = Literal["low", "medium", "high", "urgent"]

APPOINTMENT_STATUSES = (
    "pending_approval", "scheduled", "confirmed", "in_progress", "completed", "cancelled", "no_show"
)
ACTIVE_APPOINTMENT_STATUSES = frozenset({"scheduled", "confirmed", "in_progress"})
WORK_ORDER_STATUSES = ("pending", "in_progress", "waiting_parts", "completed", "cancelled", "invoiced")
INVOICE_STATUSES = ("draft", "sent", "paid", "overdue", "cancelled", "refunded")
ITEM_TYPES = ("service", "part", "labor", "overhead", "other")
DISCOUNT_TYPES = ("percentage", "fixed", "none")
PRIORITIES = ("low", "medium", "high", "urgent")
PAYMENT_METHODS = ("cash", "check", "credit_card", "debit_card", "bank_transfer", "online", "other")


@dataclass(frozen=True)
class CostSummary:
    parts: Decimal = ZERO
    labor: Decimal = ZERO
    total: Decimal = ZERO


@dataclass(frozen=True)
class RequiredPart:
    name: str
    quantity: int
    unit_cost: Decimal = ZERO
    part_number: Optional[str] = None
    in_stock: bool = False


@dataclass(frozen=True)
class Appointment:
    id: Optional[int]
    customer_id: int
    vehicle_id: Optional[int]
    assigned_resource_id: int
    scheduled_date: date
    scheduled_time: time
    estimated_duration_minutes: int
    status: AppointmentStatus = "scheduled"
    service_type: str = "other"
    service_description: str = ""
    priority: Priority = "medium"
    technician_id: Optional[int] = None
    parts_required: tuple[RequiredPart, ...] = ()
    estimated_cost: CostSummary = field(default_factory=CostSummary)
    actual_cost: CostSummary = field(default_factory=CostSummary)
    actual_duration_minutes: Optional[int] = None
    notes: Optional[str] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None


@dataclass(frozen=True)
class VehicleSnapshot:
    make: str = "Unknown"
    model: str = "Unknown"
    year: Optional[int] = None
    vin: Optional[str] = None
    license_plate: Optional[str] = None
    mileage: int = 0


@dataclass(frozen=True)
class WorkOrderPart:
    name: str
    quantity: int
    unit_price: Decimal
    part_number: Optional[str] = None

    @property
    def total_price(self) -> Decimal:
        return line_total(self.quantity, self.unit_price)


@dataclass(frozen=True)
class ServiceLine:
    description: str
    labor_hours: Decimal = ZERO
    labor_rate: Decimal = ZERO
    parts: tuple[WorkOrderPart, ...] = ()
    # authoritative quoted price; None means "labor + parts"
    total_cost: Optional[Decimal] = None
    service_ref: Optional[str] = None


@dataclass(frozen=True)
class StatusNote:
    at: datetime
    from_status: Optional[str]
    to_status: str
    note: Optional[str] = None
    by: Optional[int] = None


@dataclass(frozen=True)
class WorkOrder:
    id: Optional[int]
    customer_id: int
    vehicle: VehicleSnapshot
    services: tuple[ServiceLine, ...]
    work_order_number: Optional[str] = None
    technician_id: Optional[int] = None
    status: WorkOrderStatus = "pending"
    priority: Priority = "medium"
    progress: int = 0
    appointment_id: Optional[int] = None
    payment_terms_days: Optional[int] = None
    estimated_start_date: Optional[date] = None
    estimated_completion_at: Optional[datetime] = None
    history: tuple[StatusNote, ...] = ()
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class InvoiceItem:
    type: ItemType
    name: str
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal = ZERO
    description: Optional[str] = None
    part_number: Optional[str] = None
    reference: Optional[str] = None


@dataclass(frozen=True)
class Payment:
    amount: Decimal
    received_at: datetime
    method: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class Invoice:
    id: Optional[int]
    invoice_number: Optional[str]
    customer_id: int
    issue_date: date
    due_date: date
    items: tuple[InvoiceItem, ...] = ()
    work_order_id: Optional[int] = None
    appointment_id: Optional[int] = None
    vehicle: Optional[VehicleSnapshot] = None
    subtotal: Decimal = ZERO
    tax_rate: Decimal = ZERO
    tax_amount: Decimal = ZERO
    discount_type: DiscountType = "none"
    discount_value: Decimal = ZERO
    discount_amount: Decimal = ZERO
    total: Decimal = ZERO
    paid_amount: Decimal = ZERO
    balance: Decimal = ZERO
    status: InvoiceStatus = "draft"
    paid_date: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    payments: tuple[Payment, ...] = ()
    notes: Optional[str] = None
    terms: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def balance_due(self) -> Decimal:
        # signed; `balance` is the non-negative display figure
        return self.total - self.paid_amount
