from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Sequence

from psycopg import Connection

from .. import events as ev
from ..config import BusinessConfig
from ..domain import ServiceLine, WorkOrder, WorkOrderPart
from ..errors import IllegalTransitionError, NotFoundError, ValidationError
from ..events import EventDispatcher
from ..money import to_decimal, to_int
from ..repositories.customer_repo import CustomerRepository
from ..repositories.part_repo import PartRepository
from ..repositories.vehicle_repo import VehicleRepository
from ..repositories.work_order_repo import WorkOrderRepository
from ..serialization import vehicle_from_dict
from ..work_orders import build_work_order, ensure_mutable, replace_services, update_progress, update_status

log = logging.getLogger(__name__)


@dataclass
class CreatePartInput:
    quantity: int
    sku: Optional[str] = None
    name: Optional[str] = None
    # None means "use the catalog price for sku"
    unit_price: Optional[Decimal] = None


@dataclass
class CreateServiceInput:
    description: str
    labor_hours: Decimal
    labor_rate: Optional[Decimal] = None
    parts: list[CreatePartInput] = field(default_factory=list)
    total_cost: Optional[Decimal] = None
    service_ref: Optional[str] = None


class WorkOrderService:
    def __init__(
        self,
        *,
        work_order_repo: WorkOrderRepository,
        customer_repo: CustomerRepository,
        vehicle_repo: VehicleRepository,
        part_repo: PartRepository,
        business: BusinessConfig,
        events: EventDispatcher,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.work_order_repo = work_order_repo
        self.customer_repo = customer_repo
        self.vehicle_repo = vehicle_repo
        self.part_repo = part_repo
        self.business = business
        self.events = events
        self.clock = clock

    def get(self, conn: Connection, order_id: int, *, for_update: bool = False) -> WorkOrder:
        order = self.work_order_repo.get(conn, order_id, for_update=for_update)
        if order is None:
            raise NotFoundError(f"Work order {order_id} not found")
        return order

    def _resolve_part(self, conn: Connection, p: CreatePartInput) -> WorkOrderPart:
        if p.quantity is None:
            raise ValidationError("Part quantity is required.")
        quantity = to_int(p.quantity, "quantity")
        if quantity <= 0:
            raise ValidationError("Part quantity must be > 0.")
        name, price = p.name, p.unit_price
        if price is None or not name:
            if not p.sku:
                raise ValidationError("Parts without a price or name need a SKU to look up.")
            record = self.part_repo.get_by_sku(conn, p.sku.strip())
            if record is None or not record["is_active"]:
                raise ValidationError(f"Unknown part SKU: {p.sku}")
            name = name or record["name"]
            price = record["unit_price"] if price is None else price
        return WorkOrderPart(
            name=name.strip(),
            quantity=quantity,
            unit_price=to_decimal(price, "unit_price"),
            part_number=p.sku,
        )

    def _resolve_services(self, conn: Connection, services: Sequence[CreateServiceInput]) -> list[ServiceLine]:
        resolved = []
        for s in services:
            rate = self.business.default_labor_rate if s.labor_rate is None else s.labor_rate
            resolved.append(
                ServiceLine(
                    description=s.description.strip(),
                    labor_hours=to_decimal(s.labor_hours, "labor_hours"),
                    labor_rate=to_decimal(rate, "labor_rate"),
                    parts=tuple(self._resolve_part(conn, p) for p in s.parts),
                    total_cost=None if s.total_cost is None else to_decimal(s.total_cost, "total_cost"),
                    service_ref=s.service_ref,
                )
            )
        return resolved

    def create(
        self,
        conn: Connection,
        *,
        customer_id: int,
        vehicle_id: Optional[int],
        services: Sequence[CreateServiceInput],
        technician_id: Optional[int] = None,
        priority: str = "medium",
        payment_terms_days: Optional[int] = None,
        notes: Optional[str] = None,
        by: Optional[int] = None,
    ) -> WorkOrder:
        if self.customer_repo.get(conn, customer_id) is None:
            raise NotFoundError(f"Customer {customer_id} not found")
        vehicle = None
        if vehicle_id is not None:
            vehicle = self.vehicle_repo.get(conn, vehicle_id)
            if vehicle is None or vehicle["customer_id"] != customer_id:
                raise NotFoundError(f"Vehicle {vehicle_id} not found for customer {customer_id}")

        order = build_work_order(
            customer_id=customer_id,
            vehicle=vehicle_from_dict(vehicle),
            services=self._resolve_services(conn, services),
            technician_id=technician_id,
            priority=priority,
            payment_terms_days=payment_terms_days,
            notes=notes,
            now=self.clock(),
            by=by,
        )
        saved = self.work_order_repo.create(conn, order)
        log.info("created work order %s for customer %s", saved.work_order_number, customer_id)
        self.events.emit(ev.WORK_ORDER_CREATED, {"work_order_id": saved.id, "work_order_number": saved.work_order_number})
        return saved

    def _save_transition(self, conn: Connection, before: WorkOrder, after: WorkOrder) -> WorkOrder:
        self.work_order_repo.update(conn, after)
        if before.status != after.status:
            log.info("work order %s: %s -> %s", after.work_order_number, before.status, after.status)
            self.events.emit(
                ev.WORK_ORDER_STATUS_CHANGED,
                {"work_order_id": after.id, "from": before.status, "to": after.status},
            )
        return after

    def update_status(
        self,
        conn: Connection,
        order_id: int,
        new_status: str,
        notes: Optional[str] = None,
        *,
        by: Optional[int] = None,
    ) -> WorkOrder:
        if new_status == "invoiced":
            current = self.get(conn, order_id)
            raise IllegalTransitionError(
                "WorkOrder", current.status, new_status, "set by invoice generation, not directly"
            )
        current = self.get(conn, order_id, for_update=True)
        return self._save_transition(conn, current, update_status(current, new_status, notes, now=self.clock(), by=by))

    def update_progress(
        self,
        conn: Connection,
        order_id: int,
        progress: int,
        notes: Optional[str] = None,
        *,
        by: Optional[int] = None,
    ) -> WorkOrder:
        current = self.get(conn, order_id, for_update=True)
        return self._save_transition(conn, current, update_progress(current, progress, notes, now=self.clock(), by=by))

    def replace_services(self, conn: Connection, order_id: int, services: Sequence[CreateServiceInput]) -> WorkOrder:
        current = self.get(conn, order_id, for_update=True)
        ensure_mutable(current)
        updated = replace_services(current, self._resolve_services(conn, services))
        self.work_order_repo.update(conn, updated)
        return updated
