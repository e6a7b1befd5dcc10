from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .config import BusinessConfig
from .events import EventDispatcher
from .repositories.appointment_repo import AppointmentRepository
from .repositories.customer_repo import CustomerRepository
from .repositories.invoice_repo import InvoiceRepository
from .repositories.part_repo import PartRepository
from .repositories.vehicle_repo import VehicleRepository
from .repositories.work_order_repo import WorkOrderRepository
from .services.appointment_service import AppointmentService
from .services.invoice_service import InvoiceService
from .services.pipeline import BillingPipeline
from .services.work_order_service import WorkOrderService


@dataclass
class Repositories:
    appointments: object
    work_orders: object
    invoices: object
    customers: object
    vehicles: object
    parts: object


@dataclass
class Services:
    appointments: AppointmentService
    work_orders: WorkOrderService
    invoices: InvoiceService
    pipeline: BillingPipeline
    events: EventDispatcher
    repos: Repositories


def postgres_repositories() -> Repositories:
    return Repositories(
        appointments=AppointmentRepository(),
        work_orders=WorkOrderRepository(),
        invoices=InvoiceRepository(),
        customers=CustomerRepository(),
        vehicles=VehicleRepository(),
        parts=PartRepository(),
    )


def build_services(
    business: BusinessConfig,
    *,
    repos: Optional[Repositories] = None,
    events: Optional[EventDispatcher] = None,
    clock: Callable[[], datetime] = datetime.now,
) -> Services:
    repos = repos or postgres_repositories()
    events = events or EventDispatcher()
    appointments = AppointmentService(
        appointment_repo=repos.appointments,
        customer_repo=repos.customers,
        vehicle_repo=repos.vehicles,
        work_order_repo=repos.work_orders,
        business=business,
        events=events,
        clock=clock,
    )
    work_orders = WorkOrderService(
        work_order_repo=repos.work_orders,
        customer_repo=repos.customers,
        vehicle_repo=repos.vehicles,
        part_repo=repos.parts,
        business=business,
        events=events,
        clock=clock,
    )
    invoices = InvoiceService(
        invoice_repo=repos.invoices,
        work_order_repo=repos.work_orders,
        business=business,
        events=events,
        clock=clock,
    )
    pipeline = BillingPipeline(work_orders=work_orders, invoices=invoices, business=business)
    return Services(
        appointments=appointments,
        work_orders=work_orders,
        invoices=invoices,
        pipeline=pipeline,
        events=events,
        repos=repos,
    )
