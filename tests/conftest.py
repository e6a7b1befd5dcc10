"""Pytest configuration and fixtures for autoshop tests.

Services are wired against the in-memory repositories in ``fakes`` and a
fixed clock.
"""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal

import pytest

from autoshop.config import BusinessConfig
from autoshop.container import Repositories, Services, build_services
from autoshop.domain import Appointment, ServiceLine, VehicleSnapshot, WorkOrderPart
from autoshop.events import EventDispatcher
from fakes import (
    FakeAppointmentRepository,
    FakeConn,
    FakeCustomerRepository,
    FakeInvoiceRepository,
    FakePartRepository,
    FakeVehicleRepository,
    FakeWorkOrderRepository,
)

NOW = datetime(2024, 3, 15, 10, 0)


@pytest.fixture
def now() -> datetime:
    """Fixed wall clock used by every service."""
    return NOW


@pytest.fixture
def business() -> BusinessConfig:
    """Shop defaults: 100/h labor, 8% tax, net 30."""
    return BusinessConfig(
        default_labor_rate=Decimal("100"),
        default_tax_rate=Decimal("8"),
        payment_terms_days=30,
        approval_threshold=Decimal("500"),
    )


@pytest.fixture
def repos() -> Repositories:
    return Repositories(
        appointments=FakeAppointmentRepository(),
        work_orders=FakeWorkOrderRepository(),
        invoices=FakeInvoiceRepository(),
        customers=FakeCustomerRepository({1: {"id": 1, "full_name": "Dana Reyes", "is_active": True}}),
        vehicles=FakeVehicleRepository(
            {
                10: {
                    "id": 10,
                    "customer_id": 1,
                    "make": "Toyota",
                    "model": "Corolla",
                    "year": 2018,
                    "vin": "2T1BURHE0JC000001",
                    "license_plate": "ABC-123",
                    "mileage": 84000,
                }
            }
        ),
        parts=FakePartRepository(
            {
                "BRK-001": {"sku": "BRK-001", "name": "Brake pad set", "unit_price": Decimal("45.00"), "is_active": True},
                "OLD-999": {"sku": "OLD-999", "name": "Retired filter", "unit_price": Decimal("5.00"), "is_active": False},
            }
        ),
    )


@pytest.fixture
def events() -> EventDispatcher:
    return EventDispatcher()


@pytest.fixture
def received(events: EventDispatcher) -> list[tuple[str, dict]]:
    """Every event delivered by the dispatcher, in order."""
    seen: list[tuple[str, dict]] = []
    events.subscribe_all(lambda name, payload: seen.append((name, payload)))
    return seen


@pytest.fixture
def services(business: BusinessConfig, repos: Repositories, events: EventDispatcher) -> Services:
    return build_services(business, repos=repos, events=events, clock=lambda: NOW)


@pytest.fixture
def conn() -> FakeConn:
    return FakeConn()


@pytest.fixture
def make_appointment():
    """Factory for appointments on bay 1, 2024-03-18."""

    def _make(start: str = "09:00", minutes: int = 60, **overrides) -> Appointment:
        h, m = (int(x) for x in start.split(":"))
        fields = dict(
            id=None,
            customer_id=1,
            vehicle_id=10,
            assigned_resource_id=1,
            scheduled_date=date(2024, 3, 18),
            scheduled_time=time(h, m),
            estimated_duration_minutes=minutes,
            service_description="Brake inspection",
            service_type="brake_service",
        )
        fields.update(overrides)
        return Appointment(**fields)

    return _make


@pytest.fixture
def brake_service() -> ServiceLine:
    """2h at 100/h, two pads at 15, quoted at 250."""
    return ServiceLine(
        description="Brake job",
        labor_hours=Decimal("2"),
        labor_rate=Decimal("100"),
        parts=(WorkOrderPart(name="Brake pad", quantity=2, unit_price=Decimal("15"), part_number="BP-1"),),
        total_cost=Decimal("250"),
        service_ref="brakes",
    )


@pytest.fixture
def vehicle() -> VehicleSnapshot:
    return VehicleSnapshot(make="Toyota", model="Corolla", year=2018, license_plate="ABC-123", mileage=84000)
