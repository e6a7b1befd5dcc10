from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable

from .domain import ServiceLine, WorkOrderPart
from .errors import ValidationError
from .money import ZERO, line_total, money_sum, round2, to_decimal


@dataclass(frozen=True)
class ServiceCost:
    labor_cost: Decimal
    parts_cost: Decimal
    overhead: Decimal
    total: Decimal

    def __add__(self, other: "ServiceCost") -> "ServiceCost":
        return ServiceCost(
            labor_cost=self.labor_cost + other.labor_cost,
            parts_cost=self.parts_cost + other.parts_cost,
            overhead=self.overhead + other.overhead,
            total=self.total + other.total,
        )


EMPTY_COST = ServiceCost(ZERO, ZERO, ZERO, ZERO)


def validate_part(part: WorkOrderPart) -> None:
    if not part.name or not part.name.strip():
        raise ValidationError("Part name cannot be empty.")
    if isinstance(part.quantity, bool) or not isinstance(part.quantity, int) or part.quantity < 1:
        raise ValidationError(f"Part '{part.name}': quantity must be at least 1.")
    if to_decimal(part.unit_price, "unit_price") < 0:
        raise ValidationError(f"Part '{part.name}': unit price cannot be negative.")


def validate_service(service: ServiceLine) -> None:
    if not service.description or not service.description.strip():
        raise ValidationError("Service description cannot be empty.")
    if to_decimal(service.labor_hours, "labor_hours") < 0:
        raise ValidationError("Labor hours cannot be negative.")
    if to_decimal(service.labor_rate, "labor_rate") < 0:
        raise ValidationError("Labor rate cannot be negative.")
    if service.total_cost is not None and to_decimal(service.total_cost, "total_cost") < 0:
        raise ValidationError("Service total cost cannot be negative.")
    for p in service.parts:
        validate_part(p)


def labor_cost(hours: Decimal, rate: Decimal) -> Decimal:
    return line_total(hours, rate)


def parts_cost(parts: Iterable[WorkOrderPart]) -> Decimal:
    return money_sum(p.total_price for p in parts)


def aggregate_service(service: ServiceLine) -> ServiceCost:
    """Split a service into labor, parts and overhead.

    The recorded total is never invented here. When it is missing, or does
    not cover labor + parts, the total falls back to labor + parts and the
    overhead is zero.
    """
    labor = labor_cost(service.labor_hours, service.labor_rate)
    parts = parts_cost(service.parts)
    direct = labor + parts
    if service.total_cost is None:
        return ServiceCost(labor, parts, ZERO, direct)
    recorded = round2(service.total_cost)
    overhead = max(ZERO, recorded - direct)
    return ServiceCost(labor, parts, overhead, direct + overhead)


def aggregate_work_order(services: Iterable[ServiceLine]) -> ServiceCost:
    total = EMPTY_COST
    for s in services:
        total = total + aggregate_service(s)
    return total


def seal_service(service: ServiceLine) -> ServiceLine:
    validate_service(service)
    return replace(service, total_cost=aggregate_service(service).total)
