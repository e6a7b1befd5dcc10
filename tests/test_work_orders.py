"""Tests for the work order state machine."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal

import pytest

from autoshop.domain import RequiredPart, ServiceLine
from autoshop.errors import IllegalTransitionError, ValidationError
from autoshop.scheduling import with_parts
from autoshop.work_orders import (
    build_work_order,
    create_from_appointment,
    labor_hours_for,
    replace_services,
    update_progress,
    update_status,
)

NOW = datetime(2024, 3, 15, 10, 0)


@pytest.fixture
def order(brake_service, vehicle):
    return replace(build_work_order(customer_id=1, vehicle=vehicle, services=[brake_service], now=NOW), id=1)


class TestBuild:
    def test_starts_pending_with_history(self, order):
        assert order.status == "pending"
        assert order.progress == 0
        assert [(h.from_status, h.to_status) for h in order.history] == [(None, "pending")]

    def test_needs_a_service(self, vehicle):
        with pytest.raises(ValidationError):
            build_work_order(customer_id=1, vehicle=vehicle, services=[], now=NOW)

    def test_services_are_sealed(self, brake_service, vehicle):
        order = build_work_order(
            customer_id=1, vehicle=vehicle, services=[replace(brake_service, total_cost=None)], now=NOW
        )
        assert order.services[0].total_cost == Decimal("230.00")


class TestTransitions:
    def test_full_lifecycle(self, order):
        order = update_status(order, "in_progress", now=NOW)
        order = update_status(order, "waiting_parts", "pads on backorder", now=NOW)
        order = update_status(order, "in_progress", now=NOW)
        order = update_status(order, "completed", now=NOW, by=7)

        assert order.status == "completed"
        assert order.progress == 100
        assert order.completed_at == NOW
        assert order.history[-1].by == 7
        assert [h.to_status for h in order.history] == [
            "pending",
            "in_progress",
            "waiting_parts",
            "in_progress",
            "completed",
        ]

    @pytest.mark.parametrize(
        "path, target",
        [
            ([], "completed"),
            ([], "invoiced"),
            (["cancelled"], "in_progress"),
            (["in_progress", "waiting_parts"], "completed"),
            (["in_progress", "completed", "invoiced"], "cancelled"),
        ],
    )
    def test_illegal_transitions(self, order, path, target):
        for status in path:
            order = update_status(order, status, now=NOW)

        with pytest.raises(IllegalTransitionError) as exc:
            update_status(order, target, now=NOW)
        assert exc.value.attempted == target

    def test_unknown_status(self, order):
        with pytest.raises(ValidationError):
            update_status(order, "done", now=NOW)

    def test_rejected_transition_leaves_order_unchanged(self, order):
        with pytest.raises(IllegalTransitionError):
            update_status(order, "completed", now=NOW)
        assert order.status == "pending"
        assert len(order.history) == 1


class TestProgress:
    def test_progress_only_while_in_progress(self, order):
        with pytest.raises(IllegalTransitionError):
            update_progress(order, 50, now=NOW)

    def test_progress_updates(self, order):
        order = update_progress(update_status(order, "in_progress", now=NOW), 40, now=NOW)
        assert order.progress == 40
        assert order.status == "in_progress"

    def test_full_progress_completes(self, order):
        order = update_progress(update_status(order, "in_progress", now=NOW), 100, now=NOW)
        assert order.status == "completed"
        assert order.completed_at == NOW

    @pytest.mark.parametrize("value", [-1, 101, 50.5, True])
    def test_progress_bounds(self, order, value):
        with pytest.raises(ValidationError):
            update_progress(update_status(order, "in_progress", now=NOW), value, now=NOW)


def test_services_locked_after_completion(order):
    order = update_status(update_status(order, "in_progress", now=NOW), "completed", now=NOW)
    with pytest.raises(IllegalTransitionError):
        replace_services(order, [ServiceLine(description="Extra", labor_hours=Decimal("1"))])


@pytest.mark.parametrize("minutes, hours", [(15, 1), (60, 1), (61, 2), (150, 3)])
def test_labor_hours_round_up(minutes, hours):
    assert labor_hours_for(minutes) == Decimal(hours)


class TestFromAppointment:
    def test_seeds_service_and_confirms(self, make_appointment, vehicle):
        appt = with_parts(
            make_appointment("09:00", 90, id=5, status="pending_approval"),
            [RequiredPart(name="Rotor", quantity=2, unit_cost=Decimal("80"), part_number="RT-2")],
            Decimal("100"),
        )

        order, confirmed = create_from_appointment(
            appt, 42, vehicle=vehicle, labor_rate=Decimal("100"), now=NOW
        )

        assert confirmed.status == "confirmed"
        assert confirmed.approved_by == 42
        service = order.services[0]
        assert service.description == "Brake inspection"
        assert service.labor_hours == Decimal("2")
        assert service.parts[0].part_number == "RT-2"
        # 2h x 100 + 160 parts = 360 direct; the 310 estimate gives no overhead
        assert service.total_cost == Decimal("360.00")
        assert order.appointment_id == 5
        assert order.technician_id == 1
        assert order.estimated_completion_at == datetime(2024, 3, 18, 10, 30)
        assert order.vehicle == vehicle

    def test_requires_pending_approval(self, make_appointment, vehicle):
        with pytest.raises(IllegalTransitionError):
            create_from_appointment(make_appointment(id=5), 42, vehicle=vehicle, labor_rate=Decimal("100"), now=NOW)
