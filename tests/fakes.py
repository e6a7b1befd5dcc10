"""In-memory stand-ins for the PostgreSQL repositories.

They keep the same method signatures (connection first) and mimic the
constraints the schema enforces: the appointment exclusion constraint,
unique invoice numbers and one live invoice per work order.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime

from autoshop.domain import ACTIVE_APPOINTMENT_STATUSES, Appointment, Invoice, Payment, WorkOrder
from autoshop.errors import DuplicateInvoiceError
from autoshop.repositories.appointment_repo import SlotTakenError
from autoshop.repositories.invoice_repo import InvoiceNumberTakenError
from autoshop.scheduling import find_conflicts


class FakeConn:
    pass


class FakeDb:
    def __init__(self) -> None:
        self.commits = 0
        self.rollbacks = 0

    @contextmanager
    def session(self):
        yield FakeConn()

    @contextmanager
    def transaction(self):
        try:
            yield FakeConn()
            self.commits += 1
        except Exception:
            self.rollbacks += 1
            raise


class FakeCustomerRepository:
    def __init__(self, customers: dict[int, dict] | None = None) -> None:
        self.customers = customers or {}

    def get(self, conn, customer_id: int) -> dict | None:
        return self.customers.get(customer_id)

    def list(self, conn, limit: int = 50) -> list[dict]:
        return list(self.customers.values())[:limit]


class FakeVehicleRepository:
    def __init__(self, vehicles: dict[int, dict] | None = None) -> None:
        self.vehicles = vehicles or {}

    def get(self, conn, vehicle_id: int) -> dict | None:
        return self.vehicles.get(vehicle_id)

    def list_for_customer(self, conn, customer_id: int) -> list[dict]:
        return [v for v in self.vehicles.values() if v["customer_id"] == customer_id]


class FakePartRepository:
    def __init__(self, parts: dict[str, dict] | None = None) -> None:
        self.parts = parts or {}

    def get_by_sku(self, conn, sku: str) -> dict | None:
        return self.parts.get(sku)

    def list(self, conn, limit: int = 50) -> list[dict]:
        return list(self.parts.values())[:limit]


class FakeAppointmentRepository:
    def __init__(self) -> None:
        self.rows: dict[int, Appointment] = {}
        self._next_id = 1
        # appointments another session "commits" right before our insert
        self.sneak_in: list[Appointment] = []

    def _check_slot(self, appt: Appointment) -> None:
        for other in self.sneak_in:
            self.rows[other.id] = other
        self.sneak_in = []
        if appt.status in ACTIVE_APPOINTMENT_STATUSES and find_conflicts(appt, self.rows.values()):
            raise SlotTakenError('conflicting key value violates exclusion constraint "appointment_no_overlap"')

    def create(self, conn, appt: Appointment) -> int:
        self._check_slot(appt)
        appointment_id = self._next_id
        self._next_id += 1
        self.rows[appointment_id] = replace(appt, id=appointment_id)
        return appointment_id

    def update(self, conn, appt: Appointment) -> None:
        self._check_slot(appt)
        self.rows[appt.id] = appt

    def get(self, conn, appointment_id: int, *, for_update: bool = False) -> Appointment | None:
        return self.rows.get(appointment_id)

    def list_for_resource_day(self, conn, resource_id: int, day: date) -> list[Appointment]:
        return sorted(
            (a for a in self.rows.values() if a.assigned_resource_id == resource_id and a.scheduled_date == day),
            key=lambda a: a.scheduled_time,
        )

    def list_for_day(self, conn, day: date, limit: int = 200) -> list[Appointment]:
        rows = [a for a in self.rows.values() if a.scheduled_date == day]
        return sorted(rows, key=lambda a: (a.assigned_resource_id, a.scheduled_time))[:limit]


class FakeWorkOrderRepository:
    def __init__(self) -> None:
        self.rows: dict[int, WorkOrder] = {}
        self._next_id = 1

    def create(self, conn, order: WorkOrder) -> WorkOrder:
        order_id = self._next_id
        self._next_id += 1
        saved = replace(order, id=order_id, work_order_number=f"WO-{order_id:06d}")
        self.rows[order_id] = saved
        return saved

    def update(self, conn, order: WorkOrder) -> None:
        self.rows[order.id] = order

    def get(self, conn, order_id: int, *, for_update: bool = False) -> WorkOrder | None:
        return self.rows.get(order_id)

    def list_by_status(self, conn, status: str, limit: int = 50) -> list[WorkOrder]:
        return [o for o in self.rows.values() if o.status == status][:limit]


class FakeInvoiceRepository:
    def __init__(self) -> None:
        self.rows: dict[int, Invoice] = {}
        self.payments: list[tuple[int, Payment]] = []
        self._next_id = 1
        # numbers a concurrent session has already committed
        self.taken_numbers: set[str] = set()

    def next_sequence(self, conn, day: date) -> int:
        prefix = f"INV-{day:%Y%m%d}-"
        seqs = [int(i.invoice_number[len(prefix):]) for i in self.rows.values() if i.invoice_number.startswith(prefix)]
        return max(seqs, default=0) + 1

    def create(self, conn, invoice: Invoice) -> Invoice:
        numbers = {i.invoice_number for i in self.rows.values()} | self.taken_numbers
        if invoice.invoice_number in numbers:
            raise InvoiceNumberTakenError(invoice.invoice_number)
        if invoice.work_order_id is not None and self.get_live_for_work_order(conn, invoice.work_order_id):
            raise DuplicateInvoiceError(invoice.work_order_id)
        invoice_id = self._next_id
        self._next_id += 1
        saved = replace(invoice, id=invoice_id, created_at=datetime(2024, 3, 15, 10, 0))
        self.rows[invoice_id] = saved
        for p in invoice.payments:
            self.record_payment(conn, invoice_id, p)
        return saved

    def update(self, conn, invoice: Invoice, *, replace_items: bool = False) -> None:
        self.rows[invoice.id] = invoice

    def record_payment(self, conn, invoice_id: int, payment: Payment) -> int:
        self.payments.append((invoice_id, payment))
        return len(self.payments)

    def get(self, conn, invoice_id: int, *, for_update: bool = False) -> Invoice | None:
        return self.rows.get(invoice_id)

    def get_live_for_work_order(self, conn, work_order_id: int) -> Invoice | None:
        for inv in self.rows.values():
            if inv.work_order_id == work_order_id and inv.status != "cancelled":
                return inv
        return None

    def list_sent_past_due(self, conn, today: date, limit: int = 500) -> list[Invoice]:
        rows = [i for i in self.rows.values() if i.status == "sent" and i.due_date < today]
        return sorted(rows, key=lambda i: i.due_date)[:limit]

    def delete(self, conn, invoice_id: int) -> None:
        self.rows.pop(invoice_id, None)


class FakeCursor:
    """Just enough of a psycopg cursor for the report queries."""

    class _Column:
        def __init__(self, name: str) -> None:
            self.name = name

    def __init__(self, columns: list[str], rows: list[tuple]) -> None:
        self.description = [self._Column(c) for c in columns]
        self._rows = rows

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)


class RecordingConn:
    def __init__(self, columns: list[str], rows: list[tuple]) -> None:
        self.cursor = FakeCursor(columns, rows)
        self.executed: list[tuple[str, tuple]] = []

    def execute(self, sql: str, params: tuple = ()):
        self.executed.append((sql, params))
        return self.cursor
