from __future__ import annotations

from dataclasses import replace
from datetime import date

from psycopg import Connection, errors
from psycopg.types.json import Jsonb

from ..domain import Invoice, InvoiceItem, Payment
from ..errors import DuplicateInvoiceError
from ..serialization import to_primitive, vehicle_from_dict

_COLUMNS = """
    id, invoice_number, customer_id, work_order_id, appointment_id, vehicle, subtotal, tax_rate,
    tax_amount, discount_type, discount_value, discount_amount, total, paid_amount, balance, status,
    issue_date, due_date, paid_date, sent_at, payment_method, payment_reference, notes, terms, created_at
"""


class InvoiceNumberTakenError(Exception):
    def __init__(self, invoice_number: str) -> None:
        super().__init__(f"Invoice number already exists: {invoice_number}")
        self.invoice_number = invoice_number


class InvoiceRepository:
    def next_sequence(self, conn: Connection, day: date) -> int:
        prefix = f"INV-{day:%Y%m%d}-"
        cur = conn.execute(
            """
            SELECT COALESCE(MAX(substring(invoice_number FROM %s)::int), 0)
            FROM invoice
            WHERE invoice_number LIKE %s;
            """,
            (len(prefix) + 1, prefix + "%"),
        )
        return int(cur.fetchone()[0]) + 1

    def create(self, conn: Connection, invoice: Invoice) -> Invoice:
        # savepoint so a collision leaves the outer transaction usable for a retry
        try:
            with conn.transaction():
                cur = conn.execute(
                    """
                    INSERT INTO invoice(
                      invoice_number, customer_id, work_order_id, appointment_id, vehicle, subtotal,
                      tax_rate, tax_amount, discount_type, discount_value, discount_amount, total,
                      paid_amount, balance, status, issue_date, due_date, paid_date, sent_at,
                      payment_method, payment_reference, notes, terms)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                            %s, %s, %s, %s)
                    RETURNING id, created_at;
                    """,
                    (
                        invoice.invoice_number,
                        invoice.customer_id,
                        invoice.work_order_id,
                        invoice.appointment_id,
                        Jsonb(to_primitive(invoice.vehicle)) if invoice.vehicle else None,
                        invoice.subtotal,
                        invoice.tax_rate,
                        invoice.tax_amount,
                        invoice.discount_type,
                        invoice.discount_value,
                        invoice.discount_amount,
                        invoice.total,
                        invoice.paid_amount,
                        invoice.balance,
                        invoice.status,
                        invoice.issue_date,
                        invoice.due_date,
                        invoice.paid_date,
                        invoice.sent_at,
                        invoice.payment_method,
                        invoice.payment_reference,
                        invoice.notes,
                        invoice.terms,
                    ),
                )
                invoice_id, created_at = cur.fetchone()
                self._insert_items(conn, invoice_id, invoice.items)
                for p in invoice.payments:
                    self.record_payment(conn, invoice_id, p)
        except errors.UniqueViolation as e:
            constraint = e.diag.constraint_name
            if constraint == "invoice_number_key":
                raise InvoiceNumberTakenError(invoice.invoice_number or "") from e
            if constraint == "invoice_work_order_live_idx":
                raise DuplicateInvoiceError(invoice.work_order_id or 0) from e
            raise
        return replace(invoice, id=int(invoice_id), created_at=created_at)

    def _insert_items(self, conn: Connection, invoice_id: int, items: tuple[InvoiceItem, ...]) -> None:
        for pos, item in enumerate(items, start=1):
            conn.execute(
                """
                INSERT INTO invoice_item(
                  invoice_id, position, type, name, description, quantity, unit_price, total_price,
                  part_number, reference)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s);
                """,
                (
                    invoice_id,
                    pos,
                    item.type,
                    item.name,
                    item.description,
                    item.quantity,
                    item.unit_price,
                    item.total_price,
                    item.part_number,
                    item.reference,
                ),
            )

    def update(self, conn: Connection, invoice: Invoice, *, replace_items: bool = False) -> None:
        conn.execute(
            """
            UPDATE invoice SET
              subtotal = %s, tax_rate = %s, tax_amount = %s, discount_type = %s, discount_value = %s,
              discount_amount = %s, total = %s, paid_amount = %s, balance = %s, status = %s,
              due_date = %s, paid_date = %s, sent_at = %s, payment_method = %s,
              payment_reference = %s, notes = %s, terms = %s
            WHERE id = %s;
            """,
            (
                invoice.subtotal,
                invoice.tax_rate,
                invoice.tax_amount,
                invoice.discount_type,
                invoice.discount_value,
                invoice.discount_amount,
                invoice.total,
                invoice.paid_amount,
                invoice.balance,
                invoice.status,
                invoice.due_date,
                invoice.paid_date,
                invoice.sent_at,
                invoice.payment_method,
                invoice.payment_reference,
                invoice.notes,
                invoice.terms,
                invoice.id,
            ),
        )
        if replace_items:
            conn.execute("DELETE FROM invoice_item WHERE invoice_id = %s;", (invoice.id,))
            self._insert_items(conn, invoice.id, invoice.items)

    def record_payment(self, conn: Connection, invoice_id: int, payment: Payment) -> int:
        cur = conn.execute(
            """
            INSERT INTO invoice_payment(invoice_id, amount, method, reference, notes, received_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING id;
            """,
            (invoice_id, payment.amount, payment.method, payment.reference, payment.notes, payment.received_at),
        )
        return int(cur.fetchone()[0])

    def get(self, conn: Connection, invoice_id: int, *, for_update: bool = False) -> Invoice | None:
        sql = f"SELECT {_COLUMNS} FROM invoice WHERE id = %s"
        if for_update:
            # serializes read-modify-write (payments) per invoice
            sql += " FOR UPDATE"
        cur = conn.execute(sql + ";", (invoice_id,))
        row = cur.fetchone()
        if not row:
            return None
        cols = [d.name for d in cur.description]
        return self._hydrate(conn, dict(zip(cols, row)))

    def get_live_for_work_order(self, conn: Connection, work_order_id: int) -> Invoice | None:
        cur = conn.execute(
            f"""
            SELECT {_COLUMNS} FROM invoice
            WHERE work_order_id = %s AND status <> 'cancelled'
            FOR UPDATE;
            """,
            (work_order_id,),
        )
        row = cur.fetchone()
        if not row:
            return None
        cols = [d.name for d in cur.description]
        return self._hydrate(conn, dict(zip(cols, row)))

    def list_sent_past_due(self, conn: Connection, today: date, limit: int = 500) -> list[Invoice]:
        cur = conn.execute(
            f"""
            SELECT {_COLUMNS} FROM invoice
            WHERE status = 'sent' AND due_date < %s
            ORDER BY due_date
            LIMIT %s
            FOR UPDATE SKIP LOCKED;
            """,
            (today, limit),
        )
        cols = [d.name for d in cur.description]
        return [self._hydrate(conn, dict(zip(cols, row))) for row in cur.fetchall()]

    def delete(self, conn: Connection, invoice_id: int) -> None:
        conn.execute("DELETE FROM invoice WHERE id = %s;", (invoice_id,))

    def _hydrate(self, conn: Connection, row: dict) -> Invoice:
        cur = conn.execute(
            """
            SELECT type, name, description, quantity, unit_price, total_price, part_number, reference
            FROM invoice_item WHERE invoice_id = %s ORDER BY position;
            """,
            (row["id"],),
        )
        items = tuple(
            InvoiceItem(
                type=r[0], name=r[1], description=r[2], quantity=r[3], unit_price=r[4],
                total_price=r[5], part_number=r[6], reference=r[7],
            )
            for r in cur.fetchall()
        )
        cur = conn.execute(
            """
            SELECT amount, received_at, method, reference, notes
            FROM invoice_payment WHERE invoice_id = %s ORDER BY received_at, id;
            """,
            (row["id"],),
        )
        payments = tuple(
            Payment(amount=r[0], received_at=r[1], method=r[2], reference=r[3], notes=r[4])
            for r in cur.fetchall()
        )
        vehicle = row.pop("vehicle")
        return Invoice(
            **row,
            vehicle=vehicle_from_dict(vehicle) if vehicle else None,
            items=items,
            payments=payments,
        )
