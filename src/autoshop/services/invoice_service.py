from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime
from typing import Callable, Optional, Sequence

from psycopg import Connection

from .. import events as ev
from .. import invoicing
from ..config import BusinessConfig
from ..domain import Invoice, InvoiceItem
from ..errors import (
    ConflictError,
    DuplicateInvoiceError,
    FinancialInvariantError,
    IllegalTransitionError,
    NotFoundError,
    ValidationError,
)
from ..events import EventDispatcher
from ..repositories.invoice_repo import InvoiceNumberTakenError, InvoiceRepository
from ..repositories.work_order_repo import WorkOrderRepository
from ..work_orders import update_status

log = logging.getLogger(__name__)


class InvoiceService:
    def __init__(
        self,
        *,
        invoice_repo: InvoiceRepository,
        work_order_repo: WorkOrderRepository,
        business: BusinessConfig,
        events: EventDispatcher,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.invoice_repo = invoice_repo
        self.work_order_repo = work_order_repo
        self.business = business
        self.events = events
        self.clock = clock

    def get(self, conn: Connection, invoice_id: int, *, for_update: bool = False) -> Invoice:
        invoice = self.invoice_repo.get(conn, invoice_id, for_update=for_update)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    def _insert_numbered(self, conn: Connection, invoice: Invoice) -> Invoice:
        # the next number is derived from what is already stored, so an insert
        # that fails for any reason never burns a number
        day = invoice.issue_date
        seq = self.invoice_repo.next_sequence(conn, day)
        attempts = self.business.invoice_number_attempts
        for _ in range(attempts):
            number = invoicing.format_invoice_number(day, seq)
            try:
                return self.invoice_repo.create(conn, replace(invoice, invoice_number=number))
            except InvoiceNumberTakenError:
                log.warning("invoice number %s already taken, trying the next one", number)
                seq += 1
        raise ConflictError(f"Could not allocate a unique invoice number for {day} after {attempts} attempts")

    def create(
        self,
        conn: Connection,
        *,
        customer_id: int,
        items: Sequence[InvoiceItem],
        tax_rate: Optional[object] = None,
        discount_type: str = "none",
        discount_value: object = 0,
        terms_days: Optional[int] = None,
        appointment_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Invoice:
        if not items:
            raise ValidationError("An invoice needs at least one item.")
        invoice = invoicing.build_invoice(
            customer_id=customer_id,
            items=items,
            issue_date=self.clock().date(),
            terms_days=self.business.payment_terms_days if terms_days is None else terms_days,
            tax_rate=self.business.default_tax_rate if tax_rate is None else tax_rate,
            discount_type=discount_type,
            discount_value=discount_value,
            appointment_id=appointment_id,
            notes=notes,
        )
        saved = self._insert_numbered(conn, invoice)
        log.info("created invoice %s total=%s", saved.invoice_number, saved.total)
        return saved

    def generate_from_work_order(self, conn: Connection, work_order_id: int, *, replace_existing: bool = False) -> Invoice:
        order = self.work_order_repo.get(conn, work_order_id, for_update=True)
        if order is None:
            raise NotFoundError(f"Work order {work_order_id} not found")

        existing = self.invoice_repo.get_live_for_work_order(conn, work_order_id)
        if existing is not None and not replace_existing:
            raise DuplicateInvoiceError(work_order_id, existing.invoice_number)

        regenerating = replace_existing and order.status == "invoiced"
        if order.status != "completed" and not regenerating:
            raise IllegalTransitionError(
                "WorkOrder", order.status, "invoiced", "only completed work orders can be invoiced"
            )

        items = invoicing.items_from_work_order(order)
        if not items:
            raise ValidationError(f"Work order {order.work_order_number} has nothing to bill.")

        if existing is not None:
            if existing.paid_amount > 0:
                raise FinancialInvariantError(
                    f"Invoice {existing.invoice_number} has payments recorded and cannot be replaced."
                )
            self.invoice_repo.update(conn, invoicing.cancel(existing))
            log.info("cancelled invoice %s to regenerate work order %s", existing.invoice_number, order.work_order_number)

        terms_days = order.payment_terms_days
        if terms_days is None:
            terms_days = self.business.payment_terms_days
        invoice = invoicing.build_invoice(
            customer_id=order.customer_id,
            items=items,
            issue_date=self.clock().date(),
            terms_days=terms_days,
            tax_rate=self.business.default_tax_rate,
            work_order_id=order.id,
            appointment_id=order.appointment_id,
            vehicle=order.vehicle,
            notes=f"Generated from work order {order.work_order_number}",
        )
        saved = self._insert_numbered(conn, invoice)

        if order.status == "completed":
            invoiced = update_status(order, "invoiced", f"Invoice {saved.invoice_number} generated", now=self.clock())
            self.work_order_repo.update(conn, invoiced)

        log.info(
            "generated invoice %s for work order %s: subtotal=%s tax=%s total=%s",
            saved.invoice_number,
            order.work_order_number,
            saved.subtotal,
            saved.tax_amount,
            saved.total,
        )
        self.events.emit(
            ev.INVOICE_GENERATED,
            {
                "invoice_id": saved.id,
                "invoice_number": saved.invoice_number,
                "work_order_id": order.id,
                "customer_id": saved.customer_id,
                "total": str(saved.total),
            },
        )
        return saved

    def add_payment(
        self,
        conn: Connection,
        invoice_id: int,
        amount: object,
        method: Optional[str] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Invoice:
        current = self.get(conn, invoice_id, for_update=True)
        updated = invoicing.add_payment(current, amount, method, reference, notes=notes, now=self.clock())
        self.invoice_repo.update(conn, updated)
        self.invoice_repo.record_payment(conn, invoice_id, updated.payments[-1])

        log.info(
            "payment of %s on invoice %s, balance now %s",
            updated.payments[-1].amount,
            updated.invoice_number,
            updated.balance,
        )
        self.events.emit(
            ev.PAYMENT_RECEIVED,
            {
                "invoice_id": invoice_id,
                "invoice_number": updated.invoice_number,
                "amount": str(updated.payments[-1].amount),
                "balance": str(updated.balance),
            },
        )
        if updated.status == "paid":
            self.events.emit(ev.INVOICE_PAID, {"invoice_id": invoice_id, "invoice_number": updated.invoice_number})
        return updated

    def revise(
        self,
        conn: Connection,
        invoice_id: int,
        *,
        items: Optional[Sequence[InvoiceItem]] = None,
        discount_type: Optional[str] = None,
        discount_value: Optional[object] = None,
    ) -> Invoice:
        current = self.get(conn, invoice_id, for_update=True)
        updated = current
        if items is not None:
            if not items:
                raise ValidationError("An invoice needs at least one item.")
            updated = invoicing.set_items(updated, items)
        if discount_type is not None:
            value = updated.discount_value if discount_value is None else discount_value
            updated = invoicing.set_discount(updated, discount_type, value)
        self.invoice_repo.update(conn, updated, replace_items=items is not None)
        return updated

    def send(self, conn: Connection, invoice_id: int) -> Invoice:
        updated = invoicing.mark_sent(self.get(conn, invoice_id, for_update=True), now=self.clock())
        self.invoice_repo.update(conn, updated)
        self.events.emit(
            ev.INVOICE_SENT,
            {"invoice_id": invoice_id, "invoice_number": updated.invoice_number, "customer_id": updated.customer_id},
        )
        return updated

    def cancel(self, conn: Connection, invoice_id: int) -> Invoice:
        updated = invoicing.cancel(self.get(conn, invoice_id, for_update=True))
        self.invoice_repo.update(conn, updated)
        self.events.emit(ev.INVOICE_CANCELLED, {"invoice_id": invoice_id, "invoice_number": updated.invoice_number})
        return updated

    def mark_overdue_invoices(self, conn: Connection, today: Optional[date] = None) -> list[Invoice]:
        today = today or self.clock().date()
        marked = []
        for invoice in self.invoice_repo.list_sent_past_due(conn, today):
            updated = invoicing.mark_overdue(invoice, today)
            self.invoice_repo.update(conn, updated)
            self.events.emit(
                ev.INVOICE_OVERDUE,
                {
                    "invoice_id": updated.id,
                    "invoice_number": updated.invoice_number,
                    "overdue_days": invoicing.overdue_days(updated, today),
                },
            )
            marked.append(updated)
        if marked:
            log.info("marked %d invoice(s) overdue", len(marked))
        return marked

    def delete_draft(self, conn: Connection, invoice_id: int) -> None:
        invoice = self.get(conn, invoice_id, for_update=True)
        invoicing.ensure_deletable(invoice)
        self.invoice_repo.delete(conn, invoice_id)
        log.info("deleted draft invoice %s", invoice.invoice_number)
