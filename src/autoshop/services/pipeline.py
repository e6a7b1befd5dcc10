from __future__ import annotations

import logging
from typing import Optional

from psycopg import Connection

from ..config import BusinessConfig
from ..domain import Invoice, WorkOrder
from .invoice_service import InvoiceService
from .work_order_service import WorkOrderService

log = logging.getLogger(__name__)


class BillingPipeline:
    """Runs invoice generation when a work order reaches ``completed``.

    The state machine only reports completion; this is the caller that turns
    it into an invoice. Both steps share the caller's transaction, so a
    failed generation also rolls back the completion.
    """

    def __init__(self, *, work_orders: WorkOrderService, invoices: InvoiceService, business: BusinessConfig) -> None:
        self.work_orders = work_orders
        self.invoices = invoices
        self.business = business

    def _after_transition(self, conn: Connection, order: WorkOrder) -> tuple[WorkOrder, Optional[Invoice]]:
        if order.status != "completed" or not self.business.auto_invoice_on_completion:
            return order, None
        invoice = self.invoices.generate_from_work_order(conn, order.id)
        return self.work_orders.get(conn, order.id), invoice

    def advance(
        self,
        conn: Connection,
        order_id: int,
        new_status: str,
        notes: Optional[str] = None,
        *,
        by: Optional[int] = None,
    ) -> tuple[WorkOrder, Optional[Invoice]]:
        order = self.work_orders.update_status(conn, order_id, new_status, notes, by=by)
        return self._after_transition(conn, order)

    def complete_work_order(
        self, conn: Connection, order_id: int, notes: Optional[str] = None, *, by: Optional[int] = None
    ) -> tuple[WorkOrder, Optional[Invoice]]:
        return self.advance(conn, order_id, "completed", notes, by=by)

    def report_progress(
        self,
        conn: Connection,
        order_id: int,
        progress: int,
        notes: Optional[str] = None,
        *,
        by: Optional[int] = None,
    ) -> tuple[WorkOrder, Optional[Invoice]]:
        order = self.work_orders.update_progress(conn, order_id, progress, notes, by=by)
        return self._after_transition(conn, order)
