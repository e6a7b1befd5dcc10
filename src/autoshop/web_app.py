from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, timedelta
from typing import Any, Iterator

from flask import Flask, jsonify, request

from . import invoicing, reports
from .config import AppConfig, ConfigError, load_config
from .container import Services, build_services
from .db import Db, DbError
from .errors import (
    ConflictError,
    DuplicateInvoiceError,
    FinancialInvariantError,
    IllegalTransitionError,
    NotFoundError,
    ValidationError,
)
from .serialization import (
    appointment_from_payload,
    item_from_dict,
    required_part_from_dict,
    to_primitive,
)
from .services.work_order_service import CreatePartInput, CreateServiceInput

log = logging.getLogger(__name__)

app = Flask(__name__)

db: Db = None
cfg: AppConfig = None
services: Services = None


@contextmanager
def _tx() -> Iterator[Any]:
    # events flush only after the transaction has committed
    with services.events.deferred(), db.transaction() as conn:
        yield conn


def _payload() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def _ok(data: Any, status: int = 200):
    return jsonify({"success": True, "data": to_primitive(data)}), status


def _fail(message: str, status: int, **extra: Any):
    return jsonify({"success": False, "message": message, **to_primitive(extra)}), status


def _invoice_view(invoice) -> dict:
    today = date.today()
    view = to_primitive(invoice)
    view["balance_due"] = str(invoice.balance_due)
    view["is_overdue"] = invoicing.is_overdue(invoice, today)
    view["overdue_days"] = invoicing.overdue_days(invoice, today)
    view["age"] = invoicing.age_days(invoice, today)
    return view


def _services_from(payload: dict) -> list[CreateServiceInput]:
    raw = payload.get("services") or []
    if not isinstance(raw, list) or not raw:
        raise ValidationError("At least one service is required.")
    result = []
    for s in raw:
        parts = (s.get("parts") or []) if isinstance(s, dict) else None
        if not isinstance(parts, list) or not all(isinstance(p, dict) for p in parts):
            raise ValidationError("Each service must be an object with a list of part objects.")
        result.append(
            CreateServiceInput(
                description=str(s.get("description", "")),
                labor_hours=s.get("labor_hours", 0),
                labor_rate=s.get("labor_rate"),
                total_cost=s.get("total_cost"),
                service_ref=s.get("service_ref"),
                parts=[
                    CreatePartInput(
                        quantity=p.get("quantity"),
                        sku=p.get("sku") or p.get("part_number"),
                        name=p.get("name"),
                        unit_price=p.get("unit_price"),
                    )
                    for p in parts
                ],
            )
        )
    return result


@app.errorhandler(ValidationError)
def handle_validation(e: ValidationError):
    return _fail(str(e), 400)


@app.errorhandler(NotFoundError)
def handle_not_found(e: NotFoundError):
    return _fail(str(e), 404)


@app.errorhandler(ConflictError)
def handle_conflict(e: ConflictError):
    return _fail(str(e), 409, conflicts=e.conflicts)


@app.errorhandler(DuplicateInvoiceError)
def handle_duplicate(e: DuplicateInvoiceError):
    return _fail(str(e), 409, work_order_id=e.work_order_id, invoice_number=e.invoice_number)


@app.errorhandler(IllegalTransitionError)
def handle_transition(e: IllegalTransitionError):
    return _fail(str(e), 422, current=e.current, attempted=e.attempted)


@app.errorhandler(FinancialInvariantError)
def handle_financial(e: FinancialInvariantError):
    return _fail(str(e), 422)


@app.errorhandler(DbError)
def handle_db(e: DbError):
    log.error("request failed, database unavailable: %s", e)
    return _fail(f"DB error: {e}", 503)


@app.route("/appointments/conflicts", methods=["POST"])
def appointments_conflicts():
    candidate = appointment_from_payload(_payload())
    with db.session() as conn:
        conflicts = services.appointments.check_conflicts(conn, candidate)
    return _ok({"conflict": bool(conflicts), "conflicts": conflicts})


@app.route("/appointments", methods=["POST"])
def appointments_create():
    appt = appointment_from_payload(_payload())
    with _tx() as conn:
        saved = services.appointments.book(conn, appt)
    return _ok(saved, 201)


@app.route("/appointments/<int:appointment_id>/approve", methods=["POST"])
def appointments_approve(appointment_id: int):
    data = _payload()
    if data.get("approver_id") is None:
        raise ValidationError("approver_id is required.")
    with _tx() as conn:
        order, appt = services.appointments.approve(conn, appointment_id, int(data["approver_id"]))
    return _ok({"work_order": order, "appointment": appt}, 201)


@app.route("/appointments/<int:appointment_id>/status", methods=["POST"])
def appointments_status(appointment_id: int):
    data = _payload()
    with _tx() as conn:
        appt = services.appointments.change_status(
            conn,
            appointment_id,
            str(data.get("status", "")),
            actual_duration_minutes=data.get("actual_duration_minutes"),
        )
    return _ok(appt)


@app.route("/appointments/<int:appointment_id>/reschedule", methods=["POST"])
def appointments_reschedule(appointment_id: int):
    data = _payload()
    try:
        day = date.fromisoformat(str(data.get("scheduled_date")))
    except ValueError:
        raise ValidationError("scheduled_date must be an ISO date (YYYY-MM-DD).") from None
    with _tx() as conn:
        appt = services.appointments.reschedule(
            conn,
            appointment_id,
            scheduled_date=day,
            scheduled_time=str(data.get("scheduled_time", "")),
            estimated_duration_minutes=data.get("estimated_duration_minutes"),
        )
    return _ok(appt)


@app.route("/appointments/<int:appointment_id>/parts", methods=["PUT"])
def appointments_parts(appointment_id: int):
    parts = [required_part_from_dict(p) for p in _payload().get("parts_required") or []]
    with _tx() as conn:
        appt = services.appointments.set_parts(conn, appointment_id, parts)
    return _ok(appt)


@app.route("/work-orders", methods=["POST"])
def work_orders_create():
    data = _payload()
    if data.get("customer_id") is None:
        raise ValidationError("customer_id is required.")
    with _tx() as conn:
        order = services.work_orders.create(
            conn,
            customer_id=int(data["customer_id"]),
            vehicle_id=data.get("vehicle_id"),
            services=_services_from(data),
            technician_id=data.get("technician_id"),
            priority=data.get("priority", "medium"),
            payment_terms_days=data.get("payment_terms_days"),
            notes=data.get("notes"),
            by=data.get("by"),
        )
    return _ok(order, 201)


@app.route("/work-orders/<int:order_id>")
def work_orders_get(order_id: int):
    with db.session() as conn:
        order = services.work_orders.get(conn, order_id)
    return _ok(order)


@app.route("/work-orders/<int:order_id>/status", methods=["POST"])
def work_orders_status(order_id: int):
    data = _payload()
    with _tx() as conn:
        order, invoice = services.pipeline.advance(
            conn, order_id, str(data.get("status", "")), data.get("notes"), by=data.get("by")
        )
    return _ok({"work_order": order, "invoice": _invoice_view(invoice) if invoice else None})


@app.route("/work-orders/<int:order_id>/progress", methods=["POST"])
def work_orders_progress(order_id: int):
    data = _payload()
    with _tx() as conn:
        order, invoice = services.pipeline.report_progress(
            conn, order_id, data.get("progress"), data.get("notes"), by=data.get("by")
        )
    return _ok({"work_order": order, "invoice": _invoice_view(invoice) if invoice else None})


@app.route("/work-orders/<int:order_id>/services", methods=["PUT"])
def work_orders_services(order_id: int):
    data = _payload()
    with _tx() as conn:
        order = services.work_orders.replace_services(conn, order_id, _services_from(data))
    return _ok(order)


@app.route("/work-orders/<int:order_id>/invoice", methods=["POST"])
def work_orders_invoice(order_id: int):
    data = _payload()
    with _tx() as conn:
        invoice = services.invoices.generate_from_work_order(
            conn, order_id, replace_existing=bool(data.get("replace", False))
        )
    return _ok(_invoice_view(invoice), 201)


@app.route("/invoices", methods=["POST"])
def invoices_create():
    data = _payload()
    if data.get("customer_id") is None:
        raise ValidationError("customer_id is required.")
    items = [invoicing.reprice_item(item_from_dict(i)) for i in data.get("items") or []]
    with _tx() as conn:
        invoice = services.invoices.create(
            conn,
            customer_id=int(data["customer_id"]),
            items=items,
            tax_rate=data.get("tax_rate"),
            discount_type=data.get("discount_type", "none"),
            discount_value=data.get("discount_value", 0),
            terms_days=data.get("terms_days"),
            appointment_id=data.get("appointment_id"),
            notes=data.get("notes"),
        )
    return _ok(_invoice_view(invoice), 201)


@app.route("/invoices/<int:invoice_id>")
def invoices_get(invoice_id: int):
    with db.session() as conn:
        invoice = services.invoices.get(conn, invoice_id)
    return _ok(_invoice_view(invoice))


@app.route("/invoices/<int:invoice_id>", methods=["PATCH"])
def invoices_revise(invoice_id: int):
    data = _payload()
    items = None
    if "items" in data:
        items = [item_from_dict(i) for i in data.get("items") or []]
    with _tx() as conn:
        invoice = services.invoices.revise(
            conn,
            invoice_id,
            items=items,
            discount_type=data.get("discount_type"),
            discount_value=data.get("discount_value"),
        )
    return _ok(_invoice_view(invoice))


@app.route("/invoices/<int:invoice_id>", methods=["DELETE"])
def invoices_delete(invoice_id: int):
    with _tx() as conn:
        services.invoices.delete_draft(conn, invoice_id)
    return _ok({"deleted": invoice_id})


@app.route("/invoices/<int:invoice_id>/payments", methods=["POST"])
def invoices_payment(invoice_id: int):
    data = _payload()
    if "amount" not in data:
        raise ValidationError("amount is required.")
    with _tx() as conn:
        invoice = services.invoices.add_payment(
            conn,
            invoice_id,
            data["amount"],
            data.get("payment_method"),
            data.get("reference") or None,
            data.get("notes") or None,
        )
    return _ok(_invoice_view(invoice))


@app.route("/invoices/<int:invoice_id>/send", methods=["POST"])
def invoices_send(invoice_id: int):
    with _tx() as conn:
        invoice = services.invoices.send(conn, invoice_id)
    return _ok(_invoice_view(invoice))


@app.route("/invoices/<int:invoice_id>/cancel", methods=["POST"])
def invoices_cancel(invoice_id: int):
    with _tx() as conn:
        invoice = services.invoices.cancel(conn, invoice_id)
    return _ok(_invoice_view(invoice))


@app.route("/invoices/mark-overdue", methods=["POST"])
def invoices_mark_overdue():
    with _tx() as conn:
        marked = services.invoices.mark_overdue_invoices(conn)
    return _ok({"marked": [i.invoice_number for i in marked]})


@app.route("/reports/invoices")
def reports_invoices():
    try:
        d2 = date.fromisoformat(request.args["to"]) if "to" in request.args else date.today() + timedelta(days=1)
        d1 = date.fromisoformat(request.args["from"]) if "from" in request.args else d2 - timedelta(days=30)
    except ValueError:
        raise ValidationError("from/to must be ISO dates (YYYY-MM-DD).") from None
    with db.session() as conn:
        data = {
            "overview": reports.invoice_overview(conn, d1, d2),
            "by_status": reports.invoices_by_status(conn, d1, d2),
            "monthly": reports.monthly_invoices(conn),
            "top_parts": reports.top_billed_parts(conn, limit=10),
        }
    return _ok(data)


def configure(config: AppConfig) -> None:
    global cfg, db, services
    cfg = config
    db = Db(config.db)
    services = build_services(config.business)


if __name__ == "__main__":
    try:
        configure(load_config("config.toml"))
        logging.basicConfig(level=cfg.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        app.run(debug=True, host="127.0.0.1", port=5000)
    except ConfigError as e:
        print(f"[CONFIG ERROR] {e}")
        raise SystemExit(2)
