from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta

from . import invoicing
from .container import Services
from .db import Db
from .domain import PAYMENT_METHODS, RequiredPart
from .errors import ConflictError, FinancialInvariantError, IllegalTransitionError, ShopError, ValidationError
from .money import to_decimal
from .reports import invoice_overview, invoices_by_status, top_billed_parts
from .serialization import appointment_from_payload


def _prompt(msg: str) -> str:
    return input(msg).strip()


def _print_invoice(invoice) -> None:
    print(
        f"{invoice.invoice_number} status={invoice.status} subtotal={invoice.subtotal} "
        f"tax={invoice.tax_amount} discount={invoice.discount_amount} total={invoice.total} "
        f"paid={invoice.paid_amount} balance={invoice.balance} due={invoice.due_date}"
    )


def run_cli(db: Db, services: Services) -> None:
    repos = services.repos

    while True:
        print("\n=== AutoShop Billing CLI ===")
        print("1) List appointments for a day")
        print("2) Book appointment")
        print("3) Approve appointment (creates work order)")
        print("4) Update work order status")
        print("5) Generate invoice for work order")
        print("6) Record invoice payment")
        print("7) Send invoice")
        print("8) Mark overdue invoices")
        print("9) Invoice report")
        print("0) Exit")

        choice = _prompt("> ")
        try:
            if choice == "0":
                return

            elif choice == "1":
                raw = _prompt("date (YYYY-MM-DD, empty = today): ")
                day = date.fromisoformat(raw) if raw else date.today()
                with db.session() as conn:
                    rows = repos.appointments.list_for_day(conn, day)
                for a in rows:
                    print(
                        f"#{a.id} {a.scheduled_time.strftime('%H:%M')} +{a.estimated_duration_minutes}min "
                        f"resource={a.assigned_resource_id} status={a.status} "
                        f"estimate={a.estimated_cost.total} {a.service_description}"
                    )

            elif choice == "2":
                payload = {
                    "customer_id": _prompt("customer_id: "),
                    "vehicle_id": _prompt("vehicle_id (optional): ") or None,
                    "assigned_resource_id": _prompt("resource (bay) id: "),
                    "scheduled_date": _prompt("date (YYYY-MM-DD): "),
                    "scheduled_time": _prompt("time (HH:MM): "),
                    "estimated_duration_minutes": _prompt("duration minutes: "),
                    "service_type": _prompt("service type: ") or "other",
                    "service_description": _prompt("description: "),
                }
                parts: list[RequiredPart] = []
                while _prompt("Add required part? (y/n): ").lower() == "y":
                    parts.append(
                        RequiredPart(
                            name=_prompt("  name: "),
                            quantity=int(_prompt("  quantity: ")),
                            unit_cost=to_decimal(_prompt("  unit cost: "), "unit_cost"),
                            part_number=_prompt("  part number (optional): ") or None,
                        )
                    )
                appt = appointment_from_payload(payload)
                appt = replace(appt, parts_required=tuple(parts))

                # events go out only once the booking is committed
                with services.events.deferred(), db.transaction() as conn:
                    saved = services.appointments.book(conn, appt)
                print(f"Booked appointment #{saved.id} status={saved.status} estimate={saved.estimated_cost.total}")

            elif choice == "3":
                appointment_id = int(_prompt("appointment_id: "))
                approver_id = int(_prompt("approver (user) id: "))
                with services.events.deferred(), db.transaction() as conn:
                    order, appt = services.appointments.approve(conn, appointment_id, approver_id)
                print(f"Appointment #{appt.id} confirmed. Work order {order.work_order_number} (id={order.id})")

            elif choice == "4":
                order_id = int(_prompt("work_order_id: "))
                status = _prompt("new status (in_progress/waiting_parts/completed/cancelled): ")
                notes = _prompt("notes (optional): ") or None
                with services.events.deferred(), db.transaction() as conn:
                    order, invoice = services.pipeline.advance(conn, order_id, status, notes)
                print(f"Work order {order.work_order_number} is now {order.status}")
                if invoice is not None:
                    _print_invoice(invoice)

            elif choice == "5":
                order_id = int(_prompt("work_order_id: "))
                regenerate = _prompt("replace existing invoice? (y/n): ").lower() == "y"
                with services.events.deferred(), db.transaction() as conn:
                    invoice = services.invoices.generate_from_work_order(conn, order_id, replace_existing=regenerate)
                _print_invoice(invoice)

            elif choice == "6":
                invoice_id = int(_prompt("invoice_id: "))
                amount = _prompt("payment amount: ")
                method = _prompt(f"method ({'/'.join(PAYMENT_METHODS)}): ") or "cash"
                reference = _prompt("reference (optional): ") or None
                with services.events.deferred(), db.transaction() as conn:
                    invoice = services.invoices.add_payment(conn, invoice_id, amount, method, reference)
                _print_invoice(invoice)

            elif choice == "7":
                invoice_id = int(_prompt("invoice_id: "))
                with services.events.deferred(), db.transaction() as conn:
                    invoice = services.invoices.send(conn, invoice_id)
                _print_invoice(invoice)

            elif choice == "8":
                with services.events.deferred(), db.transaction() as conn:
                    marked = services.invoices.mark_overdue_invoices(conn)
                today = date.today()
                for inv in marked:
                    print(f"  {inv.invoice_number} overdue {invoicing.overdue_days(inv, today)} day(s)")
                print(f"Marked overdue: {len(marked)}")

            elif choice == "9":
                with db.session() as conn:
                    d2 = date.today() + timedelta(days=1)
                    d1 = d2 - timedelta(days=30)
                    overview = invoice_overview(conn, d1, d2)
                    statuses = invoices_by_status(conn, d1, d2)
                    tops = top_billed_parts(conn, limit=10)
                print(f"Invoices (last 30 days): {overview}")
                for s in statuses:
                    print(f'  {s["status"]}: {s["invoices_count"]} invoice(s) total={s["total_amount"]}')
                print("Top billed parts:")
                for t in tops:
                    print(f'  {t["name"]} qty={t["total_qty"]} value={t["total_value"]}')

            else:
                print("Unknown choice.")

        except ConflictError as e:
            print(f"[CONFLICT] {e}")
            for c in e.conflicts:
                print(f"  #{c.id} {c.scheduled_time.strftime('%H:%M')} +{c.estimated_duration_minutes}min {c.status}")
        except IllegalTransitionError as e:
            print(f"[NOT ALLOWED] {e}")
        except FinancialInvariantError as e:
            print(f"[BILLING ERROR] {e}")
        except ValidationError as e:
            print(f"[INPUT ERROR] {e}")
        except ShopError as e:
            print(f"[ERROR] {e}")
        except ValueError as e:
            print(f"[VALUE ERROR] {e}")
