from __future__ import annotations

import re
from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from .costing import aggregate_service
from .domain import (
    DISCOUNT_TYPES,
    ITEM_TYPES,
    PAYMENT_METHODS,
    Invoice,
    InvoiceItem,
    Payment,
    VehicleSnapshot,
    WorkOrder,
)
from .errors import FinancialInvariantError, IllegalTransitionError, ValidationError
from .money import HUNDRED, ZERO, has_cents_only, line_total, money_sum, percent_of, round2, to_decimal

INVOICE_NUMBER_RE = re.compile(r"^INV-(\d{8})-(\d{3,})$")

CLOSED_STATUSES = frozenset({"paid", "cancelled", "refunded"})
EDITABLE_STATUSES = frozenset({"draft", "sent", "overdue"})
PAYABLE_STATUSES = frozenset({"draft", "sent", "overdue"})


def format_invoice_number(day: date, sequence: int) -> str:
    if sequence < 1:
        raise ValueError("Invoice sequence starts at 1")
    return f"INV-{day:%Y%m%d}-{sequence:03d}"


def parse_invoice_number(number: str) -> tuple[date, int]:
    m = INVOICE_NUMBER_RE.match(number)
    if not m:
        raise ValidationError(f"Malformed invoice number: {number!r}")
    day = datetime.strptime(m.group(1), "%Y%m%d").date()
    return day, int(m.group(2))


def make_item(
    type: str,
    name: str,
    quantity: object,
    unit_price: object,
    *,
    description: Optional[str] = None,
    part_number: Optional[str] = None,
    reference: Optional[str] = None,
) -> InvoiceItem:
    item = InvoiceItem(
        type=type,  # type: ignore[arg-type]
        name=name,
        quantity=to_decimal(quantity, "quantity"),
        unit_price=to_decimal(unit_price, "unit_price"),
        description=description,
        part_number=part_number,
        reference=reference,
    )
    validate_item(item)
    return reprice_item(item)


def validate_item(item: InvoiceItem) -> None:
    if item.type not in ITEM_TYPES:
        raise ValidationError(f"Unknown invoice item type: {item.type!r}")
    if not item.name or not item.name.strip():
        raise ValidationError("Invoice item name cannot be empty.")
    qty = to_decimal(item.quantity, "quantity")
    # labor is billed in (possibly fractional) hours; everything else in units
    if item.type == "labor":
        if qty <= 0:
            raise ValidationError(f"Item '{item.name}': labor hours must be positive.")
    elif qty < 1:
        raise ValidationError(f"Item '{item.name}': quantity must be at least 1.")
    if to_decimal(item.unit_price, "unit_price") < 0:
        raise ValidationError(f"Item '{item.name}': unit price cannot be negative.")


def reprice_item(item: InvoiceItem) -> InvoiceItem:
    return replace(item, total_price=line_total(item.quantity, item.unit_price))


def validate_invoice(invoice: Invoice) -> None:
    tax_rate = to_decimal(invoice.tax_rate, "tax_rate")
    if not ZERO <= tax_rate <= HUNDRED:
        raise ValidationError("Tax rate must be between 0 and 100.")
    if invoice.discount_type not in DISCOUNT_TYPES:
        raise ValidationError(f"Unknown discount type: {invoice.discount_type!r}")
    if to_decimal(invoice.discount_value, "discount_value") < 0:
        raise ValidationError("Discount value cannot be negative.")
    if to_decimal(invoice.paid_amount, "paid_amount") < 0:
        raise ValidationError("Paid amount cannot be negative.")
    if invoice.due_date < invoice.issue_date:
        raise ValidationError("Due date cannot be before the issue date.")
    for item in invoice.items:
        validate_item(item)


def discount_for(subtotal: Decimal, discount_type: str, discount_value: Decimal) -> Decimal:
    if discount_type == "percentage":
        amount = percent_of(subtotal, discount_value)
    elif discount_type == "fixed":
        amount = round2(discount_value)
    else:
        amount = ZERO
    return min(amount, subtotal)


def calculate_totals(invoice: Invoice) -> Invoice:
    """Recompute every derived money field from items, tax and discount.

    Each derived figure is rounded once from its inputs, so calling this
    twice gives the same result. Raises FinancialInvariantError when the
    amount already paid exceeds the recomputed total.
    """
    validate_invoice(invoice)
    items = tuple(reprice_item(i) for i in invoice.items)
    subtotal = money_sum(i.total_price for i in items)
    tax_amount = percent_of(subtotal, invoice.tax_rate)
    discount_amount = discount_for(subtotal, invoice.discount_type, to_decimal(invoice.discount_value))
    total = subtotal + tax_amount - discount_amount
    paid = round2(invoice.paid_amount)
    balance_due = total - paid
    if balance_due < 0:
        raise FinancialInvariantError(
            f"Paid amount {paid} exceeds invoice total {total}; refund the difference first."
        )

    status = invoice.status
    paid_date = invoice.paid_date
    if status not in ("cancelled", "refunded") and balance_due == 0:
        status = "paid"
        paid_date = paid_date or datetime.now()

    return replace(
        invoice,
        items=items,
        subtotal=subtotal,
        tax_amount=tax_amount,
        discount_amount=discount_amount,
        total=total,
        paid_amount=paid,
        balance=balance_due,
        status=status,
        paid_date=paid_date,
    )


def build_invoice(
    *,
    customer_id: int,
    items: Sequence[InvoiceItem],
    issue_date: date,
    terms_days: int,
    tax_rate: object = ZERO,
    discount_type: str = "none",
    discount_value: object = ZERO,
    work_order_id: Optional[int] = None,
    appointment_id: Optional[int] = None,
    vehicle: Optional[VehicleSnapshot] = None,
    notes: Optional[str] = None,
    terms: Optional[str] = None,
) -> Invoice:
    if terms_days < 0:
        raise ValidationError("Payment terms cannot be negative.")
    draft = Invoice(
        id=None,
        invoice_number=None,
        customer_id=customer_id,
        issue_date=issue_date,
        due_date=issue_date + timedelta(days=terms_days),
        items=tuple(items),
        work_order_id=work_order_id,
        appointment_id=appointment_id,
        vehicle=vehicle,
        tax_rate=to_decimal(tax_rate, "tax_rate"),
        discount_type=discount_type,  # type: ignore[arg-type]
        discount_value=to_decimal(discount_value, "discount_value"),
        notes=notes,
        terms=terms or f"Net {terms_days}",
    )
    return calculate_totals(draft)


def _ensure_editable(invoice: Invoice) -> None:
    if invoice.status not in EDITABLE_STATUSES:
        raise IllegalTransitionError("Invoice", invoice.status, invoice.status, "invoice can no longer be edited")


def set_items(invoice: Invoice, items: Sequence[InvoiceItem]) -> Invoice:
    _ensure_editable(invoice)
    return calculate_totals(replace(invoice, items=tuple(items)))


def set_discount(invoice: Invoice, discount_type: str, discount_value: object) -> Invoice:
    _ensure_editable(invoice)
    return calculate_totals(
        replace(invoice, discount_type=discount_type, discount_value=to_decimal(discount_value, "discount_value"))
    )


def add_payment(
    invoice: Invoice,
    amount: object,
    method: Optional[str] = None,
    reference: Optional[str] = None,
    *,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Invoice:
    value = to_decimal(amount, "amount")
    if value <= 0:
        raise ValidationError("Payment amount must be greater than zero.")
    if not has_cents_only(value):
        raise ValidationError("Payment amount cannot have fractions of a cent.")
    if method is not None and method not in PAYMENT_METHODS:
        raise ValidationError(f"Unknown payment method: {method!r}")
    if invoice.status == "paid":
        raise IllegalTransitionError("Invoice", invoice.status, "paid", "invoice is already fully paid")
    if invoice.status not in PAYABLE_STATUSES:
        raise IllegalTransitionError("Invoice", invoice.status, "paid", "invoice does not accept payments")

    due = invoice.balance_due
    if value > due:
        raise FinancialInvariantError(f"Payment of {value} exceeds the outstanding balance of {due}.")

    now = now or datetime.now()
    paid = invoice.paid_amount + value
    balance_due = invoice.total - paid
    changes: dict = {
        "paid_amount": paid,
        "balance": balance_due,
        "payments": invoice.payments
        + (Payment(amount=value, received_at=now, method=method, reference=reference, notes=notes),),
    }
    if method:
        changes["payment_method"] = method
    if reference:
        changes["payment_reference"] = reference
    if balance_due <= 0:
        changes["status"] = "paid"
        changes["paid_date"] = now
    return replace(invoice, **changes)


def mark_sent(invoice: Invoice, *, now: Optional[datetime] = None) -> Invoice:
    if invoice.status != "draft":
        raise IllegalTransitionError("Invoice", invoice.status, "sent", "only draft invoices can be sent")
    return replace(invoice, status="sent", sent_at=now or datetime.now())


def cancel(invoice: Invoice) -> Invoice:
    if invoice.status in ("paid", "refunded"):
        raise IllegalTransitionError("Invoice", invoice.status, "cancelled")
    if invoice.status == "cancelled":
        return invoice
    return replace(invoice, status="cancelled")


def is_overdue(invoice: Invoice, today: date) -> bool:
    if invoice.status in CLOSED_STATUSES:
        return False
    return today > invoice.due_date


def overdue_days(invoice: Invoice, today: date) -> int:
    if not is_overdue(invoice, today):
        return 0
    return (today - invoice.due_date).days


def age_days(invoice: Invoice, today: date) -> int:
    return max(0, (today - invoice.issue_date).days)


def mark_overdue(invoice: Invoice, today: date) -> Invoice:
    if invoice.status != "sent":
        raise IllegalTransitionError("Invoice", invoice.status, "overdue", "only sent invoices become overdue")
    if not is_overdue(invoice, today):
        raise IllegalTransitionError("Invoice", invoice.status, "overdue", f"not due until {invoice.due_date}")
    return replace(invoice, status="overdue")


def ensure_deletable(invoice: Invoice) -> None:
    if invoice.status != "draft":
        raise IllegalTransitionError("Invoice", invoice.status, "deleted", "only draft invoices can be deleted")
    if invoice.paid_amount > 0:
        raise FinancialInvariantError("Invoice has recorded payments and cannot be deleted.")


def items_from_work_order(order: WorkOrder) -> list[InvoiceItem]:
    """Labor, part and overhead lines for every service on the order."""
    items: list[InvoiceItem] = []
    for service in order.services:
        cost = aggregate_service(service)
        if cost.labor_cost > 0:
            items.append(
                make_item(
                    "labor",
                    f"{service.description} - Labor",
                    service.labor_hours,
                    service.labor_rate,
                    description=f"{service.labor_hours} hrs x {service.labor_rate}/hr",
                    reference=service.service_ref,
                )
            )
        for part in service.parts:
            items.append(
                make_item(
                    "part",
                    part.name,
                    part.quantity,
                    part.unit_price,
                    part_number=part.part_number,
                    reference=service.service_ref,
                )
            )
        if cost.overhead > 0:
            items.append(
                make_item(
                    "overhead",
                    f"{service.description} - Overhead",
                    1,
                    cost.overhead,
                    description="Shop supplies and fees",
                    reference=service.service_ref,
                )
            )
    return items
