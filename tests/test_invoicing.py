"""Tests for invoice financials and invoice status rules."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal

import pytest

from autoshop.domain import ServiceLine, WorkOrder, WorkOrderPart
from autoshop.errors import FinancialInvariantError, IllegalTransitionError, ValidationError
from autoshop.invoicing import (
    add_payment,
    age_days,
    build_invoice,
    calculate_totals,
    cancel,
    ensure_deletable,
    format_invoice_number,
    is_overdue,
    items_from_work_order,
    make_item,
    mark_overdue,
    mark_sent,
    overdue_days,
    parse_invoice_number,
    set_discount,
    set_items,
)

ISSUED = date(2024, 3, 15)
NOW = datetime(2024, 3, 20, 12, 0)


@pytest.fixture
def invoice():
    """Subtotal 300, 8% tax, fixed discount 20."""
    items = [
        make_item("labor", "Brake job - Labor", 2, 100),
        make_item("part", "Brake pad", 4, 25),
    ]
    return build_invoice(
        customer_id=1,
        items=items,
        issue_date=ISSUED,
        terms_days=30,
        tax_rate=Decimal("8"),
        discount_type="fixed",
        discount_value=Decimal("20"),
    )


class TestTotals:
    def test_subtotal_tax_discount_total(self, invoice):
        assert invoice.subtotal == Decimal("300.00")
        assert invoice.tax_amount == Decimal("24.00")
        assert invoice.discount_amount == Decimal("20.00")
        assert invoice.total == Decimal("304.00")
        assert invoice.balance == Decimal("304.00")
        assert invoice.status == "draft"
        assert invoice.due_date == date(2024, 4, 14)
        assert invoice.terms == "Net 30"

    def test_recalculation_is_idempotent(self, invoice):
        once = calculate_totals(invoice)
        assert calculate_totals(once) == once

    def test_stale_line_totals_are_repriced(self, invoice):
        stale = replace(invoice, items=tuple(replace(i, total_price=Decimal("1")) for i in invoice.items))
        assert calculate_totals(stale).subtotal == Decimal("300.00")

    def test_percentage_discount_applies_to_subtotal(self, invoice):
        revised = set_discount(invoice, "percentage", Decimal("10"))
        assert revised.discount_amount == Decimal("30.00")
        assert revised.total == Decimal("294.00")

    def test_discount_is_clamped_to_subtotal(self, invoice):
        revised = set_discount(invoice, "fixed", Decimal("1000"))
        assert revised.discount_amount == Decimal("300.00")
        assert revised.total == Decimal("24.00")

    def test_total_equals_subtotal_plus_tax_minus_discount(self, invoice):
        for inv in (invoice, set_discount(invoice, "none", 0), set_discount(invoice, "percentage", 15)):
            assert inv.total == inv.subtotal + inv.tax_amount - inv.discount_amount
            assert inv.balance == inv.total - inv.paid_amount

    def test_recalculation_refuses_paid_over_total(self, invoice):
        paid = add_payment(invoice, Decimal("304"), "cash", now=NOW)
        with pytest.raises(FinancialInvariantError):
            calculate_totals(replace(paid, status="sent", items=paid.items[:1]))

    @pytest.mark.parametrize(
        "changes",
        [
            {"tax_rate": Decimal("101")},
            {"tax_rate": Decimal("-1")},
            {"discount_type": "coupon"},
            {"discount_value": Decimal("-5")},
            {"due_date": date(2024, 3, 1)},
        ],
    )
    def test_invalid_invoice(self, invoice, changes):
        with pytest.raises(ValidationError):
            calculate_totals(replace(invoice, **changes))


class TestItems:
    def test_labor_allows_fractional_hours(self):
        item = make_item("labor", "Diagnostics", Decimal("1.5"), 90)
        assert item.total_price == Decimal("135.00")

    @pytest.mark.parametrize("kind", ["part", "service", "other", "overhead"])
    def test_units_must_be_at_least_one(self, kind):
        with pytest.raises(ValidationError):
            make_item(kind, "Widget", Decimal("0.5"), 10)

    def test_rejects_unknown_type_and_negative_price(self):
        with pytest.raises(ValidationError):
            make_item("tip", "Thanks", 1, 5)
        with pytest.raises(ValidationError):
            make_item("part", "Refund", 1, -5)

    def test_items_only_editable_while_open(self, invoice):
        paid = add_payment(invoice, Decimal("304"), "card", now=NOW)
        with pytest.raises(IllegalTransitionError):
            set_items(paid, [make_item("other", "Fee", 1, 5)])


class TestPayments:
    def test_partial_then_full_payment(self, invoice):
        partial = add_payment(invoice, Decimal("100"), "cash", "R-1", now=NOW)
        assert partial.paid_amount == Decimal("100")
        assert partial.balance == Decimal("204.00")
        assert partial.status == "draft"

        settled = add_payment(partial, "204.00", "credit_card", "R-2", now=NOW)
        assert settled.status == "paid"
        assert settled.balance == Decimal("0.00")
        assert settled.paid_date == NOW
        assert settled.payment_method == "credit_card"
        assert [p.amount for p in settled.payments] == [Decimal("100"), Decimal("204.00")]

    def test_paid_amount_never_decreases(self, invoice):
        current = invoice
        seen = [current.paid_amount]
        for amount in ("50", "0.01", "150", "103.99"):
            current = add_payment(current, amount, now=NOW)
            seen.append(current.paid_amount)
        assert seen == sorted(seen)
        assert current.status == "paid"

    def test_single_payment_settles(self, invoice):
        assert add_payment(invoice, Decimal("304"), now=NOW).status == "paid"

    def test_overpayment_is_rejected(self, invoice):
        with pytest.raises(FinancialInvariantError):
            add_payment(invoice, Decimal("304.01"), now=NOW)

    @pytest.mark.parametrize("amount", [0, -10, "1.005", "abc"])
    def test_invalid_amounts(self, invoice, amount):
        with pytest.raises(ValidationError):
            add_payment(invoice, amount, now=NOW)

    def test_unknown_method(self, invoice):
        with pytest.raises(ValidationError):
            add_payment(invoice, 10, "bitcoin", now=NOW)

    def test_no_payments_on_paid_or_cancelled(self, invoice):
        paid = add_payment(invoice, Decimal("304"), now=NOW)
        with pytest.raises(IllegalTransitionError):
            add_payment(paid, 1, now=NOW)
        with pytest.raises(IllegalTransitionError):
            add_payment(cancel(invoice), 1, now=NOW)


class TestStatus:
    def test_send_only_from_draft(self, invoice):
        sent = mark_sent(invoice, now=NOW)
        assert sent.status == "sent"
        assert sent.sent_at == NOW
        with pytest.raises(IllegalTransitionError):
            mark_sent(sent, now=NOW)

    def test_cancel(self, invoice):
        cancelled = cancel(invoice)
        assert cancelled.status == "cancelled"
        assert cancel(cancelled) is cancelled
        with pytest.raises(IllegalTransitionError):
            cancel(add_payment(invoice, Decimal("304"), now=NOW))

    def test_overdue(self, invoice):
        sent = mark_sent(invoice, now=NOW)
        on_due = invoice.due_date
        later = date(2024, 4, 20)

        assert not is_overdue(sent, on_due)
        assert is_overdue(sent, later)
        assert overdue_days(sent, later) == 6
        assert age_days(sent, later) == 36

        overdue = mark_overdue(sent, later)
        assert overdue.status == "overdue"
        assert add_payment(overdue, Decimal("304"), now=NOW).status == "paid"

    def test_not_overdue_before_due_date_or_when_closed(self, invoice):
        sent = mark_sent(invoice, now=NOW)
        with pytest.raises(IllegalTransitionError):
            mark_overdue(sent, sent.due_date)
        paid = add_payment(sent, Decimal("304"), now=NOW)
        assert not is_overdue(paid, date(2025, 1, 1))
        assert overdue_days(paid, date(2025, 1, 1)) == 0

    def test_zero_total_is_paid_on_calculation(self):
        free = build_invoice(
            customer_id=1, items=[make_item("other", "Courtesy check", 1, 0)], issue_date=ISSUED, terms_days=30
        )
        assert (free.total, free.balance, free.status) == (Decimal("0.00"), Decimal("0.00"), "paid")
        assert free.paid_date is not None

    def test_full_discount_settles_the_invoice(self, invoice):
        waived = set_discount(replace(invoice, tax_rate=Decimal("0")), "percentage", 100)
        assert waived.total == Decimal("0.00")
        assert waived.status == "paid"

    def test_only_unpaid_drafts_are_deletable(self, invoice):
        ensure_deletable(invoice)
        with pytest.raises(IllegalTransitionError):
            ensure_deletable(mark_sent(invoice, now=NOW))
        with pytest.raises(FinancialInvariantError):
            ensure_deletable(add_payment(invoice, 10, now=NOW))


class TestNumbers:
    def test_format_and_parse(self):
        number = format_invoice_number(date(2024, 3, 15), 7)
        assert number == "INV-20240315-007"
        assert parse_invoice_number(number) == (date(2024, 3, 15), 7)
        assert format_invoice_number(date(2024, 3, 15), 1234) == "INV-20240315-1234"

    def test_malformed(self):
        with pytest.raises(ValidationError):
            parse_invoice_number("INV-2024-1")


def test_items_from_work_order(brake_service, vehicle):
    oil = ServiceLine(
        description="Oil change",
        labor_hours=Decimal("0"),
        labor_rate=Decimal("100"),
        parts=(WorkOrderPart(name="Oil", quantity=5, unit_price=Decimal("8")),),
    )
    order = WorkOrder(id=1, customer_id=1, vehicle=vehicle, services=(brake_service, oil), status="completed")

    items = items_from_work_order(order)

    assert [(i.type, i.name, i.total_price) for i in items] == [
        ("labor", "Brake job - Labor", Decimal("200.00")),
        ("part", "Brake pad", Decimal("30.00")),
        ("overhead", "Brake job - Overhead", Decimal("20.00")),
        ("part", "Oil", Decimal("40.00")),
    ]
    assert items[1].part_number == "BP-1"
