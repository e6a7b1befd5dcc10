"""Tests for the interactive menu."""

from __future__ import annotations

from decimal import Decimal

import pytest

from autoshop import cli
from autoshop.domain import PAYMENT_METHODS
from autoshop.invoicing import make_item
from fakes import FakeDb


@pytest.fixture
def answer(monkeypatch):
    """Feed scripted answers to input() and record the prompts shown."""
    prompts = []

    def script(*answers):
        pending = list(answers)

        def fake_input(msg=""):
            prompts.append(msg)
            return pending.pop(0)

        monkeypatch.setattr("builtins.input", fake_input)
        return prompts

    return script


def test_payment_by_credit_card(answer, services, repos, conn, capsys):
    invoice = services.invoices.create(conn, customer_id=1, items=[make_item("other", "Fee", 1, 100)])
    prompts = answer("6", str(invoice.id), "108", "credit_card", "TX-7", "0")

    cli.run_cli(FakeDb(), services)

    method_prompt = next(p for p in prompts if p.startswith("method"))
    assert all(m in method_prompt for m in PAYMENT_METHODS)
    assert "/card/" not in method_prompt
    saved = repos.invoices.rows[invoice.id]
    assert (saved.status, saved.paid_amount, saved.payment_method) == ("paid", Decimal("108"), "credit_card")
    assert "[" not in capsys.readouterr().out
