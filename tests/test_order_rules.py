from decimal import Decimal
from types import SimpleNamespace

import pytest

from backoffice.core.config import settings
from backoffice.core.errors import ValidationError
from backoffice.core.money import line_amount, to_money
from backoffice.services.order_service import derive_payment_state
from backoffice.services.order_state import (
    ensure_can_complete,
    ensure_can_register_payment,
    ensure_can_return,
    plan_cancel,
)


def _order(status: str, *, debt_flag: bool = False) -> SimpleNamespace:
    return SimpleNamespace(id="order-1", status=status, debt_flag=debt_flag)


def test_money_rounds_half_up():
    assert to_money("2.345") == Decimal("2.35")
    assert to_money(None) == Decimal("0.00")
    assert line_amount(3, "19.999") == Decimal("60.00")


def test_open_order_never_carries_debt():
    state = derive_payment_state(status="open", total_amount=100, payment_received_amount=0)
    assert state.payment_status == "unpaid"
    assert state.debt_flag is False
    assert state.remaining_debt == Decimal("100.00")


def test_completed_order_payment_positions():
    unpaid = derive_payment_state(status="completed", total_amount=100, payment_received_amount=0)
    assert (unpaid.payment_status, unpaid.debt_flag) == ("unpaid", True)

    partial = derive_payment_state(status="completed", total_amount=100, payment_received_amount=40)
    assert (partial.payment_status, partial.debt_flag) == ("unpaid", True)
    assert partial.remaining_debt == Decimal("60.00")

    paid = derive_payment_state(status="completed", total_amount="100.00", payment_received_amount="100")
    assert (paid.payment_status, paid.debt_flag) == ("paid", False)
    assert paid.overpaid_amount == Decimal("0.00")

    overpaid = derive_payment_state(status="completed", total_amount=90, payment_received_amount=110)
    assert (overpaid.payment_status, overpaid.debt_flag) == ("paid", False)
    assert overpaid.overpaid_amount == Decimal("20.00")


def test_partial_payment_is_reported_when_enabled(monkeypatch):
    monkeypatch.setattr(settings, "report_partial_payments", True)
    state = derive_payment_state(status="completed", total_amount=100, payment_received_amount=40)
    assert state.payment_status == "partially_paid"
    assert state.debt_flag is True

    nothing_received = derive_payment_state(status="completed", total_amount=100, payment_received_amount=0)
    assert nothing_received.payment_status == "unpaid"


def test_zero_total_order_is_paid():
    state = derive_payment_state(status="completed", total_amount=0, payment_received_amount=0)
    assert state.payment_status == "paid"
    assert state.debt_flag is False


def test_complete_requires_open_order_with_lines():
    ensure_can_complete(_order("open"), line_count=2)

    with pytest.raises(ValidationError) as empty:
        ensure_can_complete(_order("open"), line_count=0)
    assert empty.value.field == "lines"

    for status in ("completed", "canceled"):
        with pytest.raises(ValidationError) as invalid:
            ensure_can_complete(_order(status), line_count=1)
        assert invalid.value.field == "status"


def test_cancel_restores_stock_only_from_completed():
    assert plan_cancel(_order("open")).restore_stock is False
    completed = plan_cancel(_order("completed"))
    assert completed.restore_stock is True
    assert completed.from_status == "completed"

    with pytest.raises(ValidationError):
        plan_cancel(_order("canceled"))


def test_returns_need_a_completed_order():
    ensure_can_return(_order("completed"))
    for status in ("open", "canceled"):
        with pytest.raises(ValidationError):
            ensure_can_return(_order(status))


def test_later_payment_needs_outstanding_debt():
    ensure_can_register_payment(_order("completed", debt_flag=True))

    with pytest.raises(ValidationError) as no_debt:
        ensure_can_register_payment(_order("completed", debt_flag=False))
    assert no_debt.value.field == "amount"

    with pytest.raises(ValidationError) as not_completed:
        ensure_can_register_payment(_order("open", debt_flag=True))
    assert not_completed.value.field == "status"
