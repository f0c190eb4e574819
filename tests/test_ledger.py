from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from backoffice.core.errors import ValidationError
from backoffice.services.finance_service import fold_entries, parse_month, previous_month


def _entry(entry_type: str, amount: str, *, order_id: str | None = None, when: datetime | None = None):
    return SimpleNamespace(
        type=entry_type,
        amount=Decimal(amount),
        related_order_id=order_id,
        created_at=when or datetime(2026, 3, 15, tzinfo=timezone.utc),
    )


def _setup_scopes(client, admin_headers) -> tuple[str, str]:
    company = client.post("/companies", json={"name": "Ledger Co"}, headers=admin_headers)
    assert company.status_code == 201, company.text
    warehouse = client.post("/warehouses", json={"name": "South"}, headers=admin_headers)
    assert warehouse.status_code == 201, warehouse.text
    return company.json()["id"], warehouse.json()["id"]


def _post_entry(client, headers, **payload) -> dict:
    res = client.post("/finance/entries", json=payload, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()


def test_fold_entries_splits_debt_from_direct_expense():
    totals = fold_entries(
        [
            _entry("income", "110.00", order_id="o-1"),
            _entry("expense", "100.00", order_id="o-2"),
            _entry("expense", "-20.00", order_id="o-2"),
            _entry("expense", "35.50"),
        ]
    )
    assert totals.income == Decimal("110.00")
    assert totals.expense == Decimal("115.50")
    assert totals.debt == Decimal("80.00")
    assert totals.direct_expense == Decimal("35.50")
    assert totals.balance == Decimal("-5.50")
    assert totals.entries_count == 4


def test_month_helpers():
    assert previous_month("2026-01") == "2025-12"
    assert previous_month("2026-10") == "2026-09"
    assert parse_month(" 2026-7 ") == "2026-07"
    with pytest.raises(ValidationError) as invalid:
        parse_month("2026-13")
    assert invalid.value.field == "month"


def test_summary_per_scope(test_context, staff_headers, admin_headers):
    client, _ = test_context
    company_id, warehouse_id = _setup_scopes(client, admin_headers)
    _post_entry(client, staff_headers, type="income", amount=500, company_id=company_id, comment="Advance")
    _post_entry(client, staff_headers, type="expense", amount=200, warehouse_id=warehouse_id, comment="Rent")

    overall = client.get("/finance/summary", headers=staff_headers)
    assert overall.status_code == 200, overall.text
    assert overall.json()["scope"] == "overall"
    assert overall.json()["overall"]["balance"] == 300.0
    assert overall.json()["overall"]["direct_expense"] == 200.0

    company = client.get("/finance/summary", params={"company_id": company_id}, headers=staff_headers)
    assert company.json()["scope"] == "company"
    assert company.json()["overall"]["income"] == 500.0
    assert company.json()["overall"]["expense"] == 0.0

    month = datetime.now(timezone.utc).strftime("%Y-%m")
    monthly = client.get(
        "/finance/summary",
        params={"warehouse_id": warehouse_id, "month": month},
        headers=staff_headers,
    )
    assert monthly.status_code == 200, monthly.text
    body = monthly.json()
    assert body["month"]["period"] == month
    assert body["month"]["totals"]["expense"] == 200.0
    assert body["previous_month"]["period"] == previous_month(month)
    assert body["previous_month"]["totals"]["entries_count"] == 0

    both = client.get(
        "/finance/summary",
        params={"company_id": company_id, "warehouse_id": warehouse_id},
        headers=staff_headers,
    )
    assert both.status_code == 400, both.text

    bad_month = client.get("/finance/summary", params={"month": "March"}, headers=staff_headers)
    assert bad_month.status_code == 400, bad_month.text
    assert bad_month.json()["error"]["details"][0]["field"] == "month"


def test_manual_entry_validation(test_context, staff_headers, admin_headers):
    client, _ = test_context
    company_id, warehouse_id = _setup_scopes(client, admin_headers)

    both = client.post(
        "/finance/entries",
        json={"type": "income", "amount": 10, "company_id": company_id, "warehouse_id": warehouse_id},
        headers=staff_headers,
    )
    assert both.status_code == 400, both.text

    unknown = client.post(
        "/finance/entries",
        json={"type": "income", "amount": 10, "company_id": "missing"},
        headers=staff_headers,
    )
    assert unknown.status_code == 404, unknown.text

    zero = client.post("/finance/entries", json={"type": "income", "amount": 0}, headers=staff_headers)
    assert zero.status_code == 422, zero.text

    bad_type = client.post("/finance/entries", json={"type": "refund", "amount": 5}, headers=staff_headers)
    assert bad_type.status_code == 422, bad_type.text
    assert bad_type.json()["error"]["details"][0]["field"] == "type"


def test_withdrawal_cannot_exceed_balance(test_context, staff_headers, admin_headers):
    client, _ = test_context
    company_id, _ = _setup_scopes(client, admin_headers)
    _post_entry(client, staff_headers, type="income", amount=300, company_id=company_id)

    forbidden = client.post("/finance/withdrawals", json={"amount": 50}, headers=staff_headers)
    assert forbidden.status_code == 403, forbidden.text

    too_much = client.post("/finance/withdrawals", json={"amount": 400}, headers=admin_headers)
    assert too_much.status_code == 400, too_much.text
    assert too_much.json()["error"]["details"][0]["field"] == "amount"

    ok = client.post("/finance/withdrawals", json={"amount": 100, "note": "Owner draw"}, headers=admin_headers)
    assert ok.status_code == 201, ok.text
    assert ok.json()["type"] == "expense"
    assert ok.json()["amount"] == 100.0
    assert ok.json()["comment"] == "Withdrawal: Owner draw"

    summary = client.get("/finance/summary", headers=staff_headers)
    assert summary.json()["overall"]["balance"] == 200.0


def test_entries_listing_filters_by_order(test_context, staff_headers, admin_headers):
    client, _ = test_context
    company_id, warehouse_id = _setup_scopes(client, admin_headers)
    restock = client.post(
        "/inventory/restock",
        json={"warehouse_id": warehouse_id, "name": "Tape", "quantity": 10, "unit_price": 3},
        headers=staff_headers,
    )
    assert restock.status_code == 200, restock.text
    order = client.post(
        "/orders",
        json={"company_id": company_id, "lines": [{"product_id": restock.json()["product_id"], "quantity": 2}]},
        headers=staff_headers,
    )
    order_id = order.json()["id"]
    client.post(f"/orders/{order_id}/complete", json={"received": False}, headers=staff_headers)

    listed = client.get("/finance/entries", params={"related_order_id": order_id}, headers=staff_headers)
    assert listed.status_code == 200, listed.text
    items = listed.json()["items"]
    assert [(item["type"], item["amount"], item["company_id"]) for item in items] == [("expense", 6.0, company_id)]

    by_warehouse = client.get("/finance/entries", params={"warehouse_id": warehouse_id}, headers=staff_headers)
    assert [item["amount"] for item in by_warehouse.json()["items"]] == [30.0]
    assert by_warehouse.json()["pagination"]["total"] == 1
