from sqlalchemy import func, select

from backoffice.models.finance import FinanceEntry
from backoffice.models.inventory import InventoryTransaction
from backoffice.models.order import Order, OrderLine
from backoffice.models.product import Product


def _seed(client, staff_headers, admin_headers) -> dict:
    company_id = client.post("/companies", json={"name": "Initech"}, headers=admin_headers).json()["id"]
    warehouse_id = client.post("/warehouses", json={"name": "East"}, headers=admin_headers).json()["id"]
    widget = client.post(
        "/inventory/restock",
        json={"warehouse_id": warehouse_id, "name": "Widget", "quantity": 50, "unit_price": 10},
        headers=staff_headers,
    ).json()["product_id"]
    gadget = client.post(
        "/inventory/restock",
        json={"warehouse_id": warehouse_id, "name": "Gadget", "quantity": 30, "unit_price": 20},
        headers=staff_headers,
    ).json()["product_id"]

    completed = client.post(
        "/orders",
        json={
            "company_id": company_id,
            "lines": [{"product_id": widget, "quantity": 5}, {"product_id": gadget, "quantity": 3}],
        },
        headers=staff_headers,
    ).json()
    res = client.post(
        f"/orders/{completed['id']}/complete",
        json={"received": True, "payment_amount": 110, "payment_method": "cash"},
        headers=staff_headers,
    )
    assert res.status_code == 200, res.text
    widget_line = next(line for line in res.json()["order"]["lines"] if line["product_id"] == widget)
    returned = client.post(
        f"/orders/{completed['id']}/returns",
        json={"lines": [{"line_id": widget_line["id"], "quantity": 2}]},
        headers=staff_headers,
    )
    assert returned.status_code == 200, returned.text

    still_open = client.post(
        "/orders",
        json={"company_id": company_id, "lines": [{"product_id": widget, "quantity": 7}]},
        headers=staff_headers,
    ).json()
    return {
        "company_id": company_id,
        "warehouse_id": warehouse_id,
        "widget": widget,
        "gadget": gadget,
        "completed_id": completed["id"],
        "open_id": still_open["id"],
    }


def test_sold_product_stats_are_net_of_returns(test_context, staff_headers, admin_headers):
    client, _ = test_context
    seeded = _seed(client, staff_headers, admin_headers)

    res = client.get("/orders/stats/products", headers=staff_headers)
    assert res.status_code == 200, res.text
    assert res.json() == [
        {
            "product_id": seeded["gadget"],
            "product_name": "Gadget",
            "sold_quantity": 3,
            "returned_quantity": 0,
            "revenue": 60.0,
        },
        {
            "product_id": seeded["widget"],
            "product_name": "Widget",
            "sold_quantity": 3,
            "returned_quantity": 2,
            "revenue": 30.0,
        },
    ]

    future = client.get("/orders/stats/products", params={"start_date": "2999-01-01"}, headers=staff_headers)
    assert future.json() == []


def test_company_stats_cover_completed_orders(test_context, staff_headers, admin_headers):
    client, _ = test_context
    seeded = _seed(client, staff_headers, admin_headers)

    res = client.get("/orders/stats/companies", headers=staff_headers)
    assert res.status_code == 200, res.text
    assert res.json() == [
        {
            "company_id": seeded["company_id"],
            "company_name": "Initech",
            "orders_count": 1,
            "total_amount": 90.0,
            "received_amount": 110.0,
            "outstanding_debt": 0.0,
        }
    ]


def test_clear_company_orders_keeps_ledger(test_context, staff_headers, admin_headers):
    client, session_local = test_context
    seeded = _seed(client, staff_headers, admin_headers)
    path = f"/maintenance/companies/{seeded['company_id']}/clear-orders"

    assert client.post(path, headers=staff_headers).status_code == 403

    res = client.post(path, headers=admin_headers)
    assert res.status_code == 200, res.text
    assert res.json() == {"company_id": seeded["company_id"], "deleted_count": 2}

    with session_local() as db:
        assert db.execute(select(func.count(Order.id))).scalar_one() == 0
        assert db.execute(select(func.count(OrderLine.id))).scalar_one() == 0
        assert db.execute(
            select(func.count(InventoryTransaction.id)).where(InventoryTransaction.related_order_id.is_not(None))
        ).scalar_one() == 0
        order_entries = db.execute(
            select(func.count(FinanceEntry.id)).where(FinanceEntry.related_order_id == seeded["completed_id"])
        ).scalar_one()
        assert order_entries == 2

    again = client.post(path, headers=admin_headers)
    assert again.json()["deleted_count"] == 0

    missing = client.post("/maintenance/companies/missing/clear-orders", headers=admin_headers)
    assert missing.status_code == 404, missing.text


def test_clear_automated_finance_entries_keeps_manual_ones(test_context, staff_headers, admin_headers):
    client, session_local = test_context
    seeded = _seed(client, staff_headers, admin_headers)
    manual = client.post(
        "/finance/entries",
        json={"type": "expense", "amount": 15, "warehouse_id": seeded["warehouse_id"], "comment": "Fuel"},
        headers=staff_headers,
    )
    assert manual.status_code == 201, manual.text

    res = client.post("/maintenance/finance/clear-automated", headers=admin_headers)
    assert res.status_code == 200, res.text
    assert res.json() == {"deleted_count": 2}

    with session_local() as db:
        remaining = db.execute(select(FinanceEntry)).scalars().all()
        assert all(entry.related_order_id is None for entry in remaining)
        # Two restock purchases plus the manual entry.
        assert len(remaining) == 3


def test_reset_all_data_restores_sold_stock_and_empties_history(test_context, staff_headers, admin_headers):
    client, session_local = test_context
    seeded = _seed(client, staff_headers, admin_headers)

    assert client.post("/maintenance/reset-all-data", headers=staff_headers).status_code == 403

    res = client.post("/maintenance/reset-all-data", headers=admin_headers)
    assert res.status_code == 200, res.text
    # Two restock purchases, the income and the return correction.
    assert res.json() == {"deleted_orders": 2, "deleted_finance_entries": 4}

    with session_local() as db:
        stock = dict(db.execute(select(Product.id, Product.current_stock)).all())
        assert stock[seeded["widget"]] == 50
        assert stock[seeded["gadget"]] == 30
        for model in (Order, OrderLine, FinanceEntry, InventoryTransaction):
            assert db.execute(select(func.count(model.id))).scalar_one() == 0

    again = client.post("/maintenance/reset-all-data", headers=admin_headers)
    assert again.json() == {"deleted_orders": 0, "deleted_finance_entries": 0}
