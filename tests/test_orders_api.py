from sqlalchemy import select

from backoffice.core.security import create_access_token
from backoffice.models.order import Order
from backoffice.models.product import Product


def _company(client, admin_headers, name: str) -> str:
    res = client.post("/companies", json={"name": name}, headers=admin_headers)
    assert res.status_code == 201, res.text
    return res.json()["id"]


def _product(client, headers, name: str, unit_price: float) -> str:
    res = client.post("/products", json={"name": name, "unit_price": unit_price}, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()["id"]


def test_create_order_with_catalogue_and_manual_lines(test_context, staff_headers, admin_headers):
    client, session_local = test_context
    company_id = _company(client, admin_headers, "Acme Logistics")
    bolt = _product(client, staff_headers, "Bolt", 1.25)

    res = client.post(
        "/orders",
        json={
            "company_id": company_id,
            "notes": "Deliver before Friday",
            "lines": [
                {"product_id": bolt, "quantity": 8},
                {"product_name": "Pallet wrap", "quantity": 3, "unit_price": 20},
            ],
        },
        headers=staff_headers,
    )
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["company_name"] == "Acme Logistics"
    assert body["status"] == "open"
    assert body["payment_status"] == "unpaid"
    assert body["debt_flag"] is False
    assert body["total_quantity"] == 11
    assert body["total_amount"] == 70.0
    assert body["created_by"] == "user-sales-1"
    assert body["needs_reconciliation"] is False
    by_name = {line["product_name"]: line for line in body["lines"]}
    assert by_name["Bolt"]["line_total"] == 10.0
    assert by_name["Pallet wrap"]["unit_price"] == 20.0

    with session_local() as db:
        manual = db.execute(select(Product).where(Product.name == "Pallet wrap")).scalar_one()
        assert manual.current_stock == 0

    detail = client.get(f"/orders/{body['id']}", headers=staff_headers)
    assert detail.status_code == 200, detail.text
    assert len(detail.json()["lines"]) == 2


def test_create_order_for_manual_company(test_context, staff_headers):
    client, _ = test_context
    res = client.post(
        "/orders",
        json={
            "manual_company_name": "  Walk-in customer ",
            "lines": [{"product_name": "Rope", "quantity": 2, "unit_price": 7.5}],
        },
        headers=staff_headers,
    )
    assert res.status_code == 201, res.text
    assert res.json()["company_id"] is None
    assert res.json()["company_name"] == "Walk-in customer"
    assert res.json()["total_amount"] == 15.0


def test_create_order_validation(test_context, staff_headers, admin_headers):
    client, session_local = test_context
    company_id = _company(client, admin_headers, "Acme Logistics")
    bolt = _product(client, staff_headers, "Bolt", 1.25)

    duplicate = client.post(
        "/orders",
        json={
            "company_id": company_id,
            "lines": [{"product_id": bolt, "quantity": 1}, {"product_id": bolt, "quantity": 2}],
        },
        headers=staff_headers,
    )
    assert duplicate.status_code == 400, duplicate.text
    assert duplicate.json()["error"]["details"][0]["field"] == "lines.1.product_id"

    no_company = client.post("/orders", json={"lines": [{"product_id": bolt, "quantity": 1}]}, headers=staff_headers)
    assert no_company.status_code == 400, no_company.text
    assert no_company.json()["error"]["details"][0]["field"] == "company_id"

    both = client.post(
        "/orders",
        json={
            "company_id": company_id,
            "manual_company_name": "Someone else",
            "lines": [{"product_id": bolt, "quantity": 1}],
        },
        headers=staff_headers,
    )
    assert both.status_code == 400, both.text

    unknown_company = client.post(
        "/orders",
        json={"company_id": "missing", "lines": [{"product_id": bolt, "quantity": 1}]},
        headers=staff_headers,
    )
    assert unknown_company.status_code == 404, unknown_company.text

    unknown_product = client.post(
        "/orders",
        json={"company_id": company_id, "lines": [{"product_id": "missing", "quantity": 1}]},
        headers=staff_headers,
    )
    assert unknown_product.status_code == 404, unknown_product.text

    no_lines = client.post("/orders", json={"company_id": company_id, "lines": []}, headers=staff_headers)
    assert no_lines.status_code == 422, no_lines.text

    zero_quantity = client.post(
        "/orders",
        json={"company_id": company_id, "lines": [{"product_id": bolt, "quantity": 0}]},
        headers=staff_headers,
    )
    assert zero_quantity.status_code == 422, zero_quantity.text

    manual_without_price = client.post(
        "/orders",
        json={"company_id": company_id, "lines": [{"product_name": "Rope", "quantity": 1}]},
        headers=staff_headers,
    )
    assert manual_without_price.status_code == 422, manual_without_price.text

    with session_local() as db:
        assert db.execute(select(Order)).first() is None


def test_list_orders_filters(test_context, staff_headers, admin_headers):
    client, _ = test_context
    acme = _company(client, admin_headers, "Acme Logistics")
    globex = _company(client, admin_headers, "Globex")
    bolt = _product(client, staff_headers, "Bolt", 2)

    def make(payload):
        res = client.post("/orders", json=payload, headers=staff_headers)
        assert res.status_code == 201, res.text
        return res.json()["id"]

    first = make({"company_id": acme, "lines": [{"product_id": bolt, "quantity": 1}]})
    second = make({"company_id": globex, "lines": [{"product_id": bolt, "quantity": 2}]})
    third = make({"manual_company_name": "Acme Retail", "lines": [{"product_id": bolt, "quantity": 3}]})
    client.post(f"/orders/{second}/complete", json={"received": False}, headers=staff_headers)

    everything = client.get("/orders", headers=staff_headers)
    assert everything.status_code == 200, everything.text
    assert everything.json()["pagination"]["total"] == 3

    completed = client.get("/orders", params={"status": "Completed"}, headers=staff_headers)
    assert completed.json()["status"] == "completed"
    assert [item["id"] for item in completed.json()["items"]] == [second]

    by_company = client.get("/orders", params={"company_id": acme}, headers=staff_headers)
    assert [item["id"] for item in by_company.json()["items"]] == [first]

    searched = client.get("/orders", params={"search": "acme"}, headers=staff_headers)
    assert {item["id"] for item in searched.json()["items"]} == {first, third}

    page = client.get("/orders", params={"limit": 2}, headers=staff_headers)
    assert page.json()["pagination"]["count"] == 2
    assert page.json()["pagination"]["has_next"] is True

    bad_status = client.get("/orders", params={"status": "shipped"}, headers=staff_headers)
    assert bad_status.status_code == 400, bad_status.text

    bad_range = client.get(
        "/orders",
        params={"start_date": "2026-05-02", "end_date": "2026-05-01"},
        headers=staff_headers,
    )
    assert bad_range.status_code == 400, bad_range.text


def test_authentication_and_roles(test_context, staff_headers):
    client, _ = test_context

    anonymous = client.get("/orders")
    assert anonymous.status_code == 401, anonymous.text
    assert anonymous.json()["error"]["code"] == "unauthorized"

    garbage = client.get("/orders", headers={"Authorization": "Bearer not-a-token"})
    assert garbage.status_code == 401, garbage.text

    unknown_role = create_access_token("user-viewer-1", role="viewer")
    rejected = client.get("/orders", headers={"Authorization": f"Bearer {unknown_role}"})
    assert rejected.status_code == 401, rejected.text

    staff_company = client.post("/companies", json={"name": "Nope"}, headers=staff_headers)
    assert staff_company.status_code == 403, staff_company.text


def test_health_endpoints(test_context):
    client, _ = test_context
    assert client.get("/health").json() == {"ok": True}
    ready = client.get("/ready")
    assert ready.status_code == 200, ready.text
    assert ready.json() == {"ok": True}
