from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from api.main import app
from api.services.customers import customer_stats, filter_customers, validate_customer, with_order_summary
from api.services.errors import ValidationFailed
from api.services.realtime import realtime_service


@pytest.fixture
def client(seeded_db) -> TestClient:
    return TestClient(app)


def _customer(**overrides):
    customer = {
        "id": "cust_x",
        "name": "Maple Decks",
        "email": "hello@mapledecks.example",
        "phone": "+1-919-555-0100",
        "company": None,
        "customer_type": "Individual",
        "status": "active",
        "credit_limit": 1000,
        "current_balance": 0,
        "preferred_contact": "Email",
        "tags": ["decking"],
        "billing_address": {"city": "Cary", "state": "NC"},
        "is_active": True,
    }
    customer.update(overrides)
    return customer


def test_business_customers_need_a_company_name() -> None:
    validate_customer(_customer())
    validate_customer(_customer(customer_type="Business", company="Maple Decks LLC"))

    with pytest.raises(ValidationFailed) as excinfo:
        validate_customer(_customer(customer_type="Business"))
    assert excinfo.value.code == "COMPANY_REQUIRED"

    with pytest.raises(ValidationFailed) as excinfo:
        validate_customer(_customer(preferred_contact="Fax"))
    assert excinfo.value.code == "INVALID_CONTACT_METHOD"


def test_filters_combine() -> None:
    customers = [
        _customer(id="a", tags=["decking"], current_balance=50),
        _customer(id="b", name="Birch Builders", tags=["framing"], billing_address={"city": "Durham"}),
        _customer(id="c", is_active=False, status="inactive", credit_limit=9000),
    ]

    assert [c["id"] for c in filter_customers(customers, city="cary")] == ["a", "c"]
    assert [c["id"] for c in filter_customers(customers, tags=["framing", "roofing"])] == ["b"]
    assert [c["id"] for c in filter_customers(customers, search="birch")] == ["b"]
    assert [c["id"] for c in filter_customers(customers, is_active=False)] == ["c"]
    assert [c["id"] for c in filter_customers(customers, balance_min=10)] == ["a"]
    assert [c["id"] for c in filter_customers(customers, credit_limit_min=5000)] == ["c"]


def test_order_summary_ignores_cancelled_orders() -> None:
    orders = [
        {"status": "DELIVERED", "total_amount": 120.5, "order_date": "2026-02-01T10:00:00Z"},
        {"status": "CANCELLED", "total_amount": 999, "order_date": "2026-03-01T10:00:00Z"},
        {"status": "PENDING", "total_amount": 79.5, "order_date": "2026-02-20T09:00:00Z"},
    ]

    summary = with_order_summary(_customer(), orders)

    assert summary["total_orders"] == 2
    assert summary["total_spent"] == 200.0
    assert summary["last_order_date"] == "2026-02-20T09:00:00Z"
    assert with_order_summary(_customer(), [])["last_order_date"] is None


def test_stats_count_every_type_and_status() -> None:
    stats = customer_stats([_customer(), _customer(status="inactive", is_active=False, current_balance=10.255)])

    assert stats["total"] == 2
    assert stats["inactive"] == 1
    assert stats["by_type"]["Individual"] == 2
    assert stats["by_type"]["Supplier"] == 0
    assert stats["by_status"] == {"active": 1, "on_hold": 0, "at_risk": 0, "inactive": 1}


def test_listing_is_scoped_to_company(client, auth_headers) -> None:
    listing = client.get("/api/customers?limit=50", headers=auth_headers("usr_sales", "sales")).json()
    other = client.get("/api/customers", headers=auth_headers("usr_other", "admin", "comp_002")).json()

    assert [customer["id"] for customer in listing["data"]] == ["cust_004", "cust_001", "cust_003", "cust_002"]
    assert listing["pagination"]["total"] == 4
    assert [customer["id"] for customer in other["data"]] == ["cust_101"]
    assert listing["data"][1]["billing_address"]["city"] == "Cary"

    hidden = client.get("/api/customers/cust_101", headers=auth_headers())
    assert hidden.status_code == 404
    assert hidden.json()["code"] == "CUSTOMER_NOT_FOUND"

    filtered = client.get("/api/customers?tags=remodel&status=at_risk", headers=auth_headers()).json()
    assert [customer["id"] for customer in filtered["data"]] == ["cust_003"]


def test_create_and_update_customer(client, auth_headers) -> None:
    headers = auth_headers("usr_sales", "sales")

    missing_company = client.post(
        "/api/customers", json={"name": "Lakeside Lofts", "customer_type": "Business"}, headers=headers
    )
    assert missing_company.status_code == 400
    assert missing_company.json()["code"] == "COMPANY_REQUIRED"

    duplicate = client.post(
        "/api/customers", json={"name": "Copycat", "email": "AP@summitcb.example"}, headers=headers
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "CUSTOMER_EMAIL_EXISTS"

    created = client.post(
        "/api/customers",
        json={
            "name": "Lakeside Lofts",
            "email": "build@lakeside.example",
            "customer_type": "Business",
            "company": "Lakeside Lofts LLC",
            "credit_limit": 20000,
            "tags": ["multifamily"],
            "billing_address": {"street": "3 Lake Rd", "city": "Wake Forest", "state": "NC"},
        },
        headers=headers,
    )
    assert created.status_code == 201
    body = created.json()
    assert body["message"] == "Customer created successfully"
    customer_id = body["id"]

    fetched = client.get(f"/api/customers/{customer_id}", headers=headers).json()["data"]
    assert fetched["billing_address"]["city"] == "Wake Forest"
    assert fetched["tags"] == ["multifamily"]
    assert fetched["is_active"] is True
    assert fetched["total_orders"] == 0

    taken = client.put(f"/api/customers/{customer_id}", json={"email": "office@riversideremodel.example"}, headers=headers)
    assert taken.json()["code"] == "CUSTOMER_EMAIL_EXISTS"

    updated = client.put(f"/api/customers/{customer_id}", json={"phone": "+1-919-555-0999"}, headers=headers)
    assert updated.json()["data"]["phone"] == "+1-919-555-0999"
    assert updated.json()["data"]["company"] == "Lakeside Lofts LLC"

    forbidden = client.post("/api/customers", json={"name": "Nope"}, headers=auth_headers("usr_warehouse", "warehouse"))
    assert forbidden.status_code == 403


def test_order_summary_tracks_new_orders(client, auth_headers) -> None:
    headers = auth_headers("usr_sales", "sales")
    before = client.get("/api/customers/cust_002", headers=headers).json()["data"]

    order = client.post(
        "/api/orders",
        json={
            "customer_id": "cust_002",
            "customer_name": "Summit Commercial Builders",
            "items": [{"product_id": "item_pvc", "product_name": "PVC", "quantity": 4, "unit_price": 10}],
        },
        headers=headers,
    ).json()["data"]
    after = client.get("/api/customers/cust_002", headers=headers).json()["data"]

    assert after["total_orders"] == before["total_orders"] + 1
    assert after["total_spent"] == round(before["total_spent"] + order["total_amount"], 2)
    assert after["last_order_date"] == order["order_date"]


def test_balance_adjustments_need_accounting_roles(client, auth_headers) -> None:
    denied = client.post("/api/customers/cust_002/balance", json={"amount": 100}, headers=auth_headers("usr_sales", "sales"))
    assert denied.status_code == 403

    adjusted = client.post(
        "/api/customers/cust_002/balance",
        json={"amount": 1250.75, "reason": "Invoice 1182"},
        headers=auth_headers("usr_accounting", "accounting"),
    )
    assert adjusted.json()["data"]["current_balance"] == 1250.75

    overdue = client.get("/api/customers/reports/overdue", headers=auth_headers("usr_accounting", "accounting")).json()
    assert overdue["count"] == 3
    assert {customer["id"] for customer in overdue["data"]} == {"cust_001", "cust_002", "cust_003"}


def test_status_changes_persist_and_notify(client, auth_headers) -> None:
    headers = auth_headers("usr_sales", "sales")

    bad = client.put("/api/customers/cust_003/status", json={"status": "dormant"}, headers=headers)
    assert bad.json()["code"] == "INVALID_CUSTOMER_STATUS"

    changed = client.put("/api/customers/cust_003/status", json={"status": "active", "reason": "Paid up"}, headers=headers)
    assert changed.json()["data"]["status"] == "active"

    notice = list(realtime_service.event_buffer["comp_001"])[-1]
    assert notice.type == "system_notification"
    assert notice.data["type"] == "customer_status_changed"
    assert (notice.data["old_status"], notice.data["new_status"]) == ("at_risk", "active")

    assert client.put("/api/customers/cust_004/deactivate", headers=headers).status_code == 403
    deactivated = client.put("/api/customers/cust_004/deactivate", headers=auth_headers("usr_manager", "manager"))
    assert deactivated.json()["data"]["is_active"] is False
    assert deactivated.json()["data"]["status"] == "inactive"

    inactive = client.get("/api/customers?is_active=false", headers=headers).json()["data"]
    assert [customer["id"] for customer in inactive] == ["cust_004"]


def test_stats_report_for_managers(client, auth_headers) -> None:
    assert client.get("/api/customers/reports/stats", headers=auth_headers("usr_sales", "sales")).status_code == 403

    stats = client.get("/api/customers/reports/stats", headers=auth_headers("usr_manager", "manager")).json()["data"]

    assert stats["total"] == 4
    assert stats["active"] == 4
    assert stats["by_type"] == {"Individual": 0, "Business": 2, "Contractor": 2, "Supplier": 0}
    assert stats["by_status"] == {"active": 2, "on_hold": 1, "at_risk": 1, "inactive": 0}
    assert stats["total_credit_limit"] == 225000.0
    assert stats["total_outstanding"] == 14900.5
