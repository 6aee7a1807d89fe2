from __future__ import annotations

import pytest

from api.services.errors import ConflictError, ValidationFailed
from api.services.orders import (
    calculate_totals,
    check_dates,
    check_transition,
    format_order_number,
    matches_search,
    order_stats,
    price_items,
)


def test_line_items_are_priced_with_discount() -> None:
    items = price_items(
        [
            {"product_id": "item_rebar", "quantity": 10, "unit_price": 12.5, "discount": 10},
            {"product_id": "item_pvc", "quantity": 3, "unit_price": 19.99},
        ]
    )

    assert [item["total_price"] for item in items] == [112.5, 59.97]
    assert items[1]["discount"] == 0.0


def test_empty_order_is_rejected() -> None:
    with pytest.raises(ValidationFailed) as excinfo:
        price_items([])
    assert excinfo.value.code == "ORDER_ITEMS_REQUIRED"


def test_totals_include_tax_and_shipping() -> None:
    items = price_items(
        [
            {"quantity": 10, "unit_price": 12.5, "discount": 10},
            {"quantity": 3, "unit_price": 19.99},
        ]
    )

    assert calculate_totals(items, tax_rate=7.25, shipping_cost=45) == {
        "subtotal": 172.47,
        "tax_rate": 7.25,
        "tax_amount": 12.5,
        "shipping_cost": 45.0,
        "total_amount": 229.97,
    }


def test_required_date_must_follow_order_date() -> None:
    check_dates("2026-03-04T10:00:00Z", "2026-03-04")
    check_dates("2026-03-04T10:00:00Z", None)

    with pytest.raises(ValidationFailed) as excinfo:
        check_dates("2026-03-04T10:00:00Z", "2026-03-01")
    assert excinfo.value.code == "INVALID_DATES"


def test_status_transitions() -> None:
    check_transition("PENDING", "CONFIRMED")
    check_transition("PROCESSING", "CANCELLED")
    check_transition("SHIPPED", "DELIVERED")

    with pytest.raises(ConflictError) as excinfo:
        check_transition("DELIVERED", "PENDING")
    assert excinfo.value.extra == {"allowed": []}

    with pytest.raises(ConflictError) as excinfo:
        check_transition("SHIPPED", "CANCELLED")
    assert excinfo.value.extra == {"allowed": ["DELIVERED"]}

    with pytest.raises(ValidationFailed) as excinfo:
        check_transition("PENDING", "LOST")
    assert excinfo.value.code == "INVALID_STATUS"


def test_order_numbers_are_zero_padded() -> None:
    assert format_order_number(7) == "ORD-000007"
    assert format_order_number(1234567) == "ORD-1234567"


def test_search_matches_header_and_line_items() -> None:
    order = {
        "order_number": "ORD-000003",
        "customer_name": "Summit Commercial Builders",
        "notes": None,
        "items": [{"product_name": "Rebar #4", "sku": "RB-04"}],
    }

    assert matches_search(order, "summit")
    assert matches_search(order, "rb-04")
    assert matches_search(order, "000003")
    assert not matches_search(order, "drywall")


def test_order_stats() -> None:
    orders = [
        {"status": "PENDING", "total_amount": 100},
        {"status": "DELIVERED", "total_amount": 250.5},
        {"status": "DELIVERED", "total_amount": 49.5},
    ]

    stats = order_stats(orders)

    assert stats["total_orders"] == 3
    assert stats["by_status"]["DELIVERED"] == 2
    assert stats["by_status"]["CANCELLED"] == 0
    assert stats["total_revenue"] == 400.0
    assert stats["average_order_value"] == 133.33
    assert order_stats([])["average_order_value"] == 0


def test_unparseable_dates_are_validation_errors() -> None:
    with pytest.raises(ValidationFailed) as excinfo:
        check_dates("2026-03-01", "next week")
    assert excinfo.value.code == "INVALID_DATES"
    assert "required_date" in excinfo.value.message

    with pytest.raises(ValidationFailed) as excinfo:
        check_dates("03/01/2026", None)
    assert "order_date" in excinfo.value.message
