from __future__ import annotations

import asyncio

import pytest

from api.services.errors import NotFoundError
from api.services.supply_chain import (
    Recommendation,
    ReorderPoint,
    SupplyChainOptimizer,
    demand_volatility,
    economic_order_quantity,
    rank_recommendations,
    reorder_savings,
    supplier_score,
)


def _recommendation(priority: str, savings: int, kind: str = "reorder") -> Recommendation:
    return Recommendation(
        type=kind,
        priority=priority,
        description="",
        expected_benefit="",
        estimated_savings=savings,
        implementation_effort="low",
    )


def test_economic_order_quantity() -> None:
    # sqrt(2 * 2/day * 30 days * $100 / ($10 * 20%)) = sqrt(6000)
    assert economic_order_quantity(2, 10, fallback=50) == 78
    assert economic_order_quantity(2, 0, fallback=50) == 50
    assert economic_order_quantity(2, 0, fallback=0) == 1


def test_reorder_savings_values_the_shortfall() -> None:
    reorder = ReorderPoint(
        product_id="p",
        product_name="P",
        current_stock=10,
        reorder_point=30,
        optimal_order_quantity=50,
        suggested_supplier="sup_001",
        average_daily_demand=3,
        reasoning="",
    )

    assert reorder_savings({"stock": 10, "cost": 4}, reorder) == 120
    assert reorder_savings({"stock": 40, "cost": 4}, reorder) == 0


def test_supplier_score_weights_reliability_and_price() -> None:
    assert supplier_score(0.9, 10) == pytest.approx(40.54)
    assert supplier_score(0.9, 0) == pytest.approx(0.54)
    assert supplier_score(0.5, 5) > supplier_score(1.0, 50)


def test_demand_volatility_bands() -> None:
    assert demand_volatility([10]) == "low"
    assert demand_volatility([0, 0, 0]) == "low"
    assert demand_volatility([10, 14]) == "low"
    assert demand_volatility([6, 14]) == "medium"
    assert demand_volatility([0, 20]) == "high"


def test_recommendations_rank_by_priority_then_savings() -> None:
    ranked = rank_recommendations(
        [
            _recommendation("low", 9000),
            _recommendation("critical", 10),
            _recommendation("high", 500),
            _recommendation("high", 800),
        ]
    )

    assert [(rec.priority, rec.estimated_savings) for rec in ranked] == [
        ("critical", 10),
        ("high", 800),
        ("high", 500),
        ("low", 9000),
    ]


def test_reorder_point_for_item_without_history(seeded_db) -> None:
    item = {
        "id": "item_new",
        "name": "Joist Hangers",
        "stock": 4,
        "cost": 5.0,
        "reorder_quantity": 100,
        "supplier_id": "sup_004",
    }

    reorder = asyncio.run(SupplyChainOptimizer().calculate_optimal_reorder_point(item))

    # one unit a day: 7 days lead time plus ceil(1.4) safety stock
    assert reorder.reorder_point == 9
    assert reorder.average_daily_demand == 1.0
    assert reorder.optimal_order_quantity == 78
    # inactive preferred supplier falls back to the first active one
    assert reorder.suggested_supplier == "sup_001"


def test_reorder_candidates_put_out_of_stock_first(seeded_db) -> None:
    candidates = asyncio.run(SupplyChainOptimizer().reorder_candidates())

    assert [candidate["item"]["id"] for candidate in candidates] == ["item_rebar", "item_wire", "item_concrete_mix"]
    assert [candidate["priority"] for candidate in candidates] == ["critical", "high", "high"]
    assert candidates[2]["reorder"]["suggested_supplier"] == "sup_002"


def test_recommendations_cover_reorder_switch_and_consolidation(seeded_db) -> None:
    recommendations = asyncio.run(SupplyChainOptimizer().generate_optimization_recommendations())
    by_type: dict[str, list[Recommendation]] = {}
    for rec in recommendations:
        by_type.setdefault(rec.type, []).append(rec)

    assert recommendations[0].priority == "critical"
    assert recommendations[0].data["product_id"] == "item_rebar"
    assert len(by_type["reorder"]) == 3

    (switch,) = by_type["supplier_switch"]
    assert switch.data["current_supplier"]["id"] == "sup_002"
    assert switch.data["recommended_supplier"]["id"] == "sup_003"
    assert switch.estimated_savings == 6440

    consolidated = {rec.data["product_id"]: rec.data["current_suppliers"] for rec in by_type["consolidation"]}
    assert consolidated == {
        "item_concrete_mix": ["sup_002", "sup_003"],
        "item_rebar": ["sup_001", "sup_003"],
    }
    assert all(rec.estimated_savings > 0 for rec in by_type["consolidation"])


def test_supplier_selection_compares_purchase_history(seeded_db) -> None:
    optimizer = SupplyChainOptimizer()

    selection = asyncio.run(optimizer.optimize_supplier_selection("item_concrete_mix"))

    assert selection["current_supplier"]["id"] == "sup_002"
    assert selection["recommended_supplier"]["id"] in {"sup_002", "sup_003"}
    assert selection["savings"] >= 0
    assert "on-time delivery" in selection["reasoning"]


def test_supplier_selection_without_active_history(seeded_db) -> None:
    selection = asyncio.run(SupplyChainOptimizer().optimize_supplier_selection("item_anchor"))

    assert selection == {
        "current_supplier": None,
        "recommended_supplier": None,
        "savings": 0,
        "reasoning": "No supplier performance data available",
    }


def test_supplier_selection_unknown_product(seeded_db) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(SupplyChainOptimizer().optimize_supplier_selection("item_missing"))


def test_automatic_purchase_orders(seeded_db) -> None:
    orders = asyncio.run(SupplyChainOptimizer().generate_automatic_purchase_orders())

    assert [order["product_id"] for order in orders] == ["item_rebar", "item_wire", "item_concrete_mix"]
    assert orders[0]["urgency"] == "critical"
    assert orders[1]["supplier_id"] == "sup_003"
    assert all(order["quantity"] > 0 and order["estimated_cost"] > 0 for order in orders)
