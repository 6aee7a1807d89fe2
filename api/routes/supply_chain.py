from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from api.services.auth import CurrentUser, get_current_user, require_role
from api.services.database import connect_db, fetchone, row_to_dict
from api.services.errors import NotFoundError
from api.services.insights import ai_orchestrator
from api.services.pagination import envelope

router = APIRouter(prefix="/api/supply-chain", tags=["supply-chain"])

optimizer = ai_orchestrator.optimizer


@router.get("/recommendations")
async def recommendations(user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    ranked = await optimizer.generate_optimization_recommendations()
    return envelope([recommendation.to_dict() for recommendation in ranked])


@router.get("/reorder-point/{product_id}")
async def reorder_point(product_id: str, user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    conn = await connect_db()
    try:
        row = await fetchone(conn, "SELECT * FROM inventory_items WHERE id = ?", (product_id,))
    finally:
        await conn.close()
    if row is None:
        raise NotFoundError("Inventory item not found", code="ITEM_NOT_FOUND")
    result = await optimizer.calculate_optimal_reorder_point(row_to_dict(row))
    return envelope(result.to_dict())


@router.get("/supplier-selection/{product_id}")
async def supplier_selection(product_id: str, user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    return envelope(await optimizer.optimize_supplier_selection(product_id))


@router.post("/purchase-orders/auto")
async def automatic_purchase_orders(
    user: CurrentUser = Depends(require_role("admin", "manager")),
) -> dict[str, Any]:
    orders = await optimizer.generate_automatic_purchase_orders()
    return envelope(orders, count=len(orders))
