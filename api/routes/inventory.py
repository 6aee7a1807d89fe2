from __future__ import annotations

import logging
from typing import Any, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from api.services.auth import CurrentUser, get_current_user, require_role
from api.services.database import connect_db, fetchall, fetchone, insert_row, row_to_dict, rows_to_dicts, update_row, utc_now
from api.services.errors import ConflictError, NotFoundError, ValidationFailed
from api.services.inventory import (
    TRANSACTION_TYPES,
    adjustment_priority,
    filter_items,
    is_low_stock,
    validate_item,
    with_available_stock,
)
from api.services.pagination import envelope, paginate
from api.services.realtime import realtime_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/inventory", tags=["inventory"])


class ItemCreate(BaseModel):
    sku: str
    name: str
    category: str
    price: float = Field(ge=0)
    cost: float = Field(ge=0)
    stock: int = Field(default=0, ge=0)
    reorder_point: int = Field(default=0, ge=0)
    reorder_quantity: int = Field(default=0, ge=0)
    description: Optional[str] = None
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    max_stock: Optional[int] = None
    min_stock: Optional[int] = None
    unit: str = "each"
    location: Any = None
    supplier_id: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    is_tracked: bool = True


class ItemUpdate(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    cost: Optional[float] = Field(default=None, ge=0)
    stock: Optional[int] = Field(default=None, ge=0)
    reorder_point: Optional[int] = Field(default=None, ge=0)
    reorder_quantity: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    max_stock: Optional[int] = None
    min_stock: Optional[int] = None
    unit: Optional[str] = None
    location: Any = None
    supplier_id: Optional[str] = None
    tags: Optional[list[str]] = None
    is_active: Optional[bool] = None
    is_tracked: Optional[bool] = None


class AdjustRequest(BaseModel):
    quantity: int
    reason: str
    type: str = "ADJUSTMENT"


class QuantityRequest(BaseModel):
    quantity: int = Field(gt=0)


async def _load(conn, item_id: str, company_id: str) -> dict[str, Any]:
    row = await fetchone(
        conn,
        "SELECT * FROM inventory_items WHERE id = ? AND (company_id = ? OR company_id IS NULL)",
        (item_id, company_id),
    )
    if row is None:
        raise NotFoundError("Inventory item not found", code="ITEM_NOT_FOUND")
    return row_to_dict(row)


async def _company_items(conn, company_id: str) -> list[dict[str, Any]]:
    rows = await fetchall(
        conn,
        "SELECT * FROM inventory_items WHERE company_id = ? OR company_id IS NULL ORDER BY name",
        (company_id,),
    )
    return rows_to_dicts(rows)


@router.get("")
async def list_items(
    page: int = Query(1),
    limit: int = Query(10),
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    brand: Optional[str] = None,
    is_active: Optional[bool] = None,
    low_stock: Optional[bool] = None,
    out_of_stock: Optional[bool] = None,
    location: Optional[str] = None,
    supplier_id: Optional[str] = None,
    search: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
) -> dict[str, Any]:
    conn = await connect_db()
    try:
        items = await _company_items(conn, user.company_id)
    finally:
        await conn.close()

    items = filter_items(
        items,
        category=category,
        subcategory=subcategory,
        brand=brand,
        is_active=is_active,
        low_stock=low_stock,
        out_of_stock=out_of_stock,
        location=location,
        supplier_id=supplier_id,
        search=search,
    )
    data, pagination = paginate([with_available_stock(item) for item in items], page, limit)
    return envelope(data, pagination)


@router.get("/reports/low-stock")
async def low_stock_report(user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    conn = await connect_db()
    try:
        items = await _company_items(conn, user.company_id)
    finally:
        await conn.close()
    low = [with_available_stock(item) for item in items if item["is_active"] and is_low_stock(item)]
    return envelope(low, count=len(low))


@router.get("/{item_id}")
async def get_item(item_id: str, user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    conn = await connect_db()
    try:
        item = await _load(conn, item_id, user.company_id)
    finally:
        await conn.close()
    return envelope(with_available_stock(item))


@router.post("", status_code=201)
async def create_item(
    body: ItemCreate,
    user: CurrentUser = Depends(require_role("admin", "manager")),
) -> dict[str, Any]:
    values = body.model_dump()
    validate_item(values)
    now = utc_now()
    item = {
        **values,
        "id": f"item_{uuid4().hex[:12]}",
        "reserved_stock": 0,
        "is_active": True,
        "company_id": user.company_id,
        "created_at": now,
        "updated_at": now,
    }

    conn = await connect_db()
    try:
        existing = await fetchone(conn, "SELECT id FROM inventory_items WHERE sku = ?", (item["sku"],))
        if existing is not None:
            raise ConflictError("SKU already exists", code="SKU_EXISTS")
        await insert_row(conn, "inventory_items", item)
        await conn.commit()
    finally:
        await conn.close()
    return envelope(with_available_stock(item), message="Inventory item created successfully")


@router.put("/{item_id}")
async def update_item(
    item_id: str,
    body: ItemUpdate,
    user: CurrentUser = Depends(require_role("admin", "manager")),
) -> dict[str, Any]:
    changes = body.model_dump(exclude_unset=True)
    conn = await connect_db()
    try:
        item = await _load(conn, item_id, user.company_id)
        merged = {**item, **changes}
        validate_item(merged)
        changes["updated_at"] = utc_now()
        await update_row(conn, "inventory_items", "id", item_id, changes)
        await conn.commit()
    finally:
        await conn.close()
    return envelope(with_available_stock({**merged, **changes}), message="Inventory item updated successfully")


@router.post("/{item_id}/adjust")
async def adjust_stock(
    item_id: str,
    body: AdjustRequest,
    user: CurrentUser = Depends(require_role("admin", "manager", "warehouse")),
) -> dict[str, Any]:
    if body.quantity == 0:
        raise ValidationFailed("Quantity must not be zero", code="INVALID_QUANTITY")
    kind = body.type.upper()
    if kind not in TRANSACTION_TYPES:
        raise ValidationFailed(f"type must be one of {', '.join(TRANSACTION_TYPES)}", code="INVALID_TRANSACTION_TYPE")

    conn = await connect_db()
    try:
        item = await _load(conn, item_id, user.company_id)
        previous = int(item["stock"])
        new_stock = previous + body.quantity
        if new_stock < 0:
            raise ValidationFailed("Insufficient stock for this adjustment", code="INSUFFICIENT_STOCK")
        now = utc_now()
        await update_row(conn, "inventory_items", "id", item_id, {"stock": new_stock, "updated_at": now})
        await insert_row(
            conn,
            "inventory_transactions",
            {
                "item_id": item_id,
                "type": kind,
                "quantity": body.quantity,
                "previous_stock": previous,
                "new_stock": new_stock,
                "reason": body.reason,
                "user_id": user.id,
                "created_at": now,
            },
        )
        await conn.commit()
    finally:
        await conn.close()

    logger.info("Stock for %s adjusted %+d (%s)", item["sku"], body.quantity, kind)
    await realtime_service.emit(
        "inventory_update",
        {
            "product_id": item_id,
            "product_name": item["name"],
            "quantity_change": body.quantity,
            "new_quantity": new_stock,
            "location": item.get("location"),
            "reason": body.reason,
        },
        company_id=user.company_id,
        priority=adjustment_priority(body.quantity),
    )
    item.update(stock=new_stock, updated_at=now)
    return envelope(with_available_stock(item), message="Stock adjusted successfully")


@router.post("/{item_id}/reserve")
async def reserve_stock(
    item_id: str,
    body: QuantityRequest,
    user: CurrentUser = Depends(require_role("admin", "manager", "sales")),
) -> dict[str, Any]:
    conn = await connect_db()
    try:
        item = await _load(conn, item_id, user.company_id)
        available = with_available_stock(item)["available_stock"]
        if body.quantity > available:
            raise ValidationFailed("Insufficient available stock", code="INSUFFICIENT_AVAILABLE_STOCK")
        item["reserved_stock"] = int(item["reserved_stock"]) + body.quantity
        item["updated_at"] = utc_now()
        await update_row(
            conn, "inventory_items", "id", item_id, {"reserved_stock": item["reserved_stock"], "updated_at": item["updated_at"]}
        )
        await conn.commit()
    finally:
        await conn.close()
    return envelope(with_available_stock(item), message="Stock reserved successfully")


@router.post("/{item_id}/release")
async def release_stock(
    item_id: str,
    body: QuantityRequest,
    user: CurrentUser = Depends(require_role("admin", "manager", "sales")),
) -> dict[str, Any]:
    conn = await connect_db()
    try:
        item = await _load(conn, item_id, user.company_id)
        if body.quantity > int(item["reserved_stock"]):
            raise ValidationFailed("Cannot release more than reserved stock", code="INVALID_RELEASE")
        item["reserved_stock"] = int(item["reserved_stock"]) - body.quantity
        item["updated_at"] = utc_now()
        await update_row(
            conn, "inventory_items", "id", item_id, {"reserved_stock": item["reserved_stock"], "updated_at": item["updated_at"]}
        )
        await conn.commit()
    finally:
        await conn.close()
    return envelope(with_available_stock(item), message="Stock released successfully")


@router.get("/{item_id}/transactions")
async def item_transactions(item_id: str, user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    conn = await connect_db()
    try:
        await _load(conn, item_id, user.company_id)
        rows = await fetchall(
            conn,
            "SELECT * FROM inventory_transactions WHERE item_id = ? ORDER BY created_at DESC, id DESC LIMIT 50",
            (item_id,),
        )
    finally:
        await conn.close()
    return envelope(rows_to_dicts(rows))
