from __future__ import annotations

import logging
from typing import Any, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from api.services.auth import CurrentUser, get_current_user, require_role
from api.services.database import connect_db, fetchall, fetchone, row_to_dict, rows_to_dicts, update_row, utc_now
from api.services.errors import NotFoundError, ValidationFailed
from api.services.orders import (
    ORDER_PRIORITIES,
    PAYMENT_STATUSES,
    calculate_totals,
    check_dates,
    check_transition,
    insert_order,
    matches_search,
    order_stats,
    price_items,
)
from api.services.pagination import envelope, paginate
from api.services.realtime import realtime_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])


class OrderItem(BaseModel):
    product_id: str
    product_name: str
    sku: Optional[str] = None
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)
    discount: float = Field(default=0, ge=0, le=100)


class OrderCreate(BaseModel):
    customer_id: str
    customer_name: str
    items: list[OrderItem]
    order_date: Optional[str] = None
    required_date: Optional[str] = None
    tax_rate: float = Field(default=0, ge=0)
    shipping_cost: float = Field(default=0, ge=0)
    payment_status: str = "PENDING"
    payment_terms: Optional[str] = None
    priority: str = "NORMAL"
    notes: Optional[str] = None
    sales_rep_id: Optional[str] = None


class OrderUpdate(BaseModel):
    customer_name: Optional[str] = None
    items: Optional[list[OrderItem]] = None
    required_date: Optional[str] = None
    tax_rate: Optional[float] = Field(default=None, ge=0)
    shipping_cost: Optional[float] = Field(default=None, ge=0)
    payment_status: Optional[str] = None
    payment_terms: Optional[str] = None
    priority: Optional[str] = None
    notes: Optional[str] = None
    sales_rep_id: Optional[str] = None


class StatusUpdate(BaseModel):
    status: str


def _check_enums(values: dict[str, Any]) -> None:
    if values.get("payment_status") and values["payment_status"] not in PAYMENT_STATUSES:
        raise ValidationFailed(f"payment_status must be one of {', '.join(PAYMENT_STATUSES)}", code="INVALID_PAYMENT_STATUS")
    if values.get("priority") and values["priority"] not in ORDER_PRIORITIES:
        raise ValidationFailed(f"priority must be one of {', '.join(ORDER_PRIORITIES)}", code="INVALID_PRIORITY")


async def _company_orders(conn, company_id: str) -> list[dict[str, Any]]:
    rows = await fetchall(
        conn,
        "SELECT * FROM orders WHERE company_id = ? ORDER BY order_date DESC, order_number DESC",
        (company_id,),
    )
    return rows_to_dicts(rows)


async def _load(conn, order_id: str, company_id: str) -> dict[str, Any]:
    row = await fetchone(conn, "SELECT * FROM orders WHERE id = ? AND company_id = ?", (order_id, company_id))
    if row is None:
        raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
    return row_to_dict(row)


@router.get("")
async def list_orders(
    page: int = Query(1),
    limit: int = Query(10),
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    customer_id: Optional[str] = None,
    customer_name: Optional[str] = None,
    priority: Optional[str] = None,
    sales_rep_id: Optional[str] = None,
    min_amount: Optional[float] = None,
    max_amount: Optional[float] = None,
    search: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
) -> dict[str, Any]:
    conn = await connect_db()
    try:
        orders = await _company_orders(conn, user.company_id)
    finally:
        await conn.close()

    exact = {
        "status": status,
        "payment_status": payment_status,
        "customer_id": customer_id,
        "priority": priority,
        "sales_rep_id": sales_rep_id,
    }
    for field, expected in exact.items():
        if expected:
            orders = [order for order in orders if order[field] == expected]
    if customer_name:
        orders = [order for order in orders if customer_name.lower() in order["customer_name"].lower()]
    if min_amount is not None:
        orders = [order for order in orders if order["total_amount"] >= min_amount]
    if max_amount is not None:
        orders = [order for order in orders if order["total_amount"] <= max_amount]
    if search:
        orders = [order for order in orders if matches_search(order, search)]

    data, pagination = paginate(orders, page, limit)
    return envelope(data, pagination)


@router.get("/reports/stats")
async def stats(user: CurrentUser = Depends(require_role("admin", "manager"))) -> dict[str, Any]:
    conn = await connect_db()
    try:
        orders = await _company_orders(conn, user.company_id)
    finally:
        await conn.close()
    return envelope(order_stats(orders))


@router.get("/number/{order_number}")
async def get_by_number(order_number: str, user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    conn = await connect_db()
    try:
        row = await fetchone(
            conn,
            "SELECT * FROM orders WHERE order_number = ? AND company_id = ?",
            (order_number, user.company_id),
        )
    finally:
        await conn.close()
    if row is None:
        raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
    return envelope(row_to_dict(row))


@router.get("/customer/{customer_id}")
async def customer_orders(
    customer_id: str,
    page: int = Query(1),
    limit: int = Query(10),
    user: CurrentUser = Depends(get_current_user),
) -> dict[str, Any]:
    conn = await connect_db()
    try:
        orders = [order for order in await _company_orders(conn, user.company_id) if order["customer_id"] == customer_id]
    finally:
        await conn.close()
    data, pagination = paginate(orders, page, limit)
    return envelope(data, pagination)


@router.get("/{order_id}")
async def get_order(order_id: str, user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    conn = await connect_db()
    try:
        order = await _load(conn, order_id, user.company_id)
    finally:
        await conn.close()
    return envelope(order)


@router.post("", status_code=201)
async def create_order(
    body: OrderCreate,
    user: CurrentUser = Depends(require_role("admin", "manager", "sales")),
) -> dict[str, Any]:
    values = body.model_dump()
    _check_enums(values)
    now = utc_now()
    order_date = values.pop("order_date") or now
    check_dates(order_date, values["required_date"])
    items = price_items(values.pop("items"))
    totals = calculate_totals(items, values.pop("tax_rate"), values.pop("shipping_cost"))

    conn = await connect_db()
    try:
        order = {
            **values,
            **totals,
            "id": f"ord_{uuid4().hex[:12]}",
            "status": "PENDING",
            "order_date": order_date,
            "items": items,
            "sales_rep_id": values["sales_rep_id"] or user.id,
            "company_id": user.company_id,
            "created_at": now,
            "updated_at": now,
        }
        await insert_order(conn, order)
        await conn.commit()
    finally:
        await conn.close()

    logger.info("Order %s created for %s", order["order_number"], order["customer_id"])
    await realtime_service.emit(
        "order_created",
        {
            "type": "sales_order",
            "order_id": order["id"],
            "order_number": order["order_number"],
            "customer_id": order["customer_id"],
            "customer_name": order["customer_name"],
            "total_amount": order["total_amount"],
            "items": items,
        },
        company_id=user.company_id,
        priority="high" if order["priority"] in ("HIGH", "URGENT") else "medium",
    )
    return envelope(order, message="Order created successfully")


@router.put("/{order_id}")
async def update_order(
    order_id: str,
    body: OrderUpdate,
    user: CurrentUser = Depends(require_role("admin", "manager", "sales")),
) -> dict[str, Any]:
    changes = body.model_dump(exclude_unset=True)
    _check_enums(changes)

    conn = await connect_db()
    try:
        order = await _load(conn, order_id, user.company_id)
        if "required_date" in changes:
            check_dates(order["order_date"], changes["required_date"])
        if {"items", "tax_rate", "shipping_cost"}.intersection(changes):
            items = price_items(changes["items"]) if "items" in changes else order["items"]
            changes["items"] = items
            changes.update(
                calculate_totals(
                    items,
                    changes.get("tax_rate", order["tax_rate"]),
                    changes.get("shipping_cost", order["shipping_cost"]),
                )
            )
        changes["updated_at"] = utc_now()
        await update_row(conn, "orders", "id", order_id, changes)
        await conn.commit()
    finally:
        await conn.close()
    return envelope({**order, **changes}, message="Order updated successfully")


@router.put("/{order_id}/status")
async def update_status(
    order_id: str,
    body: StatusUpdate,
    user: CurrentUser = Depends(require_role("admin", "manager", "warehouse", "sales")),
) -> dict[str, Any]:
    target = body.status.upper()
    conn = await connect_db()
    try:
        order = await _load(conn, order_id, user.company_id)
        check_transition(order["status"], target)
        now = utc_now()
        changes: dict[str, Any] = {"status": target, "updated_at": now}
        if target == "SHIPPED":
            changes["shipped_date"] = now
        elif target == "DELIVERED":
            changes["delivered_date"] = now
        await update_row(conn, "orders", "id", order_id, changes)
        await conn.commit()
    finally:
        await conn.close()
    logger.info("Order %s moved %s -> %s", order["order_number"], order["status"], target)
    return envelope({**order, **changes}, message="Order status updated successfully")
