from __future__ import annotations

import logging
from typing import Any, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from api.services.auth import CurrentUser, get_current_user, require_role
from api.services.customers import (
    change_status,
    company_customers,
    customer_stats,
    ensure_unique_email,
    filter_customers,
    load_customer,
    overdue_customers,
    validate_customer,
    with_order_summary,
)
from api.services.database import connect_db, fetchall, insert_row, rows_to_dicts, update_row, utc_now
from api.services.pagination import envelope, paginate
from api.services.realtime import realtime_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/customers", tags=["customers"])


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: str = "USA"


class CustomerCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    tax_id: Optional[str] = None
    customer_type: str = "Individual"
    status: str = "active"
    credit_limit: float = Field(default=0, ge=0)
    current_balance: float = 0
    payment_terms: str = "Net 30"
    preferred_contact: str = "Email"
    tags: list[str] = Field(default_factory=list)
    notes: Optional[str] = None
    billing_address: Optional[Address] = None


class CustomerUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    tax_id: Optional[str] = None
    customer_type: Optional[str] = None
    credit_limit: Optional[float] = Field(default=None, ge=0)
    payment_terms: Optional[str] = None
    preferred_contact: Optional[str] = None
    tags: Optional[list[str]] = None
    notes: Optional[str] = None
    billing_address: Optional[Address] = None


class BalanceAdjustment(BaseModel):
    amount: float
    reason: str = "Manual balance adjustment"


class StatusChange(BaseModel):
    status: str
    reason: Optional[str] = None


async def _customer_orders(conn, customer_id: str, company_id: str) -> list[dict[str, Any]]:
    rows = await fetchall(
        conn,
        "SELECT status, total_amount, order_date FROM orders WHERE customer_id = ? AND company_id = ?",
        (customer_id, company_id),
    )
    return rows_to_dicts(rows)


@router.get("")
async def list_customers(
    page: int = Query(1),
    limit: int = Query(10),
    customer_type: Optional[str] = None,
    status: Optional[str] = None,
    is_active: Optional[bool] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    tags: Optional[list[str]] = Query(None),
    search: Optional[str] = None,
    credit_limit_min: Optional[float] = None,
    credit_limit_max: Optional[float] = None,
    balance_min: Optional[float] = None,
    balance_max: Optional[float] = None,
    user: CurrentUser = Depends(get_current_user),
) -> dict[str, Any]:
    conn = await connect_db()
    try:
        customers = await company_customers(conn, user.company_id)
    finally:
        await conn.close()

    customers = filter_customers(
        customers,
        customer_type=customer_type,
        status=status,
        is_active=is_active,
        city=city,
        state=state,
        tags=tags,
        search=search,
        credit_limit_min=credit_limit_min,
        credit_limit_max=credit_limit_max,
        balance_min=balance_min,
        balance_max=balance_max,
    )
    data, pagination = paginate(customers, page, limit)
    return envelope(data, pagination)


@router.get("/reports/overdue")
async def overdue_report(user: CurrentUser = Depends(require_role("admin", "manager", "accounting"))) -> dict[str, Any]:
    conn = await connect_db()
    try:
        overdue = overdue_customers(await company_customers(conn, user.company_id))
    finally:
        await conn.close()
    return envelope(overdue, count=len(overdue))


@router.get("/reports/stats")
async def stats(user: CurrentUser = Depends(require_role("admin", "manager"))) -> dict[str, Any]:
    conn = await connect_db()
    try:
        customers = await company_customers(conn, user.company_id)
    finally:
        await conn.close()
    return envelope(customer_stats(customers))


@router.get("/{customer_id}")
async def get_customer(customer_id: str, user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
    conn = await connect_db()
    try:
        customer = await load_customer(conn, customer_id, user.company_id)
        orders = await _customer_orders(conn, customer_id, user.company_id)
    finally:
        await conn.close()
    return envelope(with_order_summary(customer, orders))


@router.post("", status_code=201)
async def create_customer(
    body: CustomerCreate,
    user: CurrentUser = Depends(require_role("admin", "manager", "sales")),
) -> dict[str, Any]:
    now = utc_now()
    customer = {
        **body.model_dump(),
        "id": f"cust_{uuid4().hex[:12]}",
        "company_id": user.company_id,
        "created_at": now,
        "updated_at": now,
    }
    customer["is_active"] = customer["status"] != "inactive"
    validate_customer(customer)

    conn = await connect_db()
    try:
        await ensure_unique_email(conn, customer["email"], user.company_id)
        await insert_row(conn, "customers", customer)
        await conn.commit()
    finally:
        await conn.close()
    logger.info("Customer %s created by %s", customer["id"], user.id)
    return envelope(customer, id=customer["id"], message="Customer created successfully")


@router.put("/{customer_id}")
async def update_customer(
    customer_id: str,
    body: CustomerUpdate,
    user: CurrentUser = Depends(require_role("admin", "manager", "sales")),
) -> dict[str, Any]:
    changes = body.model_dump(exclude_unset=True)
    conn = await connect_db()
    try:
        customer = await load_customer(conn, customer_id, user.company_id)
        merged = {**customer, **changes}
        validate_customer(merged)
        if "email" in changes:
            await ensure_unique_email(conn, changes["email"], user.company_id, exclude_id=customer_id)
        changes["updated_at"] = utc_now()
        await update_row(conn, "customers", "id", customer_id, changes)
        await conn.commit()
    finally:
        await conn.close()
    return envelope({**merged, **changes}, message="Customer updated successfully")


@router.post("/{customer_id}/balance")
async def adjust_balance(
    customer_id: str,
    body: BalanceAdjustment,
    user: CurrentUser = Depends(require_role("admin", "manager", "accounting")),
) -> dict[str, Any]:
    conn = await connect_db()
    try:
        customer = await load_customer(conn, customer_id, user.company_id)
        balance = round(float(customer["current_balance"]) + body.amount, 2)
        changes = {"current_balance": balance, "updated_at": utc_now()}
        await update_row(conn, "customers", "id", customer_id, changes)
        await conn.commit()
    finally:
        await conn.close()
    logger.info("Customer %s balance %+.2f (%s) by %s", customer_id, body.amount, body.reason, user.id)
    return envelope({**customer, **changes}, message="Customer balance updated successfully")


async def _set_status(customer_id: str, status: str, reason: Optional[str], user: CurrentUser) -> dict[str, Any]:
    conn = await connect_db()
    try:
        change = await change_status(conn, customer_id, user.company_id, status, reason=reason, updated_by=user.id)
        await conn.commit()
        customer = await load_customer(conn, customer_id, user.company_id)
    finally:
        await conn.close()
    await realtime_service.emit(
        "system_notification",
        {"type": "customer_status_changed", **change},
        company_id=user.company_id,
    )
    return customer


@router.put("/{customer_id}/status")
async def update_status(
    customer_id: str,
    body: StatusChange,
    user: CurrentUser = Depends(require_role("admin", "manager", "sales")),
) -> dict[str, Any]:
    customer = await _set_status(customer_id, body.status, body.reason, user)
    return envelope(customer, message="Customer status updated successfully")


@router.put("/{customer_id}/deactivate")
async def deactivate(
    customer_id: str,
    user: CurrentUser = Depends(require_role("admin", "manager")),
) -> dict[str, Any]:
    customer = await _set_status(customer_id, "inactive", "Deactivated", user)
    return envelope(customer, message="Customer deactivated successfully")
