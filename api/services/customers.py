from __future__ import annotations

import logging
from typing import Any, Optional

from api.services.database import fetchall, fetchone, row_to_dict, rows_to_dicts, update_row, utc_now
from api.services.errors import ConflictError, NotFoundError, ValidationFailed

logger = logging.getLogger(__name__)

CUSTOMER_TYPES = ("Individual", "Business", "Contractor", "Supplier")
CUSTOMER_STATUSES = ("active", "on_hold", "at_risk", "inactive")
CONTACT_METHODS = ("Email", "Phone", "Mail")


def validate_customer(customer: dict[str, Any]) -> None:
    """Check a full (merged) customer record against the business rules."""
    if customer.get("customer_type") not in CUSTOMER_TYPES:
        raise ValidationFailed(f"customer_type must be one of {', '.join(CUSTOMER_TYPES)}", code="INVALID_CUSTOMER_TYPE")
    if customer.get("status") not in CUSTOMER_STATUSES:
        raise ValidationFailed(f"status must be one of {', '.join(CUSTOMER_STATUSES)}", code="INVALID_CUSTOMER_STATUS")
    if customer.get("preferred_contact") not in CONTACT_METHODS:
        raise ValidationFailed(
            f"preferred_contact must be one of {', '.join(CONTACT_METHODS)}", code="INVALID_CONTACT_METHOD"
        )
    if customer["customer_type"] == "Business" and not customer.get("company"):
        raise ValidationFailed("Company name is required for business customers", code="COMPANY_REQUIRED")
    if float(customer.get("current_balance") or 0) > float(customer.get("credit_limit") or 0):
        logger.warning("Customer %s balance exceeds credit limit", customer.get("id") or customer.get("name"))


def _in_range(value: float, low: Optional[float], high: Optional[float]) -> bool:
    return (low is None or value >= low) and (high is None or value <= high)


def filter_customers(
    customers: list[dict[str, Any]],
    *,
    customer_type: Optional[str] = None,
    status: Optional[str] = None,
    is_active: Optional[bool] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    tags: Optional[list[str]] = None,
    search: Optional[str] = None,
    credit_limit_min: Optional[float] = None,
    credit_limit_max: Optional[float] = None,
    balance_min: Optional[float] = None,
    balance_max: Optional[float] = None,
) -> list[dict[str, Any]]:
    result = []
    for customer in customers:
        address = customer.get("billing_address") or {}
        if customer_type and customer["customer_type"] != customer_type:
            continue
        if status and customer["status"] != status:
            continue
        if is_active is not None and customer["is_active"] != is_active:
            continue
        if city and city.lower() not in str(address.get("city") or "").lower():
            continue
        if state and state.lower() not in str(address.get("state") or "").lower():
            continue
        if tags and not set(tags).intersection(customer.get("tags") or []):
            continue
        if search:
            term = search.lower()
            fields = [customer["name"], customer.get("email"), customer.get("company"), customer.get("phone")]
            if not any(term in str(value).lower() for value in fields if value):
                continue
        if not _in_range(float(customer["credit_limit"]), credit_limit_min, credit_limit_max):
            continue
        if not _in_range(float(customer["current_balance"]), balance_min, balance_max):
            continue
        result.append(customer)
    return result


def with_order_summary(customer: dict[str, Any], orders: list[dict[str, Any]]) -> dict[str, Any]:
    placed = [order for order in orders if order["status"] != "CANCELLED"]
    return {
        **customer,
        "total_orders": len(placed),
        "total_spent": round(sum(float(order["total_amount"]) for order in placed), 2),
        "last_order_date": max((order["order_date"] for order in placed), default=None),
    }


def overdue_customers(customers: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [customer for customer in customers if customer["is_active"] and customer["current_balance"] > 0]


def customer_stats(customers: list[dict[str, Any]]) -> dict[str, Any]:
    by_type = {kind: 0 for kind in CUSTOMER_TYPES}
    by_status = {status: 0 for status in CUSTOMER_STATUSES}
    for customer in customers:
        by_type[customer["customer_type"]] = by_type.get(customer["customer_type"], 0) + 1
        by_status[customer["status"]] = by_status.get(customer["status"], 0) + 1
    active = sum(1 for customer in customers if customer["is_active"])
    return {
        "total": len(customers),
        "active": active,
        "inactive": len(customers) - active,
        "by_type": by_type,
        "by_status": by_status,
        "total_credit_limit": round(sum(float(customer["credit_limit"]) for customer in customers), 2),
        "total_outstanding": round(sum(float(customer["current_balance"]) for customer in customers), 2),
    }


async def company_customers(conn, company_id: str) -> list[dict[str, Any]]:
    rows = await fetchall(conn, "SELECT * FROM customers WHERE company_id = ? ORDER BY name", (company_id,))
    return rows_to_dicts(rows)


async def load_customer(conn, customer_id: str, company_id: Optional[str]) -> dict[str, Any]:
    row = await fetchone(conn, "SELECT * FROM customers WHERE id = ? AND company_id = ?", (customer_id, company_id))
    if row is None:
        raise NotFoundError("Customer not found", code="CUSTOMER_NOT_FOUND")
    return row_to_dict(row)


async def ensure_unique_email(conn, email: Optional[str], company_id: str, exclude_id: Optional[str] = None) -> None:
    if not email:
        return
    row = await fetchone(
        conn,
        "SELECT id FROM customers WHERE lower(email) = lower(?) AND company_id = ? AND id != ?",
        (email, company_id, exclude_id or ""),
    )
    if row is not None:
        raise ConflictError(f"Customer with email '{email}' already exists", code="CUSTOMER_EMAIL_EXISTS")


async def change_status(
    conn,
    customer_id: str,
    company_id: Optional[str],
    new_status: str,
    *,
    reason: Optional[str] = None,
    updated_by: Optional[str] = None,
) -> dict[str, Any]:
    """Persist a customer status change and describe it for notifications."""
    if new_status not in CUSTOMER_STATUSES:
        raise ValidationFailed(f"status must be one of {', '.join(CUSTOMER_STATUSES)}", code="INVALID_CUSTOMER_STATUS")
    customer = await load_customer(conn, customer_id, company_id)
    now = utc_now()
    await update_row(
        conn,
        "customers",
        "id",
        customer_id,
        {"status": new_status, "is_active": new_status != "inactive", "updated_at": now},
    )
    logger.info("Customer %s status %s -> %s", customer_id, customer["status"], new_status)
    return {
        "customer_id": customer_id,
        "customer_name": customer["name"],
        "old_status": customer["status"],
        "new_status": new_status,
        "reason": reason,
        "updated_by": updated_by,
        "updated_at": now,
    }
