from __future__ import annotations

import logging
import sqlite3
from datetime import date
from typing import Any, Optional

from api.services.database import fetchone, insert_row
from api.services.errors import ConflictError, ValidationFailed

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("PENDING", "CONFIRMED", "PROCESSING", "SHIPPED", "DELIVERED", "CANCELLED")
PAYMENT_STATUSES = ("PENDING", "PARTIAL", "PAID", "OVERDUE")
ORDER_PRIORITIES = ("LOW", "NORMAL", "HIGH", "URGENT")
ORDER_NUMBER_ATTEMPTS = 5

STATUS_TRANSITIONS: dict[str, set[str]] = {
    "PENDING": {"CONFIRMED", "CANCELLED"},
    "CONFIRMED": {"PROCESSING", "CANCELLED"},
    "PROCESSING": {"SHIPPED", "CANCELLED"},
    "SHIPPED": {"DELIVERED"},
    "DELIVERED": set(),
    "CANCELLED": set(),
}


def money(value: float) -> float:
    return round(value + 0.0, 2)


def line_total(item: dict[str, Any]) -> float:
    discount = float(item.get("discount") or 0)
    return money(int(item["quantity"]) * float(item["unit_price"]) * (1 - discount / 100))


def price_items(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    if not items:
        raise ValidationFailed("Order must contain at least one item", code="ORDER_ITEMS_REQUIRED")
    return [{**item, "discount": float(item.get("discount") or 0), "total_price": line_total(item)} for item in items]


def calculate_totals(items: list[dict[str, Any]], tax_rate: float = 0, shipping_cost: float = 0) -> dict[str, float]:
    subtotal = money(sum(item["total_price"] for item in items))
    tax_amount = money(subtotal * tax_rate / 100)
    return {
        "subtotal": subtotal,
        "tax_rate": tax_rate,
        "tax_amount": tax_amount,
        "shipping_cost": money(shipping_cost),
        "total_amount": money(subtotal + tax_amount + shipping_cost),
    }


def _calendar_date(value: str, field: str) -> date:
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        raise ValidationFailed(f"{field} must be an ISO date (YYYY-MM-DD)", code="INVALID_DATES") from None


def check_dates(order_date: str, required_date: Optional[str]) -> None:
    ordered = _calendar_date(order_date, "order_date")
    if required_date and _calendar_date(required_date, "required_date") < ordered:
        raise ValidationFailed("Required date cannot be before order date", code="INVALID_DATES")


def check_transition(current: str, target: str) -> None:
    if target not in ORDER_STATUSES:
        raise ValidationFailed(f"status must be one of {', '.join(ORDER_STATUSES)}", code="INVALID_STATUS")
    if target not in STATUS_TRANSITIONS[current]:
        raise ConflictError(
            f"Cannot move order from {current} to {target}",
            code="INVALID_STATUS_TRANSITION",
            extra={"allowed": sorted(STATUS_TRANSITIONS[current])},
        )


def format_order_number(sequence: int) -> str:
    return f"ORD-{sequence:06d}"


async def next_order_number(conn) -> str:
    row = await fetchone(conn, "SELECT MAX(CAST(SUBSTR(order_number, 5) AS INTEGER)) AS last FROM orders")
    return format_order_number((row["last"] or 0) + 1)


async def insert_order(conn, order: dict[str, Any]) -> dict[str, Any]:
    """Insert ``order`` under the next free order number.

    A concurrent create can claim the same number between the lookup and the
    insert; the UNIQUE constraint rejects the loser, which allocates again.
    """
    attempt = 1
    while True:
        order["order_number"] = await next_order_number(conn)
        try:
            await insert_row(conn, "orders", order)
            return order
        except sqlite3.IntegrityError:
            if attempt >= ORDER_NUMBER_ATTEMPTS:
                raise
            logger.warning("Order number %s already taken, allocating again", order["order_number"])
            attempt += 1


def matches_search(order: dict[str, Any], term: str) -> bool:
    term = term.lower()
    haystack = [order["order_number"], order["customer_name"], order.get("notes") or ""]
    for item in order["items"]:
        haystack.append(item.get("product_name") or "")
        haystack.append(item.get("sku") or "")
    return any(term in value.lower() for value in haystack)


def order_stats(orders: list[dict[str, Any]]) -> dict[str, Any]:
    by_status = {status: 0 for status in ORDER_STATUSES}
    for order in orders:
        by_status[order["status"]] = by_status.get(order["status"], 0) + 1
    revenue = money(sum(float(order["total_amount"]) for order in orders))
    return {
        "total_orders": len(orders),
        "by_status": by_status,
        "total_revenue": revenue,
        "average_order_value": money(revenue / len(orders)) if orders else 0,
    }
